"""Render constants shared by the timeline builder and staging."""

BASE_FPS = 30
LOWER_FPS = 24

# (width, height)
LANDSCAPE_RESOLUTION = (1920, 1080)
LANDSCAPE_LOWER_RESOLUTION = (1280, 720)
PORTRAIT_RESOLUTION = (1080, 1920)
PORTRAIT_LOWER_RESOLUTION = (720, 1280)

# Call-to-action lines rendered with the bundled subscribe clip
SUBSCRIBE_SENTENCE = "Please Subscribe & Help us reach out to more people"
SHORTS_CTA_SENTENCE = "You can watch the full video from the link in the first comment"
CTA_SENTENCES = frozenset({SUBSCRIBE_SENTENCE, SHORTS_CTA_SENTENCE})

# Bundled asset file names looked up in settings.bundled_assets_dir
SUBSCRIBE_VIDEO_FILENAME = "subscribe.mp4"
BACKGROUND_MUSIC_FILENAME = "background.mp3"
GLITCH_SFX_FILENAME = "glitch-fx.mp3"

# Sentinel for "mute background music"
NO_BACKGROUND_MUSIC = "__none__"


def is_cta_sentence(text: str) -> bool:
    """True only for an exact (trimmed) call-to-action line."""
    return (text or "").strip() in CTA_SENTENCES
