from narration_render.models.base import Base
from narration_render.models.render_job import RenderJob

__all__ = [
    "Base",
    "RenderJob",
]
