from typing import Any

from sqlalchemy import JSON, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from narration_render.models.base import Base, TimestampMixin, UUIDMixin


class RenderJob(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "render_jobs"

    # Status: queued, processing, rendering, completed, failed
    status: Mapped[str] = mapped_column(String(50), default="queued", index=True)

    # Input
    audio_path: Mapped[str] = mapped_column(Text, nullable=False)

    # Output
    video_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    timeline: Mapped[dict[str, Any] | None] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=True
    )

    # Error handling
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<RenderJob {self.id} ({self.status})>"
