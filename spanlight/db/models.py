from __future__ import annotations

from sqlalchemy import JSON, DateTime, Float, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from spanlight.db.base import Base


class SpanLabelingCacheRecord(Base):
    __tablename__ = "span_labeling_cache"

    cache_key: Mapped[str] = mapped_column(String(512), primary_key=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    cache_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    signature: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    spans: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    stored_at: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[object] = mapped_column(DateTime(timezone=True), server_default=func.now())
