from sqlalchemy import Boolean, Float, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from synthgate.db.base import Base


class CachedResult(Base):
    """Persistent tier of the response cache. Keyed by payload hash only."""

    __tablename__ = "cached_results"

    key_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    is_text: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[float] = mapped_column(Float, nullable=False, index=True)  # epoch seconds
