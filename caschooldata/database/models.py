"""
SQLAlchemy ORM model for the processed-table cache.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, LargeBinary, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo, so timestamps are stored naive)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class CachedTable(Base):
    """
    One processed table, keyed by (data_type, end_year, variant).

    data_type is the domain ("enrollment", "graduation", "assessment");
    variant is the output shape ("tidy", "wide"). payload holds the JSON
    row list.
    """
    __tablename__ = "cached_tables"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    data_type: Mapped[str] = mapped_column(String(20), nullable=False)
    end_year: Mapped[int] = mapped_column(Integer, nullable=False)
    variant: Mapped[str] = mapped_column(String(20), nullable=False)
    payload: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    row_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("data_type", "end_year", "variant", name="uq_cached_table_key"),
    )

    def __repr__(self) -> str:
        return (
            f"<CachedTable(data_type='{self.data_type}', end_year={self.end_year}, "
            f"variant='{self.variant}', rows={self.row_count})>"
        )

    def age_days(self, now: datetime = None) -> float:
        now = now or utcnow()
        return (now - self.updated_at).total_seconds() / 86400

    def to_dict(self) -> dict:
        return {
            "data_type": self.data_type,
            "end_year": self.end_year,
            "variant": self.variant,
            "row_count": self.row_count,
            "size_bytes": len(self.payload) if self.payload is not None else 0,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
