"""
SQLAlchemy models for the persistent cache store.
"""
from sqlalchemy import Column, String, DateTime, JSON, Boolean, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class CachedPayload(Base):
    """
    One cache entry: a market snapshot, a listing record, or the explicit
    "not found" marker (payload IS NULL).

    Rows are replaced wholesale on refresh. A row whose expires_at has passed
    is treated as absent whether or not it has been purged yet.
    """
    __tablename__ = "data_cache"

    cache_key = Column(String(255), primary_key=True)
    kind = Column(String(20), nullable=False, index=True)  # 'market' or 'listing'
    payload = Column(JSON, nullable=True)
    is_synthetic = Column(Boolean, nullable=False, default=False)

    # Timestamps (naive UTC)
    cached_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_data_cache_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<CachedPayload(cache_key={self.cache_key}, kind={self.kind}, "
            f"synthetic={self.is_synthetic}, expires_at={self.expires_at})>"
        )
