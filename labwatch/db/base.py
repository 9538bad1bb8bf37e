from sqlalchemy import Column, Integer, DateTime, Boolean
from sqlalchemy.sql import func
from labwatch.models.base import Base


class BaseModel(Base):
    """Surrogate key plus the audit stamps shared by every LabWatch table.

    Rows are soft-deleted through ``is_deleted``; readers filter on it.
    ``created_by``/``updated_by`` hold the acting user's id, or None for
    rows written by telemetry ingest and the inactivity sweep.
    """
    __abstract__ = True
    # Server defaults are fetched during flush; AsyncSession cannot lazy-load them afterwards
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    created_by = Column(Integer, nullable=True)
    updated_by = Column(Integer, nullable=True)
