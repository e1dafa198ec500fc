"""SQLAlchemy ORM models for durable client-side storage"""

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class StorageEntry(Base):
    """One key of the persisted client state"""

    __tablename__ = "client_storage"

    key = Column(String(64), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
