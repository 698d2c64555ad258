from sqlalchemy import Column, DateTime, Integer, String, func

from identity_sync.core.base import Base


class User(Base):
    """Local mirror of an IdP user. Written only by webhook reconciliation."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    # IdP user id (Clerk `user_...`). Unique so concurrent creates cannot produce two rows.
    subject_id = Column(String(255), unique=True, index=True, nullable=False)
    email = Column(String(255), index=True, nullable=False)
    name = Column(String(255), nullable=True)
    image = Column(String(2048), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
