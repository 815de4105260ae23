"""Project model for tracked GitHub repositories"""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer, String, Text

from app.config.database import Base

# SQLite only autoincrements INTEGER primary keys.
IdType = BigInteger().with_variant(Integer, "sqlite")


class Project(Base):
    """
    Tracked repository whose statistics are synchronized daily

    Maps to repositories table
    """
    __tablename__ = "repositories"

    id = Column(IdType, primary_key=True, autoincrement=True)
    github_id = Column(BigInteger, nullable=True, unique=True)

    # Repository identity
    owner = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    full_name = Column(String(500), nullable=False)  # e.g., "facebook/react"
    url = Column(String(1000))
    description = Column(Text)
    language = Column(String(100))

    # Sync state
    is_active = Column(Boolean, nullable=False, default=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Project {self.full_name}>"
