from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  registers tables on Base.metadata
from app.config.database import Base
from app.models.project import Project


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False)
    yield factory
    engine.dispose()


@pytest.fixture
def add_project(session_factory):
    def _add(full_name: str, *, is_active: bool = True) -> int:
        owner, name = full_name.split("/", 1)
        db = session_factory()
        try:
            project = Project(owner=owner, name=name, full_name=full_name, is_active=is_active)
            db.add(project)
            db.commit()
            return int(project.id)
        finally:
            db.close()

    return _add
