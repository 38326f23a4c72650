"""Pytest configuration for the pipeline CRM test suite."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from helpers.stubs import FixedClock


def _ensure_test_env() -> None:
    """Seed environment variables so tests never reach real providers."""
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-key")
    os.environ.setdefault("PIPELINE_LOG_LEVEL", "WARNING")


_ensure_test_env()

from pipeline_crm.domain.store import DomainStore  # noqa: E402
from pipeline_crm.events.store import EventStore  # noqa: E402
from pipeline_crm.memory.store import AgentMemoryStore  # noqa: E402
from pipeline_crm.models import Base  # noqa: E402


@pytest.fixture()
def sqlite_session_factory(tmp_path: Path) -> Generator[sessionmaker, None, None]:
    """Provide a sqlite session factory backed by a temp file."""
    db_path = tmp_path / "pipeline.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture()
def clock() -> FixedClock:
    """Provide a controllable clock starting on a Wednesday."""
    return FixedClock()


@pytest.fixture()
def event_store(sqlite_session_factory) -> EventStore:
    return EventStore(sqlite_session_factory)


@pytest.fixture()
def domain_store(sqlite_session_factory, clock) -> DomainStore:
    return DomainStore(sqlite_session_factory, now_provider=clock)


@pytest.fixture()
def memory_store(sqlite_session_factory) -> AgentMemoryStore:
    return AgentMemoryStore(sqlite_session_factory)
