"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Durable sync state for incremental submissions.

Remembers which case ids were accepted per project and the last watermark per
project and source, so that a later invocation can skip what was already sent.
"""

import logging
from collections.abc import Iterable
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from resultsync.core.config import StateConfig

DEFAULT_DB_URL = "sqlite:///resultsync_state.db"

logger = logging.getLogger("resultsync.sync_state")

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubmittedCase(Base):
    """A case id the remote service accepted for a project."""

    __tablename__ = "submitted_cases"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_key = Column(String(100), nullable=False, index=True)
    external_id = Column(String(255), nullable=False)
    run_uid = Column(String(100), nullable=False)
    submitted_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("project_key", "external_id", name="uq_submitted_case"),)


class SyncWatermark(Base):
    """Last submitted ordered id per project and source."""

    __tablename__ = "sync_watermarks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_key = Column(String(100), nullable=False)
    source = Column(String(100), nullable=False)
    watermark = Column(String(255), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("project_key", "source", name="uq_sync_watermark"),)


class SyncStateStore:
    """
    Stores ignore lists and watermarks in a SQL database.

    SQLite is the default; any SQLAlchemy URL works. Tables are created on
    first use.
    """

    def __init__(self, db_url: str | None = None, logger: logging.Logger | None = None):
        self.db_url = db_url or DEFAULT_DB_URL
        self.logger = logger or logging.getLogger("resultsync.sync_state")
        self._engine = create_engine(self.db_url)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        self.initialize_database()

    @classmethod
    def from_config(cls, config: StateConfig, logger: logging.Logger | None = None) -> "SyncStateStore":
        return cls(config.db_url, logger=logger)

    def initialize_database(self) -> None:
        """Create the state tables if they do not exist."""
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            self.logger.error(f"Error initializing sync state database: {e}")
            raise

    @contextmanager
    def get_session(self) -> Session:
        """Session scope that commits on success and rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            self.logger.error(f"Sync state database error: {e}")
            raise
        finally:
            session.close()

    def load_ignore_list(self, project_key: str) -> set[str]:
        """Get every case id already submitted for a project."""
        with self.get_session() as session:
            rows = session.execute(
                select(SubmittedCase.external_id).where(SubmittedCase.project_key == project_key)
            )
            return {row[0] for row in rows}

    def record_submitted(self, project_key: str, run_uid: str | int, external_ids: Iterable[str]) -> int:
        """
        Remember accepted case ids. Ids already recorded are left alone.

        Returns:
            Number of newly recorded ids
        """
        ids = list(dict.fromkeys(i for i in external_ids if i))
        if not ids:
            return 0

        with self.get_session() as session:
            existing = {
                row[0]
                for row in session.execute(
                    select(SubmittedCase.external_id).where(
                        SubmittedCase.project_key == project_key,
                        SubmittedCase.external_id.in_(ids),
                    )
                )
            }
            new_ids = [i for i in ids if i not in existing]
            session.add_all(
                SubmittedCase(project_key=project_key, external_id=i, run_uid=str(run_uid))
                for i in new_ids
            )

        self.logger.debug(f"Recorded {len(new_ids)} submitted cases for project {project_key}")
        return len(new_ids)

    def get_watermark(self, project_key: str, source: str) -> str | None:
        with self.get_session() as session:
            row = session.execute(
                select(SyncWatermark.watermark).where(
                    SyncWatermark.project_key == project_key, SyncWatermark.source == source
                )
            ).first()
            return row[0] if row else None

    def save_watermark(self, project_key: str, source: str, watermark: str) -> None:
        with self.get_session() as session:
            state = session.execute(
                select(SyncWatermark).where(
                    SyncWatermark.project_key == project_key, SyncWatermark.source == source
                )
            ).scalar_one_or_none()
            if state is None:
                session.add(SyncWatermark(project_key=project_key, source=source, watermark=watermark))
            else:
                state.watermark = watermark
                state.updated_at = _utcnow()
        self.logger.info(f"Watermark for {project_key}/{source} is now {watermark}")

    def close(self) -> None:
        self._engine.dispose()
