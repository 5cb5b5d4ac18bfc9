"""
Session stores — keyed, per-session state owned by the calling shell.

Two implementations of the same contract:
- InMemorySessionStore: single process, tests, HTTP dev server
- SqlSessionStore: SQLAlchemy table ai_session_states, survives restarts

Contract:
- load(session_id) returns a private copy; mutating it changes nothing until save()
- save(state) replaces the stored document for state.session_id
- try_acquire(session_id) sets the processing flag iff it was clear (atomic)
- release(session_id) clears the flag unconditionally

A processing flag older than PROCESSING_STALE_SECONDS is treated as clear,
so a crashed worker cannot lock a session forever.
"""
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.models.session_state import SessionRecord
from app.schemas.session import SessionState

logger = logging.getLogger(__name__)

PROCESSING_STALE_SECONDS = 180


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore(Protocol):
    def load(self, session_id: str) -> SessionState:
        ...

    def save(self, state: SessionState) -> None:
        ...

    def delete(self, session_id: str) -> None:
        """Forget the stored state. The processing flag is left as it is."""
        ...

    def try_acquire(self, session_id: str) -> bool:
        ...

    def release(self, session_id: str) -> None:
        ...

    def is_processing(self, session_id: str) -> bool:
        ...


class InMemorySessionStore:
    """Thread-safe dict of JSON documents. Copies in, copies out."""

    def __init__(self, clock: Callable[[], datetime] = _now):
        self._documents: Dict[str, dict] = {}
        self._processing: Dict[str, datetime] = {}
        self._lock = threading.Lock()
        self.clock = clock

    def load(self, session_id: str) -> SessionState:
        with self._lock:
            document = self._documents.get(session_id)
        if document is None:
            return SessionState(session_id=session_id)
        return SessionState.model_validate(document)

    def save(self, state: SessionState) -> None:
        document = state.model_dump(mode="json")
        with self._lock:
            self._documents[state.session_id] = document

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._documents.pop(session_id, None)

    def try_acquire(self, session_id: str) -> bool:
        now = self.clock()
        with self._lock:
            since = self._processing.get(session_id)
            if since is not None and now - since < timedelta(seconds=PROCESSING_STALE_SECONDS):
                return False
            if since is not None:
                logger.warning(f"[SessionStore] Stale processing flag for {session_id}, taking over")
            self._processing[session_id] = now
            return True

    def release(self, session_id: str) -> None:
        with self._lock:
            self._processing.pop(session_id, None)

    def is_processing(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._processing


class SqlSessionStore:
    """SessionState persisted as JSON in ai_session_states."""

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = _now):
        self.session_factory = session_factory
        self.clock = clock

    def _record(self, db: Session, session_id: str) -> Optional[SessionRecord]:
        return db.query(SessionRecord).filter(SessionRecord.session_id == session_id).first()

    def _ensure_record(self, db: Session, session_id: str) -> None:
        if self._record(db, session_id) is not None:
            return
        db.add(SessionRecord(session_id=session_id, processing=False, payload={}))
        try:
            db.commit()
        except IntegrityError:
            # Another worker inserted it first
            db.rollback()

    def load(self, session_id: str) -> SessionState:
        db = self.session_factory()
        try:
            record = self._record(db, session_id)
            if not record or not record.payload:
                return SessionState(session_id=session_id)
            payload = dict(record.payload)
            payload["session_id"] = session_id
            return SessionState.model_validate(payload)
        finally:
            db.close()

    def save(self, state: SessionState) -> None:
        db = self.session_factory()
        try:
            self._ensure_record(db, state.session_id)
            db.execute(
                update(SessionRecord)
                .where(SessionRecord.session_id == state.session_id)
                .values(payload=state.model_dump(mode="json"), updated_at=self.clock())
            )
            db.commit()
        finally:
            db.close()

    def delete(self, session_id: str) -> None:
        db = self.session_factory()
        try:
            # The row also carries the processing flag, so only the payload goes
            db.execute(
                update(SessionRecord)
                .where(SessionRecord.session_id == session_id)
                .values(payload={}, updated_at=self.clock())
            )
            db.commit()
        finally:
            db.close()

    def try_acquire(self, session_id: str) -> bool:
        now = self.clock()
        stale_before = now - timedelta(seconds=PROCESSING_STALE_SECONDS)
        db = self.session_factory()
        try:
            self._ensure_record(db, session_id)
            result = db.execute(
                update(SessionRecord)
                .where(SessionRecord.session_id == session_id)
                .where(or_(
                    SessionRecord.processing.is_(False),
                    SessionRecord.processing_since < stale_before,
                ))
                .values(processing=True, processing_since=now)
            )
            db.commit()
            return result.rowcount == 1
        finally:
            db.close()

    def release(self, session_id: str) -> None:
        db = self.session_factory()
        try:
            db.execute(
                update(SessionRecord)
                .where(SessionRecord.session_id == session_id)
                .values(processing=False, processing_since=None)
            )
            db.commit()
        finally:
            db.close()

    def is_processing(self, session_id: str) -> bool:
        db = self.session_factory()
        try:
            record = self._record(db, session_id)
            return bool(record and record.processing)
        finally:
            db.close()
