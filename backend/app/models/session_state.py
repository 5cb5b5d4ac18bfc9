"""
Session State Model — persistent storage for AI chat sessions.

WHY THIS EXISTS:
- In-memory session state is lost on server restart
- Pending confirmations must survive a restart within their TTL
- The processing flag must be flipped atomically across workers

payload holds the SessionState document (conversation, AiContext, pending operation).
processing is a separate column so acquire/release never rewrite the payload.
"""
from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
from app.db.base import Base


class SessionRecord(Base):
    __tablename__ = "ai_session_states"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(64), unique=True, nullable=False, index=True)
    processing = Column(Boolean, nullable=False, default=False)
    processing_since = Column(DateTime(timezone=True), nullable=True)
    payload = Column(JSON, nullable=True, default=dict)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<SessionRecord session_id={self.session_id} processing={self.processing}>"
