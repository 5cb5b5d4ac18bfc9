from app.models.session_state import SessionRecord

__all__ = ["SessionRecord"]
