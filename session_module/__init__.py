"""In-memory conversation sessions.

Sessions are keyed by an opaque id, created lazily on first reference and
trimmed to a fixed number of user/assistant turns after every append. The
store is an explicitly constructed object so each app (or test) owns its own.
"""

from .store import ChatMessage, MessageRole, Session, SessionConfig, SessionStore

__all__ = ["ChatMessage", "MessageRole", "Session", "SessionConfig", "SessionStore"]
