"""Server-side session records for the session-cookie login path."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from database import Base


class UserSession(Base):
    """
    Binds an opaque random token to a user until ``expires_at``.

    Created by local login, deleted at logout or by the expired-session
    cleanup. A row whose ``expires_at`` has passed never resolves to a user.
    """

    __tablename__ = "user_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    session_token = Column(String(255), unique=True, nullable=False, index=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(
        DateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )

    def __repr__(self):
        return f"<UserSession user={self.user_id} expires_at={self.expires_at}>"
