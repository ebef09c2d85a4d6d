#!/usr/bin/env python3
"""
Session management module for the storefront and admin.

Login sessions are stored in Redis when it is reachable and in process
memory otherwise. The browser only ever holds the opaque session id.
"""

import json
import secrets
from typing import Dict, Any, Optional
from datetime import datetime, timedelta

from .config import Config
from .redis_client import get_redis


class SessionManager:
    """Manages authenticated user sessions."""

    def __init__(self, ttl_seconds: int = None):
        """Initialize the session manager with Redis connection or fallback to in-memory."""
        self.ttl_seconds = ttl_seconds or Config.SESSION_TTL_SECONDS
        self.memory_sessions: Dict[str, Dict[str, Any]] = {}
        self.redis_client = get_redis()
        self.use_redis = self.redis_client is not None

    def _get_session_key(self, session_id: str) -> str:
        """
        Generate Redis key for a session.

        Args:
            session_id: Unique session identifier

        Returns:
            Redis key for the session
        """
        return f"session:{session_id}"

    def _get_user_index_key(self, user_id: int) -> str:
        return f"user_sessions:{user_id}"

    def create_session(self, user_id: int, email: str, role: str, name: Optional[str] = None) -> str:
        """
        Create a new session for a signed-in user.

        Args:
            user_id: Primary key of the user
            email: User email
            role: RBAC role name
            name: Display name

        Returns:
            The new session id
        """
        session_id = secrets.token_urlsafe(32)
        now = datetime.now()
        session_data = {
            "user_id": user_id,
            "email": email,
            "role": role,
            "name": name,
            "created_at": now.isoformat(),
            "expires_at": (now + timedelta(seconds=self.ttl_seconds)).isoformat(),
        }

        if self.use_redis:
            self.redis_client.setex(self._get_session_key(session_id), self.ttl_seconds, json.dumps(session_data))
            self.redis_client.sadd(self._get_user_index_key(user_id), session_id)
        else:
            self.memory_sessions[session_id] = session_data
        return session_id

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """
        Retrieve session data.

        Args:
            session_id: Unique session identifier

        Returns:
            Session data or None if not found or expired
        """
        if not session_id:
            return None
        if self.use_redis:
            session_data = self.redis_client.get(self._get_session_key(session_id))
            if session_data:
                return json.loads(session_data)
            return None

        session = self.memory_sessions.get(session_id)
        if session is None:
            return None
        if datetime.fromisoformat(session["expires_at"]) < datetime.now():
            del self.memory_sessions[session_id]
            return None
        return session

    def delete_session(self, session_id: str) -> bool:
        """
        Delete a session.

        Args:
            session_id: Unique session identifier

        Returns:
            True if a session was removed
        """
        if self.use_redis:
            session = self.get_session(session_id)
            if session:
                self.redis_client.srem(self._get_user_index_key(session["user_id"]), session_id)
            return bool(self.redis_client.delete(self._get_session_key(session_id)))
        return self.memory_sessions.pop(session_id, None) is not None

    def delete_user_sessions(self, user_id: int) -> int:
        """Drop every session belonging to a user. Returns the number removed."""
        if self.use_redis:
            index_key = self._get_user_index_key(user_id)
            session_ids = self.redis_client.smembers(index_key)
            removed = 0
            for session_id in session_ids:
                removed += self.redis_client.delete(self._get_session_key(session_id))
            self.redis_client.delete(index_key)
            return removed

        doomed = [sid for sid, data in self.memory_sessions.items() if data.get("user_id") == user_id]
        for sid in doomed:
            del self.memory_sessions[sid]
        return len(doomed)


_session_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionManager()
    return _session_manager
