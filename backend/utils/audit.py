"""
Structured audit logging module for the PMaaS backend.

This module provides an AuditLogger class that logs events to a dedicated 'audit' logger
in structured JSON format. It supports context-aware request_id propagation across async
calls using contextvars.ContextVar.

Key features:
- Async-safe request_id and actor tracking via ContextVar
- Structured JSON output with ISO8601 timestamps
- Convenience methods for authentication and authorization events
  (logins, role sync, role grants/revocations, user administration)
"""

import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# Context variable for tracking request_id across async calls
_request_id_context: ContextVar[Optional[str]] = ContextVar(
    'request_id', default=None
)

# Context variable for tracking actor (authenticated user) across async calls
_actor_context: ContextVar[Optional[str]] = ContextVar(
    'actor', default=None
)


class AuditLogger:
    """
    Structured audit logger for security-relevant backend operations.

    All events are written to a dedicated 'audit' logger as one JSON object
    per line.
    """

    def __init__(self):
        self.logger = logging.getLogger('audit')

    def set_request_id(self, request_id: str) -> None:
        _request_id_context.set(request_id)

    def get_request_id(self) -> Optional[str]:
        return _request_id_context.get()

    def set_actor(self, actor: str) -> None:
        """Set the authenticated user for this request context."""
        _actor_context.set(actor)

    def get_actor(self) -> Optional[str]:
        """Get the current actor from context, or None."""
        return _actor_context.get()

    def log(
        self,
        action: str,
        actor: str,
        resource: str,
        resource_id: str,
        status: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Core method to log a structured audit event.

        Args:
            action: Type of action performed (e.g., 'LOGIN', 'ASSIGN_ROLE')
            actor: User or service performing the action. The placeholder
                'user' is replaced by the request's authenticated actor.
            resource: Type of resource affected (e.g., 'User', 'Session')
            resource_id: Unique identifier of the affected resource
            status: Result status (e.g., 'success', 'failure', 'partial')
            details: Optional dict of additional context
        """
        event = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'action': action,
            'actor': actor if actor != 'user' else (self.get_actor() or 'user'),
            'resource': resource,
            'resource_id': resource_id,
            'status': status,
            'request_id': self.get_request_id(),
            'details': details or {},
        }
        self.logger.info(json.dumps(event, default=str))

    def log_login(self, username: str, user_id: int, method: str) -> None:
        self.log(
            action='LOGIN',
            actor=username,
            resource='User',
            resource_id=str(user_id),
            status='success',
            details={'method': method},
        )

    def log_role_sync(
        self,
        user_id: int,
        provider_roles: list,
        assigned_roles: list,
        failures: int,
        defaulted: bool,
    ) -> None:
        """
        Log the outcome of a sync-on-login role reconciliation.

        ``status`` is 'partial' when some per-role operations failed and
        were skipped.
        """
        self.log(
            action='ROLE_SYNC',
            actor='system',
            resource='User',
            resource_id=str(user_id),
            status='partial' if failures else 'success',
            details={
                'provider_roles': provider_roles,
                'assigned_roles': assigned_roles,
                'failures': failures,
                'defaulted': defaulted,
            },
        )

    def log_role_change(
        self,
        operation: str,
        actor: str,
        user_id: int,
        role_id: int,
        status: str = 'success',
    ) -> None:
        """
        Log an explicit role grant or revocation.

        Args:
            operation: 'ASSIGN_ROLE' or 'REMOVE_ROLE'
        """
        self.log(
            action=operation,
            actor=actor,
            resource='User',
            resource_id=str(user_id),
            status=status,
            details={'role_id': role_id},
        )

    def log_user_change(
        self,
        operation: str,
        actor: str,
        user_id: int,
        changes: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = {}
        if changes:
            details['changed_fields'] = sorted(changes)

        self.log(
            action=operation,
            actor=actor,
            resource='User',
            resource_id=str(user_id),
            status='success',
            details=details,
        )

    def log_session_cleanup(self, deleted: int) -> None:
        self.log(
            action='SESSION_CLEANUP',
            actor='user',
            resource='Session',
            resource_id='expired',
            status='success',
            details={'deleted': deleted},
        )


# Global audit logger instance for convenient import
audit = AuditLogger()
