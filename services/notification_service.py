"""
services/notification_service.py

Notification fan-out:
- notify: writes the in-app Notification row inside the caller's transaction
- the matching email is parked on the session and only handed to the
  email thread pool once that transaction commits
- a rollback drops parked emails, a failed send is logged and forgotten

The in-app row is the durable record. Email is a convenience channel and can
never fail or undo the write that triggered it.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import event
from sqlalchemy.orm import Session

from config import EMAIL_WORKERS
from models import AppUser, Notification
from notifications_email import compose_notification_email, send_single_email

logger = logging.getLogger(__name__)

PENDING_EMAILS_KEY = "pending_emails"

_EXECUTOR: Optional[ThreadPoolExecutor] = None
_DISPATCHER = None


def _default_executor() -> ThreadPoolExecutor:
    global _EXECUTOR
    if _EXECUTOR is None:
        _EXECUTOR = ThreadPoolExecutor(max_workers=EMAIL_WORKERS, thread_name_prefix="email")
    return _EXECUTOR


def email_allowed(user: AppUser) -> bool:
    if not getattr(user, "email", None):
        return False
    return bool(getattr(user, "email_notifications_enabled", True))


class NotificationDispatcher:
    def __init__(
        self,
        executor=None,
        send_email: Optional[Callable[[str, str, str], None]] = None,
    ):
        self.executor = executor or _default_executor()
        self.send_email = send_email or send_single_email

    def notify(
        self,
        db: Session,
        user: AppUser,
        kind: str,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        email: Optional[Tuple[str, str]] = None,
    ) -> Notification:
        """
        Stage one Notification row (flushed, not committed) and park its email.
        `email` overrides the default (subject, body) built from title and message.
        Database errors propagate to the caller.
        """
        notification = Notification(
            user_id=user.id,
            type=kind,
            title=title,
            message=message,
            action_url=action_url,
            meta=metadata or {},
            is_read=False,
            created_at=datetime.utcnow(),
        )
        db.add(notification)
        db.flush()

        if email_allowed(user):
            subject, body = email or compose_notification_email(kind, title, message, action_url)
            db.info.setdefault(PENDING_EMAILS_KEY, []).append((self, user.email, subject, body))

        return notification

    def dispatch_email(self, to_email: str, subject: str, body: str) -> None:
        try:
            self.executor.submit(self._send_safely, to_email, subject, body)
        except RuntimeError as e:
            # executor already shut down, happens during interpreter exit
            logger.error(f"[notifications] could not schedule email to={to_email}: {e}")

    def _send_safely(self, to_email: str, subject: str, body: str) -> None:
        try:
            self.send_email(to_email, subject, body)
            logger.info(f"[notifications] email sent to={to_email} subject={subject!r}")
        except Exception:
            logger.exception(f"[notifications] email failed to={to_email} subject={subject!r}")


def get_dispatcher() -> NotificationDispatcher:
    global _DISPATCHER
    if _DISPATCHER is None:
        _DISPATCHER = NotificationDispatcher()
    return _DISPATCHER


# =====================================================================
# SECTION: SESSION HOOKS
# Emails leave the process only after the rows that describe them are durable.
# =====================================================================

@event.listens_for(Session, "after_commit")
def _send_parked_emails(session: Session) -> None:
    pending = session.info.pop(PENDING_EMAILS_KEY, None) or []
    for dispatcher, to_email, subject, body in pending:
        dispatcher.dispatch_email(to_email, subject, body)


@event.listens_for(Session, "after_rollback")
def _drop_parked_emails(session: Session) -> None:
    dropped = session.info.pop(PENDING_EMAILS_KEY, None)
    if dropped:
        logger.info(f"[notifications] dropped {len(dropped)} email(s) after rollback")
