"""
Notification collaborator.

Submitters hear about status changes and public comments through the portal's email
service, reached over an HTTP webhook. Delivery is best effort: a notifier returns
``False`` (or raises) on failure and the dispatch queue logs it and moves on. A
workflow step never fails because an email did not go out.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Protocol

import httpx
from fastapi import BackgroundTasks

logger = logging.getLogger(__name__)


_STATUS_TEXT = {
    "submitted": "Submitted",
    "under_review": "Under Review",
    "approved": "Approved",
    "rejected": "Rejected",
    "in_progress": "In Progress",
    "paid": "Paid",
}

_NEXT_STEPS = {
    "submitted": "Your reimbursement is in the queue for review. We'll notify you once it's being processed.",
    "under_review": "Our team is currently reviewing your receipts and documentation. No action needed from you.",
    "approved": "Your reimbursement has been approved! Payment processing will begin shortly.",
    "rejected": (
        "Your reimbursement has been rejected. Please review the rejection reason and reach out "
        "to the treasurer if you have questions or need to resubmit with corrections."
    ),
    "in_progress": "Payment is being processed. You should receive your reimbursement within 1-2 business days.",
    "paid": "Your reimbursement has been completed! Please check your account for the payment.",
}


def status_text(status: Optional[str]) -> str:
    if not status:
        return "Unknown"
    return _STATUS_TEXT.get(status, status[:1].upper() + status[1:])


def next_steps_text(status: str) -> str:
    return _NEXT_STEPS.get(
        status, "Check your dashboard for more details about your reimbursement status."
    )


class Notifier(Protocol):
    def notify_status_change(
        self,
        reimbursement_id: str,
        new_status: str,
        previous_status: Optional[str],
        actor_id: str,
        extra_context: Optional[dict[str, Any]] = None,
    ) -> bool: ...

    def notify_comment(
        self, reimbursement_id: str, text: str, author_id: str, is_private: bool
    ) -> bool: ...

    def close(self) -> None: ...


class LoggingNotifier:
    """Used when no webhook is configured: records what would have been sent."""

    def notify_status_change(self, reimbursement_id, new_status, previous_status, actor_id, extra_context=None):
        logger.info(
            "Notification (not sent): %s status %s -> %s by %s",
            reimbursement_id, previous_status, new_status, actor_id,
        )
        return True

    def notify_comment(self, reimbursement_id, text, author_id, is_private):
        logger.info(
            "Notification (not sent): comment on %s by %s (private=%s)",
            reimbursement_id, author_id, is_private,
        )
        return True

    def close(self) -> None:
        pass


class WebhookNotifier:
    """Posts notification requests to the email service."""

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)

    def _send(self, payload: dict[str, Any]) -> bool:
        try:
            resp = self._client.post(self.url, json=payload)
        except httpx.HTTPError as exc:
            logger.error("Notification request failed (%s): %s", payload["type"], exc)
            return False
        if resp.is_error:
            logger.error(
                "Notification API error (%s): HTTP %d %s",
                payload["type"], resp.status_code, resp.text[:200],
            )
            return False
        try:
            body = resp.json()
        except ValueError:
            logger.warning("Notification API returned non-JSON body (%s)", payload["type"])
            return False
        return bool(body.get("success"))

    def notify_status_change(self, reimbursement_id, new_status, previous_status, actor_id, extra_context=None):
        return self._send({
            "type": "status_change",
            "reimbursementId": reimbursement_id,
            "newStatus": new_status,
            "previousStatus": previous_status,
            "changedByUserId": actor_id,
            "statusText": status_text(new_status),
            "nextSteps": next_steps_text(new_status),
            "additionalContext": extra_context or {},
        })

    def notify_comment(self, reimbursement_id, text, author_id, is_private):
        return self._send({
            "type": "comment",
            "reimbursementId": reimbursement_id,
            "comment": text,
            "commentByUserId": author_id,
            "isPrivate": is_private,
        })

    def close(self) -> None:
        self._client.close()


def build_notifier(url: str, timeout: float = 10.0) -> Notifier:
    if not url:
        return LoggingNotifier()
    return WebhookNotifier(url, timeout=timeout)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def deliver(send: Callable[..., bool], *args: Any, **kwargs: Any) -> bool:
    """Run one notification call, logging instead of raising on failure."""
    name = getattr(send, "__name__", repr(send))
    try:
        ok = send(*args, **kwargs)
    except Exception:
        logger.exception("Notification %s raised; ignoring", name)
        return False
    if not ok:
        logger.warning("Notification %s reported failure; ignoring", name)
    return bool(ok)


class NotificationQueue(Protocol):
    def submit(self, send: Callable[..., bool], *args: Any, **kwargs: Any) -> None: ...


class InlineNotificationQueue:
    """Delivers immediately, in the caller's thread."""

    def submit(self, send, *args, **kwargs) -> None:
        deliver(send, *args, **kwargs)


class BackgroundNotificationQueue:
    """Delivers after the HTTP response has been sent."""

    def __init__(self, tasks: BackgroundTasks):
        self.tasks = tasks

    def submit(self, send, *args, **kwargs) -> None:
        self.tasks.add_task(deliver, send, *args, **kwargs)
