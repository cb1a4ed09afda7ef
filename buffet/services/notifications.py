from __future__ import annotations

import logging
from datetime import datetime

import httpx
from sqlalchemy.orm import Session

from buffet.config import settings
from buffet.models.common import utcnow
from buffet.services import sessions
from buffet.services.sessions import TimeWarning

logger = logging.getLogger(__name__)


def _payload(w: TimeWarning, now: datetime) -> dict:
    return {
        'type': 'TIME_WARNING',
        'session_id': w.session_id,
        'table_number': w.table_number,
        'level': w.level.value,
        'remaining_minutes': w.remaining_minutes,
        'sent_at': now.isoformat(),
    }


def dispatch_time_warnings(db: Session, *, now: datetime | None = None,
                           client: httpx.Client | None = None) -> list[dict]:
    """
    Push due time warnings to the configured webhook.

    A warning is stamped as sent only after the webhook accepted it, so a
    failed delivery is picked up again on the next poll. Without a webhook the
    due warnings are returned and nothing is stamped.
    """
    now = now or utcnow()
    due = sessions.get_sessions_needing_warning(db, now=now)
    url = settings.WARNING_WEBHOOK_URL
    if not url:
        return [dict(w.to_dict(), delivered=False) for w in due]

    results = []
    owns_client = client is None
    client = client or httpx.Client(timeout=settings.WEBHOOK_TIMEOUT_SECONDS)
    try:
        for w in due:
            delivered = False
            try:
                resp = client.post(url, json=_payload(w, now))
                resp.raise_for_status()
                delivered = True
            except httpx.HTTPError as exc:
                logger.error('Time warning for session %s not delivered: %s', w.session_id, exc)
            if delivered:
                sessions.mark_warning_as_sent(db, w.session_id, now=now)
                logger.info('Sent %s warning for session %s', w.level.value, w.session_id)
            results.append(dict(w.to_dict(), delivered=delivered))
    finally:
        if owns_client:
            client.close()
    return results
