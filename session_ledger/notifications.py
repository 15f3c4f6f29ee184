"""
Outbound notifications.

Ledger operations stage events on an ``Outbox`` only after their transaction
has committed. The caller flushes the outbox (the HTTP layer does it from a
background task), and every send is best-effort: failures are retried with
exponential backoff and then logged, never raised back into the ledger.
"""

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from session_ledger.config import get_settings

logger = logging.getLogger(__name__)


# --------------------
# Events
# --------------------

@dataclass(frozen=True)
class SessionValidationRequested:
    session_id: int
    client_email: Optional[str]
    client_name: str
    trainer_name: str
    session_date: datetime
    location_name: Optional[str]
    session_value: Decimal
    validation_url: str
    expiry_days: int
    reminder: bool = False


@dataclass(frozen=True)
class SessionValidated:
    session_id: int
    trainer_id: int
    client_id: int
    validated_at: datetime


@dataclass(frozen=True)
class SessionsUnlocked:
    package_id: int
    client_id: int
    newly_unlocked: int
    unlocked_sessions: int
    available_sessions: int


@dataclass(frozen=True)
class PackageOverDelivered:
    package_id: int
    used_sessions: int
    unlocked_sessions: int


# --------------------
# Notifiers
# --------------------

class Notifier:
    """Delivery backend. Implementations raise on failure."""

    def send(self, event) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Default backend: email delivery is external, so just record the event."""

    def send(self, event) -> None:
        logger.info("notification %s %s", type(event).__name__, asdict(event))


class Outbox:
    """Events staged by committed operations, waiting to be dispatched."""

    def __init__(self):
        self.events: List[object] = []

    def stage(self, event) -> None:
        self.events.append(event)

    def __len__(self) -> int:
        return len(self.events)

    def drain(self) -> List[object]:
        events, self.events = self.events, []
        return events


def send_with_retry(
    notifier: Notifier,
    event,
    *,
    max_retries: Optional[int] = None,
    backoff: Optional[float] = None,
    max_backoff: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Deliver one event; returns False after the last failed attempt."""
    settings = get_settings()
    max_retries = settings.NOTIFY_MAX_RETRIES if max_retries is None else max_retries
    backoff = settings.NOTIFY_BACKOFF_SECONDS if backoff is None else backoff
    max_backoff = settings.NOTIFY_MAX_BACKOFF_SECONDS if max_backoff is None else max_backoff
    name = type(event).__name__

    for attempt in range(1, max_retries + 1):
        try:
            notifier.send(event)
            return True
        except Exception as e:
            logger.warning("[notify] %s attempt %s/%s failed: %s", name, attempt, max_retries, e)
        if attempt < max_retries:
            sleep(min(backoff * 2 ** (attempt - 1), max_backoff))

    logger.error("[notify] giving up on %s after %s attempts", name, max_retries)
    return False


def dispatch(notifier: Notifier, outbox: Outbox, **retry_options) -> int:
    """Flush the outbox; returns how many events were delivered."""
    delivered = 0
    for event in outbox.drain():
        if send_with_retry(notifier, event, **retry_options):
            delivered += 1
    return delivered
