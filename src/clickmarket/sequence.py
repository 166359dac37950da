"""Allocation of human-readable invoice and tracking numbers."""

import logging
import random
from datetime import datetime
from typing import Callable

from .errors import ResourceExhaustedError
from .store import CounterStore

logger = logging.getLogger(__name__)

INVOICE_NUMBER_PREFIX = "FAC"
TRACKING_NUMBER_PREFIX = "LIV"
TRACKING_NUMBER_MAX_ATTEMPTS = 5


def invoice_period_key(when: datetime) -> str:
    """Counter key of the calendar month containing `when`."""
    return f"invoice:{when.year}{when.month:02d}"


def format_invoice_number(when: datetime, sequence: int) -> str:
    """Format e.g. FAC-202401-0007."""
    return f"{INVOICE_NUMBER_PREFIX}-{when.year}{when.month:02d}-{sequence:04d}"


def next_invoice_number(counters: CounterStore, when: datetime) -> str:
    """
    Allocate the next invoice number of the month containing `when`.

    The per-month counter is incremented atomically under the counter file
    lock, so concurrent callers never receive the same sequence value.
    """
    sequence = counters.increment(invoice_period_key(when))
    return format_invoice_number(when, sequence)


def next_tracking_number(
    is_taken: Callable[[str], bool],
    now: datetime,
    rng: random.Random | None = None,
    max_attempts: int = TRACKING_NUMBER_MAX_ATTEMPTS,
) -> str:
    """
    Generate a tracking number LIV{unix millis}{random 0-9999}.

    Candidates already in use (per `is_taken`) are retried with a fresh
    random suffix.

    Raises:
        ResourceExhaustedError: If every attempt collides.
    """
    rng = rng or random.Random()
    millis = int(now.timestamp() * 1000)
    for attempt in range(1, max_attempts + 1):
        candidate = f"{TRACKING_NUMBER_PREFIX}{millis}{rng.randint(0, 9999)}"
        if not is_taken(candidate):
            return candidate
        logger.warning("Tracking number collision on %s (attempt %d)", candidate, attempt)
    raise ResourceExhaustedError("tracking number", max_attempts)
