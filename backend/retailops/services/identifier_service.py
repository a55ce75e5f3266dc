# Overview: Human-readable identifiers for repair tickets and sales.

"""
Identifier Service

Ticket numbers look like DDMMYYYY + last 4 phone digits + 4 random digits,
e.g. 18102026432157 for a ticket opened on 18 Oct 2026 by a customer whose
phone ends in 4321. Counter staff read them out over the phone, so they stay
numeric and short in the common case.

COLLISION HANDLING:
- Each candidate is checked against the store (exists callback).
- At most max_attempts random candidates are tried.
- After that the generator falls back to appending a nanosecond timestamp,
  bumped until the store reports it free. The surrounding operation never
  fails because the random space for one day/phone is crowded.

A unique constraint on the column still backs the check, so two requests
racing for the same candidate are caught at insert time by the caller.
"""

from __future__ import annotations

import random
import re
import time
from dataclasses import dataclass
from datetime import date
from typing import Callable

from sqlalchemy.exc import IntegrityError

from .transaction_store import sale_number_exists, ticket_number_exists


DEFAULT_MAX_ATTEMPTS = 5
SALE_NUMBER_PREFIX = "S"

_NON_DIGITS = re.compile(r"\D")


def phone_last4(phone: str | None) -> str:
    """Last four digits of a phone number, left-padded with zeros."""
    digits = _NON_DIGITS.sub("", phone or "")
    return digits[-4:].rjust(4, "0")


@dataclass(frozen=True)
class IdentifierSeed:
    on_date: date
    phone: str | None = None


class TicketNumberGenerator:
    """
    Allocates identifiers that are unique at allocation time.

    rng and clock are injectable so the retry and fallback branches can be
    exercised deterministically.
    """

    def __init__(
        self,
        exists: Callable[[str], bool],
        *,
        prefix: str = "",
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        rng: random.Random | None = None,
        clock: Callable[[], int] = time.time_ns,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._exists = exists
        self._prefix = prefix
        self._max_attempts = max_attempts
        self._rng = rng or random.SystemRandom()
        self._clock = clock
        self.last_used_fallback = False

    def _base(self, seed: IdentifierSeed) -> str:
        return f"{self._prefix}{seed.on_date:%d%m%Y}{phone_last4(seed.phone)}"

    def generate(self, seed: IdentifierSeed) -> str:
        base = self._base(seed)
        self.last_used_fallback = False

        for _ in range(self._max_attempts):
            candidate = f"{base}{self._rng.randint(1000, 9999)}"
            if not self._exists(candidate):
                return candidate

        # Random attempts exhausted: fall back to a timestamp suffix
        self.last_used_fallback = True
        stamp = self._clock()
        candidate = f"{base}{stamp}"
        while self._exists(candidate):
            stamp += 1
            candidate = f"{base}{stamp}"
        return candidate


def next_ticket_number(seed: IdentifierSeed, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> str:
    """Allocate a repair ticket number checked against persisted repairs."""
    return TicketNumberGenerator(ticket_number_exists, max_attempts=max_attempts).generate(seed)


def next_sale_number(seed: IdentifierSeed, *, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> str:
    """Allocate a sale number ("S" + ticket scheme) checked against persisted sales."""
    return TicketNumberGenerator(
        sale_number_exists,
        prefix=SALE_NUMBER_PREFIX,
        max_attempts=max_attempts,
    ).generate(seed)


def is_unique_violation(exc: IntegrityError, column: str) -> bool:
    """True when an IntegrityError came from the unique index on `column`."""
    message = str(getattr(exc, "orig", exc)).lower()
    return column.lower() in message and ("unique" in message or "duplicate" in message)
