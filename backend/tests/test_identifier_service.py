# Overview: Pytest coverage for ticket and sale number generation.

import random
import re
from datetime import date

import pytest

from retailops.services.identifier_service import (
    IdentifierSeed,
    TicketNumberGenerator,
    is_unique_violation,
    next_sale_number,
    next_ticket_number,
    phone_last4,
)


SEED = IdentifierSeed(on_date=date(2026, 10, 18), phone="+91 98123 44321")


class _AlwaysSame(random.Random):
    def randint(self, a, b):
        return 1234


class TestPhoneLast4:

    def test_strips_formatting(self):
        assert phone_last4("+91 (981) 234-4321") == "4321"

    def test_short_number_is_left_padded(self):
        assert phone_last4("12") == "0012"

    def test_missing_phone(self):
        assert phone_last4(None) == "0000"


class TestTicketNumberGenerator:

    def test_format(self):
        generator = TicketNumberGenerator(lambda value: False, rng=random.Random(7))
        number = generator.generate(SEED)
        assert re.fullmatch(r"18102026" r"4321" r"\d{4}", number)
        assert not generator.last_used_fallback

    def test_prefix(self):
        generator = TicketNumberGenerator(lambda value: False, prefix="S", rng=random.Random(7))
        assert generator.generate(SEED).startswith("S181020264321")

    def test_ten_thousand_allocations_are_unique(self):
        """Every allocation is checked against what was issued before it."""
        issued = set()
        generator = TicketNumberGenerator(issued.__contains__, rng=random.Random(42))
        for _ in range(10_000):
            number = generator.generate(SEED)
            assert number not in issued
            issued.add(number)
        assert len(issued) == 10_000

    def test_retries_past_taken_candidate(self):
        values = iter([1111, 1111, 2222])

        class _Scripted(random.Random):
            def randint(self, a, b):
                return next(values)

        taken = {"1810202643211111"}
        generator = TicketNumberGenerator(taken.__contains__, rng=_Scripted())
        assert generator.generate(SEED) == "1810202643212222"
        assert not generator.last_used_fallback

    def test_falls_back_to_timestamp_when_random_space_is_exhausted(self):
        taken = {"1810202643211234", "18102026432150"}
        generator = TicketNumberGenerator(
            taken.__contains__,
            max_attempts=3,
            rng=_AlwaysSame(),
            clock=lambda: 50,
        )
        number = generator.generate(SEED)
        assert generator.last_used_fallback
        # 50 is taken, so the stamp is bumped
        assert number == "18102026432151"

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            TicketNumberGenerator(lambda value: False, max_attempts=0)


class TestPersistedIdentifiers:

    def test_ticket_number_checks_repairs(self, db_session):
        assert re.fullmatch(r"181020264321\d{4}", next_ticket_number(SEED))

    def test_sale_number_has_prefix(self, db_session):
        assert re.fullmatch(r"S181020264321\d{4}", next_sale_number(SEED))


class TestUniqueViolation:

    class _Err(Exception):
        pass

    def _integrity_error(self, text):
        from sqlalchemy.exc import IntegrityError
        return IntegrityError("INSERT ...", {}, self._Err(text))

    def test_sqlite_message(self):
        exc = self._integrity_error("UNIQUE constraint failed: repairs.ticket_number")
        assert is_unique_violation(exc, "ticket_number")
        assert not is_unique_violation(exc, "sale_number")

    def test_postgres_message(self):
        exc = self._integrity_error('duplicate key value violates unique constraint "ix_sales_sale_number"')
        assert is_unique_violation(exc, "sale_number")

    def test_other_integrity_errors(self):
        exc = self._integrity_error("NOT NULL constraint failed: sales.customer_id")
        assert not is_unique_violation(exc, "sale_number")
