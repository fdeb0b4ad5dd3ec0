"""
Identifier generation tests.

Verifies:
- Minute-stamped ids fall back to -01, -02 ... on collision
- Exhausting the candidate space raises GenerationExhausted
- Supplier ids are SUP + 6 digits and strictly increasing
- The supplier sequence seeds itself from existing ids
"""

import re
from datetime import datetime

import pytest

from teasupply.errors import GenerationExhausted
from teasupply.models import IdentifierSequence
from teasupply.services import identifier_service
from teasupply.services.identifier_service import (
    format_supplier_id,
    generate_business_id,
    parse_supplier_number,
)

from conftest import make_supplier


NOW = datetime(2026, 3, 7, 9, 5)


class TestBusinessIds:

    def test_first_candidate_is_bare_base(self, app):
        assert generate_business_id("SUP", lambda c: False, now=NOW) == "SUP-20260307-0905"

    def test_collision_appends_two_digit_suffix(self, app):
        taken = {"SUP-20260307-0905", "SUP-20260307-0905-01"}
        result = generate_business_id("SUP", taken.__contains__, now=NOW)
        assert result == "SUP-20260307-0905-02"

    def test_exhausted_after_max_attempts(self, app):
        calls = []

        def always_taken(candidate):
            calls.append(candidate)
            return True

        with pytest.raises(GenerationExhausted):
            generate_business_id("SUP", always_taken, now=NOW, max_attempts=5)
        assert len(calls) == 5

    def test_random_suffix_mode(self, app):
        result = generate_business_id("INV", lambda c: False, now=NOW, random_suffix=True)
        assert re.fullmatch(r"INV-20260307-0905-\d{2}", result)

    def test_production_and_payment_formats(self, db_session):
        assert re.fullmatch(r"PROD-[0-9A-Z]+-[0-9A-Z]{6}", identifier_service.generate_production_id())
        assert re.fullmatch(r"PAY_\d+_\d{3}", identifier_service.generate_payment_id())


class TestSupplierIdFormat:

    def test_format(self):
        assert format_supplier_id(1) == "SUP000001"
        assert format_supplier_id(123456) == "SUP123456"

    @pytest.mark.parametrize("value,expected", [
        ("SUP000042", 42),
        ("SUP-20260307-0905", None),
        ("SUP12345", None),
        ("sup000001", None),
        (None, None),
    ])
    def test_parse(self, value, expected):
        assert parse_supplier_number(value) == expected


class TestSupplierSequence:

    def test_first_supplier_gets_sup000001(self, db_session):
        supplier = make_supplier()
        assert supplier.supplier_id == "SUP000001"

    def test_ids_strictly_increase(self, db_session):
        ids = [
            make_supplier(name=f"S{i}", email=f"s{i}@example.com", phone=f"07700000{i:02d}").supplier_id
            for i in range(5)
        ]
        numbers = [parse_supplier_number(v) for v in ids]
        assert numbers == sorted(numbers)
        assert len(set(numbers)) == 5

    def test_sequence_seeds_from_highest_existing_id(self, db_session):
        supplier = make_supplier()
        supplier.supplier_id = "SUP000041"
        db_session.commit()
        db_session.query(IdentifierSequence).delete()
        db_session.commit()

        assert identifier_service.generate_supplier_id() == "SUP000042"
        db_session.commit()
        assert identifier_service.get_supplier_sequence_value() == 43

    def test_taken_number_is_skipped(self, db_session):
        supplier = make_supplier()
        assert supplier.supplier_id == "SUP000001"
        other = make_supplier(name="Other", email="other@example.com", phone="0700000001")
        other.supplier_id = "SUP000002"
        db_session.commit()
        identifier_service.reset_supplier_sequence(2)
        db_session.commit()

        assert identifier_service.generate_supplier_id() == "SUP000003"
