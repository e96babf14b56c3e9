# Overview: Pytest coverage for invoice numbering.

"""
Invoice Number Sequencer Tests

- Defaults are created lazily (INV, 1001, template1)
- Reserved numbers stay the contiguous run start_count..current_count-1
- Out-of-sequence and reused custom numbers are rejected
- Changing start_count resets the run
"""

import pytest

from billing.errors import InvalidInvoiceNumber, InvoiceNumberAlreadyUsed, NonSequentialInvoiceNumber, ValidationError
from billing.extensions import db
from billing.services import invoice_sequence_service as seq


class TestDefaults:
    def test_settings_created_on_first_access(self, db_session, vendor_a):
        settings = seq.get_settings(vendor_a.id)
        db_session.commit()

        assert settings.prefix == "INV"
        assert settings.start_count == 1001
        assert settings.current_count == 1001
        assert settings.invoice_template == "template1"
        assert settings.used_numbers == []

    def test_next_number_is_padded_to_start_count_width(self, db_session, vendor_a):
        seq.update_settings(vendor_a.id, prefix="sb", start_count=7)
        number = seq.get_next(vendor_a.id)
        assert number.full_number == "SB7"

        seq.update_settings(vendor_a.id, start_count=100)
        assert seq.get_next(vendor_a.id).full_number == "SB100"


class TestReservation:
    def test_reserved_numbers_are_contiguous(self, db_session, vendor_a):
        for _ in range(3):
            number = seq.get_next(vendor_a.id)
            seq.reserve(vendor_a.id, number.numeric_part)
        db_session.commit()

        settings = seq.get_settings(vendor_a.id)
        assert settings.used_numbers == [1001, 1002, 1003]
        assert settings.current_count == 1004
        assert seq.audit_sequence(vendor_a.id)["contiguous"] is True

    def test_reserving_twice_fails(self, db_session, vendor_a):
        seq.reserve(vendor_a.id, 1001)
        db_session.commit()
        with pytest.raises(InvoiceNumberAlreadyUsed):
            seq.reserve(vendor_a.id, 1001)

    def test_next_skips_used_numbers(self, db_session, vendor_a):
        settings = seq.get_settings(vendor_a.id)
        settings.used_numbers = [1001, 1002]
        db_session.commit()

        assert seq.get_next(vendor_a.id).numeric_part == 1003

    def test_vendors_have_independent_sequences(self, db_session, vendor_a, vendor_b):
        seq.reserve(vendor_a.id, 1001)
        db_session.commit()

        assert seq.get_next(vendor_a.id).numeric_part == 1002
        assert seq.get_next(vendor_b.id).numeric_part == 1001


class TestRequestedNumbers:
    def test_out_of_sequence_number_rejected_with_expected_next(self, db_session, vendor_a):
        settings = seq.get_settings(vendor_a.id)
        settings.current_count = 1005
        settings.used_numbers = [1001, 1002, 1003, 1004]
        db_session.commit()

        with pytest.raises(NonSequentialInvoiceNumber) as exc:
            seq.get_next(vendor_a.id, 1007)
        assert exc.value.expected_next == 1005
        assert exc.value.requested == 1007

    def test_requested_current_number_accepted(self, db_session, vendor_a):
        number = seq.get_next(vendor_a.id, "1001")
        assert number.numeric_part == 1001
        assert number.full_number == "INV1001"

    def test_used_number_rejected(self, db_session, vendor_a):
        seq.reserve(vendor_a.id, 1001)
        db_session.commit()
        with pytest.raises(InvoiceNumberAlreadyUsed):
            seq.get_next(vendor_a.id, 1001)

    @pytest.mark.parametrize("bad", ["abc", "-3", 0, True, "12.5"])
    def test_malformed_number_rejected(self, db_session, vendor_a, bad):
        with pytest.raises(InvalidInvoiceNumber):
            seq.get_next(vendor_a.id, bad)


class TestSettings:
    def test_start_count_change_resets_run(self, db_session, vendor_a):
        seq.reserve(vendor_a.id, 1001)
        db_session.commit()

        settings = seq.update_settings(vendor_a.id, start_count=5001)
        assert settings.current_count == 5001
        assert settings.used_numbers == []

    def test_prefix_only_change_keeps_run(self, db_session, vendor_a):
        seq.reserve(vendor_a.id, 1001)
        db_session.commit()

        settings = seq.update_settings(vendor_a.id, prefix=" bill ")
        assert settings.prefix == "BILL"
        assert settings.current_count == 1002
        assert settings.used_numbers == [1001]

    def test_invalid_settings_rejected(self, db_session, vendor_a):
        with pytest.raises(ValidationError):
            seq.update_settings(vendor_a.id, invoice_template="template9")
        with pytest.raises(ValidationError):
            seq.update_settings(vendor_a.id, start_count=0)
        with pytest.raises(ValidationError):
            seq.update_settings(vendor_a.id, prefix="X" * 11)


class TestAvailabilityAndAudit:
    def test_check_availability(self, db_session, vendor_a):
        seq.reserve(vendor_a.id, 1001)
        db_session.commit()

        assert seq.check_availability(vendor_a.id, 1001) == {
            "available": False, "number": 1001, "reason": "already used",
        }
        assert seq.check_availability(vendor_a.id, 900)["reason"] == "below start_count"
        assert seq.check_availability(vendor_a.id, "x")["available"] is False

        result = seq.check_availability(vendor_a.id, 1002)
        assert result["available"] is True
        assert result["is_next"] is True
        assert result["full_number"] == "INV1002"

    def test_audit_reports_gaps(self, db_session, vendor_a):
        settings = seq.get_settings(vendor_a.id)
        settings.used_numbers = [1001, 1003]
        settings.current_count = 1004
        db.session.commit()

        report = seq.audit_sequence(vendor_a.id)
        assert report["contiguous"] is False
        assert report["gaps"] == [1002]
