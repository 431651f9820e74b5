"""
Tests for payment date normalisation and the typed payment payload.

Date safety: only an 8-digit YYYYMMDD value naming a real calendar day is
accepted; everything else gives None and never a sentinel.
"""

from datetime import date

import pytest
from hypothesis import given
from hypothesis import strategies as st

from ledger_kernel.domain.dates import (
    iso_week_number,
    month_start,
    parse_payment_date,
    week_start,
)
from ledger_kernel.domain.payload import PaymentPayload


class TestParsePaymentDate:

    def test_valid_source_date(self):
        assert parse_payment_date("20250315") == date(2025, 3, 15)
        assert parse_payment_date("20250315").isoformat() == "2025-03-15"

    def test_integer_source_date(self):
        assert parse_payment_date(20240229) == date(2024, 2, 29)

    def test_surrounding_whitespace_ignored(self):
        assert parse_payment_date(" 20250101 ") == date(2025, 1, 1)

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "",
            "N/A",
            "null",
            "undefined",
            "2025-03-15",
            "20251301",
            "20250230",
            "20230229",
            "2025031",
            "202503150",
            "abcdefgh",
            True,
            3.5,
        ],
    )
    def test_malformed_values_give_none(self, raw):
        assert parse_payment_date(raw) is None

    @given(st.dates(min_value=date(1000, 1, 1), max_value=date(9999, 12, 31)))
    def test_every_real_date_parses_back(self, day):
        assert parse_payment_date(day.strftime("%Y%m%d")) == day

    @given(st.text(max_size=12))
    def test_arbitrary_text_never_raises(self, raw):
        result = parse_payment_date(raw)
        assert result is None or isinstance(result, date)

    @given(st.text(max_size=12).filter(lambda s: len(s.strip()) != 8))
    def test_wrong_length_is_rejected(self, raw):
        assert parse_payment_date(raw) is None


class TestCalendarKeys:

    def test_week_start_is_monday(self):
        assert week_start(date(2026, 2, 4)) == date(2026, 2, 2)
        assert week_start(date(2026, 2, 2)) == date(2026, 2, 2)
        assert week_start(date(2026, 2, 8)) == date(2026, 2, 2)

    def test_month_start(self):
        assert month_start(date(2026, 2, 17)) == date(2026, 2, 1)

    def test_iso_week_number(self):
        assert iso_week_number(date(2026, 2, 2)) == 6
        assert iso_week_number(date(2025, 12, 29)) == 1


class TestPaymentPayload:

    def test_from_mapping(self):
        payload = PaymentPayload.from_raw(
            {
                "LAST_PAYMENT_DATE": "20250315",
                "ACCOUNT_HOLDER_NAME": "J Smith",
                "ACCOUNT_STATUS": "ACTIVE",
                "OCC_OWN": "OWNER",
                "INDIGENT": True,
            }
        )
        assert payload.last_payment_date_raw == "20250315"
        assert payload.last_payment_date == date(2025, 3, 15)
        assert payload.account_holder_name == "J Smith"
        assert payload.account_status == "ACTIVE"
        assert payload.occ_own == "OWNER"
        assert payload.indigent_flag == "Y"

    def test_from_json_string(self):
        payload = PaymentPayload.from_raw('{"LAST_PAYMENT_DATE": "20240101"}')
        assert payload.last_payment_date == date(2024, 1, 1)

    @pytest.mark.parametrize("raw", [None, "not json", "[1, 2]", 42])
    def test_unusable_raw_gives_empty_payload(self, raw):
        assert PaymentPayload.from_raw(raw) == PaymentPayload()

    def test_empty_markers_become_none(self):
        payload = PaymentPayload.from_raw(
            {"LAST_PAYMENT_DATE": "N/A", "ACCOUNT_HOLDER_NAME": "", "OCC_OWN": "null"}
        )
        assert payload.last_payment_date_raw is None
        assert payload.last_payment_date is None
        assert payload.account_holder_name is None
        assert payload.occ_own is None

    def test_malformed_date_keeps_raw_value(self):
        payload = PaymentPayload.from_raw({"LAST_PAYMENT_DATE": "2025-03-15"})
        assert payload.last_payment_date_raw == "2025-03-15"
        assert payload.last_payment_date is None

    @pytest.mark.parametrize(
        "indigent, expected",
        [(True, "Y"), (False, "N"), (None, "N"), ("Y", "Y"), ("N", "N")],
    )
    def test_indigent_flag(self, indigent, expected):
        assert PaymentPayload.from_raw({"INDIGENT": indigent}).indigent_flag == expected
