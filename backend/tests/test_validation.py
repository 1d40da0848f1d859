# Overview: Pytest coverage for payload validation and money math.

from decimal import Decimal

import pytest

from scrapledger.services.pricing import compute_line_total, derive_totals, signed_total
from scrapledger.validation import ValidationError, clean_transaction_payload


class TestPricing:
    def test_weight_line_total(self):
        assert compute_line_total(weight=Decimal("5.0"), piece_count=None, unit_price_cents=4000) == 20000
        assert compute_line_total(weight=Decimal("2.5"), piece_count=None, unit_price_cents=4000) == 10000

    def test_piece_line_total(self):
        assert compute_line_total(weight=None, piece_count=3, unit_price_cents=1250) == 3750

    def test_half_cent_rounds_up(self):
        # 0.125 kg x 4 cents = 0.5 cents
        assert compute_line_total(weight=Decimal("0.125"), piece_count=None, unit_price_cents=4) == 1

    def test_buy_adds_expenses_sell_subtracts(self):
        assert derive_totals("buy", [20000, 10000], 1000) == (30000, 31000)
        assert derive_totals("sell", [20000, 10000], 1000) == (30000, 29000)

    def test_signed_total(self):
        assert signed_total("buy", 31000) == -31000
        assert signed_total("sell", 29000) == 29000


class TestCleanTransactionPayload:
    def test_worked_example(self, payload_factory):
        cleaned = clean_transaction_payload(payload_factory())

        assert cleaned.id == "TXN-00000007"
        assert cleaned.header["expenses_cents"] == 1000
        assert [i["line_total_cents"] for i in cleaned.line_items] == [20000, 10000]
        assert [i["position"] for i in cleaned.line_items] == [0, 1]
        assert cleaned.line_items[0]["weight"] == Decimal("5.000")
        assert cleaned.session_images is None
        assert not cleaned.is_draft_checkpoint

    @pytest.mark.parametrize("field", ["id", "kind", "status", "employee"])
    def test_missing_required_field(self, payload_factory, field):
        payload = payload_factory()
        payload.pop(field)
        with pytest.raises(ValidationError, match=field):
            clean_transaction_payload(payload)

    def test_unknown_customer_kind_rejected(self, payload_factory):
        with pytest.raises(ValidationError, match="customer_kind"):
            clean_transaction_payload(payload_factory(customer_kind="alien"))

    def test_blank_customer_kind_uses_default(self, payload_factory):
        cleaned = clean_transaction_payload(payload_factory(customer_kind=""))
        assert "customer_kind" not in cleaned.header

    def test_client_totals_are_ignored(self, payload_factory):
        cleaned = clean_transaction_payload(payload_factory(subtotal_cents=1, total_cents=2))
        assert "subtotal_cents" not in cleaned.header
        assert "total_cents" not in cleaned.header

    def test_client_line_total_is_recomputed(self, payload_factory):
        payload = payload_factory()
        payload["line_items"][0]["line_total_cents"] = 999
        cleaned = clean_transaction_payload(payload)
        assert cleaned.line_items[0]["line_total_cents"] == 20000

    def test_expenses_must_match_items(self, payload_factory):
        with pytest.raises(ValidationError, match="expense_items"):
            clean_transaction_payload(payload_factory(expenses_cents=500))

    def test_item_needs_exactly_one_quantity(self, payload_factory):
        payload = payload_factory()
        payload["line_items"][0]["piece_count"] = 2
        with pytest.raises(ValidationError, match="exactly one"):
            clean_transaction_payload(payload)

        payload = payload_factory()
        del payload["line_items"][1]["weight"]
        with pytest.raises(ValidationError, match="exactly one"):
            clean_transaction_payload(payload)

    def test_non_positive_weight_rejected(self, payload_factory):
        payload = payload_factory()
        payload["line_items"][0]["weight"] = "0"
        with pytest.raises(ValidationError, match="weight"):
            clean_transaction_payload(payload)

    def test_float_price_rejected(self, payload_factory):
        payload = payload_factory()
        payload["line_items"][0]["unit_price_cents"] = 40.5
        with pytest.raises(ValidationError, match="unit_price_cents"):
            clean_transaction_payload(payload)

    def test_unknown_field_rejected(self, payload_factory):
        with pytest.raises(ValidationError, match="Field not allowed"):
            clean_transaction_payload(payload_factory(balance_cents=10))

    def test_draft_checkpoint(self, payload_factory):
        cleaned = clean_transaction_payload(payload_factory(status="in-progress", line_items=[]))
        assert cleaned.is_draft_checkpoint

        cleaned = clean_transaction_payload(payload_factory(status="in-progress"))
        assert not cleaned.is_draft_checkpoint


class TestSessionType:
    def test_legacy_pickup_flag(self, payload_factory):
        payload = payload_factory(is_pickup=True)
        payload.pop("session_type")
        assert clean_transaction_payload(payload).header["session_type"] == "pickup"

    def test_legacy_delivery_flag(self, payload_factory):
        payload = payload_factory(is_delivery=True, session_type=None)
        assert clean_transaction_payload(payload).header["session_type"] == "delivery"

    def test_both_flags_rejected(self, payload_factory):
        with pytest.raises(ValidationError, match="both"):
            clean_transaction_payload(payload_factory(is_pickup=True, is_delivery=True))

    def test_flag_contradicting_session_type_rejected(self, payload_factory):
        with pytest.raises(ValidationError, match="contradicts"):
            clean_transaction_payload(payload_factory(is_delivery=True, session_type="pickup"))

    def test_invalid_session_type(self, payload_factory):
        with pytest.raises(ValidationError, match="session_type"):
            clean_transaction_payload(payload_factory(session_type="drive-thru"))
