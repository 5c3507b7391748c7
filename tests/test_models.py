import pytest
from decimal import Decimal
from pydantic import ValidationError

from errors import MalformedRecord
from models import (
    Account,
    Chargeback,
    Deposit,
    Dispute,
    RawRecord,
    Resolve,
    Withdrawal,
    parse_record,
    quantize_amount,
)


class TestParseRecord:
    """Test conversion of raw records into transaction variants."""

    def test_deposit(self):
        transaction = parse_record(RawRecord(type="deposit", client="1", tx="7", amount="1.5"))

        assert isinstance(transaction, Deposit)
        assert transaction.tx_id == 7
        assert transaction.client_id == 1
        assert transaction.amount == Decimal("1.5")

    def test_withdrawal(self):
        transaction = parse_record(RawRecord(type="withdrawal", client="2", tx="8", amount="0.0001"))

        assert isinstance(transaction, Withdrawal)
        assert transaction.amount == Decimal("0.0001")

    @pytest.mark.parametrize("kind,variant", [
        ("dispute", Dispute),
        ("resolve", Resolve),
        ("chargeback", Chargeback),
    ])
    def test_dispute_like_kinds(self, kind, variant):
        transaction = parse_record(RawRecord(type=kind, client="3", tx="9"))

        assert isinstance(transaction, variant)
        assert not hasattr(transaction, "amount")

    def test_kind_is_case_insensitive_and_trimmed(self):
        transaction = parse_record(RawRecord(type="  Deposit ", client=" 1", tx="2 ", amount=" 3 "))

        assert isinstance(transaction, Deposit)
        assert transaction.amount == Decimal("3")

    def test_amount_on_dispute_row_is_ignored(self):
        transaction = parse_record(RawRecord(type="dispute", client="1", tx="1", amount="5"))

        assert isinstance(transaction, Dispute)

    def test_numbers_from_json_are_accepted(self):
        raw = RawRecord(type="deposit", client=1, tx=2, amount=2.25)

        assert parse_record(raw).amount == Decimal("2.25")

    @pytest.mark.parametrize("raw", [
        RawRecord(client="1", tx="1", amount="1"),
        RawRecord(type="deposit", tx="1", amount="1"),
        RawRecord(type="deposit", client="1", amount="1"),
        RawRecord(type="deposit", client="1", tx="1"),
        RawRecord(type="withdrawal", client="1", tx="1", amount=""),
        RawRecord(type="dispute", client="1"),
    ])
    def test_missing_field(self, raw):
        with pytest.raises(MalformedRecord):
            parse_record(raw)

    @pytest.mark.parametrize("amount", ["0", "-1", "abc", "NaN", "Infinity"])
    def test_invalid_amount(self, amount):
        with pytest.raises(MalformedRecord):
            parse_record(RawRecord(type="deposit", client="1", tx="1", amount=amount))

    @pytest.mark.parametrize("amount", [
        "1e30",
        "123456789012345678901234567",
        "1000000000000",
        "0.00005",
        "1.00001",
    ])
    def test_amount_out_of_bounds(self, amount):
        with pytest.raises(MalformedRecord):
            parse_record(RawRecord(type="withdrawal", client="1", tx="1", amount=amount))

    @pytest.mark.parametrize("amount", ["0.0001", "999999999999.9999"])
    def test_amount_bounds(self, amount):
        transaction = parse_record(RawRecord(type="deposit", client="1", tx="1", amount=amount))

        assert transaction.amount == Decimal(amount)

    @pytest.mark.parametrize("client,tx", [
        ("-1", "1"),
        ("65536", "1"),
        ("1", "4294967296"),
        ("one", "1"),
        ("1", "1.5"),
    ])
    def test_invalid_identifiers(self, client, tx):
        with pytest.raises(MalformedRecord):
            parse_record(RawRecord(type="dispute", client=client, tx=tx))

    def test_identifier_bounds(self):
        transaction = parse_record(RawRecord(type="resolve", client="65535", tx="4294967295"))

        assert transaction.client_id == 65535
        assert transaction.tx_id == 4294967295

    def test_unknown_kind(self):
        with pytest.raises(MalformedRecord) as exc_info:
            parse_record(RawRecord(type="refund", client="1", tx="1", amount="1", line=12))

        assert exc_info.value.code == "MALFORMED_RECORD"
        assert exc_info.value.line == 12


class TestTransactionVariants:
    """Test that variants only carry the fields of their kind."""

    def test_dispute_cannot_carry_amount(self):
        with pytest.raises(ValidationError):
            Dispute(tx_id=1, client_id=1, amount=Decimal("5"))

    def test_deposit_requires_amount(self):
        with pytest.raises(ValidationError):
            Deposit(tx_id=1, client_id=1)

    def test_variants_are_immutable(self):
        deposit = Deposit(tx_id=1, client_id=1, amount=Decimal("5"))

        with pytest.raises(ValidationError):
            deposit.amount = Decimal("6")


class TestAccount:
    """Test account values and snapshots."""

    def test_new_account_is_empty(self):
        account = Account(client_id=4)

        assert account.available == 0
        assert account.held == 0
        assert account.total == 0
        assert account.locked is False

    def test_total_is_derived(self):
        account = Account(client_id=1, available=Decimal("-3"), held=Decimal("10"))

        assert account.total == Decimal("7")

    def test_snapshot_rounds_to_precision(self):
        snapshot = Account(client_id=1, available=Decimal("1.23456"), held=Decimal("0")).to_snapshot(4)

        assert str(snapshot.available) == "1.2346"
        assert str(snapshot.held) == "0.0000"
        assert str(snapshot.total) == "1.2346"

    def test_snapshot_total_uses_rounded_parts(self):
        account = Account(client_id=1, available=Decimal("0.005"), held=Decimal("0.005"))

        snapshot = account.to_snapshot(2)

        assert snapshot.total == snapshot.available + snapshot.held
        assert str(snapshot.total) == "0.00"

    def test_snapshot_of_huge_balance(self):
        snapshot = Account(client_id=1, available=Decimal("1e30")).to_snapshot(4)

        assert snapshot.available == Decimal("1e30")
        assert str(snapshot.total).endswith(".0000")

    def test_negative_zero_is_normalised(self):
        assert str(quantize_amount(Decimal("-0.00001"), 4)) == "0.0000"
