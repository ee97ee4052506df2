"""JournalLineInput / JournalEntryBuilder 테스트"""

from datetime import date
from decimal import Decimal

import pytest

from core.ledger.entry_builder import JournalEntryBuilder, JournalLineInput
from core.ledger.errors import SystemAccountNotConfiguredError, ValidationError
from core.ledger.models import DocumentLine, JournalEntry, JournalLine
from core.ledger.system_accounts import SystemAccounts

AR, AP, TAX, CASH, REVENUE, RENT = 11, 20, 22, 10, 40, 60


@pytest.fixture
def builder() -> JournalEntryBuilder:
    return JournalEntryBuilder(
        SystemAccounts(
            {
                "accounts_receivable": AR,
                "accounts_payable": AP,
                "sales_tax_payable": TAX,
                "cash_default": CASH,
            }
        )
    )


def _sum(lines: list[JournalLineInput]) -> tuple[Decimal, Decimal]:
    return (
        sum((line.debit for line in lines), Decimal("0")),
        sum((line.credit for line in lines), Decimal("0")),
    )


class TestJournalLineInput:
    """분개 라인 입력 검증 테스트"""

    def test_amounts_normalized_to_cents(self) -> None:
        """금액 센트 정규화"""
        line = JournalLineInput(account_id=1, debit=Decimal("10.005"))

        assert line.debit == Decimal("10.01")
        assert line.credit == Decimal("0.00")

    def test_string_amount_accepted(self) -> None:
        """문자열 금액 허용"""
        line = JournalLineInput(account_id=1, credit="99.9")

        assert line.credit == Decimal("99.90")

    def test_float_rejected(self) -> None:
        """float 금액 거부"""
        with pytest.raises(ValidationError, match="float"):
            JournalLineInput(account_id=1, debit=10.5)  # type: ignore[arg-type]

    def test_debit_only_valid(self) -> None:
        JournalLineInput.debit_line(1, Decimal("100")).validate()

    def test_credit_only_valid(self) -> None:
        JournalLineInput.credit_line(1, Decimal("100")).validate()

    def test_both_sides_rejected(self) -> None:
        """차변/대변 동시 양수 거부"""
        line = JournalLineInput(account_id=1, debit=Decimal("10"), credit=Decimal("10"))

        with pytest.raises(ValidationError, match="either debit or credit"):
            line.validate()

    def test_neither_side_rejected(self) -> None:
        """차변/대변 모두 0 거부"""
        with pytest.raises(ValidationError, match="either debit or credit"):
            JournalLineInput(account_id=1).validate()

    def test_negative_rejected(self) -> None:
        """음수 금액 거부"""
        with pytest.raises(ValidationError, match="negative"):
            JournalLineInput(account_id=1, debit=Decimal("-5")).validate()


class TestInvoiceLines:
    """송장 분개 테스트"""

    def test_invoice_with_tax(self, builder: JournalEntryBuilder) -> None:
        """$1,000 + 13% 세금 → AR 1,130 / 수익 1,000 / 예수금 130"""
        lines = builder.invoice_lines(
            "INV-001",
            [DocumentLine("Consulting", Decimal("1"), Decimal("1000"), REVENUE)],
            Decimal("130"),
        )

        assert lines[0].account_id == AR
        assert lines[0].debit == Decimal("1130.00")
        assert lines[1].account_id == REVENUE
        assert lines[1].credit == Decimal("1000.00")
        assert lines[2].account_id == TAX
        assert lines[2].credit == Decimal("130.00")

        debit, credit = _sum(lines)
        assert debit == credit

    def test_invoice_without_tax_has_no_tax_line(self, builder: JournalEntryBuilder) -> None:
        """세액 0이면 예수금 라인 없음"""
        lines = builder.invoice_lines(
            "INV-002",
            [
                DocumentLine("A", Decimal("2"), Decimal("50"), REVENUE),
                DocumentLine("B", Decimal("1"), Decimal("25.50"), REVENUE),
            ],
            Decimal("0"),
        )

        assert len(lines) == 3
        assert all(line.account_id != TAX for line in lines)
        assert lines[0].debit == Decimal("125.50")

    def test_missing_role_raises(self) -> None:
        """역할 미설정 시 추측하지 않음"""
        builder = JournalEntryBuilder(SystemAccounts({}))

        with pytest.raises(SystemAccountNotConfiguredError):
            builder.invoice_lines(
                "INV-003",
                [DocumentLine("A", Decimal("1"), Decimal("10"), REVENUE)],
                Decimal("0"),
            )


class TestPaymentLines:
    """수금/지급 분개 테스트"""

    def test_payment_received(self, builder: JournalEntryBuilder) -> None:
        lines = builder.payment_received_lines("PAY-001", Decimal("500"), CASH)

        assert (lines[0].account_id, lines[0].debit) == (CASH, Decimal("500.00"))
        assert (lines[1].account_id, lines[1].credit) == (AR, Decimal("500.00"))

    def test_vendor_payment(self, builder: JournalEntryBuilder) -> None:
        lines = builder.vendor_payment_lines("VP-001", Decimal("300"), CASH)

        assert (lines[0].account_id, lines[0].debit) == (AP, Decimal("300.00"))
        assert (lines[1].account_id, lines[1].credit) == (CASH, Decimal("300.00"))


class TestBillLines:
    """청구서 분개 테스트"""

    def test_bill_with_tax(self, builder: JournalEntryBuilder) -> None:
        lines = builder.bill_lines(
            "BILL-001",
            [DocumentLine("Rent", Decimal("1"), Decimal("2000"), RENT)],
            Decimal("260"),
        )

        assert lines[0].account_id == RENT
        assert lines[0].debit == Decimal("2000.00")
        assert lines[1].account_id == TAX
        assert lines[1].debit == Decimal("260.00")
        assert lines[-1].account_id == AP
        assert lines[-1].credit == Decimal("2260.00")


class TestCreditNoteLines:
    """Credit Note 분개 테스트"""

    def test_credit_note_mirrors_invoice(self, builder: JournalEntryBuilder) -> None:
        lines = builder.credit_note_lines(
            "CN-001",
            [DocumentLine("Refund", Decimal("1"), Decimal("100"), REVENUE)],
            Decimal("13"),
        )

        assert lines[0].account_id == REVENUE and lines[0].debit == Decimal("100.00")
        assert lines[1].account_id == TAX and lines[1].debit == Decimal("13.00")
        assert lines[2].account_id == AR and lines[2].credit == Decimal("113.00")

    def test_refund(self, builder: JournalEntryBuilder) -> None:
        lines = builder.credit_note_refund_lines("RF-001", Decimal("50"))

        assert (lines[0].account_id, lines[0].debit) == (AR, Decimal("50.00"))
        assert (lines[1].account_id, lines[1].credit) == (CASH, Decimal("50.00"))


class TestReversalLines:
    """역분개 테스트"""

    def test_sides_swapped(self) -> None:
        entry = JournalEntry(
            id=1,
            entry_date=date(2024, 3, 1),
            description="Rent",
            reference=None,
            status="posted",
            lines=[
                JournalLine(1, 1, RENT, Decimal("1000.00"), Decimal("0.00")),
                JournalLine(2, 1, CASH, Decimal("0.00"), Decimal("1000.00")),
            ],
        )

        lines = JournalEntryBuilder.reversal_lines(entry)

        assert (lines[0].account_id, lines[0].credit) == (RENT, Decimal("1000.00"))
        assert (lines[1].account_id, lines[1].debit) == (CASH, Decimal("1000.00"))
        for line in lines:
            line.validate()
