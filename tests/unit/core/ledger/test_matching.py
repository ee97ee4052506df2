"""배분 매칭 휴리스틱 테스트"""

from datetime import date
from decimal import Decimal

from core.ledger.matching import (
    AMOUNT_CONFIDENCE,
    EXACT_CONFIDENCE,
    FIFO_CONFIDENCE,
    suggest_allocations,
)
from core.ledger.models import Invoice, Payment
from core.ledger.types import AllocationMethod

CONTACT = 7


def _invoice(
    invoice_id: int,
    number: str,
    total: str,
    issued: date,
    paid: str = "0",
    status: str = "sent",
    contact_id: int = CONTACT,
) -> Invoice:
    return Invoice(
        id=invoice_id,
        invoice_number=number,
        contact_id=contact_id,
        issue_date=issued,
        due_date=issued,
        status=status,
        subtotal=Decimal(total),
        tax_amount=Decimal("0"),
        total_amount=Decimal(total),
        paid_amount=Decimal(paid),
    )


def _payment(amount: str, reference: str | None = None, allocated: str = "0") -> Payment:
    return Payment(
        id=1,
        payment_number="PAY-001",
        contact_id=CONTACT,
        payment_date=date(2024, 3, 1),
        amount=Decimal(amount),
        payment_method="transfer",
        reference=reference,
        allocated_amount=Decimal(allocated),
        status="pending",
    )


class TestExactReference:
    """참조번호 일치"""

    def test_reference_contains_invoice_number(self) -> None:
        invoices = [
            _invoice(1, "INV-001", "300.00", date(2024, 1, 1)),
            _invoice(2, "INV-002", "500.00", date(2024, 2, 1)),
        ]

        suggestions = suggest_allocations(_payment("500.00", "Payment for inv-002"), invoices)

        assert len(suggestions) == 1
        assert suggestions[0].invoice_id == 2
        assert suggestions[0].method == AllocationMethod.EXACT
        assert suggestions[0].confidence == EXACT_CONFIDENCE

    def test_amount_capped_at_outstanding(self) -> None:
        """송장 잔액까지만 제안"""
        invoices = [_invoice(1, "INV-001", "300.00", date(2024, 1, 1), paid="100.00", status="partial")]

        suggestions = suggest_allocations(_payment("500.00", "INV-001"), invoices)

        assert suggestions[0].amount == Decimal("200.00")

    def test_blank_reference_ignored(self) -> None:
        invoices = [_invoice(1, "INV-001", "300.00", date(2024, 1, 1))]

        suggestions = suggest_allocations(_payment("100.00", "   "), invoices)

        assert suggestions[0].method == AllocationMethod.FIFO


class TestAmountMatch:
    """금액 근사 일치"""

    def test_single_invoice_within_tolerance(self) -> None:
        """2% 이내 단일 송장"""
        invoices = [
            _invoice(1, "INV-001", "100.00", date(2024, 1, 1)),
            _invoice(2, "INV-002", "1000.00", date(2024, 2, 1)),
        ]

        suggestions = suggest_allocations(_payment("990.00"), invoices)

        assert [s.invoice_id for s in suggestions] == [2]
        assert suggestions[0].method == AllocationMethod.HEURISTIC
        assert suggestions[0].confidence == AMOUNT_CONFIDENCE
        assert suggestions[0].amount == Decimal("990.00")

    def test_pair_of_invoices(self) -> None:
        """송장 2건 합계 일치"""
        invoices = [
            _invoice(1, "INV-001", "400.00", date(2024, 1, 1)),
            _invoice(2, "INV-002", "250.00", date(2024, 1, 15)),
            _invoice(3, "INV-003", "600.00", date(2024, 2, 1)),
        ]

        suggestions = suggest_allocations(_payment("850.00"), invoices)

        assert [s.invoice_id for s in suggestions] == [2, 3]
        assert sum(s.amount for s in suggestions) == Decimal("850.00")


class TestFifo:
    """오래된 송장부터 배분"""

    def test_oldest_first(self) -> None:
        invoices = [
            _invoice(2, "INV-002", "500.00", date(2024, 2, 1)),
            _invoice(1, "INV-001", "300.00", date(2024, 1, 1)),
            _invoice(3, "INV-003", "700.00", date(2024, 3, 1)),
        ]

        suggestions = suggest_allocations(_payment("600.00"), invoices)

        assert [(s.invoice_id, s.amount) for s in suggestions] == [
            (1, Decimal("300.00")),
            (2, Decimal("300.00")),
        ]
        assert all(s.confidence == FIFO_CONFIDENCE for s in suggestions)


class TestCandidateFiltering:
    """후보 송장 필터링"""

    def test_other_contact_void_and_paid_excluded(self) -> None:
        invoices = [
            _invoice(1, "INV-001", "100.00", date(2024, 1, 1), contact_id=99),
            _invoice(2, "INV-002", "100.00", date(2024, 1, 2), status="void"),
            _invoice(3, "INV-003", "100.00", date(2024, 1, 3), paid="100.00", status="paid"),
            _invoice(4, "INV-004", "100.00", date(2024, 1, 4), status="draft"),
        ]

        assert suggest_allocations(_payment("100.00"), invoices) == []

    def test_fully_allocated_payment(self) -> None:
        invoices = [_invoice(1, "INV-001", "100.00", date(2024, 1, 1))]

        assert suggest_allocations(_payment("100.00", allocated="100.00"), invoices) == []
