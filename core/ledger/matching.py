"""
배분 매칭 휴리스틱

결제 하나에 대해 미결 송장 배분 제안 생성 (DB 접근 없음).

우선순위:
1. 참조번호 일치 (exact)
2. 금액 근사 일치: 송장 1건, 없으면 2건 합계 (heuristic)
3. 오래된 송장부터 (fifo)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from itertools import combinations
from typing import Sequence

from core.constants import Defaults
from core.ledger.models import Invoice, Payment
from core.ledger.types import EPSILON, ZERO, AllocationMethod, InvoiceStatus

EXACT_CONFIDENCE = Decimal("0.99")
AMOUNT_CONFIDENCE = Decimal("0.85")
FIFO_CONFIDENCE = Decimal("0.7")


@dataclass(frozen=True)
class AllocationSuggestion:
    """배분 제안 1건"""

    invoice_id: int
    amount: Decimal
    method: AllocationMethod
    confidence: Decimal
    explanation: str


def suggest_allocations(
    payment: Payment,
    open_invoices: Sequence[Invoice],
    tolerance: Decimal = Defaults.MATCH_TOLERANCE,
) -> list[AllocationSuggestion]:
    """결제 배분 제안

    Args:
        payment: 배분할 결제
        open_invoices: 후보 송장 (같은 거래처의 미결 송장만 사용)
        tolerance: 금액 근사 허용 비율 (기본 2%)

    Returns:
        제안 목록 (금액 합계 ≤ 결제 미배분액)
    """
    remaining = payment.unallocated
    if remaining <= ZERO:
        return []

    candidates = [
        invoice for invoice in open_invoices
        if invoice.contact_id == payment.contact_id
        and invoice.status not in (InvoiceStatus.PAID.value, InvoiceStatus.VOID.value, InvoiceStatus.DRAFT.value)
        and invoice.outstanding > ZERO
    ]
    if not candidates:
        return []

    exact = _find_reference_match(payment, candidates)
    if exact is not None:
        return _build(
            [exact],
            remaining,
            AllocationMethod.EXACT,
            EXACT_CONFIDENCE,
            f"Exact match by reference: {payment.reference}",
        )

    matched = _find_amount_match(remaining, candidates, tolerance)
    if matched:
        return _build(
            matched,
            remaining,
            AllocationMethod.HEURISTIC,
            AMOUNT_CONFIDENCE,
            "Amount match within tolerance",
        )

    oldest_first = sorted(candidates, key=lambda invoice: (invoice.issue_date, invoice.id))
    suggestions = []
    for invoice in oldest_first:
        if remaining < EPSILON:
            break
        amount = min(remaining, invoice.outstanding)
        suggestions.append(
            AllocationSuggestion(
                invoice_id=invoice.id,
                amount=amount,
                method=AllocationMethod.FIFO,
                confidence=FIFO_CONFIDENCE,
                explanation=f"FIFO allocation to oldest invoice ({invoice.issue_date.isoformat()})",
            )
        )
        remaining -= amount
    return suggestions


def _find_reference_match(payment: Payment, candidates: Sequence[Invoice]) -> Invoice | None:
    reference = (payment.reference or "").strip().lower()
    if not reference:
        return None

    for invoice in candidates:
        number = invoice.invoice_number.strip().lower()
        if number in reference or reference in number:
            return invoice
    return None


def _find_amount_match(
    remaining: Decimal,
    candidates: Sequence[Invoice],
    tolerance: Decimal,
) -> list[Invoice]:
    def within(total: Decimal) -> bool:
        return abs(total - remaining) / remaining <= tolerance

    for invoice in candidates:
        if within(invoice.outstanding):
            return [invoice]

    for first, second in combinations(candidates, 2):
        if within(first.outstanding + second.outstanding):
            return [first, second]

    return []


def _build(
    invoices: Sequence[Invoice],
    remaining: Decimal,
    method: AllocationMethod,
    confidence: Decimal,
    explanation: str,
) -> list[AllocationSuggestion]:
    suggestions = []
    for invoice in invoices:
        amount = min(remaining, invoice.outstanding)
        suggestions.append(
            AllocationSuggestion(
                invoice_id=invoice.id,
                amount=amount,
                method=method,
                confidence=confidence,
                explanation=explanation,
            )
        )
        remaining -= amount
        if remaining < EPSILON:
            break
    return suggestions
