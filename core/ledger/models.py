"""
Ledger 레코드 모델

DB 행을 표준화한 도메인 모델.
모든 금액은 Decimal, 날짜는 datetime.date 사용.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping

from core.ledger.errors import ValidationError
from core.ledger.types import EPSILON, ZERO, AccountType

CENT = Decimal("0.01")


def money(value: Decimal | int | str | None) -> Decimal:
    """금액을 Decimal(센트 단위)로 정규화
    
    float는 이진 오차 때문에 받지 않음.
    
    Raises:
        ValidationError: float 또는 숫자가 아닌 값
    """
    if value is None:
        return ZERO
    if isinstance(value, float):
        raise ValidationError("Monetary amounts must not be float; use Decimal or str")
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError) as e:
        raise ValidationError(f"Invalid monetary amount: {value!r}") from e


def to_date(value: date | str | None) -> date | None:
    """ISO 문자열 또는 date를 date로 변환"""
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


def _loads(value: str | None) -> dict[str, Any] | None:
    return json.loads(value) if value else None


@dataclass(frozen=True)
class Account:
    """계정과목"""
    
    id: int
    code: str
    name: str
    type: AccountType
    parent_id: int | None = None
    is_active: bool = True
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Account:
        return cls(
            id=row["id"],
            code=row["code"],
            name=row["name"],
            type=AccountType(row["type"]),
            parent_id=row["parent_id"],
            is_active=bool(row["is_active"]),
        )


@dataclass(frozen=True)
class TransactionEvent:
    """원장 변경의 업무적 사유 (생성 후 변경 불가)"""
    
    id: int
    event_type: str
    description: str | None
    reference: str | None
    created_by: str
    created_at: str
    metadata: dict[str, Any] | None = None
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> TransactionEvent:
        return cls(
            id=row["id"],
            event_type=row["event_type"],
            description=row["description"],
            reference=row["reference"],
            created_by=row["created_by"],
            created_at=row["created_at"],
            metadata=_loads(row["metadata"]),
        )


@dataclass(frozen=True)
class JournalLine:
    """분개 라인 (차변 XOR 대변)"""
    
    id: int
    journal_entry_id: int
    account_id: int
    debit: Decimal
    credit: Decimal
    description: str | None = None
    reconciliation_id: int | None = None
    line_order: int = 0
    
    @property
    def signed_amount(self) -> Decimal:
        """차변 +, 대변 -"""
        return self.debit - self.credit
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> JournalLine:
        return cls(
            id=row["id"],
            journal_entry_id=row["journal_entry_id"],
            account_id=row["account_id"],
            debit=Decimal(row["debit_amount"]),
            credit=Decimal(row["credit_amount"]),
            description=row["description"],
            reconciliation_id=row["reconciliation_id"],
            line_order=row["line_order"],
        )


@dataclass(frozen=True)
class JournalEntry:
    """분개
    
    하나의 거래에 대한 복식부기 기록.
    차변 합계 = 대변 합계 (허용 오차 ε 이내)
    """
    
    id: int
    entry_date: date
    description: str | None
    reference: str | None
    status: str
    event_id: int | None = None
    posted_at: str | None = None
    posted_by: str | None = None
    voided_at: str | None = None
    voided_by: str | None = None
    void_reason: str | None = None
    reversal_of_id: int | None = None
    lines: list[JournalLine] = field(default_factory=list)
    
    @property
    def total_debit(self) -> Decimal:
        return sum((line.debit for line in self.lines), ZERO)
    
    @property
    def total_credit(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)
    
    def is_balanced(self) -> bool:
        """|Σ차변 − Σ대변| ≤ ε"""
        return abs(self.total_debit - self.total_credit) <= EPSILON
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any], lines: list[JournalLine] | None = None) -> JournalEntry:
        return cls(
            id=row["id"],
            entry_date=date.fromisoformat(row["entry_date"]),
            description=row["description"],
            reference=row["reference"],
            status=row["status"],
            event_id=row["event_id"],
            posted_at=row["posted_at"],
            posted_by=row["posted_by"],
            voided_at=row["voided_at"],
            voided_by=row["voided_by"],
            void_reason=row["void_reason"],
            reversal_of_id=row["reversal_of_id"],
            lines=lines or [],
        )


@dataclass(frozen=True)
class DocumentLine:
    """송장/청구서/Credit Note 라인 입력"""
    
    description: str
    quantity: Decimal
    unit_price: Decimal
    account_id: int
    
    @property
    def amount(self) -> Decimal:
        return money(Decimal(self.quantity) * Decimal(self.unit_price))


@dataclass(frozen=True)
class Invoice:
    """매출 송장"""
    
    id: int
    invoice_number: str
    contact_id: int
    issue_date: date
    due_date: date
    status: str
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    event_id: int | None = None
    journal_entry_id: int | None = None
    notes: str | None = None
    
    @property
    def outstanding(self) -> Decimal:
        return self.total_amount - self.paid_amount
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Invoice:
        return cls(
            id=row["id"],
            invoice_number=row["invoice_number"],
            contact_id=row["contact_id"],
            issue_date=date.fromisoformat(row["issue_date"]),
            due_date=date.fromisoformat(row["due_date"]),
            status=row["status"],
            subtotal=Decimal(row["subtotal"]),
            tax_amount=Decimal(row["tax_amount"]),
            total_amount=Decimal(row["total_amount"]),
            paid_amount=Decimal(row["paid_amount"]),
            event_id=row["event_id"],
            journal_entry_id=row["journal_entry_id"],
            notes=row["notes"],
        )


@dataclass(frozen=True)
class Bill:
    """매입 청구서"""
    
    id: int
    bill_number: str
    vendor_id: int
    bill_date: date
    due_date: date
    status: str
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    event_id: int | None = None
    journal_entry_id: int | None = None
    notes: str | None = None
    
    @property
    def outstanding(self) -> Decimal:
        return self.total_amount - self.paid_amount
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Bill:
        return cls(
            id=row["id"],
            bill_number=row["bill_number"],
            vendor_id=row["vendor_id"],
            bill_date=date.fromisoformat(row["bill_date"]),
            due_date=date.fromisoformat(row["due_date"]),
            status=row["status"],
            subtotal=Decimal(row["subtotal"]),
            tax_amount=Decimal(row["tax_amount"]),
            total_amount=Decimal(row["total_amount"]),
            paid_amount=Decimal(row["paid_amount"]),
            event_id=row["event_id"],
            journal_entry_id=row["journal_entry_id"],
            notes=row["notes"],
        )


@dataclass(frozen=True)
class Payment:
    """고객 수금"""
    
    id: int
    payment_number: str
    contact_id: int
    payment_date: date
    amount: Decimal
    payment_method: str
    reference: str | None
    allocated_amount: Decimal
    status: str
    event_id: int | None = None
    journal_entry_id: int | None = None
    
    @property
    def unallocated(self) -> Decimal:
        return self.amount - self.allocated_amount
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Payment:
        return cls(
            id=row["id"],
            payment_number=row["payment_number"],
            contact_id=row["contact_id"],
            payment_date=date.fromisoformat(row["payment_date"]),
            amount=Decimal(row["amount"]),
            payment_method=row["payment_method"],
            reference=row["reference"],
            allocated_amount=Decimal(row["allocated_amount"]),
            status=row["status"],
            event_id=row["event_id"],
            journal_entry_id=row["journal_entry_id"],
        )


@dataclass(frozen=True)
class VendorPayment:
    """공급자 지급"""
    
    id: int
    payment_number: str
    vendor_id: int
    payment_date: date
    amount: Decimal
    payment_method: str
    reference: str | None
    allocated_amount: Decimal
    status: str
    event_id: int | None = None
    journal_entry_id: int | None = None
    
    @property
    def unallocated(self) -> Decimal:
        return self.amount - self.allocated_amount
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> VendorPayment:
        return cls(
            id=row["id"],
            payment_number=row["payment_number"],
            vendor_id=row["vendor_id"],
            payment_date=date.fromisoformat(row["payment_date"]),
            amount=Decimal(row["amount"]),
            payment_method=row["payment_method"],
            reference=row["reference"],
            allocated_amount=Decimal(row["allocated_amount"]),
            status=row["status"],
            event_id=row["event_id"],
            journal_entry_id=row["journal_entry_id"],
        )


@dataclass(frozen=True)
class Allocation:
    """결제 → 문서 배분 (Payment→Invoice 또는 VendorPayment→Bill)"""
    
    id: int
    payment_id: int
    document_id: int
    amount: Decimal
    allocation_method: str
    confidence_score: Decimal | None = None
    explanation: str | None = None
    allocation_date: date | None = None
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Allocation:
        confidence = row["confidence_score"]
        return cls(
            id=row["id"],
            payment_id=row["payment_id"],
            document_id=row["document_id"],
            amount=Decimal(row["amount"]),
            allocation_method=row["allocation_method"],
            confidence_score=Decimal(confidence) if confidence is not None else None,
            explanation=row["explanation"],
            allocation_date=to_date(row["allocation_date"]),
        )


@dataclass(frozen=True)
class CreditNote:
    """Credit Note (매출 차감)"""
    
    id: int
    credit_note_number: str
    contact_id: int
    issue_date: date
    status: str
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    applied_amount: Decimal
    reason: str | None = None
    event_id: int | None = None
    journal_entry_id: int | None = None
    
    @property
    def available(self) -> Decimal:
        return self.total_amount - self.applied_amount
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CreditNote:
        return cls(
            id=row["id"],
            credit_note_number=row["credit_note_number"],
            contact_id=row["contact_id"],
            issue_date=date.fromisoformat(row["issue_date"]),
            status=row["status"],
            subtotal=Decimal(row["subtotal"]),
            tax_amount=Decimal(row["tax_amount"]),
            total_amount=Decimal(row["total_amount"]),
            applied_amount=Decimal(row["applied_amount"]),
            reason=row["reason"],
            event_id=row["event_id"],
            journal_entry_id=row["journal_entry_id"],
        )


@dataclass(frozen=True)
class CreditNoteApplication:
    id: int
    credit_note_id: int
    invoice_id: int
    amount: Decimal
    application_date: date
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CreditNoteApplication:
        return cls(
            id=row["id"],
            credit_note_id=row["credit_note_id"],
            invoice_id=row["invoice_id"],
            amount=Decimal(row["amount"]),
            application_date=date.fromisoformat(row["application_date"]),
        )


@dataclass(frozen=True)
class CreditNoteRefund:
    id: int
    credit_note_id: int
    refund_number: str
    refund_date: date
    amount: Decimal
    payment_method: str
    journal_entry_id: int | None = None
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CreditNoteRefund:
        return cls(
            id=row["id"],
            credit_note_id=row["credit_note_id"],
            refund_number=row["refund_number"],
            refund_date=date.fromisoformat(row["refund_date"]),
            amount=Decimal(row["amount"]),
            payment_method=row["payment_method"],
            journal_entry_id=row["journal_entry_id"],
        )


@dataclass(frozen=True)
class FiscalYear:
    id: int
    year: int
    start_date: date
    end_date: date
    status: str
    closed_at: str | None = None
    closed_by: str | None = None
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> FiscalYear:
        return cls(
            id=row["id"],
            year=row["year"],
            start_date=date.fromisoformat(row["start_date"]),
            end_date=date.fromisoformat(row["end_date"]),
            status=row["status"],
            closed_at=row["closed_at"],
            closed_by=row["closed_by"],
        )


@dataclass(frozen=True)
class FiscalPeriod:
    id: int
    fiscal_year_id: int
    period_number: int
    period_name: str
    start_date: date
    end_date: date
    status: str
    closed_at: str | None = None
    closed_by: str | None = None
    
    def contains(self, value: date) -> bool:
        return self.start_date <= value <= self.end_date
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> FiscalPeriod:
        return cls(
            id=row["id"],
            fiscal_year_id=row["fiscal_year_id"],
            period_number=row["period_number"],
            period_name=row["period_name"],
            start_date=date.fromisoformat(row["start_date"]),
            end_date=date.fromisoformat(row["end_date"]),
            status=row["status"],
            closed_at=row["closed_at"],
            closed_by=row["closed_by"],
        )


@dataclass(frozen=True)
class BankReconciliation:
    """은행 대사 헤더"""
    
    id: int
    account_id: int
    statement_date: date
    statement_balance: Decimal
    opening_balance: Decimal
    book_balance: Decimal
    status: str
    completed_at: str | None = None
    completed_by: str | None = None
    notes: str | None = None
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> BankReconciliation:
        return cls(
            id=row["id"],
            account_id=row["account_id"],
            statement_date=date.fromisoformat(row["statement_date"]),
            statement_balance=Decimal(row["statement_balance"]),
            opening_balance=Decimal(row["opening_balance"]),
            book_balance=Decimal(row["book_balance"]),
            status=row["status"],
            completed_at=row["completed_at"],
            completed_by=row["completed_by"],
            notes=row["notes"],
        )


@dataclass(frozen=True)
class UnreconciledLine:
    """미대사 라인 (누적 잔액 포함)"""
    
    line_id: int
    journal_entry_id: int
    entry_date: date
    description: str | None
    reference: str | None
    debit: Decimal
    credit: Decimal
    running_balance: Decimal
    
    @property
    def signed_amount(self) -> Decimal:
        return self.debit - self.credit


@dataclass(frozen=True)
class ReconciliationSummary:
    account_id: int
    last_statement_date: date | None
    last_statement_balance: Decimal | None
    unreconciled_count: int


@dataclass(frozen=True)
class AuditLogEntry:
    """감사 로그 (추가 전용)"""
    
    id: int
    entity_type: str
    entity_id: int
    action: str
    actor: str
    changes: dict[str, Any] | None
    timestamp: str
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> AuditLogEntry:
        return cls(
            id=row["id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            action=row["action"],
            actor=row["user_id"],
            changes=_loads(row["changes"]),
            timestamp=row["timestamp"],
        )


@dataclass(frozen=True)
class AccountBalance:
    """계정별 잔액 (시산표 행)"""
    
    account_id: int
    code: str
    name: str
    type: AccountType
    debit_total: Decimal
    credit_total: Decimal
    
    @property
    def balance(self) -> Decimal:
        """계정 고유 방향 기준 잔액"""
        if self.type.is_debit_normal:
            return self.debit_total - self.credit_total
        return self.credit_total - self.debit_total


@dataclass(frozen=True)
class TrialBalance:
    as_of: date | None
    rows: list[AccountBalance]
    
    @property
    def total_debit(self) -> Decimal:
        return sum((row.debit_total for row in self.rows), ZERO)
    
    @property
    def total_credit(self) -> Decimal:
        return sum((row.credit_total for row in self.rows), ZERO)
    
    def is_balanced(self) -> bool:
        return abs(self.total_debit - self.total_credit) <= EPSILON
