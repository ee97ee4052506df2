"""
업무 문서 서비스

송장/청구서 발행, 수금/지급 기록, 송장/청구서 무효화.

흐름: 거래 이벤트 생성 → 문서 저장 → 분개 생성 및 전기 → (선택) 배분 → 감사 기록
모든 단계가 트랜잭션 하나 안에서 실행.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Sequence

from core.constants import Defaults
from core.ledger.allocation import AllocationEngine
from core.ledger.audit import AuditRecorder
from core.ledger.entry_builder import JournalEntryBuilder
from core.ledger.errors import (
    DocumentVoidError,
    InvalidAccountTypeError,
    ValidationError,
)
from core.ledger.models import Bill, DocumentLine, Invoice, Payment, VendorPayment, money
from core.ledger.posting import PostingEngine
from core.ledger.store import LedgerStore
from core.ledger.system_accounts import SystemAccounts
from core.ledger.types import (
    EPSILON,
    ZERO,
    AccountType,
    AuditAction,
    BillStatus,
    EntityType,
    InvoiceStatus,
    PaymentMethod,
    SystemAccountRole,
    TransactionEventType,
)

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)


class DocumentService:
    """업무 문서 서비스

    Args:
        db: SQLite 어댑터
        system_accounts: 역할 → 계정 매핑
        posting: 분개 전기 엔진 (None이면 생성)
        allocation: 배분 엔진 (None이면 생성)
        store: LedgerStore (None이면 생성)
        audit: 감사 기록기 (None이면 생성)

    사용 예시:
    ```python
    documents = DocumentService(db, system_accounts)
    invoice = await documents.create_invoice(
        "INV-001", contact_id=1,
        issue_date=date(2024, 3, 1), due_date=date(2024, 3, 31),
        lines=[DocumentLine("Consulting", Decimal("1"), Decimal("1000"), revenue_id)],
        tax_rate=Decimal("0.13"),
    )
    payment = await documents.record_payment(
        "PAY-001", 1, date(2024, 3, 15), Decimal("1130"), auto_allocate=True,
    )
    ```
    """

    def __init__(
        self,
        db: SQLiteAdapter,
        system_accounts: SystemAccounts,
        posting: PostingEngine | None = None,
        allocation: AllocationEngine | None = None,
        store: LedgerStore | None = None,
        audit: AuditRecorder | None = None,
    ):
        self.db = db
        self.system_accounts = system_accounts
        self.builder = JournalEntryBuilder(system_accounts)
        self.store = store or LedgerStore(db)
        self.audit = audit or AuditRecorder(db)
        self.posting = posting or PostingEngine(db, self.store, audit=self.audit)
        self.allocation = allocation or AllocationEngine(db, self.store, self.audit)

    # =========================================================================
    # 매출: 송장 / 수금
    # =========================================================================

    async def create_invoice(
        self,
        invoice_number: str,
        contact_id: int,
        issue_date: date,
        due_date: date,
        lines: Sequence[DocumentLine],
        tax_rate: Decimal = ZERO,
        notes: str | None = None,
        actor: str = Defaults.ACTOR,
    ) -> Invoice:
        """송장 발행 및 분개 전기

        DR 매출채권 (총액) / CR 수익 (라인별) / CR 매출세 예수금

        Args:
            tax_rate: 세율 (예: Decimal("0.13"))

        Raises:
            ValidationError: 기한 < 발행일, 라인 없음, 수량/단가 ≤ 0
            InvalidAccountTypeError: 수익 계정이 아닌 라인
            SystemAccountNotConfiguredError: 매출채권/예수금 역할 미설정
            ClosedPeriodError: 발행일이 마감 기간
        """
        _check_dates(issue_date, due_date, "issue date")
        subtotal, tax_amount, total = _totals(lines, tax_rate, "Invoice")

        async with self.db.transaction():
            await self._check_line_accounts(lines, AccountType.REVENUE)
            journal_lines = self.builder.invoice_lines(invoice_number, list(lines), tax_amount)

            event_id = await self.store.create_event(
                TransactionEventType.INVOICE_CREATED.value,
                actor,
                description=f"Invoice {invoice_number}",
                reference=invoice_number,
                metadata={"contact_id": contact_id, "total": total},
            )
            invoice_id = await self.store.insert_invoice(
                invoice_number,
                contact_id,
                issue_date,
                due_date,
                InvoiceStatus.SENT.value,
                subtotal,
                tax_amount,
                total,
                event_id,
                notes,
            )
            await self.store.insert_document_lines("invoice_line", "invoice_id", invoice_id, list(lines))

            entry_id = await self.posting.create_and_post(
                issue_date,
                f"Invoice {invoice_number}",
                journal_lines,
                reference=invoice_number,
                event_id=event_id,
                actor=actor,
            )
            await self.store.update_document("invoice", invoice_id, {"journal_entry_id": entry_id})
            await self.audit.record(
                EntityType.INVOICE,
                invoice_id,
                AuditAction.CREATE,
                actor,
                {"invoice_number": invoice_number, "total_amount": total, "journal_entry_id": entry_id},
            )

        logger.info(
            f"송장 발행: {invoice_number} ({total})",
            extra={"invoice_id": invoice_id, "entry_id": entry_id, "total": str(total)},
        )
        return await self.store.get_invoice(invoice_id)

    async def record_payment(
        self,
        payment_number: str,
        contact_id: int,
        payment_date: date,
        amount: Decimal,
        payment_method: PaymentMethod | str = PaymentMethod.TRANSFER,
        reference: str | None = None,
        deposit_account_id: int | None = None,
        auto_allocate: bool = False,
        actor: str = Defaults.ACTOR,
    ) -> Payment:
        """고객 수금 기록 및 분개 전기

        DR 입금 계정 / CR 매출채권

        Args:
            deposit_account_id: 입금 계정 (None이면 cash_default 역할)
            auto_allocate: True면 매칭 제안에 따라 미결 송장에 배분
        """
        amount = _positive(amount, "Payment amount")
        method = _payment_method(payment_method)

        async with self.db.transaction():
            deposit_id = await self._cash_account(deposit_account_id)
            journal_lines = self.builder.payment_received_lines(payment_number, amount, deposit_id)

            event_id = await self.store.create_event(
                TransactionEventType.PAYMENT_RECEIVED.value,
                actor,
                description=f"Payment {payment_number}",
                reference=reference or payment_number,
                metadata={"contact_id": contact_id, "amount": amount},
            )
            payment_id = await self.store.insert_payment(
                "payment",
                payment_number,
                "contact_id",
                contact_id,
                payment_date,
                amount,
                method,
                reference,
                event_id,
            )
            entry_id = await self.posting.create_and_post(
                payment_date,
                f"Payment {payment_number}",
                journal_lines,
                reference=payment_number,
                event_id=event_id,
                actor=actor,
            )
            await self.store.update_document("payment", payment_id, {"journal_entry_id": entry_id})
            await self.audit.record(
                EntityType.PAYMENT,
                payment_id,
                AuditAction.CREATE,
                actor,
                {"payment_number": payment_number, "amount": amount, "journal_entry_id": entry_id},
            )

            if auto_allocate:
                await self.allocation.auto_allocate(payment_id, actor)

        logger.info(
            f"수금 기록: {payment_number} ({amount})",
            extra={"payment_id": payment_id, "entry_id": entry_id, "amount": str(amount)},
        )
        return await self.store.get_payment(payment_id)

    async def void_invoice(
        self,
        invoice_id: int,
        reason: str,
        actor: str = Defaults.ACTOR,
    ) -> Invoice:
        """송장 무효화 (분개도 void)

        Raises:
            DocumentVoidError: 이미 void, 결제/Credit Note가 적용된 송장
        """
        async with self.db.transaction():
            invoice = await self.store.get_invoice(invoice_id)
            if invoice.status == InvoiceStatus.VOID.value:
                raise DocumentVoidError(f"Invoice {invoice.invoice_number} is already void")
            if invoice.paid_amount > EPSILON:
                raise DocumentVoidError(
                    f"Cannot void invoice {invoice.invoice_number} with {invoice.paid_amount} applied; "
                    f"remove allocations first"
                )

            if invoice.journal_entry_id is not None:
                await self.posting.void(invoice.journal_entry_id, reason, actor)
            await self.store.create_event(
                TransactionEventType.INVOICE_VOIDED.value,
                actor,
                description=f"Void invoice {invoice.invoice_number} - {reason}",
                reference=invoice.invoice_number,
                metadata={"invoice_id": invoice_id},
            )
            await self.store.update_document("invoice", invoice_id, {"status": InvoiceStatus.VOID.value})
            await self.audit.record(
                EntityType.INVOICE,
                invoice_id,
                AuditAction.VOID,
                actor,
                {"status": {"from": invoice.status, "to": InvoiceStatus.VOID.value}, "reason": reason},
            )

        logger.info(f"송장 무효화: {invoice.invoice_number} ({reason})", extra={"invoice_id": invoice_id})
        return await self.store.get_invoice(invoice_id)

    # =========================================================================
    # 매입: 청구서 / 지급
    # =========================================================================

    async def create_bill(
        self,
        bill_number: str,
        vendor_id: int,
        bill_date: date,
        due_date: date,
        lines: Sequence[DocumentLine],
        tax_rate: Decimal = ZERO,
        notes: str | None = None,
        actor: str = Defaults.ACTOR,
    ) -> Bill:
        """청구서 등록 및 분개 전기

        DR 비용 (라인별) / DR 매출세 예수금 / CR 매입채무 (총액)
        """
        _check_dates(bill_date, due_date, "bill date")
        subtotal, tax_amount, total = _totals(lines, tax_rate, "Bill")

        async with self.db.transaction():
            await self._check_line_accounts(lines, AccountType.EXPENSE)
            journal_lines = self.builder.bill_lines(bill_number, list(lines), tax_amount)

            event_id = await self.store.create_event(
                TransactionEventType.BILL_CREATED.value,
                actor,
                description=f"Bill {bill_number}",
                reference=bill_number,
                metadata={"vendor_id": vendor_id, "total": total},
            )
            bill_id = await self.store.insert_bill(
                bill_number,
                vendor_id,
                bill_date,
                due_date,
                BillStatus.PENDING.value,
                subtotal,
                tax_amount,
                total,
                event_id,
                notes,
            )
            await self.store.insert_document_lines("bill_line", "bill_id", bill_id, list(lines))

            entry_id = await self.posting.create_and_post(
                bill_date,
                f"Bill {bill_number}",
                journal_lines,
                reference=bill_number,
                event_id=event_id,
                actor=actor,
            )
            await self.store.update_document("bill", bill_id, {"journal_entry_id": entry_id})
            await self.audit.record(
                EntityType.BILL,
                bill_id,
                AuditAction.CREATE,
                actor,
                {"bill_number": bill_number, "total_amount": total, "journal_entry_id": entry_id},
            )

        logger.info(
            f"청구서 등록: {bill_number} ({total})",
            extra={"bill_id": bill_id, "entry_id": entry_id, "total": str(total)},
        )
        return await self.store.get_bill(bill_id)

    async def record_vendor_payment(
        self,
        payment_number: str,
        vendor_id: int,
        payment_date: date,
        amount: Decimal,
        payment_method: PaymentMethod | str = PaymentMethod.TRANSFER,
        reference: str | None = None,
        paid_from_account_id: int | None = None,
        auto_allocate: bool = False,
        actor: str = Defaults.ACTOR,
    ) -> VendorPayment:
        """공급자 지급 기록 및 분개 전기

        DR 매입채무 / CR 출금 계정

        Args:
            auto_allocate: True면 오래된 청구서부터 FIFO 배분
        """
        amount = _positive(amount, "Vendor payment amount")
        method = _payment_method(payment_method)

        async with self.db.transaction():
            paid_from_id = await self._cash_account(paid_from_account_id)
            journal_lines = self.builder.vendor_payment_lines(payment_number, amount, paid_from_id)

            event_id = await self.store.create_event(
                TransactionEventType.VENDOR_PAYMENT_MADE.value,
                actor,
                description=f"Vendor payment {payment_number}",
                reference=reference or payment_number,
                metadata={"vendor_id": vendor_id, "amount": amount},
            )
            payment_id = await self.store.insert_payment(
                "vendor_payment",
                payment_number,
                "vendor_id",
                vendor_id,
                payment_date,
                amount,
                method,
                reference,
                event_id,
            )
            entry_id = await self.posting.create_and_post(
                payment_date,
                f"Vendor payment {payment_number}",
                journal_lines,
                reference=payment_number,
                event_id=event_id,
                actor=actor,
            )
            await self.store.update_document("vendor_payment", payment_id, {"journal_entry_id": entry_id})
            await self.audit.record(
                EntityType.VENDOR_PAYMENT,
                payment_id,
                AuditAction.CREATE,
                actor,
                {"payment_number": payment_number, "amount": amount, "journal_entry_id": entry_id},
            )

            if auto_allocate:
                await self.allocation.auto_allocate_bills_fifo(payment_id, actor=actor)

        logger.info(
            f"지급 기록: {payment_number} ({amount})",
            extra={"vendor_payment_id": payment_id, "entry_id": entry_id, "amount": str(amount)},
        )
        return await self.store.get_vendor_payment(payment_id)

    async def void_bill(
        self,
        bill_id: int,
        reason: str,
        actor: str = Defaults.ACTOR,
    ) -> Bill:
        """청구서 무효화 (분개도 void)

        Raises:
            DocumentVoidError: 이미 void, 지급이 배분된 청구서
        """
        async with self.db.transaction():
            bill = await self.store.get_bill(bill_id)
            if bill.status == BillStatus.VOID.value:
                raise DocumentVoidError(f"Bill {bill.bill_number} is already void")
            if bill.paid_amount > EPSILON:
                raise DocumentVoidError(
                    f"Cannot void bill {bill.bill_number} with {bill.paid_amount} applied; "
                    f"remove allocations first"
                )

            if bill.journal_entry_id is not None:
                await self.posting.void(bill.journal_entry_id, reason, actor)
            await self.store.create_event(
                TransactionEventType.BILL_VOIDED.value,
                actor,
                description=f"Void bill {bill.bill_number} - {reason}",
                reference=bill.bill_number,
                metadata={"bill_id": bill_id},
            )
            await self.store.update_document("bill", bill_id, {"status": BillStatus.VOID.value})
            await self.audit.record(
                EntityType.BILL,
                bill_id,
                AuditAction.VOID,
                actor,
                {"status": {"from": bill.status, "to": BillStatus.VOID.value}, "reason": reason},
            )

        logger.info(f"청구서 무효화: {bill.bill_number} ({reason})", extra={"bill_id": bill_id})
        return await self.store.get_bill(bill_id)

    # =========================================================================
    # 검증
    # =========================================================================

    async def _check_line_accounts(
        self,
        lines: Sequence[DocumentLine],
        expected: AccountType,
    ) -> None:
        for line in lines:
            account = await self.store.get_account(line.account_id)
            if account.type != expected:
                raise InvalidAccountTypeError(line.account_id, account.type.value, (expected.value,))

    async def _cash_account(self, account_id: int | None) -> int:
        """입출금 계정 확인 (미지정 시 cash_default 역할, 자산 계정만 허용)"""
        if account_id is None:
            account_id = self.system_accounts.require(SystemAccountRole.CASH_DEFAULT)
        account = await self.store.get_account(account_id)
        if account.type != AccountType.ASSET:
            raise InvalidAccountTypeError(account_id, account.type.value, (AccountType.ASSET.value,))
        return account_id


def validate_document_lines(lines: Sequence[DocumentLine]) -> None:
    """문서 라인 검증 (라인 존재, 설명, 수량/단가 > 0)"""
    if not lines:
        raise ValidationError("Document must have at least one line")
    for line in lines:
        if not line.description or not line.description.strip():
            raise ValidationError("Line item description is required")
        if Decimal(line.quantity) <= ZERO:
            raise ValidationError(f'Line item "{line.description}" must have a quantity greater than 0')
        if Decimal(line.unit_price) <= ZERO:
            raise ValidationError(f'Line item "{line.description}" must have a unit price greater than 0')


def document_totals(
    lines: Sequence[DocumentLine],
    tax_rate: Decimal,
) -> tuple[Decimal, Decimal, Decimal]:
    """(소계, 세액, 총액) 계산. 세액은 소계 × 세율을 센트 반올림"""
    if isinstance(tax_rate, float):
        raise ValidationError("Tax rate must not be float; use Decimal or str")
    rate = Decimal(tax_rate)
    if rate < ZERO:
        raise ValidationError(f"Tax rate must not be negative, got {rate}")

    subtotal = sum((line.amount for line in lines), ZERO)
    tax_amount = money(subtotal * rate)
    return subtotal, tax_amount, subtotal + tax_amount


def _totals(
    lines: Sequence[DocumentLine],
    tax_rate: Decimal,
    label: str,
) -> tuple[Decimal, Decimal, Decimal]:
    validate_document_lines(lines)
    subtotal, tax_amount, total = document_totals(lines, tax_rate)
    if subtotal <= ZERO:
        raise ValidationError(f"{label} subtotal must be greater than 0")
    return subtotal, tax_amount, total


def _check_dates(start: date, due_date: date, label: str) -> None:
    if due_date < start:
        raise ValidationError(f"Due date {due_date} must be on or after {label} {start}")


def _positive(amount: Decimal, label: str) -> Decimal:
    value = money(amount)
    if value <= ZERO:
        raise ValidationError(f"{label} must be greater than 0, got {value}")
    return value


def _payment_method(method: PaymentMethod | str) -> str:
    try:
        return PaymentMethod(method).value
    except ValueError as e:
        raise ValidationError(f"Invalid payment method: {method}") from e
