"""
Credit Note 서비스

Credit Note 발행, 송장 적용, 현금 환불, 무효화.
applied_amount는 적용액 + 환불액 합계에서 재계산하는 파생 값.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Sequence

from core.constants import Defaults
from core.ledger.allocation import AllocationEngine, derive_status
from core.ledger.audit import AuditRecorder
from core.ledger.documents import document_totals, validate_document_lines
from core.ledger.entry_builder import JournalEntryBuilder
from core.ledger.errors import (
    CreditNoteOverappliedError,
    DocumentVoidError,
    InvalidAccountTypeError,
    InvoiceOverallocatedError,
    ValidationError,
)
from core.ledger.models import (
    CreditNote,
    CreditNoteApplication,
    CreditNoteRefund,
    DocumentLine,
    money,
)
from core.ledger.posting import PostingEngine
from core.ledger.store import LedgerStore
from core.ledger.system_accounts import SystemAccounts
from core.ledger.types import (
    EPSILON,
    ZERO,
    AccountType,
    AuditAction,
    CreditNoteStatus,
    EntityType,
    InvoiceStatus,
    PaymentMethod,
    TransactionEventType,
)

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)


class CreditNoteService:
    """Credit Note 서비스

    Args:
        db: SQLite 어댑터
        system_accounts: 역할 → 계정 매핑
        posting: 분개 전기 엔진 (None이면 생성)
        allocation: 배분 엔진 (송장 paid_amount 재계산용, None이면 생성)
        store: LedgerStore (None이면 생성)
        audit: 감사 기록기 (None이면 생성)
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
        self.builder = JournalEntryBuilder(system_accounts)
        self.store = store or LedgerStore(db)
        self.audit = audit or AuditRecorder(db)
        self.posting = posting or PostingEngine(db, self.store, audit=self.audit)
        self.allocation = allocation or AllocationEngine(db, self.store, self.audit)

    async def create_credit_note(
        self,
        credit_note_number: str,
        contact_id: int,
        issue_date: date,
        lines: Sequence[DocumentLine],
        tax_rate: Decimal = ZERO,
        reason: str | None = None,
        actor: str = Defaults.ACTOR,
    ) -> CreditNote:
        """Credit Note 발행 및 분개 전기

        DR 수익 (라인별) / DR 매출세 예수금 / CR 매출채권 (총액)

        Raises:
            ValidationError: 라인 없음, 수량/단가 ≤ 0
            InvalidAccountTypeError: 수익 계정이 아닌 라인
        """
        validate_document_lines(lines)
        subtotal, tax_amount, total = document_totals(lines, tax_rate)

        async with self.db.transaction():
            for line in lines:
                account = await self.store.get_account(line.account_id)
                if account.type != AccountType.REVENUE:
                    raise InvalidAccountTypeError(
                        line.account_id, account.type.value, (AccountType.REVENUE.value,)
                    )
            journal_lines = self.builder.credit_note_lines(credit_note_number, list(lines), tax_amount)

            event_id = await self.store.create_event(
                TransactionEventType.CREDIT_NOTE_CREATED.value,
                actor,
                description=f"Credit note {credit_note_number}",
                reference=credit_note_number,
                metadata={"contact_id": contact_id, "total": total},
            )
            credit_note_id = await self.store.insert_credit_note(
                credit_note_number,
                contact_id,
                issue_date,
                CreditNoteStatus.ISSUED.value,
                subtotal,
                tax_amount,
                total,
                reason,
                event_id,
            )
            await self.store.insert_document_lines(
                "credit_note_line", "credit_note_id", credit_note_id, list(lines)
            )

            entry_id = await self.posting.create_and_post(
                issue_date,
                f"Credit note {credit_note_number}",
                journal_lines,
                reference=credit_note_number,
                event_id=event_id,
                actor=actor,
            )
            await self.store.update_document("credit_note", credit_note_id, {"journal_entry_id": entry_id})
            await self.audit.record(
                EntityType.CREDIT_NOTE,
                credit_note_id,
                AuditAction.CREATE,
                actor,
                {"credit_note_number": credit_note_number, "total_amount": total, "journal_entry_id": entry_id},
            )

        logger.info(
            f"Credit Note 발행: {credit_note_number} ({total})",
            extra={"credit_note_id": credit_note_id, "total": str(total)},
        )
        return await self.store.get_credit_note(credit_note_id)

    async def apply_credit_note(
        self,
        credit_note_id: int,
        invoice_id: int,
        amount: Decimal,
        application_date: date | None = None,
        actor: str = Defaults.ACTOR,
    ) -> CreditNoteApplication:
        """Credit Note를 송장에 적용

        송장 paid_amount가 적용액만큼 증가하고 상태를 다시 파생.

        Raises:
            ValidationError: amount ≤ 0, 거래처 불일치
            DocumentVoidError: void Credit Note 또는 void 송장
            CreditNoteOverappliedError: Credit Note 잔액 초과
            InvoiceOverallocatedError: 송장 미결액 초과
        """
        amount = money(amount)
        if amount <= ZERO:
            raise ValidationError(f"Credit note application amount must be greater than 0, got {amount}")

        async with self.db.transaction():
            credit_note = await self.store.get_credit_note(credit_note_id)
            invoice = await self.store.get_invoice(invoice_id)

            if credit_note.status == CreditNoteStatus.VOID.value:
                raise DocumentVoidError(f"Cannot apply void credit note {credit_note.credit_note_number}")
            if invoice.status == InvoiceStatus.VOID.value:
                raise DocumentVoidError(f"Cannot apply credit note to void invoice {invoice.invoice_number}")
            if credit_note.contact_id != invoice.contact_id:
                raise ValidationError(
                    f"Credit note {credit_note.credit_note_number} and invoice "
                    f"{invoice.invoice_number} belong to different contacts"
                )

            used = await self._credit_used(credit_note_id)
            available = credit_note.total_amount - used
            if amount > available + EPSILON:
                logger.warning(
                    f"Credit Note 초과 적용 거부: {credit_note.credit_note_number} "
                    f"(available {available}, requested {amount})",
                )
                raise CreditNoteOverappliedError(credit_note_id, available, amount)

            settled = await self._invoice_settled(invoice_id)
            if settled + amount > invoice.total_amount + EPSILON:
                logger.warning(
                    f"송장 초과 적용 거부: {invoice.invoice_number} "
                    f"(total {invoice.total_amount}, settled {settled}, requested {amount})",
                )
                raise InvoiceOverallocatedError(invoice_id, invoice.total_amount, settled, amount)

            applied_on = application_date or date.today()
            await self.store.create_event(
                TransactionEventType.CREDIT_NOTE_APPLIED.value,
                actor,
                description=(
                    f"Apply credit note {credit_note.credit_note_number} "
                    f"to invoice {invoice.invoice_number}"
                ),
                reference=f"{credit_note.credit_note_number} -> {invoice.invoice_number}",
                metadata={"credit_note_id": credit_note_id, "invoice_id": invoice_id, "amount": amount},
            )
            application_id = await self.db.insert(
                """
                INSERT INTO credit_note_application (credit_note_id, invoice_id, amount, application_date)
                VALUES (?, ?, ?, ?)
                """,
                (credit_note_id, invoice_id, str(amount), applied_on.isoformat()),
            )
            await self.audit.record(
                EntityType.CREDIT_NOTE_APPLICATION,
                application_id,
                AuditAction.CREATE,
                actor,
                {"credit_note_id": credit_note_id, "invoice_id": invoice_id, "amount": amount},
            )

            await self._refresh(credit_note_id, actor)
            await self.allocation.refresh_invoice(invoice_id, actor)

        logger.info(
            f"Credit Note 적용: {credit_note.credit_note_number} → {invoice.invoice_number} ({amount})",
            extra={"credit_note_id": credit_note_id, "invoice_id": invoice_id, "amount": str(amount)},
        )
        row = await self.db.fetchone(
            "SELECT * FROM credit_note_application WHERE id = ?", (application_id,)
        )
        return CreditNoteApplication.from_row(row)

    async def refund_credit_note(
        self,
        credit_note_id: int,
        refund_number: str,
        amount: Decimal,
        payment_method: PaymentMethod | str = PaymentMethod.TRANSFER,
        refund_date: date | None = None,
        actor: str = Defaults.ACTOR,
    ) -> CreditNoteRefund:
        """Credit Note 잔액 현금 환불

        DR 매출채권 / CR 현금 (cash_default)

        Raises:
            DocumentVoidError: void Credit Note
            CreditNoteOverappliedError: Credit Note 잔액 초과
        """
        amount = money(amount)
        if amount <= ZERO:
            raise ValidationError(f"Refund amount must be greater than 0, got {amount}")
        try:
            method = PaymentMethod(payment_method).value
        except ValueError as e:
            raise ValidationError(f"Invalid payment method: {payment_method}") from e

        async with self.db.transaction():
            credit_note = await self.store.get_credit_note(credit_note_id)
            if credit_note.status == CreditNoteStatus.VOID.value:
                raise DocumentVoidError(f"Cannot refund void credit note {credit_note.credit_note_number}")

            used = await self._credit_used(credit_note_id)
            available = credit_note.total_amount - used
            if amount > available + EPSILON:
                raise CreditNoteOverappliedError(credit_note_id, available, amount)

            refunded_on = refund_date or date.today()
            journal_lines = self.builder.credit_note_refund_lines(refund_number, amount)
            event_id = await self.store.create_event(
                TransactionEventType.CREDIT_NOTE_REFUNDED.value,
                actor,
                description=f"Refund credit note {credit_note.credit_note_number}",
                reference=refund_number,
                metadata={"credit_note_id": credit_note_id, "amount": amount},
            )
            entry_id = await self.posting.create_and_post(
                refunded_on,
                f"Refund credit note {credit_note.credit_note_number}",
                journal_lines,
                reference=refund_number,
                event_id=event_id,
                actor=actor,
            )
            refund_id = await self.db.insert(
                """
                INSERT INTO credit_note_refund (
                    credit_note_id, refund_number, refund_date, amount, payment_method, journal_entry_id
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (credit_note_id, refund_number, refunded_on.isoformat(), str(amount), method, entry_id),
            )
            await self.audit.record(
                EntityType.CREDIT_NOTE_REFUND,
                refund_id,
                AuditAction.CREATE,
                actor,
                {"credit_note_id": credit_note_id, "amount": amount, "journal_entry_id": entry_id},
            )
            await self._refresh(credit_note_id, actor)

        logger.info(
            f"Credit Note 환불: {credit_note.credit_note_number} ({amount})",
            extra={"credit_note_id": credit_note_id, "entry_id": entry_id, "amount": str(amount)},
        )
        row = await self.db.fetchone("SELECT * FROM credit_note_refund WHERE id = ?", (refund_id,))
        return CreditNoteRefund.from_row(row)

    async def void_credit_note(
        self,
        credit_note_id: int,
        reason: str,
        actor: str = Defaults.ACTOR,
    ) -> CreditNote:
        """Credit Note 무효화 (분개도 void)

        Raises:
            DocumentVoidError: 이미 void, 적용/환불된 Credit Note
        """
        async with self.db.transaction():
            credit_note = await self.store.get_credit_note(credit_note_id)
            if credit_note.status == CreditNoteStatus.VOID.value:
                raise DocumentVoidError(f"Credit note {credit_note.credit_note_number} is already void")
            if await self._credit_used(credit_note_id) > ZERO:
                raise DocumentVoidError(
                    f"Cannot void credit note {credit_note.credit_note_number} that has been applied; "
                    f"reverse the applications first"
                )

            if credit_note.journal_entry_id is not None:
                await self.posting.void(credit_note.journal_entry_id, reason, actor)
            await self.store.create_event(
                TransactionEventType.CREDIT_NOTE_VOIDED.value,
                actor,
                description=f"Void credit note {credit_note.credit_note_number} - {reason}",
                reference=credit_note.credit_note_number,
                metadata={"credit_note_id": credit_note_id},
            )
            await self.store.update_document(
                "credit_note", credit_note_id, {"status": CreditNoteStatus.VOID.value}
            )
            await self.audit.record(
                EntityType.CREDIT_NOTE,
                credit_note_id,
                AuditAction.VOID,
                actor,
                {"status": {"from": credit_note.status, "to": CreditNoteStatus.VOID.value}, "reason": reason},
            )

        logger.info(f"Credit Note 무효화: {credit_note.credit_note_number} ({reason})")
        return await self.store.get_credit_note(credit_note_id)

    async def list_applications(
        self,
        credit_note_id: int | None = None,
        invoice_id: int | None = None,
    ) -> list[CreditNoteApplication]:
        sql = "SELECT * FROM credit_note_application WHERE 1=1"
        params: list[Any] = []
        if credit_note_id is not None:
            sql += " AND credit_note_id = ?"
            params.append(credit_note_id)
        if invoice_id is not None:
            sql += " AND invoice_id = ?"
            params.append(invoice_id)
        rows = await self.db.fetchall(sql + " ORDER BY id", tuple(params))
        return [CreditNoteApplication.from_row(row) for row in rows]

    async def list_refunds(self, credit_note_id: int) -> list[CreditNoteRefund]:
        rows = await self.db.fetchall(
            "SELECT * FROM credit_note_refund WHERE credit_note_id = ? ORDER BY id",
            (credit_note_id,),
        )
        return [CreditNoteRefund.from_row(row) for row in rows]

    # =========================================================================
    # 파생 값
    # =========================================================================

    async def _refresh(self, credit_note_id: int, actor: str) -> None:
        """applied_amount/status 재계산 후 저장"""
        credit_note = await self.store.get_credit_note(credit_note_id)
        used = await self._credit_used(credit_note_id)
        status = derive_status(
            credit_note.total_amount,
            used,
            credit_note.status,
            CreditNoteStatus.APPLIED.value,
            CreditNoteStatus.PARTIAL.value,
            CreditNoteStatus.ISSUED.value,
        )
        await self.store.update_document(
            "credit_note", credit_note_id, {"applied_amount": used, "status": status}
        )
        await self.audit.record(
            EntityType.CREDIT_NOTE,
            credit_note_id,
            AuditAction.UPDATE,
            actor,
            {
                "applied_amount": {"from": credit_note.applied_amount, "to": used},
                "status": {"from": credit_note.status, "to": status},
            },
        )

    async def _credit_used(self, credit_note_id: int) -> Decimal:
        """적용액 + 환불액"""
        total = ZERO
        for table in ("credit_note_application", "credit_note_refund"):
            rows = await self.db.fetchall(
                f"SELECT amount FROM {table} WHERE credit_note_id = ?", (credit_note_id,)
            )
            total += sum((Decimal(row[0]) for row in rows), ZERO)
        return total

    async def _invoice_settled(self, invoice_id: int) -> Decimal:
        """결제 배분액 + Credit Note 적용액"""
        total = ZERO
        for table in ("allocation", "credit_note_application"):
            rows = await self.db.fetchall(
                f"SELECT amount FROM {table} WHERE invoice_id = ?", (invoice_id,)
            )
            total += sum((Decimal(row[0]) for row in rows), ZERO)
        return total
