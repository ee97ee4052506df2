"""
배분 엔진

결제를 송장에(또는 공급자 지급을 청구서에) 배분.
양쪽 잔액을 초과하지 않도록 검증하고, 배분 합계에서 문서 상태를 파생.

파생 값(allocated_amount, paid_amount)은 쓰기 경로 안에서 명시적으로 재계산:
현재 합계 조회 → 검증 → 쓰기 → 재계산 후 저장.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Sequence

from core.constants import Defaults
from core.ledger.audit import AuditRecorder
from core.ledger.errors import (
    AllocationExceedsNewTotalError,
    DocumentNotFoundError,
    DocumentVoidError,
    InvoiceOverallocatedError,
    PaymentOverallocatedError,
    ValidationError,
)
from core.ledger.matching import suggest_allocations
from core.ledger.models import Allocation, money
from core.ledger.store import LedgerStore
from core.ledger.types import (
    EPSILON,
    ZERO,
    AllocationMethod,
    AuditAction,
    BillStatus,
    EntityType,
    InvoiceStatus,
    PaymentStatus,
    VendorPaymentStatus,
)

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)


def derive_status(
    target: Decimal,
    cumulative: Decimal,
    prior_status: str,
    settled: str,
    partial: str,
    unsettled: str,
    epsilon: Decimal = EPSILON,
) -> str:
    """배분 합계로부터 문서 상태 파생 (순수 함수)
    
    - void 문서는 void 유지
    - cumulative ≥ target − ε → settled (allocated / paid)
    - 0 < cumulative < target − ε → partial
    - 그 외: 이전 상태 유지 (배분으로 얻은 상태였다면 unsettled로 복귀)
    
    Args:
        target: 목표 금액 (payment.amount / invoice.total_amount)
        cumulative: 누적 배분액
        prior_status: 현재 상태
        settled: 완납 상태 이름
        partial: 부분 배분 상태 이름
        unsettled: 배분 전 기본 상태 이름
    """
    if prior_status == "void":
        return prior_status
    if cumulative > ZERO and cumulative >= target - epsilon:
        return settled
    if cumulative > ZERO:
        return partial
    if prior_status in (settled, partial):
        return unsettled
    return prior_status


@dataclass(frozen=True)
class AllocationSide:
    """결제 ↔ 문서 배분 관계 정의
    
    Payment → Invoice 와 VendorPayment → Bill 이 같은 규칙을 공유.
    """
    
    payment_table: str
    payment_party_column: str
    payment_label: str
    payment_entity: EntityType
    payment_statuses: tuple[str, str, str]  # (settled, partial, unsettled)
    
    document_table: str
    document_party_column: str
    document_date_column: str
    document_label: str
    document_entity: EntityType
    document_statuses: tuple[str, str, str]
    
    link_table: str
    link_payment_column: str
    link_document_column: str
    link_entity: EntityType
    
    # 송장은 Credit Note 적용액도 paid_amount에 포함
    includes_credit_notes: bool = False


INVOICE_SIDE = AllocationSide(
    payment_table="payment",
    payment_party_column="contact_id",
    payment_label="Payment",
    payment_entity=EntityType.PAYMENT,
    payment_statuses=(
        PaymentStatus.ALLOCATED.value,
        PaymentStatus.PARTIAL.value,
        PaymentStatus.PENDING.value,
    ),
    document_table="invoice",
    document_party_column="contact_id",
    document_date_column="issue_date",
    document_label="Invoice",
    document_entity=EntityType.INVOICE,
    document_statuses=(
        InvoiceStatus.PAID.value,
        InvoiceStatus.PARTIAL.value,
        InvoiceStatus.SENT.value,
    ),
    link_table="allocation",
    link_payment_column="payment_id",
    link_document_column="invoice_id",
    link_entity=EntityType.ALLOCATION,
    includes_credit_notes=True,
)

BILL_SIDE = AllocationSide(
    payment_table="vendor_payment",
    payment_party_column="vendor_id",
    payment_label="Vendor payment",
    payment_entity=EntityType.VENDOR_PAYMENT,
    payment_statuses=(
        VendorPaymentStatus.ALLOCATED.value,
        VendorPaymentStatus.PARTIAL.value,
        VendorPaymentStatus.PENDING.value,
    ),
    document_table="bill",
    document_party_column="vendor_id",
    document_date_column="bill_date",
    document_label="Bill",
    document_entity=EntityType.BILL,
    document_statuses=(
        BillStatus.PAID.value,
        BillStatus.PARTIAL.value,
        BillStatus.PENDING.value,
    ),
    link_table="bill_allocation",
    link_payment_column="vendor_payment_id",
    link_document_column="bill_id",
    link_entity=EntityType.BILL_ALLOCATION,
)


class AllocationEngine:
    """배분 엔진
    
    Args:
        db: SQLite 어댑터
        store: LedgerStore (None이면 생성)
        audit: 감사 기록기 (None이면 생성)
    """
    
    def __init__(
        self,
        db: SQLiteAdapter,
        store: LedgerStore | None = None,
        audit: AuditRecorder | None = None,
    ):
        self.db = db
        self.store = store or LedgerStore(db)
        self.audit = audit or AuditRecorder(db)
    
    # =========================================================================
    # Payment → Invoice
    # =========================================================================
    
    async def allocate(
        self,
        payment_id: int,
        invoice_id: int,
        amount: Decimal,
        method: AllocationMethod | str = AllocationMethod.MANUAL,
        confidence: Decimal | None = None,
        explanation: str | None = None,
        actor: str = Defaults.ACTOR,
    ) -> Allocation:
        """결제를 송장에 배분
        
        Raises:
            ValidationError: amount ≤ 0, 거래처 불일치
            PaymentOverallocatedError: 결제 금액 초과
            InvoiceOverallocatedError: 송장 총액 초과
            DocumentVoidError: void 결제/송장
        """
        return await self._allocate(
            INVOICE_SIDE, payment_id, invoice_id, amount, method, confidence, explanation, actor
        )
    
    async def deallocate(self, allocation_id: int, actor: str = Defaults.ACTOR) -> None:
        """배분 삭제 후 양쪽 파생 값 재계산"""
        await self._deallocate(INVOICE_SIDE, allocation_id, actor)
    
    async def auto_allocate_fifo(
        self,
        payment_id: int,
        candidate_invoices: Sequence[Any] | None = None,
        amount: Decimal | None = None,
        actor: str = Defaults.ACTOR,
    ) -> list[Allocation]:
        """FIFO 자동 배분
        
        발행일 오름차순(동일 시 id 오름차순)으로 가장 오래된 송장부터
        min(남은 결제액, 송장 미결액)씩 배분. 남은 금액은 미배분으로 둠.
        
        Args:
            payment_id: 결제 ID
            candidate_invoices: 후보 송장 (Invoice 또는 id, None이면 같은 거래처의 미결 송장)
            amount: 배분할 금액 (None이면 결제의 미배분 잔액 전체)
        """
        return await self._auto_allocate_fifo(
            INVOICE_SIDE, payment_id, candidate_invoices, amount, actor
        )
    
    async def auto_allocate(
        self,
        payment_id: int,
        actor: str = Defaults.ACTOR,
    ) -> list[Allocation]:
        """매칭 제안(참조번호 → 금액 근사 → FIFO)에 따라 자동 배분"""
        async with self.db.transaction():
            payment = await self.store.get_payment(payment_id)
            open_invoices = await self.store.list_open_invoices(payment.contact_id)
            suggestions = suggest_allocations(payment, open_invoices)
            
            allocations = []
            for suggestion in suggestions:
                allocations.append(
                    await self.allocate(
                        payment_id,
                        suggestion.invoice_id,
                        suggestion.amount,
                        method=suggestion.method,
                        confidence=suggestion.confidence,
                        explanation=suggestion.explanation,
                        actor=actor,
                    )
                )
        return allocations
    
    async def update_payment_amount(
        self,
        payment_id: int,
        new_amount: Decimal,
        actor: str = Defaults.ACTOR,
    ) -> None:
        """결제 금액 변경
        
        Raises:
            AllocationExceedsNewTotalError: 기배분액보다 작은 금액
        """
        await self._update_payment_amount(INVOICE_SIDE, payment_id, new_amount, actor)
    
    async def update_invoice_total(
        self,
        invoice_id: int,
        new_total: Decimal,
        actor: str = Defaults.ACTOR,
    ) -> None:
        """송장 총액 변경
        
        Raises:
            AllocationExceedsNewTotalError: 기배분액(결제 + Credit Note)보다 작은 금액
        """
        await self._update_document_total(INVOICE_SIDE, invoice_id, new_total, actor)
    
    async def refresh_invoice(self, invoice_id: int, actor: str = Defaults.ACTOR) -> None:
        """송장 paid_amount/status 재계산 (Credit Note 적용 후 호출)"""
        await self._refresh_document(INVOICE_SIDE, invoice_id, actor)
    
    async def list_allocations(
        self,
        payment_id: int | None = None,
        invoice_id: int | None = None,
    ) -> list[Allocation]:
        return await self._list_allocations(INVOICE_SIDE, payment_id, invoice_id)
    
    async def get_allocation(self, allocation_id: int) -> Allocation:
        return await self._get_allocation(INVOICE_SIDE, allocation_id)
    
    # =========================================================================
    # VendorPayment → Bill
    # =========================================================================
    
    async def allocate_bill(
        self,
        vendor_payment_id: int,
        bill_id: int,
        amount: Decimal,
        method: AllocationMethod | str = AllocationMethod.MANUAL,
        actor: str = Defaults.ACTOR,
    ) -> Allocation:
        """공급자 지급을 청구서에 배분"""
        return await self._allocate(
            BILL_SIDE, vendor_payment_id, bill_id, amount, method, None, None, actor
        )
    
    async def deallocate_bill(self, allocation_id: int, actor: str = Defaults.ACTOR) -> None:
        await self._deallocate(BILL_SIDE, allocation_id, actor)
    
    async def auto_allocate_bills_fifo(
        self,
        vendor_payment_id: int,
        candidate_bills: Sequence[Any] | None = None,
        amount: Decimal | None = None,
        actor: str = Defaults.ACTOR,
    ) -> list[Allocation]:
        return await self._auto_allocate_fifo(
            BILL_SIDE, vendor_payment_id, candidate_bills, amount, actor
        )
    
    async def update_vendor_payment_amount(
        self,
        vendor_payment_id: int,
        new_amount: Decimal,
        actor: str = Defaults.ACTOR,
    ) -> None:
        await self._update_payment_amount(BILL_SIDE, vendor_payment_id, new_amount, actor)
    
    async def update_bill_total(
        self,
        bill_id: int,
        new_total: Decimal,
        actor: str = Defaults.ACTOR,
    ) -> None:
        await self._update_document_total(BILL_SIDE, bill_id, new_total, actor)
    
    async def list_bill_allocations(
        self,
        vendor_payment_id: int | None = None,
        bill_id: int | None = None,
    ) -> list[Allocation]:
        return await self._list_allocations(BILL_SIDE, vendor_payment_id, bill_id)
    
    # =========================================================================
    # 공통 구현
    # =========================================================================
    
    async def _allocate(
        self,
        side: AllocationSide,
        payment_id: int,
        document_id: int,
        amount: Decimal,
        method: AllocationMethod | str,
        confidence: Decimal | None,
        explanation: str | None,
        actor: str,
    ) -> Allocation:
        amount = money(amount)
        if amount <= ZERO:
            raise ValidationError(f"Allocation amount must be greater than 0, got {amount}")
        try:
            method_value = AllocationMethod(method).value
        except ValueError as e:
            raise ValidationError(f"Invalid allocation method: {method}") from e
        
        async with self.db.transaction():
            payment = await self._get_row(side.payment_table, side.payment_label, payment_id)
            document = await self._get_row(side.document_table, side.document_label, document_id)
            
            if payment["status"] == "void":
                raise DocumentVoidError(f"{side.payment_label} {payment_id} is void")
            if document["status"] == "void":
                raise DocumentVoidError(f"{side.document_label} {document_id} is void")
            if payment[side.payment_party_column] != document[side.document_party_column]:
                raise ValidationError(
                    f"{side.payment_label} {payment_id} and {side.document_label} {document_id} "
                    f"belong to different parties"
                )
            
            payment_amount = Decimal(payment["amount"])
            payment_allocated = await self._payment_allocated(side, payment_id)
            if payment_allocated + amount > payment_amount + EPSILON:
                logger.warning(
                    f"{side.payment_label} 초과 배분 거부: #{payment_id} "
                    f"(amount {payment_amount}, allocated {payment_allocated}, requested {amount})",
                )
                raise PaymentOverallocatedError(
                    payment_id, payment_amount, payment_allocated, amount, side.payment_label
                )
            
            document_total = Decimal(document["total_amount"])
            document_settled = await self._document_settled(side, document_id)
            if document_settled + amount > document_total + EPSILON:
                logger.warning(
                    f"{side.document_label} 초과 배분 거부: #{document_id} "
                    f"(total {document_total}, allocated {document_settled}, requested {amount})",
                )
                raise InvoiceOverallocatedError(
                    document_id, document_total, document_settled, amount, side.document_label
                )
            
            allocation_id = await self.db.insert(
                f"""
                INSERT INTO {side.link_table} (
                    {side.link_payment_column}, {side.link_document_column}, amount,
                    allocation_method, confidence_score, explanation, allocation_date
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    payment_id,
                    document_id,
                    str(amount),
                    method_value,
                    str(confidence) if confidence is not None else None,
                    explanation,
                    payment["payment_date"],
                ),
            )
            await self.audit.record(
                side.link_entity,
                allocation_id,
                AuditAction.CREATE,
                actor,
                {
                    side.link_payment_column: payment_id,
                    side.link_document_column: document_id,
                    "amount": amount,
                    "method": method_value,
                },
            )
            
            await self._refresh_payment(side, payment_id, actor)
            await self._refresh_document(side, document_id, actor)
        
        logger.info(
            f"배분: {side.payment_label} #{payment_id} → {side.document_label} #{document_id} "
            f"{amount} ({method_value})",
            extra={"allocation_id": allocation_id, "amount": str(amount)},
        )
        return await self._get_allocation(side, allocation_id)
    
    async def _deallocate(self, side: AllocationSide, allocation_id: int, actor: str) -> None:
        async with self.db.transaction():
            allocation = await self._get_allocation(side, allocation_id)
            
            await self.db.execute(f"DELETE FROM {side.link_table} WHERE id = ?", (allocation_id,))
            await self.audit.record(
                side.link_entity,
                allocation_id,
                AuditAction.DELETE,
                actor,
                {
                    side.link_payment_column: allocation.payment_id,
                    side.link_document_column: allocation.document_id,
                    "amount": allocation.amount,
                },
            )
            
            await self._refresh_payment(side, allocation.payment_id, actor)
            await self._refresh_document(side, allocation.document_id, actor)
        
        logger.info(
            f"배분 해제: #{allocation_id} ({allocation.amount})",
            extra={"allocation_id": allocation_id},
        )
    
    async def _auto_allocate_fifo(
        self,
        side: AllocationSide,
        payment_id: int,
        candidates: Sequence[Any] | None,
        amount: Decimal | None,
        actor: str,
    ) -> list[Allocation]:
        async with self.db.transaction():
            payment = await self._get_row(side.payment_table, side.payment_label, payment_id)
            payment_amount = Decimal(payment["amount"])
            payment_allocated = await self._payment_allocated(side, payment_id)
            available = payment_amount - payment_allocated
            
            if amount is None:
                remaining = available
            else:
                remaining = money(amount)
                if remaining <= ZERO:
                    raise ValidationError(f"Allocation amount must be greater than 0, got {remaining}")
                if remaining > available + EPSILON:
                    raise PaymentOverallocatedError(
                        payment_id, payment_amount, payment_allocated, remaining, side.payment_label
                    )
                remaining = min(remaining, available)
            
            if candidates is None:
                document_ids = await self._open_document_ids(side, payment[side.payment_party_column])
            else:
                document_ids = [c if isinstance(c, int) else c.id for c in candidates]
            
            # 최신 상태로 다시 읽어 오래된 순 정렬
            documents = [
                await self._get_row(side.document_table, side.document_label, document_id)
                for document_id in dict.fromkeys(document_ids)
            ]
            documents.sort(key=lambda row: (row[side.document_date_column], row["id"]))
            
            allocations: list[Allocation] = []
            for document in documents:
                if remaining <= ZERO:
                    break
                if document["status"] in ("void", "draft"):
                    continue
                
                settled = await self._document_settled(side, document["id"])
                outstanding = Decimal(document["total_amount"]) - settled
                if outstanding <= ZERO:
                    continue
                
                portion = min(remaining, outstanding)
                allocations.append(
                    await self._allocate(
                        side,
                        payment_id,
                        document["id"],
                        portion,
                        AllocationMethod.FIFO,
                        None,
                        "Oldest outstanding first",
                        actor,
                    )
                )
                remaining -= portion
        
        if remaining > ZERO:
            logger.info(f"FIFO 배분 후 미배분 잔액: {side.payment_label} #{payment_id} {remaining}")
        return allocations
    
    async def _update_payment_amount(
        self,
        side: AllocationSide,
        payment_id: int,
        new_amount: Decimal,
        actor: str,
    ) -> None:
        new_amount = money(new_amount)
        if new_amount <= ZERO:
            raise ValidationError(f"{side.payment_label} amount must be greater than 0")
        
        async with self.db.transaction():
            payment = await self._get_row(side.payment_table, side.payment_label, payment_id)
            allocated = await self._payment_allocated(side, payment_id)
            if allocated > new_amount + EPSILON:
                raise AllocationExceedsNewTotalError(
                    side.payment_label, payment_id, new_amount, allocated
                )
            
            await self.store.update_document(side.payment_table, payment_id, {"amount": new_amount})
            await self.audit.record(
                side.payment_entity,
                payment_id,
                AuditAction.UPDATE,
                actor,
                {"amount": {"from": payment["amount"], "to": new_amount}},
            )
            await self._refresh_payment(side, payment_id, actor)
    
    async def _update_document_total(
        self,
        side: AllocationSide,
        document_id: int,
        new_total: Decimal,
        actor: str,
    ) -> None:
        new_total = money(new_total)
        if new_total <= ZERO:
            raise ValidationError(f"{side.document_label} total must be greater than 0")
        
        async with self.db.transaction():
            document = await self._get_row(side.document_table, side.document_label, document_id)
            settled = await self._document_settled(side, document_id)
            if settled > new_total + EPSILON:
                raise AllocationExceedsNewTotalError(
                    side.document_label, document_id, new_total, settled
                )
            
            await self.store.update_document(
                side.document_table, document_id, {"total_amount": new_total}
            )
            await self.audit.record(
                side.document_entity,
                document_id,
                AuditAction.UPDATE,
                actor,
                {"total_amount": {"from": document["total_amount"], "to": new_total}},
            )
            await self._refresh_document(side, document_id, actor)
    
    async def _refresh_payment(self, side: AllocationSide, payment_id: int, actor: str) -> None:
        """allocated_amount/status 재계산 후 저장"""
        payment = await self._get_row(side.payment_table, side.payment_label, payment_id)
        allocated = await self._payment_allocated(side, payment_id)
        status = derive_status(
            Decimal(payment["amount"]), allocated, payment["status"], *side.payment_statuses
        )
        
        if Decimal(payment["allocated_amount"]) == allocated and payment["status"] == status:
            return
        
        await self.store.update_document(
            side.payment_table, payment_id, {"allocated_amount": allocated, "status": status}
        )
        await self.audit.record(
            side.payment_entity,
            payment_id,
            AuditAction.UPDATE,
            actor,
            {
                "allocated_amount": {"from": payment["allocated_amount"], "to": allocated},
                "status": {"from": payment["status"], "to": status},
            },
        )
    
    async def _refresh_document(self, side: AllocationSide, document_id: int, actor: str) -> None:
        """paid_amount/status 재계산 후 저장"""
        document = await self._get_row(side.document_table, side.document_label, document_id)
        settled = await self._document_settled(side, document_id)
        status = derive_status(
            Decimal(document["total_amount"]), settled, document["status"], *side.document_statuses
        )
        
        if Decimal(document["paid_amount"]) == settled and document["status"] == status:
            return
        
        await self.store.update_document(
            side.document_table, document_id, {"paid_amount": settled, "status": status}
        )
        await self.audit.record(
            side.document_entity,
            document_id,
            AuditAction.UPDATE,
            actor,
            {
                "paid_amount": {"from": document["paid_amount"], "to": settled},
                "status": {"from": document["status"], "to": status},
            },
        )
    
    async def _payment_allocated(self, side: AllocationSide, payment_id: int) -> Decimal:
        rows = await self.db.fetchall(
            f"SELECT amount FROM {side.link_table} WHERE {side.link_payment_column} = ?",
            (payment_id,),
        )
        return sum((Decimal(row[0]) for row in rows), ZERO)
    
    async def _document_settled(self, side: AllocationSide, document_id: int) -> Decimal:
        rows = await self.db.fetchall(
            f"SELECT amount FROM {side.link_table} WHERE {side.link_document_column} = ?",
            (document_id,),
        )
        total = sum((Decimal(row[0]) for row in rows), ZERO)
        
        if side.includes_credit_notes:
            rows = await self.db.fetchall(
                "SELECT amount FROM credit_note_application WHERE invoice_id = ?",
                (document_id,),
            )
            total += sum((Decimal(row[0]) for row in rows), ZERO)
        
        return total
    
    async def _open_document_ids(self, side: AllocationSide, party_id: int) -> list[int]:
        rows = await self.db.fetchall(
            f"""
            SELECT id FROM {side.document_table}
            WHERE {side.document_party_column} = ? AND status NOT IN ('draft', 'paid', 'void')
            ORDER BY {side.document_date_column}, id
            """,
            (party_id,),
        )
        return [row[0] for row in rows]
    
    async def _get_row(self, table: str, label: str, row_id: int) -> Any:
        row = await self.db.fetchone(f"SELECT * FROM {table} WHERE id = ?", (row_id,))
        if row is None:
            raise DocumentNotFoundError(label, row_id)
        return row
    
    async def _get_allocation(self, side: AllocationSide, allocation_id: int) -> Allocation:
        row = await self.db.fetchone(
            f"""
            SELECT id, {side.link_payment_column} AS payment_id, {side.link_document_column} AS document_id,
                   amount, allocation_method, confidence_score, explanation, allocation_date
            FROM {side.link_table} WHERE id = ?
            """,
            (allocation_id,),
        )
        if row is None:
            raise DocumentNotFoundError("Allocation", allocation_id)
        return Allocation.from_row(row)
    
    async def _list_allocations(
        self,
        side: AllocationSide,
        payment_id: int | None,
        document_id: int | None,
    ) -> list[Allocation]:
        sql = f"""
            SELECT id, {side.link_payment_column} AS payment_id, {side.link_document_column} AS document_id,
                   amount, allocation_method, confidence_score, explanation, allocation_date
            FROM {side.link_table} WHERE 1=1
        """
        params: list[Any] = []
        if payment_id is not None:
            sql += f" AND {side.link_payment_column} = ?"
            params.append(payment_id)
        if document_id is not None:
            sql += f" AND {side.link_document_column} = ?"
            params.append(document_id)
        sql += " ORDER BY id"
        
        rows = await self.db.fetchall(sql, tuple(params))
        return [Allocation.from_row(row) for row in rows]
