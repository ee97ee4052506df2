"""CreditNoteService 통합 테스트"""

from datetime import date
from decimal import Decimal

import pytest

from core.ledger.errors import (
    CreditNoteOverappliedError,
    DocumentVoidError,
    InvalidAccountTypeError,
    InvoiceOverallocatedError,
    ValidationError,
)
from core.ledger.models import DocumentLine
from core.ledger.services import LedgerServices
from core.ledger.types import AuditAction, EntityType, TransactionEventType

CUSTOMER = 1


async def _invoice(services: LedgerServices, accounts: dict[str, int], number: str = "INV-001"):
    return await services.documents.create_invoice(
        number,
        CUSTOMER,
        date(2024, 3, 1),
        date(2024, 3, 31),
        [DocumentLine("Consulting", Decimal("1"), Decimal("1000"), accounts["4000"])],
        tax_rate=Decimal("0.13"),
    )


async def _credit_note(
    services: LedgerServices,
    accounts: dict[str, int],
    amount: str = "100",
    contact_id: int = CUSTOMER,
):
    return await services.credit_notes.create_credit_note(
        "CN-001",
        contact_id,
        date(2024, 3, 5),
        [DocumentLine("Discount", Decimal("1"), Decimal(amount), accounts["4000"])],
        tax_rate=Decimal("0.13"),
        reason="Service credit",
    )


class TestCreateCreditNote:
    """Credit Note 발행"""

    @pytest.mark.asyncio
    async def test_credit_note_reverses_revenue(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        """DR 수익 100 / DR 예수금 13 / CR 매출채권 113"""
        await _invoice(services, accounts)

        credit_note = await _credit_note(services, accounts)

        assert credit_note.status == "issued"
        assert credit_note.total_amount == Decimal("113.00")
        assert credit_note.available == Decimal("113.00")
        assert await services.store.get_account_balance(accounts["1100"]) == Decimal("1017.00")
        assert await services.store.get_account_balance(accounts["4000"]) == Decimal("900.00")
        assert await services.store.get_account_balance(accounts["2220"]) == Decimal("117.00")

        entry = await services.store.get_entry(credit_note.journal_entry_id)
        assert entry.is_balanced()

    @pytest.mark.asyncio
    async def test_non_revenue_line_rejected(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        with pytest.raises(InvalidAccountTypeError):
            await services.credit_notes.create_credit_note(
                "CN-BAD",
                CUSTOMER,
                date(2024, 3, 5),
                [DocumentLine("Cash?", Decimal("1"), Decimal("10"), accounts["1000"])],
            )

    @pytest.mark.asyncio
    async def test_no_lines_rejected(self, services: LedgerServices) -> None:
        with pytest.raises(ValidationError):
            await services.credit_notes.create_credit_note("CN-EMPTY", CUSTOMER, date(2024, 3, 5), [])


class TestApplyCreditNote:
    """Credit Note 송장 적용"""

    @pytest.mark.asyncio
    async def test_apply_reduces_invoice_outstanding(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        invoice = await _invoice(services, accounts)
        credit_note = await _credit_note(services, accounts)
        entries_before = len(await services.store.list_entries())

        application = await services.credit_notes.apply_credit_note(
            credit_note.id, invoice.id, Decimal("113"), application_date=date(2024, 3, 6), actor="alice"
        )

        assert application.amount == Decimal("113.00")
        assert application.application_date == date(2024, 3, 6)

        invoice = await services.store.get_invoice(invoice.id)
        credit_note = await services.store.get_credit_note(credit_note.id)
        assert invoice.status == "partial"
        assert invoice.paid_amount == Decimal("113.00")
        assert invoice.outstanding == Decimal("1017.00")
        assert credit_note.status == "applied"
        assert credit_note.available == Decimal("0")

        # 적용은 분개를 만들지 않음
        assert len(await services.store.list_entries()) == entries_before
        events = await services.db.fetchall(
            "SELECT event_type FROM transaction_event WHERE event_type = ?",
            (TransactionEventType.CREDIT_NOTE_APPLIED.value,),
        )
        assert len(events) == 1

        records = await services.audit.list_records(
            EntityType.CREDIT_NOTE_APPLICATION, application.id, AuditAction.CREATE
        )
        assert records[0].actor == "alice"

    @pytest.mark.asyncio
    async def test_credit_and_payment_settle_invoice(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        """Credit Note + 결제 합계가 총액에 도달하면 paid"""
        invoice = await _invoice(services, accounts)
        credit_note = await _credit_note(services, accounts)
        await services.credit_notes.apply_credit_note(credit_note.id, invoice.id, Decimal("113"))
        payment = await services.documents.record_payment(
            "PAY-001", CUSTOMER, date(2024, 3, 20), Decimal("1017")
        )

        await services.allocation.allocate(payment.id, invoice.id, Decimal("1017"))

        assert (await services.store.get_invoice(invoice.id)).status == "paid"
        assert await services.store.get_account_balance(accounts["1100"]) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_payment_cannot_exceed_remaining_after_credit(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        invoice = await _invoice(services, accounts)
        credit_note = await _credit_note(services, accounts)
        await services.credit_notes.apply_credit_note(credit_note.id, invoice.id, Decimal("113"))
        payment = await services.documents.record_payment(
            "PAY-001", CUSTOMER, date(2024, 3, 20), Decimal("1130")
        )

        with pytest.raises(InvoiceOverallocatedError):
            await services.allocation.allocate(payment.id, invoice.id, Decimal("1130"))

    @pytest.mark.asyncio
    async def test_partial_application(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        invoice = await _invoice(services, accounts)
        credit_note = await _credit_note(services, accounts)

        await services.credit_notes.apply_credit_note(credit_note.id, invoice.id, Decimal("50"))

        credit_note = await services.store.get_credit_note(credit_note.id)
        assert credit_note.status == "partial"
        assert credit_note.available == Decimal("63.00")
        assert len(await services.credit_notes.list_applications(credit_note_id=credit_note.id)) == 1

    @pytest.mark.asyncio
    async def test_overapply_rejected(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        invoice = await _invoice(services, accounts)
        credit_note = await _credit_note(services, accounts)

        with pytest.raises(CreditNoteOverappliedError) as exc_info:
            await services.credit_notes.apply_credit_note(credit_note.id, invoice.id, Decimal("150"))

        assert exc_info.value.available == Decimal("113.00")
        assert (await services.store.get_invoice(invoice.id)).paid_amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_other_contact_rejected(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        invoice = await _invoice(services, accounts)
        credit_note = await _credit_note(services, accounts, contact_id=99)

        with pytest.raises(ValidationError, match="different contacts"):
            await services.credit_notes.apply_credit_note(credit_note.id, invoice.id, Decimal("10"))

    @pytest.mark.asyncio
    async def test_void_invoice_rejected(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        invoice = await _invoice(services, accounts)
        credit_note = await _credit_note(services, accounts)
        await services.documents.void_invoice(invoice.id, "Cancelled")

        with pytest.raises(DocumentVoidError):
            await services.credit_notes.apply_credit_note(credit_note.id, invoice.id, Decimal("10"))


class TestRefundCreditNote:
    """Credit Note 환불"""

    @pytest.mark.asyncio
    async def test_refund_posts_entry(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        """DR 매출채권 / CR 현금"""
        credit_note = await _credit_note(services, accounts)

        refund = await services.credit_notes.refund_credit_note(
            credit_note.id, "REF-001", Decimal("63"), refund_date=date(2024, 3, 10)
        )

        assert refund.amount == Decimal("63.00")
        entry = await services.store.get_entry(refund.journal_entry_id)
        assert entry.status == "posted"
        assert entry.entry_date == date(2024, 3, 10)
        assert await services.store.get_account_balance(accounts["1000"]) == Decimal("-63.00")

        credit_note = await services.store.get_credit_note(credit_note.id)
        assert credit_note.status == "partial"
        assert credit_note.applied_amount == Decimal("63.00")
        assert [r.refund_number for r in await services.credit_notes.list_refunds(credit_note.id)] == ["REF-001"]

    @pytest.mark.asyncio
    async def test_refund_and_apply_share_balance(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        """환불액도 잔액에서 차감"""
        invoice = await _invoice(services, accounts)
        credit_note = await _credit_note(services, accounts)
        await services.credit_notes.refund_credit_note(credit_note.id, "REF-001", Decimal("100"))

        with pytest.raises(CreditNoteOverappliedError):
            await services.credit_notes.apply_credit_note(credit_note.id, invoice.id, Decimal("20"))

        await services.credit_notes.apply_credit_note(credit_note.id, invoice.id, Decimal("13"))
        assert (await services.store.get_credit_note(credit_note.id)).status == "applied"

    @pytest.mark.asyncio
    async def test_invalid_refund_method(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        credit_note = await _credit_note(services, accounts)

        with pytest.raises(ValidationError):
            await services.credit_notes.refund_credit_note(
                credit_note.id, "REF-001", Decimal("10"), payment_method="crypto"
            )


class TestVoidCreditNote:
    """Credit Note 무효화"""

    @pytest.mark.asyncio
    async def test_void_unused(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        invoice = await _invoice(services, accounts)
        credit_note = await _credit_note(services, accounts)

        voided = await services.credit_notes.void_credit_note(credit_note.id, "Issued in error")

        assert voided.status == "void"
        assert (await services.store.get_entry(credit_note.journal_entry_id)).status == "void"
        assert await services.store.get_account_balance(accounts["1100"]) == Decimal("1130.00")

        with pytest.raises(DocumentVoidError):
            await services.credit_notes.apply_credit_note(credit_note.id, invoice.id, Decimal("1"))

    @pytest.mark.asyncio
    async def test_void_applied_rejected(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        invoice = await _invoice(services, accounts)
        credit_note = await _credit_note(services, accounts)
        await services.credit_notes.apply_credit_note(credit_note.id, invoice.id, Decimal("10"))

        with pytest.raises(DocumentVoidError, match="has been applied"):
            await services.credit_notes.void_credit_note(credit_note.id, "too late")

        assert (await services.store.get_credit_note(credit_note.id)).status == "partial"
