"""AuditRecorder 통합 테스트"""

from datetime import date
from decimal import Decimal

import pytest

from core.ledger.entry_builder import JournalLineInput
from core.ledger.errors import ValidationError
from core.ledger.services import LedgerServices
from core.ledger.types import AuditAction, EntityType


class TestAuditRecorder:
    """감사 레코드 기록/조회"""

    @pytest.mark.asyncio
    async def test_record_serializes_decimal_and_date(self, services: LedgerServices) -> None:
        audit_id = await services.audit.record(
            EntityType.INVOICE,
            7,
            AuditAction.UPDATE,
            "alice",
            {"total_amount": Decimal("10.50"), "due_date": date(2024, 3, 31)},
        )

        records = await services.audit.list_records(EntityType.INVOICE, 7)

        assert [r.id for r in records] == [audit_id]
        assert records[0].action == "update"
        assert records[0].actor == "alice"
        assert records[0].changes == {"total_amount": "10.50", "due_date": "2024-03-31"}
        assert records[0].timestamp

    @pytest.mark.asyncio
    async def test_record_without_changes(self, services: LedgerServices) -> None:
        await services.audit.record("journal_entry", 1, "post", "bob")

        records = await services.audit.list_records(action=AuditAction.POST)

        assert records[0].changes is None
        assert records[0].entity_type == "journal_entry"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "entity_type,entity_id,action,actor",
        [
            ("", 1, "create", "alice"),
            ("invoice", None, "create", "alice"),
            ("invoice", 1, "create", ""),
            ("invoice", 1, "approve", "alice"),
        ],
    )
    async def test_invalid_record_rejected(
        self, services: LedgerServices, entity_type, entity_id, action, actor
    ) -> None:
        """필수 필드 누락/잘못된 action은 거부, 기록 없음"""
        with pytest.raises(ValidationError):
            await services.audit.record(entity_type, entity_id, action, actor)

        assert await services.audit.list_records() == []


class TestAuditTrail:
    """엔진 쓰기와 감사 기록의 원자성"""

    @pytest.mark.asyncio
    async def test_posting_lifecycle_is_audited(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        entry_id = await services.posting.create_draft_entry(
            date(2024, 3, 1),
            "Supplies",
            [
                JournalLineInput.debit_line(accounts["6100"], Decimal("40")),
                JournalLineInput.credit_line(accounts["1000"], Decimal("40")),
            ],
            actor="alice",
        )
        await services.posting.post(entry_id, "bob")
        await services.posting.void(entry_id, "Duplicate", "carol")

        records = await services.audit.list_records(EntityType.JOURNAL_ENTRY, entry_id)

        assert [(r.action, r.actor) for r in records] == [
            ("create", "alice"),
            ("post", "bob"),
            ("void", "carol"),
        ]

    @pytest.mark.asyncio
    async def test_failed_write_leaves_no_audit(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        """거부된 쓰기는 감사 레코드를 남기지 않음"""
        entry_id = await services.posting.create_draft_entry(
            date(2024, 3, 1),
            "Unbalanced",
            [
                JournalLineInput.debit_line(accounts["6100"], Decimal("40")),
                JournalLineInput.credit_line(accounts["1000"], Decimal("30")),
            ],
        )

        with pytest.raises(ValidationError):
            await services.posting.post(entry_id)

        assert await services.audit.list_records(EntityType.JOURNAL_ENTRY, entry_id, AuditAction.POST) == []
