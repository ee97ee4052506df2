"""PostingEngine 통합 테스트

draft → posted → void 생명주기, 차대 균형, 불변성
"""

from datetime import date
from decimal import Decimal

import pytest

from core.ledger.entry_builder import JournalLineInput
from core.ledger.errors import (
    AlreadyPostedError,
    EntryNotFoundError,
    ImmutableEntryError,
    InvalidStatusError,
    UnbalancedEntryError,
    ValidationError,
)
from core.ledger.services import LedgerServices
from core.ledger.types import AuditAction, EntityType

ENTRY_DATE = date(2024, 3, 1)


async def _rent_entry(services: LedgerServices, accounts: dict[str, int], amount: str = "1000") -> int:
    return await services.posting.create_draft_entry(
        ENTRY_DATE,
        "Office rent",
        [
            JournalLineInput.debit_line(accounts["6000"], Decimal(amount)),
            JournalLineInput.credit_line(accounts["1000"], Decimal(amount)),
        ],
        actor="alice",
    )


class TestCreateDraft:
    """draft 분개 생성 테스트"""

    @pytest.mark.asyncio
    async def test_create_draft(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        entry_id = await _rent_entry(services, accounts)

        entry = await services.store.get_entry(entry_id)
        assert entry.status == "draft"
        assert entry.entry_date == ENTRY_DATE
        assert len(entry.lines) == 2
        assert entry.lines[0].debit == Decimal("1000.00")

        records = await services.audit.list_records(EntityType.JOURNAL_ENTRY, entry_id)
        assert [r.action for r in records] == ["create"]
        assert records[0].actor == "alice"

    @pytest.mark.asyncio
    async def test_draft_does_not_affect_balances(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        """draft는 잔액 집계에서 제외"""
        await _rent_entry(services, accounts)

        assert await services.store.get_account_balance(accounts["6000"]) == Decimal("0")

    @pytest.mark.asyncio
    async def test_unknown_account_rejected(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        with pytest.raises(ValidationError, match="Unknown account"):
            await services.posting.create_draft_entry(
                ENTRY_DATE,
                "Bad",
                [JournalLineInput.debit_line(99999, Decimal("10"))],
            )

    @pytest.mark.asyncio
    async def test_invalid_line_rejected_without_write(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        """라인 오류 시 아무것도 저장하지 않음"""
        with pytest.raises(ValidationError):
            await services.posting.create_draft_entry(
                ENTRY_DATE,
                "Bad",
                [
                    JournalLineInput.debit_line(accounts["6000"], Decimal("10")),
                    JournalLineInput(account_id=accounts["1000"]),
                ],
            )

        assert await services.store.list_entries() == []
        assert await services.audit.list_records(EntityType.JOURNAL_ENTRY) == []


class TestPost:
    """전기 테스트"""

    @pytest.mark.asyncio
    async def test_post_balanced_entry(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        entry_id = await _rent_entry(services, accounts)

        entry = await services.posting.post(entry_id, "bob")

        assert entry.status == "posted"
        assert entry.posted_by == "bob"
        assert entry.posted_at is not None
        assert await services.store.get_account_balance(accounts["6000"]) == Decimal("1000.00")
        assert await services.store.get_account_balance(accounts["1000"]) == Decimal("-1000.00")

        records = await services.audit.list_records(EntityType.JOURNAL_ENTRY, entry_id, AuditAction.POST)
        assert len(records) == 1
        assert records[0].actor == "bob"

    @pytest.mark.asyncio
    async def test_unbalanced_entry_stays_draft(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        """차변 1,000 / 대변 900 → UnbalancedEntryError, draft 유지"""
        entry_id = await services.posting.create_draft_entry(
            ENTRY_DATE,
            "Unbalanced",
            [
                JournalLineInput.debit_line(accounts["6000"], Decimal("600")),
                JournalLineInput.debit_line(accounts["6100"], Decimal("400")),
                JournalLineInput.credit_line(accounts["1000"], Decimal("900")),
            ],
        )

        with pytest.raises(UnbalancedEntryError) as exc_info:
            await services.posting.post(entry_id)

        assert exc_info.value.total_debit == Decimal("1000.00")
        assert exc_info.value.total_credit == Decimal("900.00")
        assert exc_info.value.difference == Decimal("100.00")

        entry = await services.store.get_entry(entry_id)
        assert entry.status == "draft"
        assert await services.audit.list_records(EntityType.JOURNAL_ENTRY, entry_id, AuditAction.POST) == []

    @pytest.mark.asyncio
    async def test_post_after_fixing_lines(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        """draft 라인 수정 후 전기"""
        entry_id = await services.posting.create_draft_entry(
            ENTRY_DATE,
            "Fix me",
            [
                JournalLineInput.debit_line(accounts["6000"], Decimal("1000")),
                JournalLineInput.credit_line(accounts["1000"], Decimal("900")),
            ],
        )
        entry = await services.store.get_entry(entry_id)

        await services.posting.update_line(entry.lines[1].id, credit=Decimal("1000"))
        posted = await services.posting.post(entry_id)

        assert posted.status == "posted"
        assert posted.total_credit == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_already_posted_adds_no_audit(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        """재전기는 AlreadyPostedError, 감사 레코드 추가 없음"""
        entry_id = await _rent_entry(services, accounts)
        await services.posting.post(entry_id)
        before = await services.audit.list_records()

        with pytest.raises(AlreadyPostedError):
            await services.posting.post(entry_id)

        assert await services.audit.list_records() == before

    @pytest.mark.asyncio
    async def test_entry_without_lines_rejected(self, services: LedgerServices) -> None:
        entry_id = await services.posting.create_draft_entry(ENTRY_DATE, "Empty", [])

        with pytest.raises(ValidationError, match="no lines"):
            await services.posting.post(entry_id)

    @pytest.mark.asyncio
    async def test_inactive_account_rejected(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        """비활성 계정 사용 분개는 전기 불가"""
        entry_id = await _rent_entry(services, accounts)
        await services.store.set_account_active(accounts["6000"], False)

        with pytest.raises(ValidationError, match="inactive"):
            await services.posting.post(entry_id)

    @pytest.mark.asyncio
    async def test_missing_entry(self, services: LedgerServices) -> None:
        with pytest.raises(EntryNotFoundError):
            await services.posting.post(424242)


class TestImmutability:
    """전기 분개 불변성 테스트"""

    @pytest.mark.asyncio
    async def test_posted_lines_cannot_change(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        entry_id = await _rent_entry(services, accounts)
        entry = await services.posting.post(entry_id)

        with pytest.raises(ImmutableEntryError):
            await services.posting.add_line(
                entry_id, JournalLineInput.debit_line(accounts["6000"], Decimal("1"))
            )
        with pytest.raises(ImmutableEntryError):
            await services.posting.update_line(entry.lines[0].id, debit=Decimal("2000"))
        with pytest.raises(ImmutableEntryError):
            await services.posting.remove_line(entry.lines[0].id)
        with pytest.raises(ImmutableEntryError):
            await services.posting.update_entry(entry_id, description="changed")

        after = await services.store.get_entry(entry_id)
        assert after.lines == entry.lines
        assert after.description == "Office rent"

    @pytest.mark.asyncio
    async def test_delete_posted_suggests_void(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        entry_id = await _rent_entry(services, accounts)
        await services.posting.post(entry_id)

        with pytest.raises(ImmutableEntryError, match="Void the entry instead"):
            await services.posting.delete(entry_id)

        assert (await services.store.get_entry(entry_id)).status == "posted"

    @pytest.mark.asyncio
    async def test_void_entry_cannot_change(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        """무효 분개도 라인 편집/삭제 불가"""
        entry_id = await _rent_entry(services, accounts)
        await services.posting.post(entry_id)
        entry = await services.posting.void(entry_id, "Duplicate")

        with pytest.raises(ImmutableEntryError):
            await services.posting.add_line(
                entry_id, JournalLineInput.debit_line(accounts["6000"], Decimal("1"))
            )
        with pytest.raises(ImmutableEntryError):
            await services.posting.update_line(entry.lines[0].id, debit=Decimal("2000"))
        with pytest.raises(ImmutableEntryError):
            await services.posting.remove_line(entry.lines[0].id)
        with pytest.raises(ImmutableEntryError) as exc_info:
            await services.posting.delete(entry_id)
        assert exc_info.value.status == "void"

        after = await services.store.get_entry(entry_id)
        assert after.status == "void"
        assert after.lines == entry.lines


class TestAtomicity:
    """실패한 작업은 바깥 트랜잭션 안에서도 흔적을 남기지 않음"""

    @pytest.mark.asyncio
    async def test_failed_create_and_post_inside_caller_transaction(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        async with services.store.db.transaction():
            kept = await _rent_entry(services, accounts)
            with pytest.raises(UnbalancedEntryError):
                await services.posting.create_and_post(
                    ENTRY_DATE,
                    "Unbalanced",
                    [
                        JournalLineInput.debit_line(accounts["6000"], Decimal("100")),
                        JournalLineInput.credit_line(accounts["1000"], Decimal("90")),
                    ],
                )

        entries = await services.store.list_entries()
        assert [e.id for e in entries] == [kept]
        records = await services.audit.list_records(EntityType.JOURNAL_ENTRY)
        assert {r.entity_id for r in records} == {kept}


class TestDraftEditing:
    """draft 편집 테스트"""

    @pytest.mark.asyncio
    async def test_add_and_remove_line(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        entry_id = await _rent_entry(services, accounts)

        line_id = await services.posting.add_line(
            entry_id, JournalLineInput.debit_line(accounts["6100"], Decimal("50"))
        )
        assert len((await services.store.get_entry(entry_id)).lines) == 3

        await services.posting.remove_line(line_id)
        assert len((await services.store.get_entry(entry_id)).lines) == 2

    @pytest.mark.asyncio
    async def test_update_entry_header(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        entry_id = await _rent_entry(services, accounts)

        entry = await services.posting.update_entry(
            entry_id, entry_date=date(2024, 3, 5), description="March rent", actor="carol"
        )

        assert entry.entry_date == date(2024, 3, 5)
        assert entry.description == "March rent"
        updates = await services.audit.list_records(EntityType.JOURNAL_ENTRY, entry_id, AuditAction.UPDATE)
        assert updates[-1].actor == "carol"
        assert updates[-1].changes["description"]["to"] == "March rent"

    @pytest.mark.asyncio
    async def test_delete_draft(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        entry_id = await _rent_entry(services, accounts)

        await services.posting.delete(entry_id)

        with pytest.raises(EntryNotFoundError):
            await services.store.get_entry(entry_id)
        records = await services.audit.list_records(EntityType.JOURNAL_ENTRY, entry_id, AuditAction.DELETE)
        assert len(records[0].changes["lines"]) == 2


class TestVoid:
    """무효화 테스트"""

    @pytest.mark.asyncio
    async def test_void_posted_entry(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        """void 분개는 라인 유지, 잔액 집계 제외"""
        entry_id = await _rent_entry(services, accounts)
        await services.posting.post(entry_id)

        entry = await services.posting.void(entry_id, "Duplicate", "dave")

        assert entry.status == "void"
        assert entry.void_reason == "Duplicate"
        assert entry.voided_by == "dave"
        assert len(entry.lines) == 2
        assert await services.store.get_account_balance(accounts["6000"]) == Decimal("0")

    @pytest.mark.asyncio
    async def test_void_draft_rejected(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        entry_id = await _rent_entry(services, accounts)

        with pytest.raises(InvalidStatusError, match="delete it instead"):
            await services.posting.void(entry_id, "nope")

    @pytest.mark.asyncio
    async def test_void_twice_rejected(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        entry_id = await _rent_entry(services, accounts)
        await services.posting.post(entry_id)
        await services.posting.void(entry_id, "first")

        with pytest.raises(ImmutableEntryError):
            await services.posting.void(entry_id, "second")

    @pytest.mark.asyncio
    async def test_void_requires_reason(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        entry_id = await _rent_entry(services, accounts)
        await services.posting.post(entry_id)

        with pytest.raises(ValidationError, match="reason"):
            await services.posting.void(entry_id, "")

    @pytest.mark.asyncio
    async def test_void_entry_cannot_be_posted(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        entry_id = await _rent_entry(services, accounts)
        await services.posting.post(entry_id)
        await services.posting.void(entry_id, "gone")

        with pytest.raises(ImmutableEntryError):
            await services.posting.post(entry_id)


class TestReverse:
    """역분개 테스트"""

    @pytest.mark.asyncio
    async def test_reverse_posts_mirror_entry(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        entry_id = await _rent_entry(services, accounts)
        await services.posting.post(entry_id)

        reversal_id = await services.posting.reverse(entry_id, date(2024, 3, 31), "erin")

        reversal = await services.store.get_entry(reversal_id)
        assert reversal.status == "posted"
        assert reversal.reversal_of_id == entry_id
        assert reversal.entry_date == date(2024, 3, 31)
        assert (await services.store.get_entry(entry_id)).status == "posted"
        assert await services.store.get_account_balance(accounts["6000"]) == Decimal("0")

        event = await services.store.get_event(reversal.event_id)
        assert event.event_type == "reversal"

    @pytest.mark.asyncio
    async def test_reverse_draft_rejected(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        entry_id = await _rent_entry(services, accounts)

        with pytest.raises(InvalidStatusError):
            await services.posting.reverse(entry_id)
