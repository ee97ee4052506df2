"""LedgerStore 통합 테스트"""

from datetime import date
from decimal import Decimal

import pytest

from adapters.db.sqlite_adapter import SQLiteAdapter
from core.ledger.entry_builder import JournalLineInput
from core.ledger.errors import (
    AccountNotFoundError,
    DocumentNotFoundError,
    EntryNotFoundError,
    LineNotFoundError,
)
from core.ledger.schema import init_ledger_schema
from core.ledger.services import LedgerServices
from core.ledger.store import LedgerStore
from core.ledger.types import INITIAL_ACCOUNTS, AccountType


async def _post(
    services: LedgerServices,
    entry_date: date,
    debit_id: int,
    credit_id: int,
    amount: str,
) -> int:
    return await services.posting.create_and_post(
        entry_date,
        "Test entry",
        [
            JournalLineInput.debit_line(debit_id, Decimal(amount)),
            JournalLineInput.credit_line(credit_id, Decimal(amount)),
        ],
    )


class TestAccounts:
    """계정과목표"""

    @pytest.mark.asyncio
    async def test_initial_accounts_seeded(self, store: LedgerStore) -> None:
        accounts = await store.list_accounts(include_inactive=True)

        assert len(accounts) == len(INITIAL_ACCOUNTS)
        assert [a.code for a in accounts] == sorted(code for code, _, _ in INITIAL_ACCOUNTS)

    @pytest.mark.asyncio
    async def test_schema_init_is_idempotent(self, db: SQLiteAdapter, store: LedgerStore) -> None:
        """재초기화해도 계정 중복 생성 없음"""
        await init_ledger_schema(db)

        assert len(await store.list_accounts(include_inactive=True)) == len(INITIAL_ACCOUNTS)

    @pytest.mark.asyncio
    async def test_create_and_filter_accounts(self, store: LedgerStore) -> None:
        account = await store.create_account("1020", "Savings", AccountType.ASSET)

        assert (await store.get_account(account.id)).name == "Savings"
        assert (await store.get_account_by_code("1020")).id == account.id
        assert all(a.type == AccountType.ASSET for a in await store.list_accounts(AccountType.ASSET))

    @pytest.mark.asyncio
    async def test_deactivate_account(self, store: LedgerStore, accounts: dict[str, int]) -> None:
        await store.set_account_active(accounts["1200"], False)

        assert accounts["1200"] not in [a.id for a in await store.list_accounts()]
        assert not (await store.get_account(accounts["1200"])).is_active

    @pytest.mark.asyncio
    async def test_unknown_account(self, store: LedgerStore) -> None:
        with pytest.raises(AccountNotFoundError):
            await store.get_account(9999)
        assert await store.get_account_by_code("9999") is None


class TestBalances:
    """계정 잔액 (전기된 분개만)"""

    @pytest.mark.asyncio
    async def test_normal_balance_sign(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        """자산은 차변 잔액, 수익은 대변 잔액으로 양수"""
        await _post(services, date(2024, 1, 10), accounts["1000"], accounts["4000"], "800")
        await _post(services, date(2024, 1, 20), accounts["6000"], accounts["1000"], "300")

        assert await services.store.get_account_balance(accounts["1000"]) == Decimal("500.00")
        assert await services.store.get_account_balance(accounts["4000"]) == Decimal("800.00")
        assert await services.store.get_account_balance(accounts["6000"]) == Decimal("300.00")

    @pytest.mark.asyncio
    async def test_as_of_date(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        await _post(services, date(2024, 1, 10), accounts["1000"], accounts["4000"], "800")
        await _post(services, date(2024, 2, 10), accounts["1000"], accounts["4000"], "200")

        assert await services.store.get_account_balance(accounts["1000"], date(2024, 1, 31)) == Decimal("800.00")
        assert await services.store.get_account_balance(accounts["1000"], date(2024, 2, 10)) == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_draft_and_void_excluded(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        await services.posting.create_draft_entry(
            date(2024, 1, 5),
            "Draft",
            [
                JournalLineInput.debit_line(accounts["1000"], Decimal("50")),
                JournalLineInput.credit_line(accounts["4000"], Decimal("50")),
            ],
        )
        voided = await _post(services, date(2024, 1, 6), accounts["1000"], accounts["4000"], "70")
        await services.posting.void(voided, "Mistake")

        assert await services.store.get_account_balance(accounts["1000"]) == Decimal("0")


class TestTrialBalance:
    """시산표"""

    @pytest.mark.asyncio
    async def test_trial_balance_is_balanced(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        await _post(services, date(2024, 1, 10), accounts["1000"], accounts["3000"], "5000")
        await _post(services, date(2024, 1, 15), accounts["6000"], accounts["1000"], "1200")
        await _post(services, date(2024, 2, 1), accounts["1100"], accounts["4100"], "900")

        trial_balance = await services.store.get_trial_balance()

        assert trial_balance.is_balanced()
        assert trial_balance.total_debit == Decimal("7100.00")
        assert trial_balance.total_credit == Decimal("7100.00")
        assert {row.code for row in trial_balance.rows} == {"1000", "1100", "3000", "4100", "6000"}

    @pytest.mark.asyncio
    async def test_trial_balance_as_of_and_zero_rows(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        await _post(services, date(2024, 1, 10), accounts["1000"], accounts["3000"], "5000")
        await _post(services, date(2024, 2, 1), accounts["1100"], accounts["4100"], "900")

        january = await services.store.get_trial_balance(as_of=date(2024, 1, 31))
        assert {row.code for row in january.rows} == {"1000", "3000"}

        full = await services.store.get_trial_balance(include_zero=True)
        assert len(full.rows) == len(INITIAL_ACCOUNTS)
        assert full.is_balanced()

    @pytest.mark.asyncio
    async def test_no_unbalanced_posted_entries(
        self, services: LedgerServices, accounts: dict[str, int]
    ) -> None:
        await _post(services, date(2024, 1, 10), accounts["1000"], accounts["3000"], "5000")

        assert await services.store.find_unbalanced_posted_entries() == []


class TestLookups:
    """조회 실패"""

    @pytest.mark.asyncio
    async def test_missing_rows(self, store: LedgerStore) -> None:
        with pytest.raises(EntryNotFoundError):
            await store.get_entry(1)
        with pytest.raises(LineNotFoundError):
            await store.get_line(1)
        with pytest.raises(DocumentNotFoundError):
            await store.get_invoice(1)
        with pytest.raises(DocumentNotFoundError):
            await store.get_credit_note(1)
        with pytest.raises(DocumentNotFoundError):
            await store.get_event(1)

    @pytest.mark.asyncio
    async def test_list_entries_filters(self, services: LedgerServices, accounts: dict[str, int]) -> None:
        posted = await _post(services, date(2024, 1, 10), accounts["1000"], accounts["3000"], "10")
        await _post(services, date(2024, 3, 10), accounts["1000"], accounts["3000"], "20")

        entries = await services.store.list_entries(status="posted", end_date=date(2024, 1, 31))

        assert [e.id for e in entries] == [posted]
        assert len(entries[0].lines) == 2
