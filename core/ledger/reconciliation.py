"""
은행 대사 엔진

전기된 미대사 라인을 은행 명세서 잔액과 맞추고, 완료 시 라인에 대사 ID를 영구 기록.

상태: in_progress → completed | cancelled (완료/취소 후 변경 불가)

잔액 정의:
- book_balance: 명세서 일자까지 해당 계정의 전기된 라인 합계 (차변 − 대변)
- cleared_balance: 체크된 라인 합계 (차변 − 대변)
- opening_balance: 해당 계정의 직전 완료 대사의 명세서 잔액 (없으면 0, 참고용)
- difference: cleared_balance − statement_balance
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable

from core.constants import Defaults
from core.domain.state_machines import ReconciliationStateMachine
from core.ledger.audit import AuditRecorder
from core.ledger.errors import (
    InvalidAccountTypeError,
    ReconciliationLockedError,
    ReconciliationNotFoundError,
    UnbalancedReconciliationError,
    ValidationError,
)
from core.ledger.models import (
    BankReconciliation,
    ReconciliationSummary,
    UnreconciledLine,
    money,
    to_date,
)
from core.ledger.store import LedgerStore, utc_now
from core.ledger.types import (
    EPSILON,
    ZERO,
    AccountType,
    AuditAction,
    EntityType,
    EntryStatus,
    ReconciliationStatus,
)

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """은행 대사 엔진

    Args:
        db: SQLite 어댑터
        store: LedgerStore (None이면 생성)
        audit: 감사 기록기 (None이면 생성)

    사용 예시:
    ```python
    engine = ReconciliationEngine(db)
    rec = await engine.open(bank_id, date(2024, 3, 31), Decimal("5000.00"))
    lines = await engine.unreconciled_transactions(bank_id, rec.statement_date)
    await engine.mark_cleared(rec.id, [line.line_id for line in lines])
    if abs(await engine.difference(rec.id)) <= EPSILON:
        await engine.complete(rec.id, "alice")
    ```
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
    # 생명주기
    # =========================================================================

    async def open(
        self,
        account_id: int,
        statement_date: date,
        statement_balance: Decimal,
        notes: str | None = None,
        actor: str = Defaults.ACTOR,
    ) -> BankReconciliation:
        """대사 시작

        Raises:
            AccountNotFoundError: 계정 없음
            InvalidAccountTypeError: 자산 계정이 아님
            ValidationError: 같은 계정에 진행 중인 대사 존재, 직전 완료 대사보다 이른 명세서 일자
        """
        statement_balance = money(statement_balance)

        async with self.db.transaction():
            account = await self.store.get_account(account_id)
            if account.type != AccountType.ASSET:
                raise InvalidAccountTypeError(
                    account_id, account.type.value, (AccountType.ASSET.value,)
                )

            in_progress = await self.db.fetchone(
                "SELECT id FROM bank_reconciliation WHERE account_id = ? AND status = ?",
                (account_id, ReconciliationStatus.IN_PROGRESS.value),
            )
            if in_progress is not None:
                raise ValidationError(
                    f"Account {account.code} already has reconciliation {in_progress[0]} in progress"
                )

            last = await self._last_completed(account_id)
            if last is not None and statement_date < last.statement_date:
                raise ValidationError(
                    f"Statement date {statement_date} is before the last completed "
                    f"reconciliation ({last.statement_date})"
                )
            opening_balance = last.statement_balance if last is not None else ZERO
            book_balance = await self.store.get_account_balance(account_id, statement_date)

            reconciliation_id = await self.db.insert(
                """
                INSERT INTO bank_reconciliation (
                    account_id, statement_date, statement_balance, opening_balance,
                    book_balance, status, notes
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    account_id,
                    statement_date.isoformat(),
                    str(statement_balance),
                    str(opening_balance),
                    str(book_balance),
                    ReconciliationStatus.IN_PROGRESS.value,
                    notes,
                ),
            )
            await self.audit.record(
                EntityType.BANK_RECONCILIATION,
                reconciliation_id,
                AuditAction.CREATE,
                actor,
                {
                    "account_id": account_id,
                    "statement_date": statement_date,
                    "statement_balance": statement_balance,
                    "book_balance": book_balance,
                },
            )

        logger.info(
            f"대사 시작: {account.code} {statement_date} "
            f"(statement {statement_balance}, book {book_balance})",
            extra={"reconciliation_id": reconciliation_id},
        )
        return await self.get_reconciliation(reconciliation_id)

    async def mark_cleared(
        self,
        reconciliation_id: int,
        line_ids: Iterable[int],
        actor: str = Defaults.ACTOR,
    ) -> None:
        """라인 체크 (이미 체크된 라인은 무시)

        Raises:
            ReconciliationLockedError: 진행 중이 아닌 대사
            ValidationError: 미전기, 다른 계정, 이미 대사됨, 명세서 일자 이후 라인
            LineNotFoundError: 라인 없음
        """
        line_ids = list(dict.fromkeys(line_ids))

        async with self.db.transaction():
            reconciliation = await self._get_editable(reconciliation_id)
            for line_id in line_ids:
                await self._check_clearable(reconciliation, line_id)

            cleared_at = utc_now()
            await self.db.executemany(
                """
                INSERT INTO bank_reconciliation_item (reconciliation_id, journal_line_id, is_cleared, cleared_at)
                VALUES (?, ?, 1, ?)
                ON CONFLICT(reconciliation_id, journal_line_id)
                DO UPDATE SET is_cleared = 1, cleared_at = excluded.cleared_at
                """,
                [(reconciliation_id, line_id, cleared_at) for line_id in line_ids],
            )
            await self.audit.record(
                EntityType.BANK_RECONCILIATION,
                reconciliation_id,
                AuditAction.UPDATE,
                actor,
                {"cleared": line_ids},
            )

        logger.debug(f"대사 #{reconciliation_id} 라인 체크: {line_ids}")

    async def unmark_cleared(
        self,
        reconciliation_id: int,
        line_ids: Iterable[int],
        actor: str = Defaults.ACTOR,
    ) -> None:
        """라인 체크 해제 (항목 행은 남기고 is_cleared = 0)

        Raises:
            ReconciliationLockedError: 진행 중이 아닌 대사
        """
        line_ids = list(dict.fromkeys(line_ids))

        async with self.db.transaction():
            await self._get_editable(reconciliation_id)
            await self.db.executemany(
                """
                UPDATE bank_reconciliation_item
                SET is_cleared = 0, cleared_at = NULL
                WHERE reconciliation_id = ? AND journal_line_id = ?
                """,
                [(reconciliation_id, line_id) for line_id in line_ids],
            )
            await self.audit.record(
                EntityType.BANK_RECONCILIATION,
                reconciliation_id,
                AuditAction.UPDATE,
                actor,
                {"uncleared": line_ids},
            )

        logger.debug(f"대사 #{reconciliation_id} 라인 체크 해제: {line_ids}")

    async def complete(
        self,
        reconciliation_id: int,
        completed_by: str = Defaults.ACTOR,
    ) -> BankReconciliation:
        """대사 완료

        |difference| ≤ ε 이어야 하며, 체크된 라인에 대사 ID를 기록.

        Raises:
            ReconciliationLockedError: 진행 중이 아닌 대사
            UnbalancedReconciliationError: 차액 > ε (상태 변경 없음)
        """
        async with self.db.transaction():
            reconciliation = await self._get_editable(reconciliation_id)

            difference = await self.difference(reconciliation_id)
            if abs(difference) > EPSILON:
                logger.warning(
                    f"대사 완료 거부: #{reconciliation_id} (difference {difference})",
                )
                raise UnbalancedReconciliationError(reconciliation_id, difference)

            machine = ReconciliationStateMachine(reconciliation.status)
            machine.transition(ReconciliationStatus.COMPLETED)

            line_ids = await self.cleared_line_ids(reconciliation_id)
            await self.db.executemany(
                "UPDATE journal_line SET reconciliation_id = ? WHERE id = ?",
                [(reconciliation_id, line_id) for line_id in line_ids],
            )
            completed_at = utc_now()
            await self.db.execute(
                """
                UPDATE bank_reconciliation
                SET status = ?, completed_at = ?, completed_by = ?
                WHERE id = ?
                """,
                (machine.state, completed_at, completed_by, reconciliation_id),
            )
            await self.audit.record(
                EntityType.BANK_RECONCILIATION,
                reconciliation_id,
                AuditAction.UPDATE,
                completed_by,
                {
                    "status": {"from": reconciliation.status, "to": machine.state},
                    "reconciled_lines": line_ids,
                },
            )

        logger.info(
            f"대사 완료: #{reconciliation_id} ({len(line_ids)} lines) by {completed_by}",
            extra={"reconciliation_id": reconciliation_id},
        )
        return await self.get_reconciliation(reconciliation_id)

    async def cancel(
        self,
        reconciliation_id: int,
        actor: str = Defaults.ACTOR,
    ) -> BankReconciliation:
        """대사 취소 (항목 행은 감사 목적으로 유지)

        Raises:
            ReconciliationLockedError: 진행 중이 아닌 대사
        """
        async with self.db.transaction():
            reconciliation = await self._get_editable(reconciliation_id)
            machine = ReconciliationStateMachine(reconciliation.status)
            machine.transition(ReconciliationStatus.CANCELLED)

            await self.db.execute(
                "UPDATE bank_reconciliation SET status = ? WHERE id = ?",
                (machine.state, reconciliation_id),
            )
            await self.audit.record(
                EntityType.BANK_RECONCILIATION,
                reconciliation_id,
                AuditAction.UPDATE,
                actor,
                {"status": {"from": reconciliation.status, "to": machine.state}},
            )

        logger.info(f"대사 취소: #{reconciliation_id}")
        return await self.get_reconciliation(reconciliation_id)

    # =========================================================================
    # 잔액
    # =========================================================================

    async def cleared_line_ids(self, reconciliation_id: int) -> list[int]:
        rows = await self.db.fetchall(
            """
            SELECT journal_line_id FROM bank_reconciliation_item
            WHERE reconciliation_id = ? AND is_cleared = 1
            ORDER BY journal_line_id
            """,
            (reconciliation_id,),
        )
        return [row[0] for row in rows]

    async def cleared_balance(self, reconciliation_id: int) -> Decimal:
        """Σ(차변 − 대변) over 체크된 라인"""
        await self.get_reconciliation(reconciliation_id)
        rows = await self.db.fetchall(
            """
            SELECT jl.debit_amount, jl.credit_amount
            FROM bank_reconciliation_item bri
            JOIN journal_line jl ON jl.id = bri.journal_line_id
            WHERE bri.reconciliation_id = ? AND bri.is_cleared = 1
            """,
            (reconciliation_id,),
        )
        return sum((Decimal(row[0]) - Decimal(row[1]) for row in rows), ZERO)

    async def difference(self, reconciliation_id: int) -> Decimal:
        """cleared_balance − statement_balance"""
        reconciliation = await self.get_reconciliation(reconciliation_id)
        return await self.cleared_balance(reconciliation_id) - reconciliation.statement_balance

    # =========================================================================
    # 조회
    # =========================================================================

    async def get_reconciliation(self, reconciliation_id: int) -> BankReconciliation:
        row = await self.db.fetchone(
            "SELECT * FROM bank_reconciliation WHERE id = ?", (reconciliation_id,)
        )
        if row is None:
            raise ReconciliationNotFoundError(reconciliation_id)
        return BankReconciliation.from_row(row)

    async def list_reconciliations(self, account_id: int) -> list[BankReconciliation]:
        rows = await self.db.fetchall(
            "SELECT * FROM bank_reconciliation WHERE account_id = ? ORDER BY statement_date, id",
            (account_id,),
        )
        return [BankReconciliation.from_row(row) for row in rows]

    async def unreconciled_transactions(
        self,
        account_id: int,
        as_of: date | None = None,
    ) -> list[UnreconciledLine]:
        """미대사 라인 (일자, id 오름차순, 누적 잔액 포함)

        Args:
            account_id: 계정 ID
            as_of: 기준일 (포함, None이면 전체)
        """
        sql = """
            SELECT jl.id, jl.journal_entry_id, je.entry_date, je.description, je.reference,
                   jl.debit_amount, jl.credit_amount
            FROM journal_line jl
            JOIN journal_entry je ON je.id = jl.journal_entry_id
            WHERE jl.account_id = ? AND je.status = 'posted' AND jl.reconciliation_id IS NULL
        """
        params: list = [account_id]
        if as_of is not None:
            sql += " AND je.entry_date <= ?"
            params.append(as_of.isoformat())
        sql += " ORDER BY je.entry_date, jl.id"

        result = []
        running = ZERO
        for row in await self.db.fetchall(sql, tuple(params)):
            debit = Decimal(row[5])
            credit = Decimal(row[6])
            running += debit - credit
            result.append(
                UnreconciledLine(
                    line_id=row[0],
                    journal_entry_id=row[1],
                    entry_date=to_date(row[2]),
                    description=row[3],
                    reference=row[4],
                    debit=debit,
                    credit=credit,
                    running_balance=running,
                )
            )
        return result

    async def reconciliation_summary(self, account_id: int) -> ReconciliationSummary:
        """직전 완료 대사 정보 + 현재 미대사 라인 수"""
        last = await self._last_completed(account_id)
        row = await self.db.fetchone(
            """
            SELECT COUNT(*)
            FROM journal_line jl
            JOIN journal_entry je ON je.id = jl.journal_entry_id
            WHERE jl.account_id = ? AND je.status = 'posted' AND jl.reconciliation_id IS NULL
            """,
            (account_id,),
        )
        return ReconciliationSummary(
            account_id=account_id,
            last_statement_date=last.statement_date if last else None,
            last_statement_balance=last.statement_balance if last else None,
            unreconciled_count=row[0],
        )

    # =========================================================================
    # 가드
    # =========================================================================

    async def _get_editable(self, reconciliation_id: int) -> BankReconciliation:
        reconciliation = await self.get_reconciliation(reconciliation_id)
        if not ReconciliationStateMachine(reconciliation.status).is_editable:
            logger.warning(
                f"잠긴 대사 변경 거부: #{reconciliation_id} ({reconciliation.status})",
            )
            raise ReconciliationLockedError(reconciliation_id, reconciliation.status)
        return reconciliation

    async def _check_clearable(self, reconciliation: BankReconciliation, line_id: int) -> None:
        line = await self.store.get_line(line_id)
        entry = await self.store.get_entry(line.journal_entry_id)

        if entry.status != EntryStatus.POSTED.value:
            raise ValidationError(f"Journal line {line_id} belongs to a {entry.status} entry")
        if line.account_id != reconciliation.account_id:
            raise ValidationError(
                f"Journal line {line_id} is on account {line.account_id}, "
                f"not {reconciliation.account_id}"
            )
        if line.reconciliation_id is not None:
            raise ValidationError(
                f"Journal line {line_id} is already reconciled ({line.reconciliation_id})"
            )
        if entry.entry_date > reconciliation.statement_date:
            raise ValidationError(
                f"Journal line {line_id} is dated {entry.entry_date}, "
                f"after statement date {reconciliation.statement_date}"
            )

    async def _last_completed(self, account_id: int) -> BankReconciliation | None:
        row = await self.db.fetchone(
            """
            SELECT * FROM bank_reconciliation
            WHERE account_id = ? AND status = ?
            ORDER BY statement_date DESC, id DESC
            LIMIT 1
            """,
            (account_id, ReconciliationStatus.COMPLETED.value),
        )
        return BankReconciliation.from_row(row) if row else None
