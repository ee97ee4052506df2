"""
분개 전기 엔진

draft → posted → void 생명주기와 차대 균형 불변식을 관리.
분개 상태 및 라인 변경은 이 엔진을 통해서만 수행.

모든 공개 작업은 트랜잭션 하나 안에서 실행되며,
검증(가드)은 첫 쓰기 전에 수행 (reject-before-mutate).
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from core.constants import Defaults
from core.domain.state_machines import JournalEntryStateMachine
from core.ledger.audit import AuditRecorder
from core.ledger.entry_builder import JournalEntryBuilder, JournalLineInput
from core.ledger.errors import (
    AlreadyPostedError,
    ImmutableEntryError,
    InvalidStatusError,
    UnbalancedEntryError,
    ValidationError,
)
from core.ledger.models import JournalEntry, JournalLine
from core.ledger.periods import FiscalPeriodGuard
from core.ledger.store import LedgerStore, utc_now
from core.ledger.types import AuditAction, EntityType, EntryStatus, TransactionEventType

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)


class PostingEngine:
    """분개 전기 엔진
    
    Args:
        db: SQLite 어댑터
        store: LedgerStore (None이면 생성)
        guard: 회계기간 가드 (None이면 생성)
        audit: 감사 기록기 (None이면 생성)
    
    사용 예시:
    ```python
    engine = PostingEngine(db)
    entry_id = await engine.create_draft_entry(
        date(2024, 3, 1),
        "Office rent",
        [
            JournalLineInput.debit_line(rent_id, Decimal("1000")),
            JournalLineInput.credit_line(cash_id, Decimal("1000")),
        ],
    )
    await engine.post(entry_id, "alice")
    ```
    """
    
    def __init__(
        self,
        db: SQLiteAdapter,
        store: LedgerStore | None = None,
        guard: FiscalPeriodGuard | None = None,
        audit: AuditRecorder | None = None,
    ):
        self.db = db
        self.audit = audit or AuditRecorder(db)
        self.store = store or LedgerStore(db)
        self.guard = guard or FiscalPeriodGuard(db, self.audit)
    
    # =========================================================================
    # 생성
    # =========================================================================
    
    async def create_draft_entry(
        self,
        entry_date: date,
        description: str | None,
        lines: list[JournalLineInput],
        reference: str | None = None,
        event_id: int | None = None,
        actor: str = Defaults.ACTOR,
        reversal_of_id: int | None = None,
    ) -> int:
        """draft 분개 생성
        
        Args:
            entry_date: 분개 일자
            description: 적요
            lines: 분개 라인 (빈 목록 허용, 전기 시 검증)
            reference: 참조 번호
            event_id: 연결할 거래 이벤트
            actor: 수행자
            
        Returns:
            생성된 journal_entry id
            
        Raises:
            ValidationError: 라인 차변 XOR 대변 위반, 알 수 없는 계정
            ClosedPeriodError: 마감 기간 날짜
        """
        async with self.db.transaction():
            for line in lines:
                await self._validate_line(line)
            await self.guard.ensure_open(entry_date)
            
            entry_id = await self.store.insert_entry(
                entry_date, description, reference, event_id, reversal_of_id
            )
            for order, line in enumerate(lines):
                await self.store.insert_line(
                    entry_id, line.account_id, line.debit, line.credit, line.description, order
                )
            
            await self.audit.record(
                EntityType.JOURNAL_ENTRY,
                entry_id,
                AuditAction.CREATE,
                actor,
                {
                    "entry_date": entry_date,
                    "description": description,
                    "reference": reference,
                    "lines": [_line_payload(line) for line in lines],
                },
            )
        
        logger.info(
            f"Draft 분개 생성: #{entry_id} ({entry_date}, {len(lines)} lines)",
            extra={"entry_id": entry_id},
        )
        return entry_id
    
    async def create_and_post(
        self,
        entry_date: date,
        description: str | None,
        lines: list[JournalLineInput],
        reference: str | None = None,
        event_id: int | None = None,
        actor: str = Defaults.ACTOR,
        reversal_of_id: int | None = None,
    ) -> int:
        """draft 생성 + 전기를 한 트랜잭션으로 수행 (업무 문서용)"""
        async with self.db.transaction():
            entry_id = await self.create_draft_entry(
                entry_date,
                description,
                lines,
                reference=reference,
                event_id=event_id,
                actor=actor,
                reversal_of_id=reversal_of_id,
            )
            await self.post(entry_id, actor)
        return entry_id
    
    # =========================================================================
    # draft 편집
    # =========================================================================
    
    async def add_line(
        self,
        entry_id: int,
        line: JournalLineInput,
        actor: str = Defaults.ACTOR,
    ) -> int:
        """draft 분개에 라인 추가
        
        Raises:
            ImmutableEntryError: draft가 아닌 분개
        """
        async with self.db.transaction():
            entry = await self._get_mutable_entry(entry_id, "add a line to")
            await self._validate_line(line)
            
            order = await self.store.next_line_order(entry_id)
            line_id = await self.store.insert_line(
                entry_id, line.account_id, line.debit, line.credit, line.description, order
            )
            await self.audit.record(
                EntityType.JOURNAL_ENTRY,
                entry.id,
                AuditAction.UPDATE,
                actor,
                {"added_line": {"id": line_id, **_line_payload(line)}},
            )
        
        logger.debug(f"라인 추가: entry #{entry_id} line #{line_id}")
        return line_id
    
    async def update_line(
        self,
        line_id: int,
        account_id: int | None = None,
        debit: Decimal | None = None,
        credit: Decimal | None = None,
        description: str | None = None,
        actor: str = Defaults.ACTOR,
    ) -> JournalLine:
        """draft 분개의 라인 수정 (None인 필드는 유지)"""
        async with self.db.transaction():
            current = await self.store.get_line(line_id)
            await self._get_mutable_entry(current.journal_entry_id, "update a line of")
            
            updated = JournalLineInput(
                account_id=current.account_id if account_id is None else account_id,
                debit=current.debit if debit is None else debit,
                credit=current.credit if credit is None else credit,
                description=current.description if description is None else description,
            )
            await self._validate_line(updated)
            
            await self.store.update_line(
                line_id, updated.account_id, updated.debit, updated.credit, updated.description
            )
            await self.audit.record(
                EntityType.JOURNAL_ENTRY,
                current.journal_entry_id,
                AuditAction.UPDATE,
                actor,
                {
                    "updated_line": line_id,
                    "from": _line_payload(current),
                    "to": _line_payload(updated),
                },
            )
        
        return await self.store.get_line(line_id)
    
    async def remove_line(self, line_id: int, actor: str = Defaults.ACTOR) -> None:
        """draft 분개의 라인 삭제"""
        async with self.db.transaction():
            current = await self.store.get_line(line_id)
            await self._get_mutable_entry(current.journal_entry_id, "remove a line from")
            
            await self.store.delete_line(line_id)
            await self.audit.record(
                EntityType.JOURNAL_ENTRY,
                current.journal_entry_id,
                AuditAction.UPDATE,
                actor,
                {"removed_line": {"id": line_id, **_line_payload(current)}},
            )
    
    async def update_entry(
        self,
        entry_id: int,
        entry_date: date | None = None,
        description: str | None = None,
        reference: str | None = None,
        actor: str = Defaults.ACTOR,
    ) -> JournalEntry:
        """draft 분개 헤더 수정
        
        날짜 변경 시 새 날짜도 회계기간 가드를 통과해야 함.
        """
        async with self.db.transaction():
            entry = await self._get_mutable_entry(entry_id, "update")
            
            fields: dict[str, Any] = {}
            if entry_date is not None and entry_date != entry.entry_date:
                await self.guard.ensure_open(entry_date)
                fields["entry_date"] = entry_date
            if description is not None:
                fields["description"] = description
            if reference is not None:
                fields["reference"] = reference
            
            if fields:
                await self.store.update_entry_header(entry_id, fields)
                await self.audit.record(
                    EntityType.JOURNAL_ENTRY,
                    entry_id,
                    AuditAction.UPDATE,
                    actor,
                    {
                        column: {"from": getattr(entry, column), "to": value}
                        for column, value in fields.items()
                    },
                )
        
        return await self.store.get_entry(entry_id)
    
    # =========================================================================
    # 상태 전이
    # =========================================================================
    
    async def post(self, entry_id: int, posted_by: str = Defaults.ACTOR) -> JournalEntry:
        """draft → posted
        
        Raises:
            AlreadyPostedError: 이미 전기됨 (감사 레코드 추가 없음)
            ImmutableEntryError: void 분개
            UnbalancedEntryError: |Σ차변 − Σ대변| > ε (분개는 draft 유지)
            ValidationError: 라인 없음, 비활성 계정
            ClosedPeriodError: 마감 기간
        """
        async with self.db.transaction():
            entry = await self.store.get_entry(entry_id)
            
            if entry.status == EntryStatus.POSTED.value:
                raise AlreadyPostedError(entry_id)
            
            machine = JournalEntryStateMachine(entry.status)
            if not machine.can_transition(EntryStatus.POSTED):
                raise ImmutableEntryError(entry_id, entry.status, "post")
            
            await self.guard.ensure_open(entry.entry_date)
            
            if not entry.lines:
                raise ValidationError(f"Journal entry {entry_id} has no lines")
            
            if not entry.is_balanced():
                logger.warning(
                    f"불균형 분개 전기 거부: #{entry_id} "
                    f"(debit {entry.total_debit}, credit {entry.total_credit})",
                )
                raise UnbalancedEntryError(entry_id, entry.total_debit, entry.total_credit)
            
            for line in entry.lines:
                account = await self.store.find_account(line.account_id)
                if account is None or not account.is_active:
                    raise ValidationError(
                        f"Journal entry {entry_id} line {line.id} uses inactive or unknown "
                        f"account {line.account_id}"
                    )
            
            machine.transition(EntryStatus.POSTED)
            posted_at = utc_now()
            await self.store.mark_entry_posted(entry_id, posted_at, posted_by)
            await self.audit.record(
                EntityType.JOURNAL_ENTRY,
                entry_id,
                AuditAction.POST,
                posted_by,
                {"total": entry.total_debit, "posted_at": posted_at},
            )
        
        logger.info(
            f"분개 전기: #{entry_id} ({entry.total_debit}) by {posted_by}",
            extra={"entry_id": entry_id, "total": str(entry.total_debit)},
        )
        return await self.store.get_entry(entry_id)
    
    async def void(
        self,
        entry_id: int,
        reason: str,
        actor: str = Defaults.ACTOR,
    ) -> JournalEntry:
        """posted → void
        
        라인은 감사 목적으로 남김.
        연결된 문서의 무효화 가능 여부는 호출자가 먼저 확인해야 함.
        
        Raises:
            ImmutableEntryError: 이미 void
            InvalidStatusError: draft (삭제를 사용)
            ClosedPeriodError: 마감 기간
        """
        if not reason:
            raise ValidationError("A reason is required to void a journal entry")
        
        async with self.db.transaction():
            entry = await self.store.get_entry(entry_id)
            
            if entry.status == EntryStatus.DRAFT.value:
                raise InvalidStatusError(
                    f"Journal entry {entry_id} is a draft; delete it instead of voiding"
                )
            
            machine = JournalEntryStateMachine(entry.status)
            if not machine.can_transition(EntryStatus.VOID):
                raise ImmutableEntryError(entry_id, entry.status, "void")
            
            await self.guard.ensure_open(entry.entry_date)
            
            machine.transition(EntryStatus.VOID)
            await self.store.mark_entry_void(entry_id, utc_now(), actor, reason)
            await self.audit.record(
                EntityType.JOURNAL_ENTRY,
                entry_id,
                AuditAction.VOID,
                actor,
                {"reason": reason},
            )
        
        logger.info(f"분개 무효화: #{entry_id} ({reason})", extra={"entry_id": entry_id})
        return await self.store.get_entry(entry_id)
    
    async def delete(self, entry_id: int, actor: str = Defaults.ACTOR) -> None:
        """draft 분개 삭제 (라인 포함)
        
        Raises:
            ImmutableEntryError: posted/void 분개 (void 사용 안내)
        """
        async with self.db.transaction():
            entry = await self._get_mutable_entry(entry_id, "delete")
            
            await self.store.delete_entry(entry_id)
            await self.audit.record(
                EntityType.JOURNAL_ENTRY,
                entry_id,
                AuditAction.DELETE,
                actor,
                {
                    "entry_date": entry.entry_date,
                    "description": entry.description,
                    "lines": [_line_payload(line) for line in entry.lines],
                },
            )
        
        logger.info(f"Draft 분개 삭제: #{entry_id}")
    
    async def reverse(
        self,
        entry_id: int,
        entry_date: date | None = None,
        actor: str = Defaults.ACTOR,
    ) -> int:
        """전기된 분개의 역분개 생성 및 전기
        
        원 분개는 변경하지 않음.
        
        Returns:
            역분개 journal_entry id
        """
        async with self.db.transaction():
            original = await self.store.get_entry(entry_id)
            if original.status != EntryStatus.POSTED.value:
                raise InvalidStatusError(
                    f"Only posted entries can be reversed; entry {entry_id} is '{original.status}'"
                )
            
            reversal_date = entry_date or date.today()
            event_id = await self.store.create_event(
                TransactionEventType.REVERSAL.value,
                actor,
                description=f"Reversal of journal entry {entry_id}",
                reference=original.reference,
                metadata={"reversal_of": entry_id},
            )
            reversal_id = await self.create_and_post(
                reversal_date,
                f"Reversal of: {original.description or entry_id}",
                JournalEntryBuilder.reversal_lines(original),
                reference=original.reference,
                event_id=event_id,
                actor=actor,
                reversal_of_id=entry_id,
            )
        
        logger.info(f"역분개 생성: #{entry_id} → #{reversal_id}")
        return reversal_id
    
    # =========================================================================
    # 가드
    # =========================================================================
    
    async def _get_mutable_entry(self, entry_id: int, action: str) -> JournalEntry:
        """draft 분개 조회 (구조 변경 전 가드)
        
        Raises:
            ImmutableEntryError: posted/void 분개
            ClosedPeriodError: 분개 날짜가 마감 기간
        """
        entry = await self.store.get_entry(entry_id)
        if not JournalEntryStateMachine(entry.status).is_mutable:
            logger.warning(f"불변 분개 변경 거부: #{entry_id} ({entry.status}, {action})")
            raise ImmutableEntryError(entry_id, entry.status, action)
        await self.guard.ensure_open(entry.entry_date)
        return entry
    
    async def _validate_line(self, line: JournalLineInput) -> None:
        line.validate()
        account = await self.store.find_account(line.account_id)
        if account is None:
            raise ValidationError(f"Unknown account id: {line.account_id}")


def _line_payload(line: JournalLineInput | JournalLine) -> dict[str, Any]:
    return {
        "account_id": line.account_id,
        "debit": line.debit,
        "credit": line.credit,
        "description": line.description,
    }
