"""
Ledger 서비스 조립

엔진들이 같은 LedgerStore/AuditRecorder/FiscalPeriodGuard를 공유하도록 한 번에 생성.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from core.ledger.allocation import AllocationEngine
from core.ledger.audit import AuditRecorder
from core.ledger.credit_notes import CreditNoteService
from core.ledger.documents import DocumentService
from core.ledger.periods import FiscalPeriodGuard
from core.ledger.posting import PostingEngine
from core.ledger.reconciliation import ReconciliationEngine
from core.ledger.store import LedgerStore
from core.ledger.system_accounts import SystemAccounts, SystemAccountStore

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)


@dataclass
class LedgerServices:
    """조립된 Ledger 엔진 묶음"""
    
    db: SQLiteAdapter
    store: LedgerStore
    audit: AuditRecorder
    guard: FiscalPeriodGuard
    system_accounts: SystemAccounts
    system_account_store: SystemAccountStore
    posting: PostingEngine
    allocation: AllocationEngine
    documents: DocumentService
    credit_notes: CreditNoteService
    reconciliation: ReconciliationEngine


async def create_services(
    db: SQLiteAdapter,
    system_accounts: SystemAccounts | None = None,
) -> LedgerServices:
    """Ledger 서비스 생성
    
    Args:
        db: 연결된 SQLiteAdapter (스키마 초기화 완료 상태)
        system_accounts: 역할 매핑 (None이면 system_account 테이블에서 로드)
    """
    store = LedgerStore(db)
    audit = AuditRecorder(db)
    guard = FiscalPeriodGuard(db, audit)
    system_account_store = SystemAccountStore(db, store, audit)
    if system_accounts is None:
        system_accounts = await system_account_store.load()
    
    posting = PostingEngine(db, store, guard, audit)
    allocation = AllocationEngine(db, store, audit)
    
    logger.debug(f"Ledger 서비스 생성 (시스템 계정 {len(system_accounts.mapping)}개)")
    return LedgerServices(
        db=db,
        store=store,
        audit=audit,
        guard=guard,
        system_accounts=system_accounts,
        system_account_store=system_account_store,
        posting=posting,
        allocation=allocation,
        documents=DocumentService(db, system_accounts, posting, allocation, store, audit),
        credit_notes=CreditNoteService(db, system_accounts, posting, allocation, store, audit),
        reconciliation=ReconciliationEngine(db, store, audit),
    )
