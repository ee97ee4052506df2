"""
복식부기 원장 무결성 및 배분 엔진

차대 균형, 전기 후 불변, 회계기간 마감, 배분 상한을 트랜잭션 단위로 보장.

사용 예시:
```python
from core.ledger import create_services, init_ledger_schema

async with SQLiteAdapter(db_path) as db:
    await init_ledger_schema(db)
    services = await create_services(db)

    # 송장 발행 + 분개 전기
    invoice = await services.documents.create_invoice(
        "INV-001", 1, date(2024, 3, 1), date(2024, 3, 31),
        [DocumentLine("Consulting", Decimal("1"), Decimal("1000"), revenue_id)],
        tax_rate=Decimal("0.13"),
    )

    # 수금 + 배분
    payment = await services.documents.record_payment("PAY-001", 1, date(2024, 3, 15), Decimal("1130"))
    await services.allocation.allocate(payment.id, invoice.id, Decimal("1130"))

    # 시산표 조회
    trial_balance = await services.store.get_trial_balance()
```
"""

from core.ledger.allocation import AllocationEngine, derive_status
from core.ledger.audit import AuditRecorder
from core.ledger.credit_notes import CreditNoteService
from core.ledger.documents import DocumentService
from core.ledger.entry_builder import JournalEntryBuilder, JournalLineInput
from core.ledger.matching import AllocationSuggestion, suggest_allocations
from core.ledger.models import DocumentLine, JournalEntry, JournalLine, money
from core.ledger.periods import FiscalPeriodGuard
from core.ledger.posting import PostingEngine
from core.ledger.reconciliation import ReconciliationEngine
from core.ledger.schema import init_ledger_schema
from core.ledger.services import LedgerServices, create_services
from core.ledger.store import LedgerStore
from core.ledger.system_accounts import SystemAccounts, SystemAccountStore
from core.ledger.types import (
    EPSILON,
    INITIAL_ACCOUNTS,
    AccountType,
    AllocationMethod,
    EntryStatus,
    SystemAccountRole,
)

__all__ = [
    # 엔진
    "PostingEngine",
    "AllocationEngine",
    "ReconciliationEngine",
    "FiscalPeriodGuard",
    "AuditRecorder",
    "DocumentService",
    "CreditNoteService",
    "LedgerServices",
    "create_services",
    # 저장소
    "LedgerStore",
    "SystemAccountStore",
    "SystemAccounts",
    "init_ledger_schema",
    # 분개
    "JournalEntryBuilder",
    "JournalLineInput",
    "JournalEntry",
    "JournalLine",
    "DocumentLine",
    # 배분
    "AllocationSuggestion",
    "suggest_allocations",
    "derive_status",
    # Enum / 상수
    "AccountType",
    "AllocationMethod",
    "EntryStatus",
    "SystemAccountRole",
    "EPSILON",
    "INITIAL_ACCOUNTS",
    "money",
]
