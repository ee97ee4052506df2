"""
Ledger 스키마

계정/분개/문서/배분/대사/회계기간/감사 로그 테이블 생성.
금액은 TEXT(Decimal 문자열)로 저장하고 합계는 Python Decimal로 계산.

불변식 검증은 서비스 레이어 가드 함수가 담당하며,
CHECK 제약은 가드를 우회한 쓰기에 대한 최후 방어선.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from core.ledger.types import INITIAL_ACCOUNTS

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)


LEDGER_TABLES: list[str] = [
    # 계정과목
    """
    CREATE TABLE IF NOT EXISTS account (
        id               INTEGER PRIMARY KEY AUTOINCREMENT,
        code             TEXT NOT NULL UNIQUE,
        name             TEXT NOT NULL,
        type             TEXT NOT NULL CHECK (type IN ('asset', 'liability', 'equity', 'revenue', 'expense')),
        parent_id        INTEGER REFERENCES account(id),
        is_active        INTEGER NOT NULL DEFAULT 1,
        created_at       TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    # 시스템 계정 역할 매핑
    """
    CREATE TABLE IF NOT EXISTS system_account (
        id               INTEGER PRIMARY KEY AUTOINCREMENT,
        role             TEXT NOT NULL UNIQUE,
        account_id       INTEGER NOT NULL REFERENCES account(id),
        updated_at       TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    # 감사 로그 (추가 전용)
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id               INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_type      TEXT NOT NULL,
        entity_id        INTEGER NOT NULL,
        action           TEXT NOT NULL CHECK (action IN ('create', 'update', 'delete', 'post', 'void')),
        user_id          TEXT NOT NULL,
        changes          TEXT,
        timestamp        TEXT NOT NULL
    )
    """,
    # 거래 이벤트
    """
    CREATE TABLE IF NOT EXISTS transaction_event (
        id               INTEGER PRIMARY KEY AUTOINCREMENT,
        event_type       TEXT NOT NULL,
        description      TEXT,
        reference        TEXT,
        created_by       TEXT NOT NULL,
        metadata         TEXT,
        created_at       TEXT NOT NULL
    )
    """,
    # 분개
    """
    CREATE TABLE IF NOT EXISTS journal_entry (
        id               INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id         INTEGER REFERENCES transaction_event(id),
        entry_date       TEXT NOT NULL,
        description      TEXT,
        reference        TEXT,
        status           TEXT NOT NULL DEFAULT 'draft' CHECK (status IN ('draft', 'posted', 'void')),
        posted_at        TEXT,
        posted_by        TEXT,
        voided_at        TEXT,
        voided_by        TEXT,
        void_reason      TEXT,
        reversal_of_id   INTEGER REFERENCES journal_entry(id),
        created_at       TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    # 분개 라인
    """
    CREATE TABLE IF NOT EXISTS journal_line (
        id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        journal_entry_id   INTEGER NOT NULL REFERENCES journal_entry(id) ON DELETE CASCADE,
        account_id         INTEGER NOT NULL REFERENCES account(id),
        debit_amount       TEXT NOT NULL DEFAULT '0',
        credit_amount      TEXT NOT NULL DEFAULT '0',
        description        TEXT,
        reconciliation_id  INTEGER REFERENCES bank_reconciliation(id),
        line_order         INTEGER NOT NULL DEFAULT 0,
        CHECK (
            (CAST(debit_amount AS REAL) > 0 AND CAST(credit_amount AS REAL) = 0)
            OR (CAST(debit_amount AS REAL) = 0 AND CAST(credit_amount AS REAL) > 0)
        )
    )
    """,
    # 매출 송장
    """
    CREATE TABLE IF NOT EXISTS invoice (
        id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        invoice_number     TEXT NOT NULL UNIQUE,
        contact_id         INTEGER NOT NULL,
        issue_date         TEXT NOT NULL,
        due_date           TEXT NOT NULL,
        status             TEXT NOT NULL DEFAULT 'draft'
                           CHECK (status IN ('draft', 'sent', 'paid', 'partial', 'overdue', 'void')),
        subtotal           TEXT NOT NULL DEFAULT '0',
        tax_amount         TEXT NOT NULL DEFAULT '0',
        total_amount       TEXT NOT NULL DEFAULT '0',
        paid_amount        TEXT NOT NULL DEFAULT '0',
        event_id           INTEGER REFERENCES transaction_event(id),
        journal_entry_id   INTEGER REFERENCES journal_entry(id),
        notes              TEXT,
        created_at         TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS invoice_line (
        id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        invoice_id         INTEGER NOT NULL REFERENCES invoice(id) ON DELETE CASCADE,
        description        TEXT NOT NULL,
        quantity           TEXT NOT NULL,
        unit_price         TEXT NOT NULL,
        amount             TEXT NOT NULL,
        account_id         INTEGER NOT NULL REFERENCES account(id)
    )
    """,
    # 고객 수금
    """
    CREATE TABLE IF NOT EXISTS payment (
        id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        payment_number     TEXT NOT NULL UNIQUE,
        contact_id         INTEGER NOT NULL,
        payment_date       TEXT NOT NULL,
        amount             TEXT NOT NULL,
        payment_method     TEXT NOT NULL
                           CHECK (payment_method IN ('cash', 'check', 'transfer', 'card', 'other')),
        reference          TEXT,
        allocated_amount   TEXT NOT NULL DEFAULT '0',
        status             TEXT NOT NULL DEFAULT 'pending'
                           CHECK (status IN ('pending', 'partial', 'allocated', 'reconciled', 'void')),
        event_id           INTEGER REFERENCES transaction_event(id),
        journal_entry_id   INTEGER REFERENCES journal_entry(id),
        created_at         TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS allocation (
        id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        payment_id         INTEGER NOT NULL REFERENCES payment(id),
        invoice_id         INTEGER NOT NULL REFERENCES invoice(id),
        amount             TEXT NOT NULL,
        allocation_method  TEXT NOT NULL
                           CHECK (allocation_method IN ('exact', 'fifo', 'manual', 'heuristic')),
        confidence_score   TEXT,
        explanation        TEXT,
        allocation_date    TEXT NOT NULL,
        created_at         TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    # 매입 청구서
    """
    CREATE TABLE IF NOT EXISTS bill (
        id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        bill_number        TEXT NOT NULL UNIQUE,
        vendor_id          INTEGER NOT NULL,
        bill_date          TEXT NOT NULL,
        due_date           TEXT NOT NULL,
        status             TEXT NOT NULL DEFAULT 'draft'
                           CHECK (status IN ('draft', 'pending', 'paid', 'partial', 'overdue', 'void')),
        subtotal           TEXT NOT NULL DEFAULT '0',
        tax_amount         TEXT NOT NULL DEFAULT '0',
        total_amount       TEXT NOT NULL DEFAULT '0',
        paid_amount        TEXT NOT NULL DEFAULT '0',
        event_id           INTEGER REFERENCES transaction_event(id),
        journal_entry_id   INTEGER REFERENCES journal_entry(id),
        notes              TEXT,
        created_at         TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bill_line (
        id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        bill_id            INTEGER NOT NULL REFERENCES bill(id) ON DELETE CASCADE,
        description        TEXT NOT NULL,
        quantity           TEXT NOT NULL,
        unit_price         TEXT NOT NULL,
        amount             TEXT NOT NULL,
        account_id         INTEGER NOT NULL REFERENCES account(id)
    )
    """,
    # 공급자 지급
    """
    CREATE TABLE IF NOT EXISTS vendor_payment (
        id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        payment_number     TEXT NOT NULL UNIQUE,
        vendor_id          INTEGER NOT NULL,
        payment_date       TEXT NOT NULL,
        amount             TEXT NOT NULL,
        payment_method     TEXT NOT NULL
                           CHECK (payment_method IN ('cash', 'check', 'transfer', 'card', 'other')),
        reference          TEXT,
        allocated_amount   TEXT NOT NULL DEFAULT '0',
        status             TEXT NOT NULL DEFAULT 'pending'
                           CHECK (status IN ('pending', 'partial', 'allocated', 'cleared', 'void')),
        event_id           INTEGER REFERENCES transaction_event(id),
        journal_entry_id   INTEGER REFERENCES journal_entry(id),
        created_at         TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bill_allocation (
        id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        vendor_payment_id  INTEGER NOT NULL REFERENCES vendor_payment(id),
        bill_id            INTEGER NOT NULL REFERENCES bill(id),
        amount             TEXT NOT NULL,
        allocation_method  TEXT NOT NULL
                           CHECK (allocation_method IN ('exact', 'fifo', 'manual', 'heuristic')),
        confidence_score   TEXT,
        explanation        TEXT,
        allocation_date    TEXT NOT NULL,
        created_at         TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    # Credit Note
    """
    CREATE TABLE IF NOT EXISTS credit_note (
        id                  INTEGER PRIMARY KEY AUTOINCREMENT,
        credit_note_number  TEXT NOT NULL UNIQUE,
        contact_id          INTEGER NOT NULL,
        issue_date          TEXT NOT NULL,
        status              TEXT NOT NULL DEFAULT 'draft'
                            CHECK (status IN ('draft', 'issued', 'partial', 'applied', 'void')),
        subtotal            TEXT NOT NULL DEFAULT '0',
        tax_amount          TEXT NOT NULL DEFAULT '0',
        total_amount        TEXT NOT NULL DEFAULT '0',
        applied_amount      TEXT NOT NULL DEFAULT '0',
        reason              TEXT,
        event_id            INTEGER REFERENCES transaction_event(id),
        journal_entry_id    INTEGER REFERENCES journal_entry(id),
        created_at          TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS credit_note_line (
        id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        credit_note_id     INTEGER NOT NULL REFERENCES credit_note(id) ON DELETE CASCADE,
        description        TEXT NOT NULL,
        quantity           TEXT NOT NULL,
        unit_price         TEXT NOT NULL,
        amount             TEXT NOT NULL,
        account_id         INTEGER NOT NULL REFERENCES account(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS credit_note_application (
        id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        credit_note_id     INTEGER NOT NULL REFERENCES credit_note(id),
        invoice_id         INTEGER NOT NULL REFERENCES invoice(id),
        amount             TEXT NOT NULL,
        application_date   TEXT NOT NULL,
        created_at         TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS credit_note_refund (
        id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        credit_note_id     INTEGER NOT NULL REFERENCES credit_note(id),
        refund_number      TEXT NOT NULL UNIQUE,
        refund_date        TEXT NOT NULL,
        amount             TEXT NOT NULL,
        payment_method     TEXT NOT NULL
                           CHECK (payment_method IN ('cash', 'check', 'transfer', 'card', 'other')),
        journal_entry_id   INTEGER REFERENCES journal_entry(id),
        created_at         TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    # 회계연도/기간
    """
    CREATE TABLE IF NOT EXISTS fiscal_year (
        id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        year               INTEGER NOT NULL UNIQUE,
        start_date         TEXT NOT NULL,
        end_date           TEXT NOT NULL,
        status             TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open', 'closed')),
        closed_at          TEXT,
        closed_by          TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS fiscal_period (
        id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        fiscal_year_id     INTEGER NOT NULL REFERENCES fiscal_year(id),
        period_number      INTEGER NOT NULL,
        period_name        TEXT NOT NULL,
        start_date         TEXT NOT NULL,
        end_date           TEXT NOT NULL,
        status             TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open', 'closed')),
        closed_at          TEXT,
        closed_by          TEXT,
        UNIQUE(fiscal_year_id, period_number)
    )
    """,
    # 은행 대사
    """
    CREATE TABLE IF NOT EXISTS bank_reconciliation (
        id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        account_id         INTEGER NOT NULL REFERENCES account(id),
        statement_date     TEXT NOT NULL,
        statement_balance  TEXT NOT NULL,
        opening_balance    TEXT NOT NULL DEFAULT '0',
        book_balance       TEXT NOT NULL,
        status             TEXT NOT NULL DEFAULT 'in_progress'
                           CHECK (status IN ('in_progress', 'completed', 'cancelled')),
        completed_at       TEXT,
        completed_by       TEXT,
        notes              TEXT,
        created_at         TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bank_reconciliation_item (
        id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        reconciliation_id  INTEGER NOT NULL REFERENCES bank_reconciliation(id),
        journal_line_id    INTEGER NOT NULL REFERENCES journal_line(id),
        is_cleared         INTEGER NOT NULL DEFAULT 1,
        cleared_at         TEXT,
        UNIQUE(reconciliation_id, journal_line_id)
    )
    """,
]


LEDGER_INDEXES: list[str] = [
    "CREATE INDEX IF NOT EXISTS idx_journal_entry_date ON journal_entry(entry_date)",
    "CREATE INDEX IF NOT EXISTS idx_journal_entry_status ON journal_entry(status)",
    "CREATE INDEX IF NOT EXISTS idx_journal_line_entry ON journal_line(journal_entry_id)",
    "CREATE INDEX IF NOT EXISTS idx_journal_line_account ON journal_line(account_id)",
    "CREATE INDEX IF NOT EXISTS idx_journal_line_reconciliation ON journal_line(reconciliation_id)",
    "CREATE INDEX IF NOT EXISTS idx_allocation_payment ON allocation(payment_id)",
    "CREATE INDEX IF NOT EXISTS idx_allocation_invoice ON allocation(invoice_id)",
    "CREATE INDEX IF NOT EXISTS idx_bill_allocation_payment ON bill_allocation(vendor_payment_id)",
    "CREATE INDEX IF NOT EXISTS idx_bill_allocation_bill ON bill_allocation(bill_id)",
    "CREATE INDEX IF NOT EXISTS idx_credit_note_application_note ON credit_note_application(credit_note_id)",
    "CREATE INDEX IF NOT EXISTS idx_credit_note_application_invoice ON credit_note_application(invoice_id)",
    "CREATE INDEX IF NOT EXISTS idx_invoice_contact ON invoice(contact_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_bill_vendor ON bill(vendor_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_fiscal_period_dates ON fiscal_period(start_date, end_date)",
    "CREATE INDEX IF NOT EXISTS idx_audit_log_entity ON audit_log(entity_type, entity_id)",
    "CREATE INDEX IF NOT EXISTS idx_reconciliation_account ON bank_reconciliation(account_id, status)",
]


async def init_ledger_schema(db: SQLiteAdapter, with_initial_accounts: bool = True) -> None:
    """Ledger 스키마 초기화
    
    CREATE TABLE IF NOT EXISTS 이므로 여러 번 호출해도 안전.
    스키마 버전 관리(마이그레이션)는 하지 않음.
    
    Args:
        db: 연결된 SQLiteAdapter
        with_initial_accounts: 기본 계정과목표 삽입 여부
    """
    async with db.transaction():
        for ddl in LEDGER_TABLES:
            await db.execute(ddl)
        
        for ddl in LEDGER_INDEXES:
            await db.execute(ddl)
        
        if with_initial_accounts:
            await _insert_initial_accounts(db)
    
    logger.info("Ledger 스키마 초기화 완료")


async def _insert_initial_accounts(db: SQLiteAdapter) -> None:
    """기본 계정과목 삽입 (이미 있으면 무시)"""
    await db.executemany(
        "INSERT OR IGNORE INTO account (code, name, type) VALUES (?, ?, ?)",
        INITIAL_ACCOUNTS,
    )
    logger.debug(f"기본 계정 {len(INITIAL_ACCOUNTS)}개 확인")
