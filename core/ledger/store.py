"""
Ledger 저장소

계정/거래 이벤트/분개/문서 레코드의 저장 및 조회.
검증은 하지 않으며 엔진(posting, allocation 등)이 가드 함수로 검증 후 호출.
호출자의 트랜잭션에 합류하므로 자체 커밋하지 않음.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from core.ledger.errors import (
    AccountNotFoundError,
    DocumentNotFoundError,
    EntryNotFoundError,
    LineNotFoundError,
)
from core.ledger.models import (
    Account,
    AccountBalance,
    Bill,
    CreditNote,
    DocumentLine,
    Invoice,
    JournalEntry,
    JournalLine,
    Payment,
    TransactionEvent,
    TrialBalance,
    VendorPayment,
    money,
)
from core.ledger.types import ZERO, AccountType, EntryStatus

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)

# 문서 테이블 → (모델, 라벨)
_DOCUMENT_TABLES: dict[str, tuple[Any, str]] = {
    "invoice": (Invoice, "Invoice"),
    "bill": (Bill, "Bill"),
    "payment": (Payment, "Payment"),
    "vendor_payment": (VendorPayment, "Vendor payment"),
    "credit_note": (CreditNote, "Credit note"),
}


def utc_now() -> str:
    """UTC ISO 타임스탬프"""
    return datetime.now(timezone.utc).isoformat()


class LedgerStore:
    """Ledger 저장소
    
    Args:
        db: SQLite 어댑터
    """
    
    def __init__(self, db: SQLiteAdapter):
        self.db = db
    
    # =========================================================================
    # 계정
    # =========================================================================
    
    async def create_account(
        self,
        code: str,
        name: str,
        account_type: AccountType | str,
        parent_id: int | None = None,
    ) -> Account:
        """계정 생성"""
        account_type = AccountType(account_type)
        async with self.db.transaction():
            account_id = await self.db.insert(
                "INSERT INTO account (code, name, type, parent_id) VALUES (?, ?, ?, ?)",
                (code, name, account_type.value, parent_id),
            )
        logger.info(f"계정 생성: {code} {name} ({account_type.value})")
        return Account(id=account_id, code=code, name=name, type=account_type, parent_id=parent_id)
    
    async def find_account(self, account_id: int) -> Account | None:
        row = await self.db.fetchone("SELECT * FROM account WHERE id = ?", (account_id,))
        return Account.from_row(row) if row else None
    
    async def get_account(self, account_id: int) -> Account:
        """계정 조회
        
        Raises:
            AccountNotFoundError: 계정이 없는 경우
        """
        account = await self.find_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account
    
    async def get_account_by_code(self, code: str) -> Account | None:
        row = await self.db.fetchone("SELECT * FROM account WHERE code = ?", (code,))
        return Account.from_row(row) if row else None
    
    async def list_accounts(
        self,
        account_type: AccountType | str | None = None,
        include_inactive: bool = False,
    ) -> list[Account]:
        """계정 목록 조회 (code 순)"""
        sql = "SELECT * FROM account WHERE 1=1"
        params: list[Any] = []
        
        if account_type is not None:
            sql += " AND type = ?"
            params.append(AccountType(account_type).value)
        
        if not include_inactive:
            sql += " AND is_active = 1"
        
        sql += " ORDER BY code"
        
        rows = await self.db.fetchall(sql, tuple(params))
        return [Account.from_row(row) for row in rows]
    
    async def set_account_active(self, account_id: int, is_active: bool) -> None:
        await self.get_account(account_id)
        async with self.db.transaction():
            await self.db.execute(
                "UPDATE account SET is_active = ? WHERE id = ?",
                (1 if is_active else 0, account_id),
            )
    
    # =========================================================================
    # 거래 이벤트
    # =========================================================================
    
    async def create_event(
        self,
        event_type: str,
        created_by: str,
        description: str | None = None,
        reference: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """거래 이벤트 생성 (이후 변경 없음)"""
        return await self.db.insert(
            """
            INSERT INTO transaction_event (event_type, description, reference, created_by, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                event_type,
                description,
                reference,
                created_by,
                json.dumps(metadata, default=str) if metadata else None,
                utc_now(),
            ),
        )
    
    async def get_event(self, event_id: int) -> TransactionEvent:
        row = await self.db.fetchone("SELECT * FROM transaction_event WHERE id = ?", (event_id,))
        if row is None:
            raise DocumentNotFoundError("Transaction event", event_id)
        return TransactionEvent.from_row(row)
    
    # =========================================================================
    # 분개
    # =========================================================================
    
    async def insert_entry(
        self,
        entry_date: date,
        description: str | None,
        reference: str | None,
        event_id: int | None = None,
        reversal_of_id: int | None = None,
    ) -> int:
        """draft 분개 헤더 삽입"""
        return await self.db.insert(
            """
            INSERT INTO journal_entry (event_id, entry_date, description, reference, status, reversal_of_id)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                event_id,
                entry_date.isoformat(),
                description,
                reference,
                EntryStatus.DRAFT.value,
                reversal_of_id,
            ),
        )
    
    async def insert_line(
        self,
        entry_id: int,
        account_id: int,
        debit: Decimal,
        credit: Decimal,
        description: str | None,
        line_order: int,
    ) -> int:
        return await self.db.insert(
            """
            INSERT INTO journal_line (
                journal_entry_id, account_id, debit_amount, credit_amount, description, line_order
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (entry_id, account_id, str(debit), str(credit), description, line_order),
        )
    
    async def next_line_order(self, entry_id: int) -> int:
        row = await self.db.fetchone(
            "SELECT COALESCE(MAX(line_order), -1) + 1 FROM journal_line WHERE journal_entry_id = ?",
            (entry_id,),
        )
        return row[0] if row else 0
    
    async def get_lines(self, entry_id: int) -> list[JournalLine]:
        rows = await self.db.fetchall(
            "SELECT * FROM journal_line WHERE journal_entry_id = ? ORDER BY line_order, id",
            (entry_id,),
        )
        return [JournalLine.from_row(row) for row in rows]
    
    async def get_line(self, line_id: int) -> JournalLine:
        row = await self.db.fetchone("SELECT * FROM journal_line WHERE id = ?", (line_id,))
        if row is None:
            raise LineNotFoundError(line_id)
        return JournalLine.from_row(row)
    
    async def get_entry(self, entry_id: int) -> JournalEntry:
        """분개 조회 (라인 포함)
        
        Raises:
            EntryNotFoundError: 분개가 없는 경우
        """
        row = await self.db.fetchone("SELECT * FROM journal_entry WHERE id = ?", (entry_id,))
        if row is None:
            raise EntryNotFoundError(entry_id)
        lines = await self.get_lines(entry_id)
        return JournalEntry.from_row(row, lines)
    
    async def list_entries(
        self,
        status: EntryStatus | str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int = 100,
    ) -> list[JournalEntry]:
        """분개 목록 (최신순, 라인 포함)"""
        sql = "SELECT * FROM journal_entry WHERE 1=1"
        params: list[Any] = []
        
        if status is not None:
            sql += " AND status = ?"
            params.append(EntryStatus(status).value)
        
        if start_date is not None:
            sql += " AND entry_date >= ?"
            params.append(start_date.isoformat())
        
        if end_date is not None:
            sql += " AND entry_date <= ?"
            params.append(end_date.isoformat())
        
        sql += " ORDER BY entry_date DESC, id DESC LIMIT ?"
        params.append(limit)
        
        rows = await self.db.fetchall(sql, tuple(params))
        return [JournalEntry.from_row(row, await self.get_lines(row["id"])) for row in rows]
    
    async def update_entry_header(self, entry_id: int, fields: dict[str, Any]) -> None:
        """분개 헤더 컬럼 갱신 (entry_date, description, reference)"""
        allowed = {"entry_date", "description", "reference"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update journal entry columns: {sorted(unknown)}")
        if not fields:
            return
        
        assignments = ", ".join(f"{column} = ?" for column in fields)
        values = [
            value.isoformat() if isinstance(value, date) else value
            for value in fields.values()
        ]
        await self.db.execute(
            f"UPDATE journal_entry SET {assignments} WHERE id = ?",
            (*values, entry_id),
        )
    
    async def update_line(
        self,
        line_id: int,
        account_id: int,
        debit: Decimal,
        credit: Decimal,
        description: str | None,
    ) -> None:
        await self.db.execute(
            """
            UPDATE journal_line
            SET account_id = ?, debit_amount = ?, credit_amount = ?, description = ?
            WHERE id = ?
            """,
            (account_id, str(debit), str(credit), description, line_id),
        )
    
    async def delete_line(self, line_id: int) -> None:
        await self.db.execute("DELETE FROM journal_line WHERE id = ?", (line_id,))
    
    async def delete_entry(self, entry_id: int) -> None:
        # journal_line은 ON DELETE CASCADE
        await self.db.execute("DELETE FROM journal_entry WHERE id = ?", (entry_id,))
    
    async def mark_entry_posted(self, entry_id: int, posted_at: str, posted_by: str) -> None:
        await self.db.execute(
            "UPDATE journal_entry SET status = ?, posted_at = ?, posted_by = ? WHERE id = ?",
            (EntryStatus.POSTED.value, posted_at, posted_by, entry_id),
        )
    
    async def mark_entry_void(
        self,
        entry_id: int,
        voided_at: str,
        voided_by: str,
        reason: str,
    ) -> None:
        await self.db.execute(
            """
            UPDATE journal_entry
            SET status = ?, voided_at = ?, voided_by = ?, void_reason = ?
            WHERE id = ?
            """,
            (EntryStatus.VOID.value, voided_at, voided_by, reason, entry_id),
        )
    
    # =========================================================================
    # 조회 집계 (전기된 라인만 대상)
    # =========================================================================
    
    async def get_account_balance(self, account_id: int, as_of: date | None = None) -> Decimal:
        """계정 잔액 조회
        
        자산/비용은 차변 - 대변, 부채/자본/수익은 대변 - 차변.
        
        Args:
            account_id: 계정 ID
            as_of: 기준일 (포함, None이면 전체)
        """
        account = await self.get_account(account_id)
        debit_total, credit_total = await self._sum_posted_lines(account_id, as_of)
        
        if account.type.is_debit_normal:
            return debit_total - credit_total
        return credit_total - debit_total
    
    async def _sum_posted_lines(
        self,
        account_id: int,
        as_of: date | None,
    ) -> tuple[Decimal, Decimal]:
        sql = """
            SELECT jl.debit_amount, jl.credit_amount
            FROM journal_line jl
            JOIN journal_entry je ON je.id = jl.journal_entry_id
            WHERE jl.account_id = ? AND je.status = 'posted'
        """
        params: list[Any] = [account_id]
        if as_of is not None:
            sql += " AND je.entry_date <= ?"
            params.append(as_of.isoformat())
        
        rows = await self.db.fetchall(sql, tuple(params))
        debit_total = sum((Decimal(row[0]) for row in rows), ZERO)
        credit_total = sum((Decimal(row[1]) for row in rows), ZERO)
        return debit_total, credit_total
    
    async def get_trial_balance(
        self,
        as_of: date | None = None,
        include_zero: bool = False,
    ) -> TrialBalance:
        """시산표 조회
        
        계정별 차변/대변 합계 (전기된 분개만).
        
        Args:
            as_of: 기준일 (포함)
            include_zero: 거래 없는 계정 포함 여부
        """
        sql = """
            SELECT jl.account_id, jl.debit_amount, jl.credit_amount
            FROM journal_line jl
            JOIN journal_entry je ON je.id = jl.journal_entry_id
            WHERE je.status = 'posted'
        """
        params: list[Any] = []
        if as_of is not None:
            sql += " AND je.entry_date <= ?"
            params.append(as_of.isoformat())
        
        totals: dict[int, list[Decimal]] = defaultdict(lambda: [ZERO, ZERO])
        for row in await self.db.fetchall(sql, tuple(params)):
            totals[row[0]][0] += Decimal(row[1])
            totals[row[0]][1] += Decimal(row[2])
        
        rows = []
        for account in await self.list_accounts(include_inactive=True):
            debit_total, credit_total = totals.get(account.id, (ZERO, ZERO))
            if not include_zero and account.id not in totals:
                continue
            rows.append(
                AccountBalance(
                    account_id=account.id,
                    code=account.code,
                    name=account.name,
                    type=account.type,
                    debit_total=debit_total,
                    credit_total=credit_total,
                )
            )
        
        return TrialBalance(as_of=as_of, rows=rows)
    
    async def find_unbalanced_posted_entries(self) -> list[int]:
        """불균형 전기 분개 ID 목록 (무결성 점검용)"""
        unbalanced = []
        for entry in await self.list_entries(status=EntryStatus.POSTED, limit=-1):
            if not entry.is_balanced():
                unbalanced.append(entry.id)
        return unbalanced
    
    # =========================================================================
    # 문서 (송장/청구서/결제/Credit Note)
    # =========================================================================
    
    async def _get_document(self, table: str, document_id: int) -> Any:
        model, label = _DOCUMENT_TABLES[table]
        row = await self.db.fetchone(f"SELECT * FROM {table} WHERE id = ?", (document_id,))
        if row is None:
            raise DocumentNotFoundError(label, document_id)
        return model.from_row(row)
    
    async def get_invoice(self, invoice_id: int) -> Invoice:
        return await self._get_document("invoice", invoice_id)
    
    async def get_bill(self, bill_id: int) -> Bill:
        return await self._get_document("bill", bill_id)
    
    async def get_payment(self, payment_id: int) -> Payment:
        return await self._get_document("payment", payment_id)
    
    async def get_vendor_payment(self, vendor_payment_id: int) -> VendorPayment:
        return await self._get_document("vendor_payment", vendor_payment_id)
    
    async def get_credit_note(self, credit_note_id: int) -> CreditNote:
        return await self._get_document("credit_note", credit_note_id)
    
    async def list_open_invoices(self, contact_id: int | None = None) -> list[Invoice]:
        """미결 송장 (issue_date, id 오름차순)"""
        sql = "SELECT * FROM invoice WHERE status NOT IN ('draft', 'paid', 'void')"
        params: list[Any] = []
        if contact_id is not None:
            sql += " AND contact_id = ?"
            params.append(contact_id)
        sql += " ORDER BY issue_date, id"
        
        rows = await self.db.fetchall(sql, tuple(params))
        return [invoice for invoice in map(Invoice.from_row, rows) if invoice.outstanding > ZERO]
    
    async def list_open_bills(self, vendor_id: int | None = None) -> list[Bill]:
        """미결 청구서 (bill_date, id 오름차순)"""
        sql = "SELECT * FROM bill WHERE status NOT IN ('draft', 'paid', 'void')"
        params: list[Any] = []
        if vendor_id is not None:
            sql += " AND vendor_id = ?"
            params.append(vendor_id)
        sql += " ORDER BY bill_date, id"
        
        rows = await self.db.fetchall(sql, tuple(params))
        return [bill for bill in map(Bill.from_row, rows) if bill.outstanding > ZERO]
    
    async def update_document(self, table: str, document_id: int, fields: dict[str, Any]) -> None:
        """문서 컬럼 갱신 (Decimal/date는 문자열로 저장)"""
        if table not in _DOCUMENT_TABLES:
            raise ValueError(f"Unknown document table: {table}")
        assignments = ", ".join(f"{column} = ?" for column in fields)
        values = [
            str(value) if isinstance(value, Decimal)
            else value.isoformat() if isinstance(value, date)
            else value
            for value in fields.values()
        ]
        await self.db.execute(
            f"UPDATE {table} SET {assignments} WHERE id = ?",
            (*values, document_id),
        )
    
    async def insert_document_lines(
        self,
        table: str,
        owner_column: str,
        owner_id: int,
        lines: list[DocumentLine],
    ) -> None:
        await self.db.executemany(
            f"""
            INSERT INTO {table} ({owner_column}, description, quantity, unit_price, amount, account_id)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    owner_id,
                    line.description,
                    str(line.quantity),
                    str(line.unit_price),
                    str(line.amount),
                    line.account_id,
                )
                for line in lines
            ],
        )
    
    async def insert_invoice(
        self,
        invoice_number: str,
        contact_id: int,
        issue_date: date,
        due_date: date,
        status: str,
        subtotal: Decimal,
        tax_amount: Decimal,
        total_amount: Decimal,
        event_id: int | None,
        notes: str | None = None,
    ) -> int:
        return await self.db.insert(
            """
            INSERT INTO invoice (
                invoice_number, contact_id, issue_date, due_date, status,
                subtotal, tax_amount, total_amount, paid_amount, event_id, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, '0.00', ?, ?)
            """,
            (
                invoice_number,
                contact_id,
                issue_date.isoformat(),
                due_date.isoformat(),
                status,
                str(subtotal),
                str(tax_amount),
                str(total_amount),
                event_id,
                notes,
            ),
        )
    
    async def insert_bill(
        self,
        bill_number: str,
        vendor_id: int,
        bill_date: date,
        due_date: date,
        status: str,
        subtotal: Decimal,
        tax_amount: Decimal,
        total_amount: Decimal,
        event_id: int | None,
        notes: str | None = None,
    ) -> int:
        return await self.db.insert(
            """
            INSERT INTO bill (
                bill_number, vendor_id, bill_date, due_date, status,
                subtotal, tax_amount, total_amount, paid_amount, event_id, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, '0.00', ?, ?)
            """,
            (
                bill_number,
                vendor_id,
                bill_date.isoformat(),
                due_date.isoformat(),
                status,
                str(subtotal),
                str(tax_amount),
                str(total_amount),
                event_id,
                notes,
            ),
        )
    
    async def insert_payment(
        self,
        table: str,
        payment_number: str,
        party_column: str,
        party_id: int,
        payment_date: date,
        amount: Decimal,
        payment_method: str,
        reference: str | None,
        event_id: int | None,
    ) -> int:
        """payment / vendor_payment 삽입 (status = pending)"""
        if table not in ("payment", "vendor_payment"):
            raise ValueError(f"Unknown payment table: {table}")
        return await self.db.insert(
            f"""
            INSERT INTO {table} (
                payment_number, {party_column}, payment_date, amount, payment_method,
                reference, allocated_amount, status, event_id
            ) VALUES (?, ?, ?, ?, ?, ?, '0.00', 'pending', ?)
            """,
            (
                payment_number,
                party_id,
                payment_date.isoformat(),
                str(money(amount)),
                payment_method,
                reference,
                event_id,
            ),
        )
    
    async def insert_credit_note(
        self,
        credit_note_number: str,
        contact_id: int,
        issue_date: date,
        status: str,
        subtotal: Decimal,
        tax_amount: Decimal,
        total_amount: Decimal,
        reason: str | None,
        event_id: int | None,
    ) -> int:
        return await self.db.insert(
            """
            INSERT INTO credit_note (
                credit_note_number, contact_id, issue_date, status,
                subtotal, tax_amount, total_amount, applied_amount, reason, event_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, '0.00', ?, ?)
            """,
            (
                credit_note_number,
                contact_id,
                issue_date.isoformat(),
                status,
                str(subtotal),
                str(tax_amount),
                str(total_amount),
                reason,
                event_id,
            ),
        )
