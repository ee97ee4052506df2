"""
복식부기 타입 정의

계정/분개/문서 상태 등 Ledger 시스템에서 사용하는 Enum과 상수 정의
"""

from decimal import Decimal
from enum import Enum

from core.constants import Defaults


# 금액 비교 허용 오차 (ε)
EPSILON: Decimal = Defaults.EPSILON

ZERO: Decimal = Decimal("0")


class AccountType(str, Enum):
    """계정 유형 (복식부기 5대 계정)"""
    
    ASSET = "asset"  # 자산 (현금, 매출채권)
    LIABILITY = "liability"  # 부채 (매입채무, 예수금)
    EQUITY = "equity"  # 자본 (이익잉여금)
    REVENUE = "revenue"  # 수익
    EXPENSE = "expense"  # 비용
    
    @property
    def is_debit_normal(self) -> bool:
        """차변 잔액 계정 여부 (자산, 비용)"""
        return self in (AccountType.ASSET, AccountType.EXPENSE)


class EntryStatus(str, Enum):
    """분개 상태
    
    draft → posted → void 로만 전이
    """
    
    DRAFT = "draft"
    POSTED = "posted"
    VOID = "void"


class AuditAction(str, Enum):
    """감사 로그 액션"""
    
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    POST = "post"
    VOID = "void"


class EntityType(str, Enum):
    """감사 로그 대상 엔티티"""
    
    ACCOUNT = "account"
    TRANSACTION_EVENT = "transaction_event"
    JOURNAL_ENTRY = "journal_entry"
    JOURNAL_LINE = "journal_line"
    INVOICE = "invoice"
    PAYMENT = "payment"
    ALLOCATION = "allocation"
    BILL = "bill"
    VENDOR_PAYMENT = "vendor_payment"
    BILL_ALLOCATION = "bill_allocation"
    CREDIT_NOTE = "credit_note"
    CREDIT_NOTE_APPLICATION = "credit_note_application"
    CREDIT_NOTE_REFUND = "credit_note_refund"
    FISCAL_YEAR = "fiscal_year"
    FISCAL_PERIOD = "fiscal_period"
    BANK_RECONCILIATION = "bank_reconciliation"
    SYSTEM_ACCOUNT = "system_account"


class TransactionEventType(str, Enum):
    """거래 이벤트 유형 (원장 변경의 업무적 사유)"""
    
    JOURNAL_ENTRY = "journal_entry"  # 수동 분개
    INVOICE_CREATED = "invoice_created"
    INVOICE_VOIDED = "invoice_voided"
    PAYMENT_RECEIVED = "payment_received"
    BILL_CREATED = "bill_created"
    BILL_VOIDED = "bill_voided"
    VENDOR_PAYMENT_MADE = "vendor_payment_made"
    CREDIT_NOTE_CREATED = "credit_note_created"
    CREDIT_NOTE_APPLIED = "credit_note_applied"
    CREDIT_NOTE_REFUNDED = "credit_note_refunded"
    CREDIT_NOTE_VOIDED = "credit_note_voided"
    REVERSAL = "reversal"


class InvoiceStatus(str, Enum):
    """매출 송장 상태"""
    
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    PARTIAL = "partial"
    OVERDUE = "overdue"
    VOID = "void"


class BillStatus(str, Enum):
    """매입 청구서 상태"""
    
    DRAFT = "draft"
    PENDING = "pending"
    PAID = "paid"
    PARTIAL = "partial"
    OVERDUE = "overdue"
    VOID = "void"


class PaymentStatus(str, Enum):
    """수금 상태"""
    
    PENDING = "pending"
    PARTIAL = "partial"
    ALLOCATED = "allocated"
    RECONCILED = "reconciled"
    VOID = "void"


class VendorPaymentStatus(str, Enum):
    """지급 상태"""
    
    PENDING = "pending"
    PARTIAL = "partial"
    ALLOCATED = "allocated"
    CLEARED = "cleared"
    VOID = "void"


class CreditNoteStatus(str, Enum):
    """Credit Note 상태"""
    
    DRAFT = "draft"
    ISSUED = "issued"
    PARTIAL = "partial"
    APPLIED = "applied"
    VOID = "void"


class PaymentMethod(str, Enum):
    """결제 수단"""
    
    CASH = "cash"
    CHECK = "check"
    TRANSFER = "transfer"
    CARD = "card"
    OTHER = "other"


class AllocationMethod(str, Enum):
    """배분 방식"""
    
    EXACT = "exact"  # 참조번호 정확히 일치
    FIFO = "fifo"  # 오래된 송장부터
    MANUAL = "manual"  # 사용자 지정
    HEURISTIC = "heuristic"  # 금액 근사 매칭


class ReconciliationStatus(str, Enum):
    """은행 대사 상태"""
    
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class FiscalStatus(str, Enum):
    """회계연도/기간 상태"""
    
    OPEN = "open"
    CLOSED = "closed"


class SystemAccountRole(str, Enum):
    """시스템 계정 역할
    
    논리적 역할 이름을 실제 계정 ID로 해석하기 위한 키.
    """
    
    ACCOUNTS_RECEIVABLE = "accounts_receivable"
    ACCOUNTS_PAYABLE = "accounts_payable"
    SALES_TAX_PAYABLE = "sales_tax_payable"
    RETAINED_EARNINGS = "retained_earnings"
    CURRENT_YEAR_EARNINGS = "current_year_earnings"
    CASH_DEFAULT = "cash_default"
    CHECKING_ACCOUNT = "checking_account"
    CUSTOMER_DEPOSITS = "customer_deposits"
    INVENTORY_ASSET = "inventory_asset"
    COGS_EXPENSE = "cogs_expense"
    FX_GAIN_LOSS = "fx_gain_loss"
    DEFAULT_REVENUE = "default_revenue"
    DEFAULT_EXPENSE = "default_expense"


# 역할별 허용 계정 유형
ROLE_ACCOUNT_TYPES: dict[SystemAccountRole, tuple[AccountType, ...]] = {
    SystemAccountRole.ACCOUNTS_RECEIVABLE: (AccountType.ASSET,),
    SystemAccountRole.ACCOUNTS_PAYABLE: (AccountType.LIABILITY,),
    SystemAccountRole.SALES_TAX_PAYABLE: (AccountType.LIABILITY,),
    SystemAccountRole.RETAINED_EARNINGS: (AccountType.EQUITY,),
    SystemAccountRole.CURRENT_YEAR_EARNINGS: (AccountType.EQUITY,),
    SystemAccountRole.CASH_DEFAULT: (AccountType.ASSET,),
    SystemAccountRole.CHECKING_ACCOUNT: (AccountType.ASSET,),
    SystemAccountRole.CUSTOMER_DEPOSITS: (AccountType.LIABILITY,),
    SystemAccountRole.INVENTORY_ASSET: (AccountType.ASSET,),
    SystemAccountRole.COGS_EXPENSE: (AccountType.EXPENSE,),
    SystemAccountRole.FX_GAIN_LOSS: (AccountType.REVENUE, AccountType.EXPENSE),
    SystemAccountRole.DEFAULT_REVENUE: (AccountType.REVENUE,),
    SystemAccountRole.DEFAULT_EXPENSE: (AccountType.EXPENSE,),
}


# 기본 계정과목표 (스키마 초기화에서 사용)
INITIAL_ACCOUNTS: list[tuple[str, str, str]] = [
    # (code, name, type)
    
    # ASSET
    ("1000", "Cash", "asset"),
    ("1010", "Checking Account", "asset"),
    ("1100", "Accounts Receivable", "asset"),
    ("1200", "Inventory", "asset"),
    
    # LIABILITY
    ("2000", "Accounts Payable", "liability"),
    ("2100", "Customer Deposits", "liability"),
    ("2220", "Sales Tax Payable", "liability"),
    
    # EQUITY
    ("3000", "Owner's Equity", "equity"),
    ("3100", "Retained Earnings", "equity"),
    ("3200", "Current Year Earnings", "equity"),
    
    # REVENUE
    ("4000", "Sales Revenue", "revenue"),
    ("4100", "Service Revenue", "revenue"),
    ("4900", "Foreign Exchange Gain/Loss", "revenue"),
    
    # EXPENSE
    ("5000", "Cost of Goods Sold", "expense"),
    ("6000", "General Expense", "expense"),
    ("6100", "Office Supplies", "expense"),
]


# 기본 역할 매핑 (role → account code)
DEFAULT_SYSTEM_ACCOUNT_CODES: dict[str, str] = {
    SystemAccountRole.CASH_DEFAULT.value: "1000",
    SystemAccountRole.CHECKING_ACCOUNT.value: "1010",
    SystemAccountRole.ACCOUNTS_RECEIVABLE.value: "1100",
    SystemAccountRole.INVENTORY_ASSET.value: "1200",
    SystemAccountRole.ACCOUNTS_PAYABLE.value: "2000",
    SystemAccountRole.CUSTOMER_DEPOSITS.value: "2100",
    SystemAccountRole.SALES_TAX_PAYABLE.value: "2220",
    SystemAccountRole.RETAINED_EARNINGS.value: "3100",
    SystemAccountRole.CURRENT_YEAR_EARNINGS.value: "3200",
    SystemAccountRole.DEFAULT_REVENUE.value: "4000",
    SystemAccountRole.FX_GAIN_LOSS.value: "4900",
    SystemAccountRole.COGS_EXPENSE.value: "5000",
    SystemAccountRole.DEFAULT_EXPENSE.value: "6000",
}
