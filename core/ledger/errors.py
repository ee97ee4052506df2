"""
Ledger 오류 정의

오류 분류:
- ValidationError: 호출자가 수정 가능한 입력 오류 (쓰기 전에 거부)
- InvariantViolationError: 영속 불변식 위반 시도 (원자적으로 거부, 상태 불변)
- ConfigurationError: 시스템 계정 등 필수 설정 누락
- NotFoundError: 참조한 ID가 존재하지 않음
"""

from decimal import Decimal


class LedgerError(Exception):
    """Ledger 오류 기본 클래스"""
    pass


class ValidationError(LedgerError):
    """입력 검증 오류"""
    pass


class InvariantViolationError(LedgerError):
    """불변식 위반 오류"""
    pass


class ConfigurationError(LedgerError):
    """설정 오류"""
    pass


class NotFoundError(LedgerError):
    """대상 없음 오류"""
    
    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


# =============================================================================
# Validation
# =============================================================================


class UnbalancedEntryError(ValidationError):
    """차변/대변 합계 불일치"""
    
    def __init__(self, entry_id: int, total_debit: Decimal, total_credit: Decimal):
        self.entry_id = entry_id
        self.total_debit = total_debit
        self.total_credit = total_credit
        self.difference = total_debit - total_credit
        super().__init__(
            f"Journal entry {entry_id} is unbalanced: "
            f"debits {total_debit} != credits {total_credit} "
            f"(difference {self.difference})"
        )


class AlreadyPostedError(ValidationError):
    """이미 전기된 분개"""
    
    def __init__(self, entry_id: int):
        self.entry_id = entry_id
        super().__init__(f"Journal entry {entry_id} is already posted")


class InvalidAccountTypeError(ValidationError):
    """허용되지 않는 계정 유형"""
    
    def __init__(self, account_id: int, actual: str, expected: tuple[str, ...]):
        self.account_id = account_id
        self.actual = actual
        self.expected = expected
        super().__init__(
            f"Account {account_id} has type '{actual}', "
            f"expected one of {list(expected)}"
        )


class InvalidStatusError(ValidationError):
    """허용되지 않는 상태 전이"""
    pass


# =============================================================================
# Invariant violations
# =============================================================================


class ImmutableEntryError(InvariantViolationError):
    """전기/무효 분개 변경 시도"""
    
    def __init__(self, entry_id: int, status: str, action: str):
        self.entry_id = entry_id
        self.status = status
        self.action = action
        hint = " Void the entry instead." if action == "delete" and status == "posted" else ""
        super().__init__(
            f"Cannot {action} journal entry {entry_id}: status is '{status}'.{hint}"
        )


class ClosedPeriodError(InvariantViolationError, ValidationError):
    """마감된 회계기간에 쓰기 시도
    
    불변식 위반이면서 draft 생성 시점의 입력 검증 오류로도 취급.
    """
    
    def __init__(self, entry_date: str, period_name: str):
        self.entry_date = entry_date
        self.period_name = period_name
        super().__init__(
            f"Date {entry_date} falls in closed fiscal period '{period_name}'"
        )


class PaymentOverallocatedError(InvariantViolationError):
    """결제 금액 초과 배분"""
    
    def __init__(
        self,
        payment_id: int,
        amount: Decimal,
        allocated: Decimal,
        requested: Decimal,
        label: str = "Payment",
    ):
        self.payment_id = payment_id
        self.amount = amount
        self.allocated = allocated
        self.requested = requested
        self.excess = allocated + requested - amount
        super().__init__(
            f"{label} {payment_id} over-allocated by {self.excess}: "
            f"amount {amount}, already allocated {allocated}, requested {requested}"
        )


class InvoiceOverallocatedError(InvariantViolationError):
    """송장 총액 초과 배분"""
    
    def __init__(
        self,
        invoice_id: int,
        total: Decimal,
        allocated: Decimal,
        requested: Decimal,
        label: str = "Invoice",
    ):
        self.invoice_id = invoice_id
        self.total = total
        self.allocated = allocated
        self.requested = requested
        self.excess = allocated + requested - total
        super().__init__(
            f"{label} {invoice_id} over-allocated by {self.excess}: "
            f"total {total}, already allocated {allocated}, requested {requested}"
        )


class AllocationExceedsNewTotalError(InvariantViolationError):
    """기배분액보다 작은 금액으로 감액 시도"""
    
    def __init__(self, entity: str, entity_id: int, new_total: Decimal, allocated: Decimal):
        self.entity = entity
        self.entity_id = entity_id
        self.new_total = new_total
        self.allocated = allocated
        super().__init__(
            f"Cannot reduce {entity} {entity_id} to {new_total}: "
            f"{allocated} is already allocated"
        )


class CreditNoteOverappliedError(InvariantViolationError):
    """Credit Note 잔액 초과 적용/환불"""
    
    def __init__(self, credit_note_id: int, available: Decimal, requested: Decimal):
        self.credit_note_id = credit_note_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Credit note {credit_note_id} has only {available} available, "
            f"requested {requested}"
        )


class DocumentVoidError(InvariantViolationError):
    """무효 문서 사용 또는 결제가 적용된 문서 무효화 시도"""
    pass


class ReconciliationLockedError(InvariantViolationError):
    """진행 중이 아닌 대사 변경 시도"""
    
    def __init__(self, reconciliation_id: int, status: str):
        self.reconciliation_id = reconciliation_id
        self.status = status
        super().__init__(
            f"Reconciliation {reconciliation_id} is '{status}', not in_progress"
        )


class UnbalancedReconciliationError(InvariantViolationError):
    """대사 차액 존재"""
    
    def __init__(self, reconciliation_id: int, difference: Decimal):
        self.reconciliation_id = reconciliation_id
        self.difference = difference
        super().__init__(
            f"Reconciliation {reconciliation_id} cannot be completed: "
            f"difference {difference}"
        )


# =============================================================================
# Configuration
# =============================================================================


class SystemAccountNotConfiguredError(ConfigurationError):
    """시스템 계정 역할 미설정"""
    
    def __init__(self, role: str):
        self.role = role
        super().__init__(f"System account role '{role}' is not configured")


# =============================================================================
# Not found
# =============================================================================


class AccountNotFoundError(NotFoundError):
    def __init__(self, account_id: object):
        super().__init__("Account", account_id)


class EntryNotFoundError(NotFoundError):
    def __init__(self, entry_id: object):
        super().__init__("Journal entry", entry_id)


class LineNotFoundError(NotFoundError):
    def __init__(self, line_id: object):
        super().__init__("Journal line", line_id)


class DocumentNotFoundError(NotFoundError):
    pass


class ReconciliationNotFoundError(NotFoundError):
    def __init__(self, reconciliation_id: object):
        super().__init__("Bank reconciliation", reconciliation_id)


class FiscalPeriodNotFoundError(NotFoundError):
    pass
