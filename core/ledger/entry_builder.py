"""
분개 생성기

업무 문서(송장, 수금, 청구서, 지급, Credit Note, 환불)를 분개 라인으로 변환.
시스템 계정은 주입된 SystemAccounts에서 역할로 해석.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from core.ledger.errors import ValidationError
from core.ledger.models import DocumentLine, JournalEntry, money
from core.ledger.system_accounts import SystemAccounts
from core.ledger.types import ZERO, SystemAccountRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JournalLineInput:
    """분개 라인 입력
    
    차변 또는 대변 중 정확히 하나만 양수.
    금액은 센트 단위로 정규화됨.
    """
    
    account_id: int
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    description: str | None = None
    
    def __post_init__(self) -> None:
        object.__setattr__(self, "debit", money(self.debit))
        object.__setattr__(self, "credit", money(self.credit))
    
    def validate(self) -> None:
        """차변 XOR 대변 검증
        
        Raises:
            ValidationError: 음수, 둘 다 양수, 둘 다 0
        """
        if self.debit < ZERO or self.credit < ZERO:
            raise ValidationError(
                f"Journal line amounts must not be negative "
                f"(account {self.account_id}: debit {self.debit}, credit {self.credit})"
            )
        if (self.debit > ZERO) == (self.credit > ZERO):
            raise ValidationError(
                f"Journal line must have either debit or credit, not both or neither "
                f"(account {self.account_id}: debit {self.debit}, credit {self.credit})"
            )
    
    @classmethod
    def debit_line(cls, account_id: int, amount: Decimal, description: str | None = None) -> JournalLineInput:
        return cls(account_id=account_id, debit=amount, description=description)
    
    @classmethod
    def credit_line(cls, account_id: int, amount: Decimal, description: str | None = None) -> JournalLineInput:
        return cls(account_id=account_id, credit=amount, description=description)


class JournalEntryBuilder:
    """업무 문서 → 분개 라인 변환
    
    Args:
        system_accounts: 역할 → 계정 ID 매핑
    """
    
    def __init__(self, system_accounts: SystemAccounts):
        self.system_accounts = system_accounts
    
    def invoice_lines(
        self,
        invoice_number: str,
        lines: list[DocumentLine],
        tax_amount: Decimal,
    ) -> list[JournalLineInput]:
        """송장 분개
        
        DR 매출채권 (총액)
        CR 수익 (라인별 금액)
        CR 매출세 예수금 (세액 > 0 인 경우)
        """
        ar_id = self.system_accounts.require(SystemAccountRole.ACCOUNTS_RECEIVABLE)
        subtotal = sum((line.amount for line in lines), ZERO)
        tax_amount = money(tax_amount)
        
        result = [
            JournalLineInput.debit_line(ar_id, subtotal + tax_amount, f"Invoice {invoice_number}"),
        ]
        for line in lines:
            result.append(JournalLineInput.credit_line(line.account_id, line.amount, line.description))
        
        if tax_amount > ZERO:
            tax_id = self.system_accounts.require(SystemAccountRole.SALES_TAX_PAYABLE)
            result.append(JournalLineInput.credit_line(tax_id, tax_amount, "Sales tax collected"))
        
        return result
    
    def payment_received_lines(
        self,
        payment_number: str,
        amount: Decimal,
        deposit_account_id: int,
    ) -> list[JournalLineInput]:
        """수금 분개
        
        DR 입금 계정 (현금/예금)
        CR 매출채권
        """
        ar_id = self.system_accounts.require(SystemAccountRole.ACCOUNTS_RECEIVABLE)
        return [
            JournalLineInput.debit_line(deposit_account_id, amount, f"Payment {payment_number}"),
            JournalLineInput.credit_line(ar_id, amount, f"Payment {payment_number}"),
        ]
    
    def bill_lines(
        self,
        bill_number: str,
        lines: list[DocumentLine],
        tax_amount: Decimal,
    ) -> list[JournalLineInput]:
        """청구서 분개
        
        DR 비용 (라인별 금액)
        DR 매출세 예수금 (매입세액 공제)
        CR 매입채무 (총액)
        """
        ap_id = self.system_accounts.require(SystemAccountRole.ACCOUNTS_PAYABLE)
        subtotal = sum((line.amount for line in lines), ZERO)
        tax_amount = money(tax_amount)
        
        result = [
            JournalLineInput.debit_line(line.account_id, line.amount, line.description)
            for line in lines
        ]
        if tax_amount > ZERO:
            tax_id = self.system_accounts.require(SystemAccountRole.SALES_TAX_PAYABLE)
            result.append(JournalLineInput.debit_line(tax_id, tax_amount, "Input tax credit"))
        
        result.append(
            JournalLineInput.credit_line(ap_id, subtotal + tax_amount, f"Bill {bill_number}")
        )
        return result
    
    def vendor_payment_lines(
        self,
        payment_number: str,
        amount: Decimal,
        paid_from_account_id: int,
    ) -> list[JournalLineInput]:
        """지급 분개
        
        DR 매입채무
        CR 출금 계정
        """
        ap_id = self.system_accounts.require(SystemAccountRole.ACCOUNTS_PAYABLE)
        return [
            JournalLineInput.debit_line(ap_id, amount, f"Vendor payment {payment_number}"),
            JournalLineInput.credit_line(paid_from_account_id, amount, f"Vendor payment {payment_number}"),
        ]
    
    def credit_note_lines(
        self,
        credit_note_number: str,
        lines: list[DocumentLine],
        tax_amount: Decimal,
    ) -> list[JournalLineInput]:
        """Credit Note 분개 (송장의 반대)
        
        DR 수익 (라인별)
        DR 매출세 예수금
        CR 매출채권 (총액)
        """
        ar_id = self.system_accounts.require(SystemAccountRole.ACCOUNTS_RECEIVABLE)
        subtotal = sum((line.amount for line in lines), ZERO)
        tax_amount = money(tax_amount)
        
        result = [
            JournalLineInput.debit_line(line.account_id, line.amount, line.description)
            for line in lines
        ]
        if tax_amount > ZERO:
            tax_id = self.system_accounts.require(SystemAccountRole.SALES_TAX_PAYABLE)
            result.append(JournalLineInput.debit_line(tax_id, tax_amount, "Sales tax reversed"))
        
        result.append(
            JournalLineInput.credit_line(ar_id, subtotal + tax_amount, f"Credit note {credit_note_number}")
        )
        return result
    
    def credit_note_refund_lines(self, refund_number: str, amount: Decimal) -> list[JournalLineInput]:
        """Credit Note 환불 분개
        
        DR 매출채권
        CR 현금
        """
        ar_id = self.system_accounts.require(SystemAccountRole.ACCOUNTS_RECEIVABLE)
        cash_id = self.system_accounts.require(SystemAccountRole.CASH_DEFAULT)
        return [
            JournalLineInput.debit_line(ar_id, amount, f"Refund {refund_number}"),
            JournalLineInput.credit_line(cash_id, amount, f"Refund {refund_number}"),
        ]
    
    @staticmethod
    def reversal_lines(entry: JournalEntry) -> list[JournalLineInput]:
        """역분개 라인 (차변/대변 교환)"""
        return [
            JournalLineInput(
                account_id=line.account_id,
                debit=line.credit,
                credit=line.debit,
                description=line.description,
            )
            for line in entry.lines
        ]
