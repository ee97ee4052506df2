"""
시스템 계정 역할 매핑

"accounts_receivable" 같은 논리적 역할을 실제 계정 ID로 해석.
엔진에는 불변 SystemAccounts 객체를 주입하며, 매핑되지 않은 역할은
추측하지 않고 SystemAccountNotConfiguredError를 발생.

사용 예시:
```python
accounts_store = SystemAccountStore(db, ledger_store, audit)
await accounts_store.apply_codes({"accounts_receivable": "1100"})
system_accounts = await accounts_store.load()

ar_id = system_accounts.require(SystemAccountRole.ACCOUNTS_RECEIVABLE)
```
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Mapping

from core.constants import Defaults
from core.ledger.errors import (
    AccountNotFoundError,
    InvalidAccountTypeError,
    SystemAccountNotConfiguredError,
    ValidationError,
)
from core.ledger.types import (
    ROLE_ACCOUNT_TYPES,
    AuditAction,
    EntityType,
    SystemAccountRole,
)

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter
    from core.ledger.audit import AuditRecorder
    from core.ledger.store import LedgerStore

logger = logging.getLogger(__name__)


def _role_value(role: SystemAccountRole | str) -> str:
    try:
        return SystemAccountRole(role).value
    except ValueError as e:
        raise ValidationError(f"Unknown system account role: {role}") from e


@dataclass(frozen=True)
class SystemAccounts:
    """역할 → 계정 ID 매핑 (읽기 전용)"""
    
    mapping: Mapping[str, int] = field(default_factory=dict)
    
    def __post_init__(self) -> None:
        object.__setattr__(self, "mapping", MappingProxyType(dict(self.mapping)))
    
    def get(self, role: SystemAccountRole | str) -> int | None:
        return self.mapping.get(_role_value(role))
    
    def require(self, role: SystemAccountRole | str) -> int:
        """역할의 계정 ID 반환
        
        Raises:
            SystemAccountNotConfiguredError: 매핑되지 않은 역할
        """
        role_value = _role_value(role)
        account_id = self.mapping.get(role_value)
        if account_id is None:
            raise SystemAccountNotConfiguredError(role_value)
        return account_id
    
    def is_configured(self, role: SystemAccountRole | str) -> bool:
        return self.get(role) is not None


class SystemAccountStore:
    """system_account 테이블 관리
    
    역할 설정 시 계정 유형을 검증.
    
    Args:
        db: SQLite 어댑터
        store: LedgerStore (계정 조회)
        audit: 감사 기록기
    """
    
    def __init__(
        self,
        db: SQLiteAdapter,
        store: LedgerStore,
        audit: AuditRecorder | None = None,
    ):
        self.db = db
        self.store = store
        self.audit = audit
    
    async def load(self) -> SystemAccounts:
        """현재 매핑 로드"""
        rows = await self.db.fetchall("SELECT role, account_id FROM system_account")
        return SystemAccounts({row[0]: row[1] for row in rows})
    
    async def set_role(
        self,
        role: SystemAccountRole | str,
        account_id: int,
        actor: str = Defaults.ACTOR,
    ) -> None:
        """역할에 계정 매핑
        
        Raises:
            AccountNotFoundError: 계정 없음
            InvalidAccountTypeError: 역할이 요구하는 계정 유형이 아님
        """
        role_value = _role_value(role)
        allowed = ROLE_ACCOUNT_TYPES[SystemAccountRole(role_value)]
        
        async with self.db.transaction():
            account = await self.store.get_account(account_id)
            if account.type not in allowed:
                raise InvalidAccountTypeError(
                    account_id,
                    account.type.value,
                    tuple(t.value for t in allowed),
                )
            
            row = await self.db.fetchone(
                "SELECT id, account_id FROM system_account WHERE role = ?",
                (role_value,),
            )
            if row is None:
                mapping_id = await self.db.insert(
                    "INSERT INTO system_account (role, account_id) VALUES (?, ?)",
                    (role_value, account_id),
                )
                action = AuditAction.CREATE
                changes = {"role": role_value, "account_id": account_id}
            else:
                mapping_id = row[0]
                await self.db.execute(
                    "UPDATE system_account SET account_id = ?, updated_at = datetime('now') WHERE id = ?",
                    (account_id, mapping_id),
                )
                action = AuditAction.UPDATE
                changes = {"role": role_value, "account_id": {"from": row[1], "to": account_id}}
            
            if self.audit is not None:
                await self.audit.record(EntityType.SYSTEM_ACCOUNT, mapping_id, action, actor, changes)
        
        logger.info(f"시스템 계정 설정: {role_value} → {account.code} {account.name}")
    
    async def clear_role(self, role: SystemAccountRole | str, actor: str = Defaults.ACTOR) -> None:
        """역할 매핑 제거"""
        role_value = _role_value(role)
        async with self.db.transaction():
            row = await self.db.fetchone("SELECT id FROM system_account WHERE role = ?", (role_value,))
            if row is None:
                return
            await self.db.execute("DELETE FROM system_account WHERE id = ?", (row[0],))
            if self.audit is not None:
                await self.audit.record(
                    EntityType.SYSTEM_ACCOUNT, row[0], AuditAction.DELETE, actor, {"role": role_value}
                )
        logger.info(f"시스템 계정 해제: {role_value}")
    
    async def apply_codes(
        self,
        codes: Mapping[str, str],
        actor: str = Defaults.ACTOR,
    ) -> SystemAccounts:
        """설정 파일의 {role: account_code} 매핑 적용
        
        Raises:
            AccountNotFoundError: 코드에 해당하는 계정 없음
        """
        async with self.db.transaction():
            for role, code in codes.items():
                account = await self.store.get_account_by_code(code)
                if account is None:
                    raise AccountNotFoundError(code)
                await self.set_role(role, account.id, actor)
        return await self.load()
