"""
감사 로그 기록기

모든 변경 작업이 주 쓰기와 같은 트랜잭션 안에서 호출.
주 쓰기가 롤백되면 감사 레코드도 함께 롤백됨.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from core.ledger.errors import ValidationError
from core.ledger.models import AuditLogEntry
from core.ledger.types import AuditAction, EntityType

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)


class AuditRecorder:
    """감사 로그 기록기
    
    audit_log 테이블에 추가만 수행 (수정/삭제 API 없음).
    
    Args:
        db: SQLite 어댑터
    """
    
    def __init__(self, db: SQLiteAdapter):
        self.db = db
    
    async def record(
        self,
        entity_type: EntityType | str,
        entity_id: int,
        action: AuditAction | str,
        actor: str,
        changes: dict[str, Any] | None = None,
    ) -> int:
        """감사 레코드 추가
        
        Args:
            entity_type: 대상 엔티티 유형
            entity_id: 대상 ID
            action: create/update/delete/post/void
            actor: 수행자
            changes: 변경 내용 (Decimal/date는 문자열로 직렬화)
            
        Returns:
            audit_log id
            
        Raises:
            ValidationError: 필수 필드 누락
        """
        entity_type_value = entity_type.value if isinstance(entity_type, EntityType) else entity_type
        if not entity_type_value:
            raise ValidationError("Audit record requires an entity type")
        if entity_id is None:
            raise ValidationError("Audit record requires an entity id")
        if not actor:
            raise ValidationError("Audit record requires an actor")
        try:
            action_value = AuditAction(action).value
        except ValueError as e:
            raise ValidationError(f"Invalid audit action: {action}") from e
        
        payload = json.dumps(changes, default=str, sort_keys=True) if changes else None
        
        async with self.db.transaction():
            audit_id = await self.db.insert(
                """
                INSERT INTO audit_log (entity_type, entity_id, action, user_id, changes, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    entity_type_value,
                    entity_id,
                    action_value,
                    actor,
                    payload,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
        
        logger.debug(
            f"Audit: {entity_type_value}#{entity_id} {action_value} by {actor}",
        )
        return audit_id
    
    async def list_records(
        self,
        entity_type: EntityType | str | None = None,
        entity_id: int | None = None,
        action: AuditAction | str | None = None,
    ) -> list[AuditLogEntry]:
        """감사 로그 조회 (id 오름차순)"""
        sql = "SELECT * FROM audit_log WHERE 1=1"
        params: list[Any] = []
        
        if entity_type is not None:
            sql += " AND entity_type = ?"
            params.append(entity_type.value if isinstance(entity_type, EntityType) else entity_type)
        
        if entity_id is not None:
            sql += " AND entity_id = ?"
            params.append(entity_id)
        
        if action is not None:
            sql += " AND action = ?"
            params.append(AuditAction(action).value)
        
        sql += " ORDER BY id"
        
        rows = await self.db.fetchall(sql, tuple(params))
        return [AuditLogEntry.from_row(row) for row in rows]
