"""
회계기간 가드

분개 쓰기 전에 날짜가 열린 기간인지 확인.
회계연도(fiscal_year) 또는 월별 기간(fiscal_period) 중 하나라도 마감이면 쓰기 거부.
어떤 회계연도에도 속하지 않는 날짜는 열린 것으로 간주.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date
from typing import TYPE_CHECKING

from core.constants import Defaults
from core.domain.state_machines import FiscalStateMachine, StateMachineError
from core.ledger.errors import (
    ClosedPeriodError,
    FiscalPeriodNotFoundError,
    InvalidStatusError,
    ValidationError,
)
from core.ledger.models import FiscalPeriod, FiscalYear
from core.ledger.store import utc_now
from core.ledger.types import AuditAction, EntityType, FiscalStatus

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter
    from core.ledger.audit import AuditRecorder

logger = logging.getLogger(__name__)


def monthly_ranges(year: int, start_month: int = 1) -> list[tuple[date, date]]:
    """start_month부터 12개월의 (시작일, 종료일) 목록
    
    윤년 2월은 29일로 계산.
    """
    ranges = []
    for offset in range(12):
        month_index = start_month - 1 + offset
        y = year + month_index // 12
        m = month_index % 12 + 1
        last_day = calendar.monthrange(y, m)[1]
        ranges.append((date(y, m, 1), date(y, m, last_day)))
    return ranges


class FiscalPeriodGuard:
    """회계기간 가드
    
    is_open / ensure_open 은 순수 조회.
    close/reopen 은 관리 작업 (상태 플래그 + 감사 로그).
    
    Args:
        db: SQLite 어댑터
        audit: 감사 기록기 (관리 작업 기록용)
    """
    
    def __init__(self, db: SQLiteAdapter, audit: AuditRecorder | None = None):
        self.db = db
        self.audit = audit
    
    # -------------------------------------------------------------------------
    # 조회
    # -------------------------------------------------------------------------
    
    async def find_closing(self, value: date) -> str | None:
        """날짜를 막고 있는 마감 기간 이름 (없으면 None)"""
        iso = value.isoformat()
        
        row = await self.db.fetchone(
            """
            SELECT year FROM fiscal_year
            WHERE status = 'closed' AND start_date <= ? AND end_date >= ?
            """,
            (iso, iso),
        )
        if row is not None:
            return f"FY{row[0]}"
        
        row = await self.db.fetchone(
            """
            SELECT period_name FROM fiscal_period
            WHERE status = 'closed' AND start_date <= ? AND end_date >= ?
            """,
            (iso, iso),
        )
        if row is not None:
            return row[0]
        
        return None
    
    async def is_open(self, value: date) -> bool:
        """날짜가 열린 기간에 속하는지"""
        return await self.find_closing(value) is None
    
    async def ensure_open(self, value: date) -> None:
        """마감 기간이면 ClosedPeriodError
        
        Raises:
            ClosedPeriodError: 마감 기간 (기간 이름 포함)
        """
        period_name = await self.find_closing(value)
        if period_name is not None:
            logger.warning(
                f"마감 기간 쓰기 거부: {value.isoformat()} ({period_name})",
            )
            raise ClosedPeriodError(value.isoformat(), period_name)
    
    async def get_fiscal_year(self, year: int) -> FiscalYear:
        row = await self.db.fetchone("SELECT * FROM fiscal_year WHERE year = ?", (year,))
        if row is None:
            raise FiscalPeriodNotFoundError("Fiscal year", year)
        return FiscalYear.from_row(row)
    
    async def get_period(self, period_id: int) -> FiscalPeriod:
        row = await self.db.fetchone("SELECT * FROM fiscal_period WHERE id = ?", (period_id,))
        if row is None:
            raise FiscalPeriodNotFoundError("Fiscal period", period_id)
        return FiscalPeriod.from_row(row)
    
    async def find_period(self, value: date) -> FiscalPeriod | None:
        iso = value.isoformat()
        row = await self.db.fetchone(
            "SELECT * FROM fiscal_period WHERE start_date <= ? AND end_date >= ?",
            (iso, iso),
        )
        return FiscalPeriod.from_row(row) if row else None
    
    async def list_periods(self, fiscal_year_id: int) -> list[FiscalPeriod]:
        rows = await self.db.fetchall(
            "SELECT * FROM fiscal_period WHERE fiscal_year_id = ? ORDER BY period_number",
            (fiscal_year_id,),
        )
        return [FiscalPeriod.from_row(row) for row in rows]
    
    # -------------------------------------------------------------------------
    # 관리 작업
    # -------------------------------------------------------------------------
    
    async def create_fiscal_year(
        self,
        year: int,
        start_month: int = 1,
        actor: str = Defaults.ACTOR,
    ) -> FiscalYear:
        """회계연도 + 월별 기간 12개 생성
        
        Raises:
            ValidationError: 중복 연도, 기존 연도와 기간 겹침, 잘못된 시작월
        """
        if not 1 <= start_month <= 12:
            raise ValidationError(f"start_month must be 1-12, got {start_month}")
        
        ranges = monthly_ranges(year, start_month)
        start_date, end_date = ranges[0][0], ranges[-1][1]
        
        async with self.db.transaction():
            existing = await self.db.fetchone("SELECT id FROM fiscal_year WHERE year = ?", (year,))
            if existing is not None:
                raise ValidationError(f"Fiscal year {year} already exists")
            
            overlap = await self.db.fetchone(
                "SELECT year FROM fiscal_year WHERE start_date <= ? AND end_date >= ?",
                (end_date.isoformat(), start_date.isoformat()),
            )
            if overlap is not None:
                raise ValidationError(
                    f"Fiscal year {year} overlaps existing fiscal year {overlap[0]}"
                )
            
            fiscal_year_id = await self.db.insert(
                "INSERT INTO fiscal_year (year, start_date, end_date, status) VALUES (?, ?, ?, 'open')",
                (year, start_date.isoformat(), end_date.isoformat()),
            )
            
            await self.db.executemany(
                """
                INSERT INTO fiscal_period (
                    fiscal_year_id, period_number, period_name, start_date, end_date, status
                ) VALUES (?, ?, ?, ?, ?, 'open')
                """,
                [
                    (
                        fiscal_year_id,
                        number,
                        period_start.strftime("%Y-%m"),
                        period_start.isoformat(),
                        period_end.isoformat(),
                    )
                    for number, (period_start, period_end) in enumerate(ranges, start=1)
                ],
            )
            
            await self._record(
                EntityType.FISCAL_YEAR,
                fiscal_year_id,
                AuditAction.CREATE,
                actor,
                {"year": year, "start_date": start_date, "end_date": end_date},
            )
        
        logger.info(f"회계연도 생성: {year} ({start_date} ~ {end_date})")
        return await self.get_fiscal_year(year)
    
    async def close_period(self, period_id: int, actor: str = Defaults.ACTOR) -> FiscalPeriod:
        """월별 기간 마감"""
        return await self._set_period_status(period_id, FiscalStatus.CLOSED, actor)
    
    async def reopen_period(self, period_id: int, actor: str = Defaults.ACTOR) -> FiscalPeriod:
        """월별 기간 재개"""
        return await self._set_period_status(period_id, FiscalStatus.OPEN, actor)
    
    async def close_year(self, year: int, actor: str = Defaults.ACTOR) -> FiscalYear:
        """회계연도 마감 (결산 분개는 생성하지 않음)"""
        return await self._set_year_status(year, FiscalStatus.CLOSED, actor)
    
    async def reopen_year(self, year: int, actor: str = Defaults.ACTOR) -> FiscalYear:
        """회계연도 재개"""
        return await self._set_year_status(year, FiscalStatus.OPEN, actor)
    
    async def _set_period_status(
        self,
        period_id: int,
        target: FiscalStatus,
        actor: str,
    ) -> FiscalPeriod:
        async with self.db.transaction():
            period = await self.get_period(period_id)
            self._check_transition(f"period {period.period_name}", period.status, target)
            
            closed_at, closed_by = (utc_now(), actor) if target == FiscalStatus.CLOSED else (None, None)
            await self.db.execute(
                "UPDATE fiscal_period SET status = ?, closed_at = ?, closed_by = ? WHERE id = ?",
                (target.value, closed_at, closed_by, period_id),
            )
            await self._record(
                EntityType.FISCAL_PERIOD,
                period_id,
                AuditAction.UPDATE,
                actor,
                {"status": {"from": period.status, "to": target.value}},
            )
        
        logger.info(f"회계기간 {period.period_name}: {period.status} → {target.value}")
        return await self.get_period(period_id)
    
    async def _set_year_status(self, year: int, target: FiscalStatus, actor: str) -> FiscalYear:
        async with self.db.transaction():
            fiscal_year = await self.get_fiscal_year(year)
            self._check_transition(f"fiscal year {year}", fiscal_year.status, target)
            
            closed_at, closed_by = (utc_now(), actor) if target == FiscalStatus.CLOSED else (None, None)
            await self.db.execute(
                "UPDATE fiscal_year SET status = ?, closed_at = ?, closed_by = ? WHERE id = ?",
                (target.value, closed_at, closed_by, fiscal_year.id),
            )
            await self._record(
                EntityType.FISCAL_YEAR,
                fiscal_year.id,
                AuditAction.UPDATE,
                actor,
                {"status": {"from": fiscal_year.status, "to": target.value}},
            )
        
        logger.info(f"회계연도 {year}: {fiscal_year.status} → {target.value}")
        return await self.get_fiscal_year(year)
    
    @staticmethod
    def _check_transition(label: str, current: str, target: FiscalStatus) -> None:
        try:
            FiscalStateMachine(current).transition(target)
        except StateMachineError as e:
            raise InvalidStatusError(f"Cannot set {label} to {target.value}: {e}") from e
    
    async def _record(self, *args, **kwargs) -> None:
        if self.audit is not None:
            await self.audit.record(*args, **kwargs)
