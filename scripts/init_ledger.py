"""
Ledger DB 초기화

스키마 + 기본 계정과목표 생성 후 ledger.yaml의 시스템 계정 역할을 적용.
여러 번 실행해도 안전 (기존 데이터 유지).

사용법:
    python -m scripts.init_ledger
    python -m scripts.init_ledger --config config/ledger.yaml --fiscal-year 2024
"""

import argparse
import asyncio
import logging
from pathlib import Path

# 프로젝트 루트를 Python 경로에 추가
import sys
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from adapters.db.sqlite_adapter import SQLiteAdapter
from core.config.loader import ConfigLoadError, load_config
from core.ledger.audit import AuditRecorder
from core.ledger.errors import LedgerError
from core.ledger.periods import FiscalPeriodGuard
from core.ledger.schema import init_ledger_schema
from core.ledger.store import LedgerStore
from core.ledger.system_accounts import SystemAccountStore
from core.logging import setup_logging

logger = logging.getLogger(__name__)


async def main(config_path: Path | None, fiscal_year: int | None) -> None:
    """초기화 실행
    
    Args:
        config_path: ledger.yaml 경로 (None이면 기본 경로)
        fiscal_year: 함께 생성할 회계연도 (None이면 생성 안 함)
    """
    config = load_config(config_path)
    setup_logging("init_ledger", config.console_level, config.file_level)
    
    logger.info(f"Ledger 초기화 시작: {config.db_path}")
    
    async with SQLiteAdapter(config.db_path) as db:
        await init_ledger_schema(db)
        
        store = LedgerStore(db)
        audit = AuditRecorder(db)
        system_accounts = await SystemAccountStore(db, store, audit).apply_codes(
            config.system_account_codes, config.default_actor
        )
        logger.info(f"시스템 계정 {len(system_accounts.mapping)}개 설정")
        
        if fiscal_year is not None:
            guard = FiscalPeriodGuard(db, audit)
            row = await db.fetchone("SELECT id FROM fiscal_year WHERE year = ?", (fiscal_year,))
            if row is None:
                await guard.create_fiscal_year(fiscal_year, actor=config.default_actor)
            else:
                logger.info(f"회계연도 {fiscal_year} 이미 존재")
        
        accounts = await store.list_accounts(include_inactive=True)
        logger.info(f"등록된 계정 수: {len(accounts)}")
    
    logger.info("Ledger 초기화 완료 ✓")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Ledger DB 초기화"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="ledger.yaml 경로 (기본: config/ledger.yaml)"
    )
    parser.add_argument(
        "--fiscal-year",
        type=int,
        default=None,
        help="생성할 회계연도 (예: 2024)"
    )
    args = parser.parse_args()
    
    try:
        asyncio.run(main(args.config, args.fiscal_year))
    except (ConfigLoadError, LedgerError) as e:
        print(f"초기화 실패: {e}", file=sys.stderr)
        sys.exit(1)
