"""
pytest 공통 fixture 정의

임시 디렉토리, 임시 ledger.yaml, 초기화된 임시 Ledger DB
"""

import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from adapters.db.sqlite_adapter import SQLiteAdapter
from core.ledger.schema import init_ledger_schema
from core.ledger.services import LedgerServices, create_services
from core.ledger.store import LedgerStore
from core.ledger.system_accounts import SystemAccountStore
from core.ledger.types import DEFAULT_SYSTEM_ACCOUNT_CODES


@pytest.fixture
def temp_dir() -> Path:
    """OS 독립적인 임시 디렉토리 생성"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_config_file(temp_dir: Path) -> Path:
    """테스트용 ledger.yaml 파일 생성"""
    config_content = f"""# 테스트용 ledger.yaml
database:
  path: {(temp_dir / "ledger.db").as_posix()}

audit:
  default_actor: tester

logging:
  console_level: WARNING
  file_level: debug

system_accounts:
  accounts_receivable: "1100"
  accounts_payable: "2000"
  sales_tax_payable: "2220"
  cash_default: "1000"
"""
    config_path = temp_dir / "ledger.yaml"
    config_path.write_text(config_content, encoding="utf-8")
    return config_path


@pytest.fixture
def temp_config_file_unknown_role(temp_dir: Path) -> Path:
    """알 수 없는 역할이 포함된 ledger.yaml 파일 생성"""
    config_content = """system_accounts:
  accounts_receivable: "1100"
  petty_cash: "1000"
"""
    config_path = temp_dir / "ledger_invalid.yaml"
    config_path.write_text(config_content, encoding="utf-8")
    return config_path


@pytest_asyncio.fixture
async def db(temp_dir: Path) -> SQLiteAdapter:
    """스키마와 기본 계정과목표가 생성된 임시 DB"""
    adapter = SQLiteAdapter(temp_dir / "test_ledger.db")
    await adapter.connect()
    await init_ledger_schema(adapter)

    yield adapter

    await adapter.close()


@pytest.fixture
def store(db: SQLiteAdapter) -> LedgerStore:
    """LedgerStore 인스턴스"""
    return LedgerStore(db)


@pytest_asyncio.fixture
async def services(db: SQLiteAdapter, store: LedgerStore) -> LedgerServices:
    """기본 역할 매핑이 적용된 Ledger 서비스"""
    await SystemAccountStore(db, store).apply_codes(DEFAULT_SYSTEM_ACCOUNT_CODES)
    return await create_services(db)


@pytest_asyncio.fixture
async def accounts(store: LedgerStore) -> dict[str, int]:
    """계정 코드 → ID 매핑"""
    return {account.code: account.id for account in await store.list_accounts(include_inactive=True)}
