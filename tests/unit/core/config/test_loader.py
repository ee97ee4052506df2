"""
core/config/loader.py 테스트

ledger.yaml 로드, 검증, Settings 싱글턴 테스트
"""

import logging
from pathlib import Path

import pytest

from core.config.loader import (
    ConfigLoadError,
    LedgerConfig,
    Settings,
    get_settings,
    load_config,
)
from core.constants import PROJECT_ROOT, Defaults, Paths
from core.ledger.types import DEFAULT_SYSTEM_ACCOUNT_CODES


class TestLedgerConfig:
    """LedgerConfig 데이터클래스 테스트"""

    def test_defaults(self) -> None:
        """기본값"""
        config = LedgerConfig(db_path=Path("ledger.db"))

        assert config.default_actor == Defaults.ACTOR
        assert config.console_level == logging.INFO
        assert config.system_account_codes == DEFAULT_SYSTEM_ACCOUNT_CODES

    def test_frozen(self) -> None:
        """불변성 확인"""
        config = LedgerConfig(db_path=Path("ledger.db"))

        with pytest.raises(AttributeError):
            config.default_actor = "someone"  # type: ignore


class TestLoadConfig:
    """load_config 함수 테스트"""

    def test_load_valid_config(self, temp_config_file: Path, temp_dir: Path) -> None:
        """유효한 설정 파일 로드"""
        config = load_config(temp_config_file)

        assert config.db_path == temp_dir / "ledger.db"
        assert config.default_actor == "tester"
        assert config.console_level == logging.WARNING
        assert config.file_level == logging.DEBUG
        assert config.system_account_codes == {
            "accounts_receivable": "1100",
            "accounts_payable": "2000",
            "sales_tax_payable": "2220",
            "cash_default": "1000",
        }

    def test_file_not_found(self, temp_dir: Path) -> None:
        """파일 없음 오류"""
        with pytest.raises(ConfigLoadError, match="찾을 수 없습니다"):
            load_config(temp_dir / "nonexistent.yaml")

    def test_empty_file(self, temp_dir: Path) -> None:
        """빈 파일 오류"""
        path = temp_dir / "empty.yaml"
        path.write_text("", encoding="utf-8")

        with pytest.raises(ConfigLoadError, match="비어 있습니다"):
            load_config(path)

    def test_invalid_yaml(self, temp_dir: Path) -> None:
        """YAML 파싱 오류"""
        path = temp_dir / "broken.yaml"
        path.write_text("database: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigLoadError, match="파싱 실패"):
            load_config(path)

    def test_top_level_must_be_mapping(self, temp_dir: Path) -> None:
        path = temp_dir / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ConfigLoadError, match="매핑"):
            load_config(path)

    def test_defaults_when_sections_missing(self, temp_dir: Path) -> None:
        """섹션 누락 시 기본값 사용"""
        path = temp_dir / "minimal.yaml"
        path.write_text("audit:\n  default_actor: owner\n", encoding="utf-8")

        config = load_config(path)

        assert config.db_path == Paths.LEDGER_DB
        assert config.default_actor == "owner"
        assert config.system_account_codes == DEFAULT_SYSTEM_ACCOUNT_CODES

    def test_relative_db_path_resolves_to_project_root(self, temp_dir: Path) -> None:
        """상대 DB 경로는 프로젝트 루트 기준"""
        path = temp_dir / "relative.yaml"
        path.write_text("database:\n  path: data/books.db\n", encoding="utf-8")

        config = load_config(path)

        assert config.db_path == PROJECT_ROOT / "data" / "books.db"

    def test_invalid_log_level(self, temp_dir: Path) -> None:
        """유효하지 않은 로그 레벨"""
        path = temp_dir / "level.yaml"
        path.write_text("logging:\n  console_level: LOUD\n", encoding="utf-8")

        with pytest.raises(ConfigLoadError, match="로그 레벨"):
            load_config(path)

    def test_unknown_system_account_role(self, temp_config_file_unknown_role: Path) -> None:
        """알 수 없는 역할 이름"""
        with pytest.raises(ConfigLoadError, match="petty_cash"):
            load_config(temp_config_file_unknown_role)

    def test_empty_account_code(self, temp_dir: Path) -> None:
        path = temp_dir / "empty_code.yaml"
        path.write_text("system_accounts:\n  accounts_receivable:\n", encoding="utf-8")

        with pytest.raises(ConfigLoadError, match="accounts_receivable"):
            load_config(path)


class TestSettings:
    """Settings 싱글턴 테스트"""

    def test_singleton(self, temp_config_file: Path) -> None:
        """같은 인스턴스 반환"""
        Settings.reset()

        first = get_settings(temp_config_file)
        second = get_settings()

        assert first is second
        assert second.default_actor == "tester"

        Settings.reset()

    def test_properties(self, temp_config_file: Path, temp_dir: Path) -> None:
        Settings.reset()

        settings = Settings(temp_config_file)

        assert settings.db_path == temp_dir / "ledger.db"
        assert settings.system_account_codes["cash_default"] == "1000"
        assert settings.config.file_level == logging.DEBUG

        Settings.reset()

    def test_reset(self, temp_config_file: Path, temp_dir: Path) -> None:
        """reset 후 다시 로드"""
        Settings.reset()
        get_settings(temp_config_file)

        other = temp_dir / "other.yaml"
        other.write_text("audit:\n  default_actor: auditor\n", encoding="utf-8")

        Settings.reset()
        settings = get_settings(other)

        assert settings.default_actor == "auditor"

        Settings.reset()
