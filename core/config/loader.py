"""
설정 로더

ledger.yaml 로드 및 Ledger 설정 생성
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from core.constants import PROJECT_ROOT, Defaults, Paths
from core.ledger.types import DEFAULT_SYSTEM_ACCOUNT_CODES, SystemAccountRole

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class LedgerConfig:
    """Ledger 설정 (ledger.yaml에서 로드)

    불변 데이터 구조로 설정 변경 방지
    """

    db_path: Path
    default_actor: str = Defaults.ACTOR
    console_level: int = logging.INFO
    file_level: int = logging.DEBUG
    system_account_codes: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_SYSTEM_ACCOUNT_CODES)
    )


class ConfigLoadError(Exception):
    """설정 로드 실패 예외"""

    pass


def load_config(path: Path | None = None) -> LedgerConfig:
    """ledger.yaml 파일 로드

    Args:
        path: ledger.yaml 경로 (None이면 기본 경로 사용)

    Returns:
        LedgerConfig 인스턴스

    Raises:
        ConfigLoadError: 파일이 없거나 형식이 잘못된 경우
    """
    if path is None:
        path = Paths.CONFIG_FILE

    if not path.exists():
        raise ConfigLoadError(f"ledger.yaml 파일을 찾을 수 없습니다: {path}")

    try:
        content = path.read_text(encoding="utf-8")
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"ledger.yaml 파싱 실패: {e}") from e

    if data is None:
        raise ConfigLoadError("ledger.yaml이 비어 있습니다")
    if not isinstance(data, dict):
        raise ConfigLoadError("ledger.yaml 최상위는 매핑이어야 합니다")

    # DB 경로 (상대 경로는 프로젝트 루트 기준)
    database = data.get("database") or {}
    db_path_str = database.get("path")
    if db_path_str:
        db_path = Path(db_path_str)
        if not db_path.is_absolute():
            db_path = PROJECT_ROOT / db_path
    else:
        db_path = Paths.LEDGER_DB

    audit = data.get("audit") or {}
    default_actor = audit.get("default_actor", Defaults.ACTOR)
    if not default_actor:
        raise ConfigLoadError("ledger.yaml의 audit 섹션에 'default_actor'가 비어 있습니다")

    logging_config = data.get("logging") or {}
    console_level = _parse_level(logging_config.get("console_level", Defaults.LOG_LEVEL))
    file_level = _parse_level(logging_config.get("file_level", "DEBUG"))

    return LedgerConfig(
        db_path=db_path,
        default_actor=str(default_actor),
        console_level=console_level,
        file_level=file_level,
        system_account_codes=_parse_system_accounts(data.get("system_accounts")),
    )


def _parse_level(value: object) -> int:
    name = str(value).upper()
    if name not in _LOG_LEVELS:
        raise ConfigLoadError(
            f"유효하지 않은 로그 레벨입니다: '{value}'. 유효한 값: {list(_LOG_LEVELS)}"
        )
    return getattr(logging, name)


def _parse_system_accounts(section: object) -> dict[str, str]:
    """system_accounts 섹션 검증 (역할 → 계정 코드)"""
    if section is None:
        return dict(DEFAULT_SYSTEM_ACCOUNT_CODES)
    if not isinstance(section, dict):
        raise ConfigLoadError("ledger.yaml의 system_accounts는 매핑이어야 합니다")

    valid_roles = [role.value for role in SystemAccountRole]
    codes = {}
    for role, code in section.items():
        if role not in valid_roles:
            raise ConfigLoadError(
                f"알 수 없는 시스템 계정 역할입니다: '{role}'. 유효한 값: {valid_roles}"
            )
        if code is None or str(code).strip() == "":
            raise ConfigLoadError(f"system_accounts.{role}에 계정 코드가 없습니다")
        codes[role] = str(code)
    return codes


class Settings:
    """애플리케이션 설정 (싱글턴 패턴)

    ledger.yaml을 로드하고 관련 설정을 제공
    """

    _instance: "Settings | None" = None
    _config: LedgerConfig | None = None

    def __new__(cls, config_path: Path | None = None) -> "Settings":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, config_path: Path | None = None) -> None:
        if self._config is None:
            self._config = load_config(config_path)

    @property
    def config(self) -> LedgerConfig:
        assert self._config is not None
        return self._config

    @property
    def db_path(self) -> Path:
        """Ledger DB 경로"""
        assert self._config is not None
        return self._config.db_path

    @property
    def default_actor(self) -> str:
        """감사 로그 기본 수행자"""
        assert self._config is not None
        return self._config.default_actor

    @property
    def system_account_codes(self) -> dict[str, str]:
        assert self._config is not None
        return dict(self._config.system_account_codes)

    @classmethod
    def reset(cls) -> None:
        """싱글턴 인스턴스 초기화 (테스트용)"""
        cls._instance = None
        cls._config = None


def get_settings(config_path: Path | None = None) -> Settings:
    """Settings 인스턴스 반환

    Args:
        config_path: ledger.yaml 경로 (None이면 기본 경로 사용)

    Returns:
        Settings 싱글턴 인스턴스
    """
    return Settings(config_path)
