"""
하드코딩 상수 - 변경될 일이 거의 없는 고정값

중요: 경로는 반드시 pathlib.Path 사용 (Windows/Linux 크로스 플랫폼)
"""

from decimal import Decimal
from pathlib import Path


# 프로젝트 루트 (이 파일 기준 2단계 상위: core/constants.py → 프로젝트 루트)
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent


class Defaults:
    """기본값 상수"""

    ACTOR: str = "system"
    LOG_LEVEL: str = "INFO"

    # 금액 비교 허용 오차 (1센트)
    EPSILON: Decimal = Decimal("0.01")

    # 자동 매칭 금액 허용 비율 (2%)
    MATCH_TOLERANCE: Decimal = Decimal("0.02")


class Paths:
    """프로젝트 경로 상수 (pathlib 사용 - OS 독립적)"""

    # 디렉토리
    CONFIG_DIR: Path = PROJECT_ROOT / "config"
    DATA_DIR: Path = PROJECT_ROOT / "data"
    LOGS_DIR: Path = PROJECT_ROOT / "logs"

    # 설정 파일
    CONFIG_FILE: Path = CONFIG_DIR / "ledger.yaml"

    # DB 파일
    LEDGER_DB: Path = DATA_DIR / "ledger.db"
