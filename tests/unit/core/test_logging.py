"""core/logging.py 테스트"""

import logging
from pathlib import Path

from core.logging import NOISY_LOGGERS, get_log_file_path, setup_logging


class TestGetLogFilePath:
    """get_log_file_path 테스트"""

    def test_custom_dir(self, tmp_path: Path) -> None:
        assert get_log_file_path("ledger", tmp_path) == tmp_path / "ledger.log"


class TestSetupLogging:
    """setup_logging 테스트"""

    def test_handlers_configured(self, tmp_path: Path) -> None:
        """콘솔/파일 핸들러 1개씩 설정"""
        root = setup_logging(
            "ledger_test",
            console_level=logging.WARNING,
            file_level=logging.DEBUG,
            log_dir=tmp_path,
        )

        try:
            assert len(root.handlers) == 2
            levels = sorted(handler.level for handler in root.handlers)
            assert levels == [logging.DEBUG, logging.WARNING]
            assert (tmp_path / "ledger_test.log").exists()
        finally:
            for handler in list(root.handlers):
                root.removeHandler(handler)
                handler.close()

    def test_noisy_loggers_quieted(self, tmp_path: Path) -> None:
        root = setup_logging("ledger_quiet", log_dir=tmp_path)

        try:
            for name in NOISY_LOGGERS:
                assert logging.getLogger(name).level == logging.WARNING
        finally:
            for handler in list(root.handlers):
                root.removeHandler(handler)
                handler.close()

    def test_repeated_setup_does_not_duplicate(self, tmp_path: Path) -> None:
        """재호출 시 핸들러 중복 없음"""
        setup_logging("ledger_again", log_dir=tmp_path)
        root = setup_logging("ledger_again", log_dir=tmp_path)

        try:
            assert len(root.handlers) == 2
        finally:
            for handler in list(root.handlers):
                root.removeHandler(handler)
                handler.close()
