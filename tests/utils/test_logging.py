from __future__ import annotations

from pathlib import Path

from session_guard.utils import LoggingOptions, configure_logging, get_logger, log_file_path


def test_file_logging_reports_its_path(tmp_path: Path) -> None:
    target = tmp_path / "session-guard.log"
    try:
        assert configure_logging(LoggingOptions(level="DEBUG", log_path=target)) == target
        assert log_file_path() == target
        get_logger(__name__).info("File sink attached", path=str(target))
    finally:
        configure_logging(LoggingOptions(level="DEBUG", log_to_file=False))

    assert log_file_path() is None
