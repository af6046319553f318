from __future__ import annotations

import logging

from marketplace.utils.log import setup_logging


def _installed() -> list[logging.Handler]:
    return [h for h in logging.getLogger().handlers if getattr(h, "_marketplace", False)]


def test_setup_logging_writes_file_and_replaces_its_handlers(tmp_path):
    log_file = tmp_path / "latest.log"
    try:
        setup_logging(str(log_file), "debug")
        setup_logging(str(log_file), "debug")

        assert len(_installed()) == 2
        logging.getLogger("marketplace.test").info("hello from the test")
        for handler in _installed():
            handler.flush()

        line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
        assert "[INFO] marketplace.test: hello from the test" in line
    finally:
        setup_logging(None, "WARNING")


def test_unknown_level_falls_back_to_info():
    try:
        setup_logging(None, "chatty")
        assert logging.getLogger().level == logging.INFO
        assert len(_installed()) == 1
    finally:
        setup_logging(None, "WARNING")
