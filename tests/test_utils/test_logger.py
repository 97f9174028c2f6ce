"""Loguru sink layout for the indexer processes."""

import sys

import pytest
from loguru import logger

from src.utils.logger import setup_logger


@pytest.fixture
def log_dir(tmp_path, monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    yield tmp_path
    logger.remove()
    logger.add(sys.stderr)


def _flush():
    # Removing the sinks closes the files.
    logger.remove()


def test_process_file_captures_debug(log_dir):
    setup_logger(process="scan_range", log_dir=str(log_dir))
    logger.debug("[SCAN] page skipped")
    _flush()

    files = list(log_dir.glob("scan_range_*.log"))
    assert len(files) == 1
    assert "[SCAN] page skipped" in files[0].read_text()


def test_graduations_get_their_own_file(log_dir):
    setup_logger(log_dir=str(log_dir))
    logger.info("[GRADUATED] Pool 0xaaa graduated with 2150000000000 octas in reserves")
    logger.info("[INDEXER] 1 program tx in 5 scanned (v42)")
    _flush()

    graduations = (log_dir / "graduations.log").read_text()
    assert "Pool 0xaaa graduated" in graduations
    assert "[INDEXER]" not in graduations

    indexer_log = next(log_dir.glob("indexer_*.log")).read_text()
    assert "[GRADUATED]" in indexer_log
    assert "[INDEXER]" in indexer_log


def test_json_logs_serialize_files(log_dir):
    setup_logger(log_dir=str(log_dir), json_logs=True)
    logger.info("[GRADUATED] Pool 0xbbb graduated")
    _flush()

    line = (log_dir / "graduations.log").read_text().splitlines()[0]
    assert line.startswith("{")
    assert '"message": "[GRADUATED] Pool 0xbbb graduated"' in line
