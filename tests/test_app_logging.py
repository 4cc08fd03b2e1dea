"""
Tests for the daily log file setup and task crash logging.
"""

import asyncio
import logging

import pytest

from util.app_logging import log_task_crash, setup_app_logging


def test_daily_log_file_is_written(tmp_path):
    logger = setup_app_logging(app_name="router_log_test", root=tmp_path,
                               enable_faulthandler=False)
    child = logging.getLogger("router_log_test.channel")
    child.warning("Command B0101 failed permanently")
    for h in logger.handlers:
        h.flush()

    files = list(tmp_path.glob("router_log_test_*.log"))
    assert len(files) == 1
    text = files[0].read_text(encoding="utf-8")
    assert "system logging ready" in text
    assert "[router_log_test.channel] " in text
    assert "failed permanently" in text

    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()


@pytest.mark.asyncio
async def test_task_crash_is_logged(caplog):
    log = logging.getLogger("router_crash_test")

    async def _boom():
        raise RuntimeError("boom")

    task = asyncio.get_running_loop().create_task(_boom())
    task.add_done_callback(log_task_crash(log, "boom-task"))
    with caplog.at_level(logging.ERROR, logger="router_crash_test"):
        with pytest.raises(RuntimeError):
            await task
        await asyncio.sleep(0)

    assert any("TASK CRASHED [boom-task]" in r.getMessage() for r in caplog.records)
