# util/app_logging.py
# -*- coding: utf-8 -*-
r"""
라우터 채널 시스템 로그

  Logs/ERROR/matrix_router_YYYYMMDD.log                 하루 1개 (자정 넘으면 새 파일)
  Logs/ERROR/matrix_router_YYYYMMDD_HHMMSS_pidN.fault.log 네이티브 크래시 덤프

- 하위 로거: matrix_router.link / .conn / .channel / .worker / .client / .report
- 호출측 루프와 채널 워커 루프 양쪽에 asyncio 예외 핸들러를 붙인다
"""

from __future__ import annotations

import asyncio
import atexit
import faulthandler
import logging
import os
import sys
import threading
import warnings
from datetime import date, datetime
from pathlib import Path
from typing import IO, Callable, Optional

from lib import config_common as cfgc

LOG_FORMAT = ("%(asctime)s.%(msecs)03d [%(levelname)s] [%(name)s] "
              "[tid=%(thread)d] %(message)s")
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

_fault_lock = threading.Lock()
_fault_fp: Optional[IO[str]] = None


def _log_dir(root: Path) -> Path:
    """root 생성 실패(권한/드라이브 없음) 시 작업 폴더 아래로."""
    for cand in (Path(root), Path.cwd() / "Logs" / "ERROR"):
        try:
            cand.mkdir(parents=True, exist_ok=True)
            return cand
        except OSError:
            continue
    raise OSError(f"log directory unavailable: {root}")


class _DailyFileHandler(logging.Handler):
    """
    날짜별 파일 핸들러. emit 시점의 날짜로 파일을 고른다.
    워커 스레드와 호출 스레드가 같이 쓰므로 Handler 자체 락(acquire/release) 사용.
    """

    def __init__(self, app_name: str, root: Path, level: int = logging.INFO):
        super().__init__(level=level)
        self._app_name = app_name
        self._dir = _log_dir(root)
        self._day: Optional[date] = None
        self._fp: Optional[IO[str]] = None
        self._switch(date.today())

    @property
    def current_path(self) -> Path:
        return self._path_for(self._day or date.today())

    def _path_for(self, day: date) -> Path:
        return self._dir / f"{self._app_name}_{day:%Y%m%d}.log"

    def _switch(self, day: date) -> None:
        if self._fp is not None:
            self._fp.close()
        self._day = day
        self._fp = open(self._path_for(day), "a", encoding="utf-8", buffering=1)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
            self.acquire()
            try:
                today = date.today()
                if today != self._day or self._fp is None:
                    self._switch(today)
                self._fp.write(line + "\n")
            finally:
                self.release()
        except Exception:
            self.handleError(record)

    def flush(self) -> None:
        self.acquire()
        try:
            if self._fp is not None:
                self._fp.flush()
        finally:
            self.release()

    def close(self) -> None:
        self.acquire()
        try:
            if self._fp is not None:
                self._fp.close()
                self._fp = None
        finally:
            self.release()
        super().close()


def _enable_fault_dump(log_dir: Path, app_name: str) -> Path:
    """프로세스당 1번. 파일 핸들은 종료 시까지 유지해야 덤프가 남는다."""
    global _fault_fp
    now = datetime.now()
    path = log_dir / f"{app_name}_{now:%Y%m%d_%H%M%S}_pid{os.getpid()}.fault.log"
    with _fault_lock:
        if _fault_fp is None:
            _fault_fp = open(path, "a", encoding="utf-8", buffering=1)
            faulthandler.enable(file=_fault_fp, all_threads=True)
    return path


def _disable_fault_dump() -> None:
    global _fault_fp
    with _fault_lock:
        if _fault_fp is not None:
            faulthandler.disable()
            _fault_fp.close()
            _fault_fp = None


def setup_app_logging(
    app_name: str = cfgc.APP_NAME,
    root: Path = cfgc.LOG_ROOT,
    file_level: int = logging.INFO,
    console_level: int = logging.INFO,
    enable_console: bool = False,
    enable_faulthandler: bool = True,
) -> logging.Logger:
    """
    앱 로거 초기화 (여러 번 불러도 핸들러는 한 번만 붙는다)
    - DEBUG_PRINT 면 파일/콘솔 모두 DEBUG (송수신 원문 포함)
    """
    logger = logging.getLogger(app_name)
    if any(isinstance(h, _DailyFileHandler) for h in logger.handlers):
        return logger

    if cfgc.DEBUG_PRINT:
        file_level = console_level = logging.DEBUG
    levels = [file_level] + ([console_level] if enable_console else [])
    logger.setLevel(min(levels))
    logger.propagate = False
    fmt = logging.Formatter(LOG_FORMAT, LOG_DATEFMT)

    daily = _DailyFileHandler(app_name, Path(root), level=file_level)
    daily.setFormatter(fmt)
    logger.addHandler(daily)

    if enable_console:
        con = logging.StreamHandler(sys.__stderr__)
        con.setLevel(console_level)
        con.setFormatter(fmt)
        logger.addHandler(con)

    if enable_faulthandler:
        try:
            fault_path = _enable_fault_dump(daily.current_path.parent, app_name)
            logger.info("faulthandler enabled -> %s", fault_path)
        except OSError:
            logger.exception("faulthandler enable failed")

    def _on_exit() -> None:
        logger.info("process exiting (atexit)")
        _disable_fault_dump()

    atexit.register(_on_exit)
    logger.info("system logging ready. root=%s", daily.current_path.parent)
    return logger


def install_global_exception_hooks(logger: logging.Logger) -> None:
    """메인/워커 스레드에서 잡히지 않은 예외를 CRITICAL 로 남긴다."""
    prev_sys_hook = sys.excepthook

    def _on_uncaught(exc_type, exc, tb):
        logger.critical("UNCAUGHT EXCEPTION (main thread)", exc_info=(exc_type, exc, tb))
        prev_sys_hook(exc_type, exc, tb)

    def _on_thread_uncaught(args: threading.ExceptHookArgs):
        name = args.thread.name if args.thread is not None else "?"
        logger.critical("UNCAUGHT EXCEPTION (thread=%s)", name,
                        exc_info=(args.exc_type, args.exc_value, args.exc_traceback))

    sys.excepthook = _on_uncaught
    threading.excepthook = _on_thread_uncaught


def install_asyncio_exception_logging(loop: asyncio.AbstractEventLoop, logger: logging.Logger) -> None:
    def _handler(_loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exc = context.get("exception")
        text = context.get("message") or "(no message)"
        if exc is not None:
            logger.error("ASYNCIO EXCEPTION: %s", text, exc_info=exc)
        else:
            logger.error("ASYNCIO EXCEPTION: %s | context=%s", text, context)

    loop.set_exception_handler(_handler)
    logger.debug("asyncio exception handler installed (loop id=%s)", id(loop))


def log_task_crash(logger: logging.Logger, name: str) -> Callable[[asyncio.Task], None]:
    """add_done_callback 용. 취소는 무시하고 예외 종료만 기록."""
    def _done(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("TASK CRASHED [%s]", name, exc_info=task.exception())
    return _done


def install_warnings_logging(logger: logging.Logger) -> None:
    def _show(message, category, filename, lineno, file=None, line=None):
        logger.warning("PYTHON WARNING %s:%s %s: %s", filename, lineno, category.__name__, message)

    warnings.showwarning = _show
