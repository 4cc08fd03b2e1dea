# util/error_reporter.py
# -*- coding: utf-8 -*-
"""
호출측으로 돌려줄 실패 응답 생성
  {"result": "fail", "message": "<원인> (<상세>) 해결방법: <조치>", "error_code": "E2xx"}
"""
from __future__ import annotations
import logging
from typing import Any, Callable, Optional

from lib import config_common as cfgc
from .error_catalog import ErrorCatalog, ErrorInfo
from .errors import RouteError

_CATALOG = ErrorCatalog()
_log = logging.getLogger(f"{cfgc.APP_NAME}.report")


def _one_line(text: Optional[str]) -> str:
    return " ".join((text or "").replace("\r", "\n").splitlines()).strip()


def build_error_info(*, code: Optional[str] = None, message: Any = "") -> ErrorInfo:
    """code 지정 > 예외 타입 > 문자열 추정 > E110"""
    if code:
        c = code if code.startswith("E") else f"E{code}"
        return _CATALOG.get(c, default_message=_one_line(str(message)))
    if isinstance(message, BaseException):
        return _CATALOG.for_exception(message)

    text = _one_line("" if message is None else str(message))
    guessed = _CATALOG.guess_code(text)
    return _CATALOG.get(guessed or ErrorCatalog.FALLBACK_CODE,
                        default_message=text or "Handler crash")


def format_error_message(info: ErrorInfo, *, detail: str = "") -> str:
    cause, fix, detail = _one_line(info.cause), _one_line(info.fix), _one_line(detail)
    head = f"{cause} ({detail})" if detail and detail != cause else cause
    return f"{head} 해결방법: {fix}".strip() if fix else head


def build_fail_payload(*, code: Optional[str] = None, message: Any = "") -> dict:
    info = build_error_info(code=code, message=message)
    # 전송 계열은 원인 문구가 포괄적이라 사유를 덧붙인다
    detail = message.reason if isinstance(message, RouteError) else ""
    return {
        "result": "fail",
        "message": format_error_message(info, detail=detail),
        "error_code": info.code,
    }


def notify_all(
    *,
    log: Optional[Callable[[str, str], None]] = None,
    src: str = "ROUTER",
    code: Optional[str] = None,
    message: Any = "",
) -> dict:
    payload = build_fail_payload(code=code, message=message)
    if callable(log):
        try:
            log(f"ERROR/{src}", payload["message"])
        except Exception:
            _log.exception("error log sink failed (%s)", payload["error_code"])
    return payload
