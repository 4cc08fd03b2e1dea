# util/errors.py
# -*- coding: utf-8 -*-
"""
라우팅 명령 오류 분류
- kind 문자열은 워커 스레드 → 호출측 메시지에 그대로 실려 간다
- code 는 util/error_codes_default.py 의 카탈로그 코드
"""
from __future__ import annotations
from typing import Dict, Literal, Optional, Type

ErrorKind = Literal["not_connected", "command_timeout", "device_rejected",
                    "transport_error", "outer_timeout"]


class RouteError(Exception):
    kind: ErrorKind = "transport_error"
    code: str = "E204"

    def __init__(self, reason: str = "", *, raw_response: Optional[str] = None):
        super().__init__(reason or self.__class__.__name__)
        self.reason = reason or self.__class__.__name__
        self.raw_response = raw_response


class NotConnectedError(RouteError):
    kind = "not_connected"
    code = "E201"


class CommandTimeoutError(RouteError):
    kind = "command_timeout"
    code = "E202"


class DeviceRejectedError(RouteError):
    kind = "device_rejected"
    code = "E203"


class TransportError(RouteError):
    kind = "transport_error"
    code = "E204"


class OuterTimeoutError(RouteError):
    kind = "outer_timeout"
    code = "E205"


_BY_KIND: Dict[str, Type[RouteError]] = {
    c.kind: c for c in (NotConnectedError, CommandTimeoutError, DeviceRejectedError,
                        TransportError, OuterTimeoutError)
}


def error_from_kind(kind: Optional[str], reason: str = "", *,
                    raw_response: Optional[str] = None) -> RouteError:
    """미지의 kind 는 TransportError 로 취급."""
    cls = _BY_KIND.get(kind or "", TransportError)
    return cls(reason, raw_response=raw_response)
