# util/error_catalog.py
# -*- coding: utf-8 -*-
"""
라우터 오류 코드 카탈로그
- 코드 표는 error_codes_default.DEFAULT_CODES
- RouteError.kind ↔ 코드 대응 (워커에서 넘어온 kind 문자열로도 조회)
- 자유 문자열은 E### 직접 표기 → kind 이름 → cause 최장 매칭 순으로 추정
"""
from __future__ import annotations
from dataclasses import dataclass
import re
from typing import Dict, Mapping, Optional

from .error_codes_default import DEFAULT_CODES
from .errors import RouteError

_CODE_RE = re.compile(r"\b(E\d{3})\b")


@dataclass(frozen=True)
class ErrorInfo:
    code: str
    cause: str
    fix: str


class ErrorCatalog:
    FALLBACK_CODE = "E110"
    REQUEST_CODE = "E210"

    def __init__(self, codes: Optional[Mapping[str, Mapping[str, str]]] = None) -> None:
        self._codes: Dict[str, Mapping[str, str]] = dict(codes or DEFAULT_CODES)
        self._by_kind: Dict[str, str] = {
            c.kind: c.code for c in _route_error_classes() if c.code in self._codes
        }

    def code_for_kind(self, kind: Optional[str]) -> str:
        return self._by_kind.get(kind or "", self.FALLBACK_CODE)

    def get(self, code: str, *, default_message: str = "") -> ErrorInfo:
        row = self._codes.get(code)
        if row is None:
            return ErrorInfo(code=code,
                             cause=default_message or f"Unmapped error code: {code}",
                             fix="코드 매핑이 없습니다. 로그 확인 후 error_codes_default 에 추가")
        return ErrorInfo(code=code, cause=row.get("cause", ""), fix=row.get("fix", ""))

    def for_exception(self, exc: BaseException) -> ErrorInfo:
        if isinstance(exc, RouteError):
            return self.get(exc.code, default_message=exc.reason)
        if isinstance(exc, ValueError):
            return self.get(self.REQUEST_CODE, default_message=str(exc))
        return self.get(self.FALLBACK_CODE, default_message=str(exc) or type(exc).__name__)

    def guess_code(self, message: str) -> Optional[str]:
        msg = (message or "").strip()
        if not msg:
            return None

        m = _CODE_RE.search(msg)
        if m:
            return m.group(1)

        for kind, code in self._by_kind.items():
            if kind in msg:
                return code

        # cause 문구 최장 매칭 ('Command timeout' vs 'Command timeout at server level')
        hits = [(len(row.get("cause", "")), code) for code, row in self._codes.items()
                if row.get("cause") and row["cause"] in msg]
        return max(hits)[1] if hits else None


def _route_error_classes():
    stack = list(RouteError.__subclasses__())
    while stack:
        cls = stack.pop()
        stack.extend(cls.__subclasses__())
        yield cls
