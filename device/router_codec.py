# -*- coding: utf-8 -*-
"""
router_codec.py — 매트릭스 라우터 명령 프레이밍 + 응답 마커 매칭

송신: <mode><출력 0패딩><입력 0패딩>\r
      폭 = max(len(str(maxInputs)), len(str(maxOutputs)))
수신: 전송 이후 받은 바이트를 전부 한 버퍼에 누적하고
      'DONE' 포함 → 성공, 'ERROR' 포함 → 거부 (DONE 을 먼저 검사)
동시에 진행 중인 교환은 최대 1개이므로 교환 간 재조립은 없다.
"""

from __future__ import annotations
from typing import Union
import asyncio
import time

from lib import config_common as cfgc
from util.errors import CommandTimeoutError, DeviceRejectedError, RouteError

IdLike = Union[int, str]


def field_width(max_inputs: int, max_outputs: int) -> int:
    return max(len(str(int(max_inputs))), len(str(int(max_outputs))))


def _as_index(value: IdLike, name: str, limit: int) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    try:
        v = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
    if v <= 0:
        raise ValueError(f"{name} must be >= 1, got {v}")
    if v > limit:
        raise ValueError(f"{name} {v} exceeds configured maximum {limit}")
    return v


def build_route_command(output_id: IdLike, input_id: IdLike, mode: str = cfgc.ROUTER_DEFAULT_MODE, *,
                        max_inputs: int, max_outputs: int) -> str:
    """예) (3, 12, 'B'), max 16/16 → 'B0312'"""
    if not isinstance(mode, str) or len(mode) != 1 or mode.isspace():
        raise ValueError(f"mode must be a single character, got {mode!r}")
    width = field_width(max_inputs, max_outputs)
    out = _as_index(output_id, "outputId", int(max_outputs))
    inp = _as_index(input_id, "inputId", int(max_inputs))
    return f"{mode}{out:0{width}d}{inp:0{width}d}"


def frame(payload: str) -> bytes:
    """종단 문자(CR) 정확히 1개 부착."""
    return payload.rstrip("\r\n").encode("ascii") + cfgc.TX_EOL


# ================== 진행 중 교환 ==================
class PendingExchange:
    """
    전송 1건과 그 응답. 버퍼에 마커가 나타나면 future 를 완료한다.
    wait() 결과: 원시 응답 문자열 / 예외(DeviceRejected, CommandTimeout, 그 외 RouteError)
    """

    def __init__(self, payload: str, timeout_s: float):
        self.payload = payload
        self.timeout_s = timeout_s
        self.deadline = time.monotonic() + timeout_s
        self._buf: list[str] = []
        self._size = 0
        self._fut: asyncio.Future[str] = asyncio.get_running_loop().create_future()

    @property
    def buffer(self) -> str:
        return "".join(self._buf)

    @property
    def done(self) -> bool:
        return self._fut.done()

    def feed(self, chunk: bytes) -> bool:
        """수신 조각 누적 후 마커 검사. 이번 호출로 완료되면 True."""
        if self._fut.done() or not chunk:
            return False
        self._buf.append(chunk.decode("ascii", errors="replace"))
        self._size += len(chunk)
        if self._size > cfgc.RX_BUFFER_MAX:
            # 마커가 잘리지 않도록 뒷부분만 보존
            text = self.buffer[-cfgc.RX_BUFFER_MAX:]
            self._buf, self._size = [text], len(text)

        text = self.buffer
        if cfgc.SUCCESS_MARKER in text:
            self._fut.set_result(text)
            return True
        if cfgc.FAILURE_MARKER in text:
            self._fut.set_exception(DeviceRejectedError("Router returned ERROR", raw_response=text))
            return True
        return False

    def fail(self, exc: RouteError) -> None:
        if not self._fut.done():
            if exc.raw_response is None:
                exc.raw_response = self.buffer
            self._fut.set_exception(exc)

    async def wait(self) -> str:
        remain = max(0.0, self.deadline - time.monotonic())
        try:
            return await asyncio.wait_for(asyncio.shield(self._fut), timeout=remain)
        except asyncio.TimeoutError:
            self.fail(CommandTimeoutError("Command timeout"))
            return await self._fut
