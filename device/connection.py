# -*- coding: utf-8 -*-
"""
connection.py — 라우터 시리얼 연결 상태 머신

상태: Disconnected(초기) / Connecting / Open / Error / Closing
  - initialize/reconfigure → Connecting (devMode 면 Disconnected 유지)
  - 링크 open 성공 → Open + 'connected'
  - 링크 오류      → Error + 'error'(사유)   ※ 여기서 재시도하지 않음
  - 링크 close     → Closing → Disconnected + 'disconnected'
                     예기치 않은 close 면 5초 뒤 재오픈 예약
  - Open 중 재설정 → close 완료를 기다린 뒤 새 설정으로 초기화 (재오픈 예약 없음)
  - open 자체 실패 → Error 보고만, 자동 재시도 없음

채널 워커 루프 안에서만 호출된다(락 없음).
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Literal, Optional
import asyncio
import logging

from lib import config_common as cfgc
from lib.channel_config import ChannelConfig
from device.serial_link import Link, LinkFactory, SerialLink


class ConnectionState(str, Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    OPEN = "Open"
    ERROR = "Error"
    CLOSING = "Closing"


ConnEventKind = Literal["connected", "disconnected", "error", "status"]

@dataclass
class ConnectionEvent:
    kind: ConnEventKind
    message: Optional[str] = None
    reason: Optional[str] = None     # error


class _LinkListener:
    """링크 1개당 1개. 버려진(이전 시도) 링크의 콜백은 무시된다."""
    def __init__(self, machine: "ConnectionMachine"):
        self.machine = machine
        self.link: Optional[Link] = None

    def _current(self) -> bool:
        return self.link is not None and self.link is self.machine._link

    def on_open(self) -> None:
        if self._current():
            self.machine._on_link_open()

    def on_data(self, chunk: bytes) -> None:
        if self._current():
            self.machine._on_data(chunk)

    def on_error(self, reason: str) -> None:
        if self._current():
            self.machine._on_link_error(reason)

    def on_close(self) -> None:
        if self._current():
            self.machine._on_link_close()


class ConnectionMachine:
    def __init__(self, *,
                 on_event: Callable[[ConnectionEvent], None],
                 on_data: Callable[[bytes], None],
                 on_link_down: Callable[[str], None],
                 link_factory: LinkFactory = SerialLink,
                 reconnect_delay_s: float = cfgc.RECONNECT_DELAY_MS / 1000.0,
                 close_timeout_s: float = cfgc.RECONFIG_CLOSE_TIMEOUT_MS / 1000.0):
        self._on_event = on_event
        self._on_data_cb = on_data
        self._on_link_down = on_link_down
        self._link_factory = link_factory
        self._reconnect_delay_s = reconnect_delay_s
        self._close_timeout_s = close_timeout_s

        self._config: Optional[ChannelConfig] = None
        self._state = ConnectionState.DISCONNECTED
        self._link: Optional[Link] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._solicited_close: Optional[asyncio.Event] = None

        self.history: Deque[ConnectionState] = deque([self._state], maxlen=64)
        self._log = logging.getLogger(f"{cfgc.APP_NAME}.conn")

    # ---------- 조회 ----------
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def config(self) -> Optional[ChannelConfig]:
        return self._config

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    # ---------- 공용 API ----------
    async def initialize(self, config: ChannelConfig) -> None:
        """이전 시도는 버리고 새 설정으로 연결 시작."""
        self._config = config
        self._cancel_reconnect()
        self._discard_link()

        if config.simulate:
            self._set_state(ConnectionState.DISCONNECTED)
            self._emit("status", message="Running in dev mode - serial port disabled")
            return
        await self._open()

    async def reconfigure(self, config: ChannelConfig) -> None:
        if self._state is ConnectionState.OPEN and self._link is not None:
            await self._close_and_wait("reconfigure")
        await self.initialize(config)

    def write(self, data: bytes) -> None:
        """링크 write. 실패는 OSError(LinkWriteError 포함)로 전파."""
        if self._link is None:
            raise ConnectionError("no serial link")
        self._link.write(data)

    async def close(self) -> None:
        """종료: 재오픈 예약 취소 + 링크 닫기(재오픈 없음)."""
        self._cancel_reconnect()
        if self._state is ConnectionState.OPEN and self._link is not None:
            await self._close_and_wait("shutdown")
        self._discard_link()
        self._set_state(ConnectionState.DISCONNECTED)

    # ---------- 내부: open/close ----------
    async def _open(self) -> None:
        cfg = self._config
        assert cfg is not None
        self._set_state(ConnectionState.CONNECTING)

        listener = _LinkListener(self)
        link = self._link_factory(cfg, listener)
        listener.link = link
        self._link = link
        try:
            await link.open()
        except (OSError, ValueError) as e:
            if link is not self._link:
                return
            self._set_state(ConnectionState.ERROR)
            self._log.error("Failed to initialize serial port %s: %s", cfg.serial_port, e)
            self._emit("error", reason=f"Failed to initialize serial port: {e}")
            return

        if link is not self._link:
            # 오픈 도중 재설정됨 → 버려진 링크 정리
            link.close()

    async def _close_and_wait(self, why: str) -> None:
        evt = asyncio.Event()
        self._solicited_close = evt
        self._set_state(ConnectionState.CLOSING)
        self._log.info("closing %s (%s)", self._config.serial_port if self._config else "?", why)
        assert self._link is not None
        self._link.close()
        try:
            await asyncio.wait_for(evt.wait(), timeout=self._close_timeout_s)
        except asyncio.TimeoutError:
            self._log.warning("close did not complete within %.1fs (%s)", self._close_timeout_s, why)
            self._solicited_close = None
            self._discard_link()
            self._set_state(ConnectionState.DISCONNECTED)

    def _discard_link(self) -> None:
        link, self._link = self._link, None
        if link is not None:
            link.close()

    # ---------- 내부: 링크 콜백 ----------
    def _on_link_open(self) -> None:
        self._set_state(ConnectionState.OPEN)
        port = self._config.serial_port if self._config else "?"
        self._log.info("Serial port opened: %s", port)
        self._emit("connected", message=f"Serial port opened: {port}")

    def _on_data(self, chunk: bytes) -> None:
        self._on_data_cb(chunk)

    def _on_link_error(self, reason: str) -> None:
        self._log.error("Serial port error: %s", reason)
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            self._set_state(ConnectionState.ERROR)
        self._emit("error", reason=reason)
        self._on_link_down(reason)

    def _on_link_close(self) -> None:
        solicited = self._solicited_close
        self._solicited_close = None
        self._link = None

        if self._state is not ConnectionState.CLOSING:
            self._set_state(ConnectionState.CLOSING)
        self._set_state(ConnectionState.DISCONNECTED)
        self._log.info("Serial port closed")
        self._emit("disconnected", message="Serial port closed")
        self._on_link_down("Serial port closed")

        if solicited is not None:
            solicited.set()
            return
        if self._config is not None and not self._config.simulate:
            self._schedule_reconnect()

    # ---------- 내부: 재연결 ----------
    def _schedule_reconnect(self) -> None:
        self._cancel_reconnect()
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_later(), name="RouterReconnect")

    async def _reconnect_later(self) -> None:
        await asyncio.sleep(self._reconnect_delay_s)
        self._reconnect_task = None
        cfg = self._config
        if cfg is None or cfg.simulate or self._state is not ConnectionState.DISCONNECTED:
            return
        self._log.info("Attempting to reconnect...")
        self._emit("status", message="Attempting to reconnect...")
        await self._open()

    def _cancel_reconnect(self) -> None:
        t, self._reconnect_task = self._reconnect_task, None
        if t is not None and not t.done() and t is not asyncio.current_task():
            t.cancel()

    # ---------- 내부: 유틸 ----------
    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._log.debug("state %s -> %s", self._state.value, state.value)
        self._state = state
        self.history.append(state)

    def _emit(self, kind: ConnEventKind, *, message: Optional[str] = None, reason: Optional[str] = None) -> None:
        self._on_event(ConnectionEvent(kind=kind, message=message, reason=reason))
