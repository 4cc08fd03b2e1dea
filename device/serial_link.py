# -*- coding: utf-8 -*-
"""
serial_link.py — 라우터 시리얼 링크(전송 계층)

의존성:
    pip install pyserial-asyncio

개요:
  - serial_asyncio + asyncio.Protocol 로 원시 바이트 수신 (프레이밍은 router_codec 담당)
  - open / write / close 만 제공하고, 수명주기는 리스너 콜백으로 알린다
      on_open() / on_data(chunk) / on_error(reason) / on_close()
  - 재연결/상태 관리는 하지 않는다 (device/connection.py 담당)
"""

from __future__ import annotations
from typing import Optional, Protocol, Callable
import asyncio
import logging

import serial
import serial_asyncio

from lib import config_common as cfgc
from lib.channel_config import ChannelConfig


class LinkListener(Protocol):
    def on_open(self) -> None: ...
    def on_data(self, chunk: bytes) -> None: ...
    def on_error(self, reason: str) -> None: ...
    def on_close(self) -> None: ...


class Link(Protocol):
    @property
    def is_open(self) -> bool: ...
    async def open(self) -> None: ...
    def write(self, data: bytes) -> None: ...
    def close(self) -> None: ...


LinkFactory = Callable[[ChannelConfig, LinkListener], Link]


class LinkWriteError(OSError):
    """포트가 닫혀 있거나 write 가 거부됨."""


# ================== Protocol ==================
class _RouterSerialProtocol(asyncio.Protocol):
    def __init__(self, owner: "SerialLink"):
        self.owner = owner

    def connection_made(self, transport: asyncio.BaseTransport):
        self.owner._on_connection_made(transport)  # type: ignore[arg-type]

    def data_received(self, data: bytes):
        if data:
            self.owner._listener.on_data(bytes(data))

    def connection_lost(self, exc: Optional[Exception]):
        self.owner._on_connection_lost(exc)


# ================== Link ==================
class SerialLink:
    """pyserial-asyncio 기반 Link 구현. 채널 워커 루프 안에서만 사용."""

    def __init__(self, config: ChannelConfig, listener: LinkListener):
        self._config = config
        self._listener = listener
        self._transport: Optional[asyncio.Transport] = None
        self._log = logging.getLogger(f"{cfgc.APP_NAME}.link")

    @property
    def is_open(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    async def open(self) -> None:
        """포트 오픈. 실패 시 serial.SerialException(OSError) 그대로 전파."""
        loop = asyncio.get_running_loop()
        transport, _ = await serial_asyncio.create_serial_connection(
            loop, lambda: _RouterSerialProtocol(self), self._config.serial_port,
            baudrate=self._config.baud_rate,
            bytesize=cfgc.ROUTER_BYTESIZE,
            parity=cfgc.ROUTER_PARITY,
            stopbits=cfgc.ROUTER_STOPBITS,
        )
        # connection_made 는 call_soon 으로 나중에 온다. 그 사이 close() 도 포트를 닫아야 함
        self._transport = transport

    def write(self, data: bytes) -> None:
        t = self._transport
        if t is None or t.is_closing():
            raise LinkWriteError(f"{self._config.serial_port} is not open")
        try:
            t.write(data)
        except (serial.SerialException, RuntimeError) as e:
            raise LinkWriteError(str(e)) from e

    def close(self) -> None:
        if self._transport is not None and not self._transport.is_closing():
            self._transport.close()

    # ---------- 내부 ----------
    def _on_connection_made(self, transport: asyncio.Transport):
        self._transport = transport
        if transport.is_closing():
            # 오픈 통지 전에 이미 close() 됨
            return
        # SerialTransport 는 .serial 을 노출함
        ser = getattr(transport, "serial", None)
        if ser is not None:
            try:
                ser.reset_input_buffer()
                ser.reset_output_buffer()
                self._log.debug("%s buffers reset", self._config.serial_port)
            except serial.SerialException as e:
                self._log.debug("buffer reset skipped: %s", e)
        self._listener.on_open()

    def _on_connection_lost(self, exc: Optional[Exception]):
        self._transport = None
        if exc is not None:
            self._listener.on_error(str(exc) or type(exc).__name__)
        self._listener.on_close()
