# -*- coding: utf-8 -*-
"""
channel_worker.py — 라우터 채널 전용 워커 스레드

- 채널(큐/연결 상태/시리얼 링크)은 이 스레드의 이벤트 루프만 소유한다
- 호출측 → 워커 : post(WorkerMessage)  → call_soon_threadsafe 로 inbox 에 적재
- 워커 → 호출측 : WorkerEvent          → 호출측 루프에 call_soon_threadsafe
  두 방향 모두 순서 보존, 공유 가변 상태 없음

메시지:
  init(config) / command(correlation_id, payload) / get_status(correlation_id)
  update_config(config) / shutdown
이벤트:
  ready / connected / disconnected / error / status
  command_result / status_snapshot / stopped
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, Literal, Optional
import asyncio
import logging
import threading

from lib import config_common as cfgc
from lib.channel_config import ChannelConfig
from device.connection import ConnectionEvent
from device.router_channel import AsyncRouterChannel, CommandResult
from device.serial_link import LinkFactory, SerialLink
from util.app_logging import install_asyncio_exception_logging, log_task_crash

MessageKind = Literal["init", "command", "get_status", "update_config", "shutdown"]
EventKind = Literal["ready", "connected", "disconnected", "error", "status",
                    "command_result", "status_snapshot", "stopped"]


@dataclass(frozen=True)
class WorkerMessage:
    kind: MessageKind
    correlation_id: Optional[int] = None   # command / get_status
    payload: Optional[str] = None          # command
    config: Optional[ChannelConfig] = None # init / update_config


@dataclass(frozen=True)
class WorkerEvent:
    kind: EventKind
    correlation_id: Optional[int] = None
    ok: Optional[bool] = None
    status: Optional[str] = None
    raw_response: Optional[str] = None
    error_kind: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None
    snapshot: Optional[Dict[str, Any]] = None


class ChannelWorker:
    def __init__(self, on_event: Callable[[WorkerEvent], None],
                 caller_loop: asyncio.AbstractEventLoop, *,
                 link_factory: LinkFactory = SerialLink,
                 **channel_options: Any):
        self._on_event = on_event
        self._caller_loop = caller_loop
        self._link_factory = link_factory
        self._channel_options = channel_options

        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._inbox: Optional[asyncio.Queue[WorkerMessage]] = None
        self._alive = False
        self._log = logging.getLogger(f"{cfgc.APP_NAME}.worker")

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="RouterChannelWorker", daemon=True)
        self._thread.start()

    def post(self, msg: WorkerMessage) -> None:
        loop, inbox = self._loop, self._inbox
        if not self._alive or loop is None or inbox is None:
            raise RuntimeError("Serial worker not ready")
        loop.call_soon_threadsafe(inbox.put_nowait, msg)

    def join(self, timeout: Optional[float] = None) -> bool:
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    # ---------- 워커 스레드 ----------
    def _run(self) -> None:
        try:
            asyncio.run(self._main())
        except Exception:
            self._log.exception("channel worker crashed")
        finally:
            self._alive = False
            self._deliver(WorkerEvent(kind="stopped"))

    async def _main(self) -> None:
        loop = asyncio.get_running_loop()
        install_asyncio_exception_logging(loop, self._log)
        self._inbox = asyncio.Queue()
        channel = AsyncRouterChannel(
            on_result=self._on_result,
            on_event=self._on_conn_event,
            link_factory=self._link_factory,
            **self._channel_options,
        )
        self._loop = loop
        self._alive = True
        self._deliver(WorkerEvent(kind="ready"))

        while True:
            msg = await self._inbox.get()
            if msg.kind == "shutdown":
                self._alive = False
                await channel.cleanup()
                break
            self._dispatch(channel, msg)

    def _dispatch(self, channel: AsyncRouterChannel, msg: WorkerMessage) -> None:
        if msg.kind == "init":
            assert msg.config is not None
            task = channel.start(msg.config)
            if task is not None:
                task.add_done_callback(log_task_crash(self._log, "RouterCmdWorker"))
        elif msg.kind == "command":
            assert msg.payload is not None
            channel.enqueue(msg.payload, msg.correlation_id)
        elif msg.kind == "get_status":
            self._deliver(WorkerEvent(kind="status_snapshot", correlation_id=msg.correlation_id,
                                      snapshot=channel.status()))
        elif msg.kind == "update_config":
            assert msg.config is not None
            channel.request_reconfigure(msg.config)
        else:
            self._log.warning("unknown worker message: %r", msg.kind)

    # ---------- 채널 → 호출측 ----------
    def _on_result(self, res: CommandResult) -> None:
        self._deliver(WorkerEvent(
            kind="command_result", correlation_id=res.correlation_id, ok=res.ok,
            status=res.status, raw_response=res.raw_response,
            error_kind=res.error_kind, reason=res.reason,
        ))

    def _on_conn_event(self, ev: ConnectionEvent) -> None:
        self._deliver(WorkerEvent(kind=ev.kind, message=ev.message, reason=ev.reason))

    def _deliver(self, ev: WorkerEvent) -> None:
        try:
            self._caller_loop.call_soon_threadsafe(self._on_event, ev)
        except RuntimeError:
            # 호출측 루프가 이미 닫힘
            self._log.debug("caller loop closed; dropped %s", ev.kind)
