# -*- coding: utf-8 -*-
"""
route_client.py — 호출측 라우팅 클라이언트 (요청/응답 상관관계)

- 호출측 이벤트 루프에서 동작. 채널 워커 스레드와는 메시지로만 통신
- submit 1건마다 단조 증가 correlation id 발급 + 외부 한도(10초) 대기
  · 결과 도착 → 해당 대기 해제
  · 한도 초과 → OuterTimeoutError, 엔트리 삭제 (뒤늦은 결과는 조용히 폐기)
  · 한도는 호출측 대기만 끊는다. 워커 안의 시도는 끝까지 진행
- get_status: 워커가 현재 상태로 즉시 응답 (1초 내 무응답이면 연결 안 됨으로 간주)
- reconfigure: 설정 세대 교체 → 워커가 명령 사이에서 재초기화
"""

from __future__ import annotations
from dataclasses import dataclass
from itertools import count
from typing import Any, AsyncGenerator, Dict, Optional
import asyncio
import logging
import time

from lib import config_common as cfgc
from lib.channel_config import ChannelConfig
from device.router_codec import IdLike, build_route_command
from device.serial_link import LinkFactory, SerialLink
from runtime.channel_worker import ChannelWorker, WorkerEvent, WorkerMessage
from util.errors import OuterTimeoutError, TransportError, error_from_kind


@dataclass(frozen=True)
class RouteResult:
    status: str
    raw_response: str


@dataclass
class PendingRequest:
    correlation_id: int
    future: asyncio.Future
    deadline: float


class RouteClient:
    def __init__(self, config: ChannelConfig, *,
                 link_factory: LinkFactory = SerialLink,
                 outer_timeout_s: float = cfgc.OUTER_TIMEOUT_MS / 1000.0,
                 status_timeout_s: float = cfgc.STATUS_TIMEOUT_MS / 1000.0,
                 ready_timeout_s: float = cfgc.WORKER_READY_TIMEOUT_MS / 1000.0,
                 **channel_options: Any):
        self._config = config
        self._link_factory = link_factory
        self.outer_timeout_s = outer_timeout_s
        self._status_timeout_s = status_timeout_s
        self._ready_timeout_s = ready_timeout_s
        self._channel_options = channel_options

        self._worker: Optional[ChannelWorker] = None
        self._worker_ready = False
        self._ready_evt: Optional[asyncio.Event] = None
        self._stopped_evt: Optional[asyncio.Event] = None

        self._ids = count()
        self._pending: Dict[int, PendingRequest] = {}
        self._status_waiters: Dict[int, asyncio.Future] = {}

        self._event_q: asyncio.Queue[WorkerEvent] = asyncio.Queue(maxsize=256)
        self._log = logging.getLogger(f"{cfgc.APP_NAME}.client")

    # ---------- 조회 ----------
    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ---------- 수명주기 ----------
    async def start(self) -> None:
        if self._worker is not None:
            return
        loop = asyncio.get_running_loop()
        self._ready_evt = asyncio.Event()
        self._stopped_evt = asyncio.Event()
        self._worker = ChannelWorker(self._on_worker_event, loop,
                                     link_factory=self._link_factory, **self._channel_options)
        self._worker.start()
        try:
            await asyncio.wait_for(self._ready_evt.wait(), timeout=self._ready_timeout_s)
        except asyncio.TimeoutError:
            raise TransportError("Serial worker not ready") from None
        self._worker.post(WorkerMessage(kind="init", config=self._config))
        self._log.info("Serial worker ready (port=%s, simulate=%s)",
                       self._config.serial_port, self._config.simulate)

    async def aclose(self) -> None:
        worker, self._worker = self._worker, None
        if worker is None:
            return
        if self._worker_ready:
            worker.post(WorkerMessage(kind="shutdown"))
            assert self._stopped_evt is not None
            try:
                await asyncio.wait_for(self._stopped_evt.wait(), timeout=self._ready_timeout_s)
            except asyncio.TimeoutError:
                self._log.warning("Serial worker did not stop in time")
        self._worker_ready = False

        for req in list(self._pending.values()):
            if not req.future.done():
                req.future.set_exception(TransportError("channel shutdown"))
        self._pending.clear()
        for fut in self._status_waiters.values():
            if not fut.done():
                fut.cancel()
        self._status_waiters.clear()

        await asyncio.to_thread(worker.join, 2.0)

    async def __aenter__(self) -> "RouteClient":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    # ---------- 공용 API ----------
    async def submit(self, output_id: IdLike, input_id: IdLike,
                     mode: str = cfgc.ROUTER_DEFAULT_MODE) -> RouteResult:
        """출력 ← 입력 라우팅. 실패 시 RouteError 하위 예외, 인자 오류는 ValueError."""
        payload = build_route_command(output_id, input_id, mode,
                                      max_inputs=self._config.max_inputs,
                                      max_outputs=self._config.max_outputs)
        worker = self._require_worker()

        cid = next(self._ids)
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[cid] = PendingRequest(cid, fut, time.monotonic() + self.outer_timeout_s)
        try:
            try:
                worker.post(WorkerMessage(kind="command", correlation_id=cid, payload=payload))
            except RuntimeError:
                # 스레드는 끝났지만 stopped 이벤트가 아직 도착하지 않은 경우
                raise TransportError("Serial worker not ready") from None
            self._log.debug("[SUBMIT] id=%d %s", cid, payload)
            return await asyncio.wait_for(fut, timeout=self.outer_timeout_s)
        except asyncio.TimeoutError:
            self._log.warning("Command timeout at server level (id=%d %s)", cid, payload)
            raise OuterTimeoutError("Command timeout at server level") from None
        finally:
            self._pending.pop(cid, None)

    async def get_status(self) -> Dict[str, Any]:
        fallback = {"connected": False, "queue_length": 0, "processing": False,
                    "message": "Status check timeout"}
        if not self._worker_ready or self._worker is None:
            return {**fallback, "message": "Serial worker not ready"}

        cid = next(self._ids)
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._status_waiters[cid] = fut
        self._worker.post(WorkerMessage(kind="get_status", correlation_id=cid))
        try:
            return await asyncio.wait_for(fut, timeout=self._status_timeout_s)
        except asyncio.TimeoutError:
            return fallback
        finally:
            self._status_waiters.pop(cid, None)

    async def reconfigure(self, new_config: ChannelConfig) -> None:
        """설정 세대 교체. 이후 submit 은 새 설정(폭/최대값)으로 프레이밍."""
        self._config = new_config
        if self._worker_ready and self._worker is not None:
            self._worker.post(WorkerMessage(kind="update_config", config=new_config))
            self._log.info("config update posted (port=%s, simulate=%s)",
                           new_config.serial_port, new_config.simulate)

    async def events(self) -> AsyncGenerator[WorkerEvent, None]:
        """connected / disconnected / error / status 알림 스트림."""
        while True:
            ev = await self._event_q.get()
            yield ev

    # ---------- 내부 ----------
    def _require_worker(self) -> ChannelWorker:
        if not self._worker_ready or self._worker is None:
            raise TransportError("Serial worker not ready")
        return self._worker

    def _on_worker_event(self, ev: WorkerEvent) -> None:
        """워커 이벤트 수신 (호출측 루프에서 실행)."""
        if ev.kind == "command_result":
            self._resolve(ev)
        elif ev.kind == "status_snapshot":
            fut = self._status_waiters.pop(ev.correlation_id, None)
            if fut is not None and not fut.done():
                fut.set_result(dict(ev.snapshot or {}))
        elif ev.kind == "ready":
            self._worker_ready = True
            if self._ready_evt is not None:
                self._ready_evt.set()
        elif ev.kind == "stopped":
            self._worker_ready = False
            if self._stopped_evt is not None:
                self._stopped_evt.set()
            # 워커가 먼저 죽은 경우 대기 중인 호출을 한도까지 붙잡지 않는다
            for req in list(self._pending.values()):
                if not req.future.done():
                    req.future.set_exception(TransportError("Serial worker exited"))
        else:
            if ev.kind == "error":
                self._log.error("Serial worker error: %s", ev.reason)
            else:
                self._log.info("[%s] %s", ev.kind, ev.message or "")
            self._ev_nowait(ev)

    def _resolve(self, ev: WorkerEvent) -> None:
        req = self._pending.pop(ev.correlation_id, None)
        if req is None or req.future.done():
            # 외부 한도 초과로 이미 포기한 요청
            self._log.debug("stale result dropped (id=%s ok=%s)", ev.correlation_id, ev.ok)
            return
        if ev.ok:
            req.future.set_result(RouteResult(status=ev.status or cfgc.SUCCESS_MARKER,
                                              raw_response=ev.raw_response or ""))
        else:
            req.future.set_exception(error_from_kind(ev.error_kind, ev.reason or "",
                                                     raw_response=ev.raw_response))

    def _ev_nowait(self, ev: WorkerEvent) -> None:
        if self._event_q.full():
            self._event_q.get_nowait()
        self._event_q.put_nowait(ev)
