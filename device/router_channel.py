# -*- coding: utf-8 -*-
"""
router_channel.py — asyncio 기반 매트릭스 라우터 명령 채널

개요:
  - 단일 명령 큐(FIFO, 재시도는 큐 머리에 재삽입) → 송수신 충돌 제거
  - 한 번에 하나의 명령만 인플라이트 (PendingExchange 최대 1개)
  - 명령별 타임아웃 / 재시도(maxRetries) / 명령 간 gap(50ms)
  - 미연결·타임아웃·ERROR·write 실패 모두 같은 재시도 예산을 소모
  - devMode: 큐를 거치지 않고 명령마다 100ms 타이머로 가상 성공('DEV MODE')
  - 설정 변경은 같은 루프가 명령 사이에서 적용 (인플라이트와 경합 없음)
  - 결과 콜백(on_result) 은 원래 명령 1건당 정확히 1번

채널 워커 스레드의 이벤트 루프에서만 사용.
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Optional, Tuple
import asyncio
import logging

from lib import config_common as cfgc
from lib.channel_config import ChannelConfig
from device.connection import ConnectionEvent, ConnectionMachine
from device.router_codec import PendingExchange, frame
from device.serial_link import LinkFactory, SerialLink
from util.errors import NotConnectedError, RouteError, TransportError


# ================== 명령/결과 레코드 ==================
@dataclass
class Command:
    payload: str
    correlation_id: Any
    retry_count: int = 0
    generation: int = 0


@dataclass
class CommandResult:
    correlation_id: Any
    ok: bool
    status: Optional[str] = None
    raw_response: Optional[str] = None
    error_kind: Optional[str] = None
    reason: Optional[str] = None
    retries: int = 0


# ================== 채널 ==================
class AsyncRouterChannel:
    def __init__(self, *,
                 on_result: Callable[[CommandResult], None],
                 on_event: Callable[[ConnectionEvent], None],
                 link_factory: LinkFactory = SerialLink,
                 gap_s: float = cfgc.COMMAND_GAP_MS / 1000.0,
                 simulated_delay_s: float = cfgc.SIMULATED_DELAY_MS / 1000.0,
                 reconnect_delay_s: float = cfgc.RECONNECT_DELAY_MS / 1000.0):
        self._on_result = on_result
        self._gap_s = gap_s
        self._simulated_delay_s = simulated_delay_s

        self._conn = ConnectionMachine(
            on_event=on_event,
            on_data=self._on_data,
            on_link_down=self._on_link_down,
            link_factory=link_factory,
            reconnect_delay_s=reconnect_delay_s,
        )

        # 명령 큐/인플라이트
        self._cmd_q: Deque[Command] = deque()
        self._inflight: Optional[Command] = None
        self._exchange: Optional[PendingExchange] = None
        # devMode 명령: id(cmd) → (cmd, 타이머)
        self._simulated: Dict[int, Tuple[Command, asyncio.TimerHandle]] = {}

        # 설정 세대
        self._config: Optional[ChannelConfig] = None
        self._generation = 0
        self._pending_config: Optional[ChannelConfig] = None

        self._wake = asyncio.Event()
        self._cmd_worker_task: Optional[asyncio.Task] = None
        self._log = logging.getLogger(f"{cfgc.APP_NAME}.channel")

    # ---------- 공용 API ----------
    @property
    def connection(self) -> ConnectionMachine:
        return self._conn

    @property
    def generation(self) -> int:
        return self._generation

    def start(self, config: ChannelConfig) -> Optional[asyncio.Task]:
        """최초 설정 등록 + 커맨드 워커 시작. 연결은 워커 루프가 첫 순서로 수행.
        새로 만든 워커 태스크를 반환 (이미 돌고 있으면 None)."""
        self._pending_config = config
        self._wake.set()
        if self._cmd_worker_task is not None and not self._cmd_worker_task.done():
            return None
        self._cmd_worker_task = asyncio.get_running_loop().create_task(
            self._cmd_worker_loop(), name="RouterCmdWorker")
        return self._cmd_worker_task

    def enqueue(self, payload: str, correlation_id: Any) -> None:
        cmd = Command(payload=payload, correlation_id=correlation_id, generation=self._generation)
        cfg = self._pending_config or self._config
        if cfg is not None and cfg.simulate:
            self._start_simulated(cmd)
            return
        self._cmd_q.append(cmd)
        self._wake.set()

    def request_reconfigure(self, config: ChannelConfig) -> None:
        """다음 명령 사이에 적용. 여러 번 들어오면 마지막 설정만 유효."""
        self._pending_config = config
        self._wake.set()

    def status(self) -> Dict[str, Any]:
        return {
            "connected": self._conn.is_open,
            "queue_length": len(self._cmd_q),
            "processing": self._inflight is not None,
            "state": self._conn.state.value,
            "generation": self._generation,
            "simulate": bool(self._config and self._config.simulate),
        }

    async def cleanup(self) -> None:
        """채널 종료: 워커 중지 → 대기/인플라이트 전부 실패 처리 → 포트 종료."""
        inflight = self._inflight
        t, self._cmd_worker_task = self._cmd_worker_task, None
        if t is not None:
            t.cancel()
            try:
                await t
            except asyncio.CancelledError:
                pass

        purged = 0
        for cmd, handle in list(self._simulated.values()):
            handle.cancel()
            self._resolve_fail(cmd, TransportError("channel shutdown"))
            purged += 1
        self._simulated.clear()
        if inflight is not None:
            self._inflight = None
            self._resolve_fail(inflight, TransportError("channel shutdown"))
            purged += 1
        while self._cmd_q:
            self._resolve_fail(self._cmd_q.popleft(), TransportError("channel shutdown"))
            purged += 1
        if purged:
            self._log.info("대기 중 명령 %d개 폐기 (shutdown)", purged)

        await self._conn.close()

    # ---------- 내부: devMode ----------
    def _start_simulated(self, cmd: Command) -> None:
        """큐/gap 과 무관하게 명령마다 독립 지연 후 성공."""
        self._log.debug("DEV MODE - Simulating command: %s", cmd.payload)
        handle = asyncio.get_running_loop().call_later(
            self._simulated_delay_s, self._finish_simulated, cmd)
        self._simulated[id(cmd)] = (cmd, handle)

    def _finish_simulated(self, cmd: Command) -> None:
        self._simulated.pop(id(cmd), None)
        self._resolve_ok(cmd, cfgc.SUCCESS_MARKER, cfgc.SIMULATED_RESPONSE)

    # ---------- 내부: 커맨드 워커 ----------
    async def _cmd_worker_loop(self) -> None:
        while True:
            if self._pending_config is not None:
                await self._apply_config()
                continue

            if not self._cmd_q:
                self._wake.clear()
                await self._wake.wait()
                continue

            cmd = self._cmd_q.popleft()
            if cmd.retry_count > 0 and cmd.generation < self._generation:
                # 이전 세대 설정으로 실패한 재시도는 새 설정으로 보내지 않는다
                self._resolve_fail(cmd, TransportError("configuration superseded"))
                await asyncio.sleep(self._gap_s)
                continue

            cmd.generation = self._generation
            self._inflight = cmd
            try:
                status, raw = await self._attempt(cmd)
            except RouteError as e:
                self._inflight = None
                self._on_attempt_failed(cmd, e)
            else:
                self._inflight = None
                self._resolve_ok(cmd, status, raw)

            await asyncio.sleep(self._gap_s)

    async def _attempt(self, cmd: Command) -> Tuple[str, str]:
        cfg = self._config
        assert cfg is not None

        if cfg.simulate:
            # devMode 로 바뀌기 전에 큐에 들어온 명령
            self._log.debug("DEV MODE - Simulating queued command: %s", cmd.payload)
            await asyncio.sleep(self._simulated_delay_s)
            return cfgc.SUCCESS_MARKER, cfgc.SIMULATED_RESPONSE

        if not self._conn.is_open:
            raise NotConnectedError("Serial port not connected")

        ex = PendingExchange(cmd.payload, cfg.command_timeout_s)
        self._exchange = ex
        try:
            try:
                self._conn.write(frame(cmd.payload))
            except OSError as e:
                raise TransportError(f"write failed: {e}") from e
            self._log.debug("[SEND] %s (id=%s, try=%d)", cmd.payload, cmd.correlation_id, cmd.retry_count)
            raw = await ex.wait()
            self._log.debug("[RECV] %s <- %r", cmd.payload, raw)
            return cfgc.SUCCESS_MARKER, raw
        finally:
            self._exchange = None

    def _on_attempt_failed(self, cmd: Command, err: RouteError) -> None:
        max_retries = self._config.max_retries if self._config else 0
        if cmd.retry_count < max_retries:
            cmd.retry_count += 1
            self._log.info("Command failed (%s: %s), retry %d/%d",
                           err.kind, err.reason, cmd.retry_count, max_retries)
            self._cmd_q.appendleft(cmd)
        else:
            self._resolve_fail(cmd, err)

    async def _apply_config(self) -> None:
        cfg, self._pending_config = self._pending_config, None
        assert cfg is not None
        first = self._config is None
        self._config = cfg
        self._generation += 1
        self._log.info("config generation %d: port=%s baud=%d simulate=%s",
                       self._generation, cfg.serial_port, cfg.baud_rate, cfg.simulate)
        if first:
            await self._conn.initialize(cfg)
        else:
            await self._conn.reconfigure(cfg)

    # ---------- 내부: 링크 → 교환 ----------
    def _on_data(self, chunk: bytes) -> None:
        ex = self._exchange
        if ex is None or ex.done:
            self._log.debug("[DROP] no pending exchange, %d bytes discarded", len(chunk))
            return
        ex.feed(chunk)

    def _on_link_down(self, reason: str) -> None:
        ex = self._exchange
        if ex is not None and not ex.done:
            ex.fail(TransportError(reason))

    # ---------- 내부: 결과 ----------
    def _resolve_ok(self, cmd: Command, status: str, raw: str) -> None:
        self._emit_result(CommandResult(cmd.correlation_id, ok=True, status=status,
                                        raw_response=raw, retries=cmd.retry_count))

    def _resolve_fail(self, cmd: Command, err: RouteError) -> None:
        self._log.warning("Command %s failed permanently after %d retries: %s",
                          cmd.payload, cmd.retry_count, err.reason)
        self._emit_result(CommandResult(cmd.correlation_id, ok=False, error_kind=err.kind,
                                        reason=err.reason, raw_response=err.raw_response,
                                        retries=cmd.retry_count))

    def _emit_result(self, res: CommandResult) -> None:
        try:
            self._on_result(res)
        except Exception:
            self._log.exception("result callback failed (id=%s)", res.correlation_id)
