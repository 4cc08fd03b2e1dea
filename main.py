# main.py
# -*- coding: utf-8 -*-
"""
매트릭스 라우터 채널 실행기

예)
  python main.py --config data/config.json route 3 12
  python main.py --simulate route 1 2 --mode B
  python main.py --port COM3 status
  python main.py watch --seconds 30
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from controller.route_client import RouteClient
from lib import config_common as cfgc
from lib.channel_config import ChannelConfig, load_channel_config
from util.app_logging import (
    install_asyncio_exception_logging,
    install_global_exception_hooks,
    install_warnings_logging,
    setup_app_logging,
)
from util.error_reporter import notify_all
from util.errors import RouteError


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="matrix-router", description="AV matrix router serial channel")
    p.add_argument("--config", type=Path, default=cfgc.CONFIG_PATH, help="config.json 경로")
    p.add_argument("--port", help="serialPort 덮어쓰기")
    p.add_argument("--baud", type=int, help="baudRate 덮어쓰기")
    p.add_argument("--simulate", action="store_true", help="devMode (시리얼 미사용, 가상 성공)")
    p.add_argument("--log-root", type=Path, default=cfgc.LOG_ROOT)
    p.add_argument("--console", action="store_true", help="콘솔에도 로그 출력")

    sub = p.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("route", help="출력 OUTPUT 에 입력 INPUT 연결")
    r.add_argument("output", type=int)
    r.add_argument("input", type=int)
    r.add_argument("--mode", default=cfgc.ROUTER_DEFAULT_MODE)

    sub.add_parser("status", help="연결/큐 상태 조회")

    w = sub.add_parser("watch", help="연결 이벤트 출력")
    w.add_argument("--seconds", type=float, default=0.0, help="0 이면 Ctrl+C 까지")
    return p


def resolve_config(args: argparse.Namespace) -> ChannelConfig:
    cfg = load_channel_config(args.config)
    changes = {}
    if args.port:
        changes["serial_port"] = args.port
    if args.baud:
        changes["baud_rate"] = args.baud
    if args.simulate:
        changes["simulate"] = True
    return cfg.with_updates(**changes) if changes else cfg


def _print_json(obj) -> None:
    print(json.dumps(obj, ensure_ascii=False))


async def _run(args: argparse.Namespace, logger: logging.Logger) -> int:
    install_asyncio_exception_logging(asyncio.get_running_loop(), logger)
    cfg = resolve_config(args)

    async with RouteClient(cfg) as client:
        if args.cmd == "route":
            try:
                res = await client.submit(args.output, args.input, args.mode)
            except (RouteError, ValueError) as e:
                _print_json(notify_all(log=lambda tag, msg: logger.error("[%s] %s", tag, msg), message=e))
                return 1
            _print_json({"result": "success", "status": res.status, "response": res.raw_response})
            return 0

        if args.cmd == "status":
            # 포트 오픈 시도가 끝날 틈을 준다
            await asyncio.sleep(0.2)
            _print_json(await client.get_status())
            return 0

        if args.cmd == "watch":
            async def _pump():
                async for ev in client.events():
                    _print_json({"event": ev.kind, "message": ev.message, "reason": ev.reason})
            try:
                if args.seconds > 0:
                    await asyncio.wait_for(_pump(), timeout=args.seconds)
                else:
                    await _pump()
            except asyncio.TimeoutError:
                pass
            return 0
    return 2


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = setup_app_logging(root=args.log_root, enable_console=args.console)
    install_global_exception_hooks(logger)
    install_warnings_logging(logger)
    try:
        return asyncio.run(_run(args, logger))
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
