# lib/channel_config.py
# -*- coding: utf-8 -*-
"""
채널 설정(세대 단위 불변 객체)
- config.json(camelCase) / snake_case dict 모두 수용
- 갱신은 항상 새 객체를 만든다(with_updates). 진행 중 명령이 참조하는 객체는 바뀌지 않음
"""
from __future__ import annotations
import dataclasses
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Union

from lib import config_common as cfgc

# config.json 키 → 필드명
_KEY_ALIASES: Dict[str, str] = {
    "serialPort": "serial_port",
    "baudRate": "baud_rate",
    "commandTimeout": "command_timeout_ms",
    "maxRetries": "max_retries",
    "devMode": "simulate",
    "maxInputs": "max_inputs",
    "maxOutputs": "max_outputs",
}


@dataclass(frozen=True)
class ChannelConfig:
    serial_port: str = cfgc.ROUTER_PORT
    baud_rate: int = cfgc.ROUTER_BAUD
    command_timeout_ms: int = cfgc.COMMAND_TIMEOUT_MS
    max_retries: int = cfgc.MAX_RETRIES
    simulate: bool = False
    max_inputs: int = cfgc.ROUTER_MAX_INPUTS
    max_outputs: int = cfgc.ROUTER_MAX_OUTPUTS

    def __post_init__(self) -> None:
        if not isinstance(self.serial_port, str) or not self.serial_port.strip():
            raise ValueError("serial_port must be a non-empty string")
        if int(self.baud_rate) <= 0:
            raise ValueError(f"invalid baud_rate: {self.baud_rate}")
        if int(self.command_timeout_ms) <= 0:
            raise ValueError(f"invalid command_timeout_ms: {self.command_timeout_ms}")
        if int(self.max_retries) < 0:
            raise ValueError(f"invalid max_retries: {self.max_retries}")
        if int(self.max_inputs) <= 0 or int(self.max_outputs) <= 0:
            raise ValueError("max_inputs / max_outputs must be positive")

    @property
    def command_timeout_s(self) -> float:
        return self.command_timeout_ms / 1000.0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ChannelConfig":
        """알 수 없는 키(gridRows 등 UI용)는 무시."""
        names = {f.name for f in dataclasses.fields(cls)}
        kwargs: Dict[str, Any] = {}
        for k, v in (data or {}).items():
            name = _KEY_ALIASES.get(k, k)
            if name in names and v is not None:
                kwargs[name] = v
        if "simulate" in kwargs:
            kwargs["simulate"] = bool(kwargs["simulate"])
        for key in ("baud_rate", "command_timeout_ms", "max_retries", "max_inputs", "max_outputs"):
            if key in kwargs:
                kwargs[key] = int(kwargs[key])
        return cls(**kwargs)

    def with_updates(self, **changes: Any) -> "ChannelConfig":
        """새 세대 설정 생성(camelCase 키도 허용)."""
        merged = self.to_mapping()
        for k, v in changes.items():
            merged[_KEY_ALIASES.get(k, k)] = v
        return ChannelConfig.from_mapping(merged)

    def to_mapping(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


def load_channel_config(path: Union[str, Path, None] = None) -> ChannelConfig:
    p = Path(path) if path else cfgc.CONFIG_PATH
    if not p.exists():
        return ChannelConfig()
    with open(p, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"config must be a JSON object: {p}")
    return ChannelConfig.from_mapping(data)
