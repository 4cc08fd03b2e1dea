"""
Unit tests for ChannelConfig loading and updates.

Tests cover:
- camelCase keys from config.json map onto fields, UI keys are ignored
- with_updates produces a new object and accepts both key styles
- load_channel_config falls back to defaults when the file is missing
- Validation of obviously broken values
"""

import json

import pytest

from lib import config_common as cfgc
from lib.channel_config import ChannelConfig, load_channel_config


class TestChannelConfig:

    def test_defaults(self):
        cfg = ChannelConfig()
        assert cfg.serial_port == cfgc.ROUTER_PORT
        assert cfg.baud_rate == 9600
        assert cfg.command_timeout_ms == 2000
        assert cfg.max_retries == 3
        assert cfg.simulate is False
        assert cfg.command_timeout_s == 2.0

    def test_from_mapping_camel_case(self):
        cfg = ChannelConfig.from_mapping({
            "serialPort": "COM3",
            "baudRate": "19200",
            "commandTimeout": 1500,
            "maxRetries": 1,
            "devMode": 1,
            "maxInputs": 32,
            "maxOutputs": 8,
            "gridRows": 4,
            "gridCols": 4,
        })
        assert cfg.serial_port == "COM3"
        assert cfg.baud_rate == 19200
        assert cfg.command_timeout_ms == 1500
        assert cfg.max_retries == 1
        assert cfg.simulate is True
        assert (cfg.max_inputs, cfg.max_outputs) == (32, 8)

    def test_with_updates_returns_new_object(self, base_config):
        updated = base_config.with_updates(serialPort="/dev/ttyFAKE1", max_retries=0)
        assert updated is not base_config
        assert updated.serial_port == "/dev/ttyFAKE1"
        assert updated.max_retries == 0
        assert base_config.serial_port == "/dev/ttyFAKE0"
        assert updated.baud_rate == base_config.baud_rate

    def test_load_missing_file_gives_defaults(self, tmp_path):
        assert load_channel_config(tmp_path / "nope.json") == ChannelConfig()

    def test_load_from_file(self, tmp_path):
        p = tmp_path / "config.json"
        p.write_text(json.dumps({"serialPort": "/dev/ttyS1", "devMode": False}), encoding="utf-8")
        cfg = load_channel_config(p)
        assert cfg.serial_port == "/dev/ttyS1"
        assert cfg.simulate is False

    def test_load_rejects_non_object(self, tmp_path):
        p = tmp_path / "config.json"
        p.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(ValueError):
            load_channel_config(p)

    @pytest.mark.parametrize("changes", [
        {"serial_port": ""},
        {"baud_rate": 0},
        {"command_timeout_ms": -1},
        {"max_retries": -1},
        {"max_inputs": 0},
    ])
    def test_invalid_values_raise(self, changes):
        with pytest.raises(ValueError):
            ChannelConfig(**changes)
