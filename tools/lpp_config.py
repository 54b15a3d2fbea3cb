#!/usr/bin/env python3
"""
lpp_config.py - Decoder configuration

Values can come from a YAML file, either at the top level or under a
``decoder:`` key:

    decoder:
      app_port: 210
      utc_offset: 28800
      time_drift_threshold: 5

load_config() falls back to the file named by LPP_DECODER_CONFIG, and to
the built-in defaults when neither is given.
"""

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml


CONFIG_ENV_VAR = 'LPP_DECODER_CONFIG'


@dataclass(frozen=True)
class DecoderConfig:
    """Tunables for the uplink decoder and derived-state evaluator."""
    app_port: int = 210
    min_payload_len: int = 3
    string_capacity: int = 32
    utc_offset: int = 8 * 3600
    time_drift_threshold: int = 5
    clear_voice_cooldown: int = 60

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'DecoderConfig':
        data = dict(data or {})
        if isinstance(data.get('decoder'), dict):
            data = data['decoder']

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")

        values = {}
        for key, value in data.items():
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"Config key '{key}' must be an integer, got {value!r}")
            if value < 0 and key != 'utc_offset':
                raise ValueError(f"Config key '{key}' must not be negative")
            values[key] = value
        return replace(cls(), **values)


def load_config(path: Optional[Union[str, Path]] = None) -> DecoderConfig:
    """Load configuration from ``path``, the environment, or defaults."""
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return DecoderConfig()

    with open(path, 'r') as f:
        data = yaml.safe_load(f)

    if data is not None and not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return DecoderConfig.from_dict(data)
