#!/usr/bin/env python3
"""
Visit Scribe - Configuration Loader
config.toml / config.local.toml から Settings を組み立てる
"""

import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from visit_scribe.domain import Settings

CONFIG_FILENAME = "config.toml"
LOCAL_CONFIG_FILENAME = "config.local.toml"

# リポジトリ直下（visit_scribe/ の親）
DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[2]


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    テーブル単位で再帰的に上書きする

    >>> _deep_merge({"a": {"x": 1, "y": 2}}, {"a": {"y": 3}, "b": 4})
    {'a': {'x': 1, 'y': 3}, 'b': 4}
    """
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = _deep_merge(dict(current), dict(value))
        else:
            merged[key] = value
    return merged


def load_settings(config_dir: Path | str | None = None) -> Settings:
    """
    設定を読み込む

    config_dir 内の config.toml、続いて config.local.toml（ローカル専用、
    APIキー等）を既定値に重ねる。どちらも無ければ既定値のみ。

    Raises:
        pydantic.ValidationError: 値が不正（窓長とオーバーラップの矛盾、APIキー不足など）
    """
    directory = Path(config_dir) if config_dir is not None else DEFAULT_CONFIG_DIR

    data: dict[str, Any] = {}
    for name in (CONFIG_FILENAME, LOCAL_CONFIG_FILENAME):
        path = directory / name
        if path.is_file():
            with path.open("rb") as f:
                data = _deep_merge(data, tomllib.load(f))

    return Settings(**data)
