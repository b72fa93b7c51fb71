#!/usr/bin/env python3
"""
Visit Scribe - Persistence Infrastructure
永続化層のインフラストラクチャ（JSON出力）
"""

# JSONエクスポート
from .json_exporter import SessionJsonExporter

__all__ = [
    # JSONエクスポート
    "SessionJsonExporter",
]
