#!/usr/bin/env python3
"""
Visit Scribe - Presentation Layer
プレゼンテーション層：UI、アプリケーションロジック
"""

# コアアプリケーション
from .app import ScribeApp

__all__ = [
    # コアアプリケーション
    "ScribeApp",
]
