#!/usr/bin/env python3
"""
Visit Scribe - AI Infrastructure
AI関連のインフラストラクチャ層（臨床ノート生成）
"""

# ノート生成
from .note_generator import ClinicalNoteGenerator

# LLMクライアント
from .llm_client import ClaudeClient, LLMClient, OpenAIClient, create_llm_client

# プロンプト
from . import prompts

__all__ = [
    # ノート生成
    "ClinicalNoteGenerator",
    # LLMクライアント
    "ClaudeClient",
    "LLMClient",
    "OpenAIClient",
    "create_llm_client",
    # プロンプトモジュール
    "prompts",
]
