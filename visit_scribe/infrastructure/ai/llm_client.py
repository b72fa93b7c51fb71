#!/usr/bin/env python3
"""
Visit Scribe - LLM Clients Module
診療ノート生成に使うチャットLLMのアダプタ（Claude / OpenAI互換）
"""

import re
from abc import ABC, abstractmethod
from typing import Any

from anthropic import Anthropic
from anthropic.types import TextBlock
from openai import OpenAI

from visit_scribe.domain import LLMBackend, NoteSettings


class LLMClient(ABC):
    """
    1回のプロンプトからノート本文を得るためのチャットLLM抽象

    呼び出し側（ClinicalNoteGenerator）はプロバイダを意識しない。
    SDK の例外はそのまま送出する。
    """

    @abstractmethod
    def __call__(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str | None:
        """
        Args:
            system_prompt: ノート形式の指示
            user_prompt: 診察情報とトランスクリプト
            temperature: None ならプロバイダ既定値
            max_tokens: None なら NoteSettings.max_tokens

        Returns:
            str | None: 応答本文（テキストが無ければNone）
        """
        pass

    @abstractmethod
    def get_backend_info(self) -> str:
        """表示用のバックエンド名（例: "Claude (claude-sonnet-4-5)"）"""
        pass

    def _limits(self, settings: NoteSettings, temperature: float | None, max_tokens: int | None) -> dict[str, Any]:
        limits: dict[str, Any] = {"max_tokens": max_tokens or settings.max_tokens}
        if temperature is not None:
            limits["temperature"] = temperature
        return limits


class ClaudeClient(LLMClient):
    """Anthropic Messages API"""

    def __init__(self, settings: NoteSettings) -> None:
        # NoteSettings の検証でキーの存在は保証済み
        assert settings.anthropic_api_key is not None
        self.settings = settings
        self.client = Anthropic(api_key=settings.anthropic_api_key)

    def __call__(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str | None:
        message = self.client.messages.create(
            model=self.settings.claude_model,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            **self._limits(self.settings, temperature, max_tokens),
        )

        texts = [block.text for block in message.content if isinstance(block, TextBlock)]
        return "".join(texts).strip() if texts else None

    def get_backend_info(self) -> str:
        return f"Claude ({self.settings.claude_model})"


class OpenAIClient(LLMClient):
    """
    OpenAI Chat Completions API

    openai_base_url を指定すれば互換サーバ（vLLM、Azure 等）にも向けられる。
    モデルが指示を無視してノートをコードフェンスで囲んだ場合は中身だけを返す。
    """

    _FENCE = re.compile(r"```[a-zA-Z]*\s*\n(.*?)\n```", re.DOTALL)

    def __init__(self, settings: NoteSettings) -> None:
        assert settings.openai_api_key is not None
        self.settings = settings
        self.client = OpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
        )

    @classmethod
    def _strip_code_block(cls, text: str) -> str:
        """
        最後のコードフェンスの中身、無ければ前後空白を除いた全文

        >>> OpenAIClient._strip_code_block("```\\nPlan:\\nRest\\n```")
        'Plan:\\nRest'
        >>> OpenAIClient._strip_code_block("Plan:")
        'Plan:'
        """
        fenced = cls._FENCE.findall(text)
        if not fenced:
            return text.strip()
        return fenced[-1].strip()

    def __call__(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str | None:
        response = self.client.chat.completions.create(
            model=self.settings.openai_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            **self._limits(self.settings, temperature, max_tokens),
        )

        if not response.choices:
            return None
        content = response.choices[0].message.content
        return self._strip_code_block(content) if content else None

    def get_backend_info(self) -> str:
        model = self.settings.openai_model
        base_url = self.settings.openai_base_url
        return f"OpenAI ({model} @ {base_url})" if base_url else f"OpenAI ({model})"


# ========================================
# Factory Function
# ========================================
def create_llm_client(settings: NoteSettings) -> LLMClient:
    """note.backend に対応するクライアントを生成"""
    match settings.backend:
        case LLMBackend.CLAUDE:
            return ClaudeClient(settings=settings)
        case LLMBackend.OPENAI:
            return OpenAIClient(settings=settings)
        case _:
            raise ValueError(
                f"Unsupported note backend '{settings.backend}' "
                f"(expected '{LLMBackend.CLAUDE}' or '{LLMBackend.OPENAI}')"
            )
