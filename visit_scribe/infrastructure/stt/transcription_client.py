#!/usr/bin/env python3
"""
Visit Scribe - Transcription Client Module
音声認識APIクライアントの抽象化とアダプタパターンを提供するモジュール
"""

import os
from abc import ABC, abstractmethod
from typing import Any

import openai
from openai import OpenAI

from visit_scribe.domain import (
    TranscriptionConfigError,
    TranscriptionFailedError,
    TranscriptionRejectedError,
    TranscriptionSettings,
    TranscriptionTransportError,
)
from visit_scribe.domain.constants import WAV_MIME_TYPE


class TranscriptionClient(ABC):
    """
    文字起こしクライアントの抽象基底クラス

    WAVバイト列を受け取りプレーンテキストを返す。
    失敗は TranscriptionFailedError の派生で通知し、内部で再試行はしない。
    """

    @abstractmethod
    def transcribe(self, wav_bytes: bytes, filename: str) -> str:
        """
        WAV音声を文字起こし

        Args:
            wav_bytes: モノラル16bit PCM WAV
            filename: アップロード時のファイル名（例: "segment-00003.wav"）

        Returns:
            str: 書き起こしテキスト（空文字の場合あり）

        Raises:
            TranscriptionRejectedError: 上流サービスが拒否した場合
            TranscriptionTransportError: 通信エラーの場合
        """
        pass

    @abstractmethod
    def get_backend_info(self) -> str:
        """使用しているバックエンドの情報を返す"""
        pass


class OpenAITranscriptionClient(TranscriptionClient):
    """
    OpenAI 音声認識APIクライアント（whisper-1 など）

    責務:
    - multipart/form-data でのWAVアップロード
    - SDK例外のドメイン例外への変換
    """

    def __init__(self, settings: TranscriptionSettings) -> None:
        """
        Args:
            settings: 文字起こし設定（APIキー、モデル名、言語など）

        Raises:
            TranscriptionConfigError: APIキーが設定されていない場合
        """
        api_key = settings.openai_api_key or os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise TranscriptionConfigError(
                "OpenAI API key is not set "
                "(transcription.openai_api_key or OPENAI_API_KEY)"
            )

        self.settings = settings
        # 再試行方針は呼び出し側の責務のため、SDKの自動リトライは無効化
        self.client = OpenAI(
            api_key=api_key,
            base_url=settings.base_url,
            timeout=settings.timeout_sec,
            max_retries=0,
        )

    def transcribe(self, wav_bytes: bytes, filename: str) -> str:
        kwargs: dict[str, Any] = {
            "model": self.settings.model,
            "file": (filename, wav_bytes, WAV_MIME_TYPE),
        }
        if self.settings.language_code:
            kwargs["language"] = self.settings.language_code

        try:
            response = self.client.audio.transcriptions.create(**kwargs)
        except openai.APIStatusError as e:
            raise TranscriptionRejectedError(e.status_code, e.message) from e
        except openai.APIConnectionError as e:
            # APITimeoutError も含む
            raise TranscriptionTransportError(f"Transcription failed: {e}") from e
        except openai.APIError as e:
            raise TranscriptionFailedError(f"Transcription failed: {e}") from e

        return (response.text or "").strip()

    def get_backend_info(self) -> str:
        """
        Returns:
            str: バックエンド情報（例: "OpenAI (whisper-1)"）
        """
        if self.settings.base_url:
            return f"OpenAI ({self.settings.model} @ {self.settings.base_url})"
        return f"OpenAI ({self.settings.model})"


# ========================================
# Factory Function
# ========================================
def create_transcription_client(settings: TranscriptionSettings) -> TranscriptionClient:
    """
    設定に基づいて文字起こしクライアントを生成

    Raises:
        TranscriptionConfigError: APIキーが設定されていない場合
    """
    return OpenAITranscriptionClient(settings=settings)
