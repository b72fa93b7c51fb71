#!/usr/bin/env python3
"""
Visit Scribe - Clinical Note Generator Module
インフラ層：最終トランスクリプトからの構造化臨床ノート生成
"""

from visit_scribe.domain import (
    MessageLevel,
    MessagePostedEvent,
    NoteGeneratedEvent,
    NoteGenerationError,
    NoteSettings,
    message_posted,
    note_generated,
)

from .llm_client import LLMClient
from .prompts import ClinicalNotePromptStrategy, empty_note


class ClinicalNoteGenerator:
    """
    臨床ノート生成器

    責務:
    - 最終トランスクリプトからのプロンプト構築（戦略はDI）
    - LLM呼び出しと失敗時の例外変換
    - ノート生成イベントの発行（Pub/Sub）

    Note:
    - 入力は SessionStore が確定した最終トランスクリプトのみ
    - 空のトランスクリプトではLLMを呼ばず、空欄のノートを返す
    """

    def __init__(
        self,
        llm_client: LLMClient,
        settings: NoteSettings,
        prompt_strategy: ClinicalNotePromptStrategy | None = None,
    ) -> None:
        self.llm_client = llm_client
        self.settings = settings
        self.prompt_strategy = prompt_strategy or ClinicalNotePromptStrategy()

    def generate(
        self,
        transcript: str,
        patient_name: str | None = None,
        visit_reason: str | None = None,
    ) -> str:
        """
        臨床ノートを生成

        Args:
            transcript: 最終トランスクリプト
            patient_name: 患者名（参考情報のみ）
            visit_reason: 受診理由（参考情報のみ）

        Returns:
            str: プレーンテキストの臨床ノート

        Raises:
            NoteGenerationError: LLM呼び出しに失敗した、または応答が空の場合
        """
        if not transcript or not transcript.strip():
            message_posted.send(
                self,
                event=MessagePostedEvent(
                    message="Transcript is empty - returning empty note structure",
                    level=MessageLevel.WARNING,
                ),
            )
            note = empty_note()
            note_generated.send(self, event=NoteGeneratedEvent(note=note))
            return note

        message_posted.send(
            self,
            event=MessagePostedEvent(
                message=f"Generating clinical note with {self.llm_client.get_backend_info()} "
                f"({len(transcript)} characters)...",
                level=MessageLevel.INFO,
            ),
        )

        user_prompt = self.prompt_strategy.build_user_prompt(
            transcript=transcript,
            patient_name=patient_name,
            visit_reason=visit_reason,
        )
        try:
            note = self.llm_client(
                system_prompt=self.prompt_strategy.system_prompt,
                user_prompt=user_prompt,
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
            )
        except Exception as e:
            raise NoteGenerationError(f"Failed to generate note: {e}") from e

        if not note:
            raise NoteGenerationError("Failed to generate note: empty response")

        note_generated.send(self, event=NoteGeneratedEvent(note=note))
        return note
