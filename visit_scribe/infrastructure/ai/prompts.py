#!/usr/bin/env python3
"""
Visit Scribe - Prompt Templates
LLM API用のプロンプトテンプレートを管理するモジュール
"""

from typing import Protocol

from visit_scribe.domain.constants import CLINICAL_NOTE_SECTIONS

# 未指定時にプロンプトへ埋め込む表記
NOT_PROVIDED = "Not provided"


def empty_note() -> str:
    """
    空の臨床ノート（全セクション空欄）を返す

    >>> empty_note().splitlines()[:3]
    ['Chief Complaint:', '', '']
    """
    return "\n\n\n".join(f"{section}:" for section in CLINICAL_NOTE_SECTIONS)


class PromptStrategy(Protocol):
    """
    プロンプト構築戦略の抽象インターフェース

    責務:
    - システムプロンプトの提供
    - ユーザープロンプトの構築
    """

    @property
    def system_prompt(self) -> str:
        """システムプロンプトを取得"""
        ...

    def build_user_prompt(self, **kwargs: str | None) -> str:
        """ユーザープロンプトを構築"""
        ...


class ClinicalNotePromptStrategy:
    """
    臨床ノート生成用プロンプト戦略

    責務:
    - 診療記録アシスタントとしてのシステムプロンプト提供
    - トランスクリプトと参考情報（患者名・受診理由）からのユーザープロンプト構築

    患者名と受診理由は参考情報としてのみ渡し、推測の材料にさせない。
    """

    @property
    def system_prompt(self) -> str:
        """臨床ノート用システムプロンプト"""
        return """You are a clinical documentation assistant that converts patient encounter transcripts into structured clinical notes.

IMPORTANT INSTRUCTIONS:
- Output ONLY plain text in the exact format shown below
- Do NOT use JSON, markdown code blocks, or any special formatting
- Use ONLY information explicitly stated in the transcript itself
- Do NOT use patient name or visit reason to infer or invent any information
- If a section has no relevant information in the transcript, leave it completely empty (just the section header followed by a blank line)
- Do NOT add placeholder text like "Not discussed", "Not documented", "Not performed", or any other defaults
- Do NOT infer, assume, or invent information - only include what is explicitly stated in the transcript
- If the transcript is empty or has no relevant content, ALL sections must be left empty
- Use professional medical terminology while keeping notes concise
- This is a DRAFT that requires clinician review

OUTPUT FORMAT (follow exactly):

Chief Complaint:
[Primary reason for visit in 1-2 sentences, or leave empty if not stated]

HPI:
[History of present illness - onset, duration, character, severity, modifying factors, or leave empty if not stated]

ROS:
[Review of systems - symptoms mentioned, organized by system, or leave empty if not stated]

Physical Exam:
[Any exam findings mentioned, or leave empty if not stated]

Assessment:
[Clinical assessment/diagnosis mentioned by clinician, or leave empty if not stated]

Plan:
[Treatment plan discussed with patient, or leave empty if not stated]"""

    def build_user_prompt(
        self,
        transcript: str,
        patient_name: str | None = None,
        visit_reason: str | None = None,
    ) -> str:
        """
        臨床ノート用のユーザープロンプトを構築

        Args:
            transcript: 最終トランスクリプト
            patient_name: 患者名（参考情報）
            visit_reason: 受診理由（参考情報）

        Returns:
            str: 構築されたユーザープロンプト
        """
        return f"""Convert this clinical encounter transcript into a structured note. Use ONLY the information explicitly stated in the transcript below. Do not infer or invent any information.

Patient Name: {patient_name or NOT_PROVIDED} (for reference only - do not use to infer information)
Visit Reason: {visit_reason or NOT_PROVIDED} (for reference only - do not use to infer information)

TRANSCRIPT:
{transcript}

Generate the clinical note now, following the exact format specified. Only include information explicitly stated in the transcript above."""
