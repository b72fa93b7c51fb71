#!/usr/bin/env python3
"""
Tests for Clinical Note Generation
臨床ノート生成器・プロンプト・LLMクライアントのテスト
"""

import sys
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

# sounddevice が利用できない環境（Linux CI等）ではモックする
if "sounddevice" not in sys.modules:
    sys.modules["sounddevice"] = MagicMock()

from visit_scribe.domain import (
    LLMBackend,
    NoteGenerationError,
    NoteSettings,
    note_generated,
)
from visit_scribe.infrastructure.ai import (
    ClaudeClient,
    ClinicalNoteGenerator,
    LLMClient,
    OpenAIClient,
    create_llm_client,
)
from visit_scribe.infrastructure.ai.prompts import (
    NOT_PROVIDED,
    ClinicalNotePromptStrategy,
    empty_note,
)

NOTE = """Chief Complaint:
Cough for two weeks.

HPI:
Dry cough, worse at night.

ROS:


Physical Exam:


Assessment:


Plan:
"""


class FakeLLM(LLMClient):
    """呼び出し内容を記録し、決まった応答を返すLLM"""

    def __init__(self, response: str | None = NOTE, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[dict] = []

    def __call__(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str | None:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if self.error is not None:
            raise self.error
        return self.response

    def get_backend_info(self) -> str:
        return "Fake (test)"


@pytest.fixture
def settings() -> NoteSettings:
    return NoteSettings(enabled=False, temperature=0.0, max_tokens=1024)


class TestClinicalNoteGenerator:
    """ClinicalNoteGeneratorのテスト"""

    @pytest.mark.parametrize("transcript", ["", "   \n "])
    def test_empty_transcript_skips_llm(self, settings: NoteSettings, transcript: str) -> None:
        """空のトランスクリプトではLLMを呼ばずに空欄のノートを返す"""
        llm = FakeLLM()
        note = ClinicalNoteGenerator(llm, settings).generate(transcript)

        assert note == empty_note()
        assert llm.calls == []

    def test_passes_prompts_and_sampling_settings(self, settings: NoteSettings) -> None:
        llm = FakeLLM()
        note = ClinicalNoteGenerator(llm, settings).generate(
            "I have had a dry cough for two weeks", patient_name="Jane Doe"
        )

        assert note == NOTE
        call = llm.calls[0]
        assert call["temperature"] == 0.0
        assert call["max_tokens"] == 1024
        assert call["system_prompt"] == ClinicalNotePromptStrategy().system_prompt
        assert "I have had a dry cough for two weeks" in call["user_prompt"]
        assert "Patient Name: Jane Doe" in call["user_prompt"]
        assert f"Visit Reason: {NOT_PROVIDED}" in call["user_prompt"]

    def test_llm_error_is_wrapped(self, settings: NoteSettings) -> None:
        llm = FakeLLM(error=RuntimeError("quota exceeded"))
        with pytest.raises(NoteGenerationError, match="Failed to generate note: quota exceeded"):
            ClinicalNoteGenerator(llm, settings).generate("hello doctor")

    @pytest.mark.parametrize("response", [None, ""])
    def test_empty_response_is_error(self, settings: NoteSettings, response: str | None) -> None:
        with pytest.raises(NoteGenerationError):
            ClinicalNoteGenerator(FakeLLM(response=response), settings).generate("hello doctor")

    def test_emits_note_generated(self, settings: NoteSettings) -> None:
        received: list[str] = []

        def on_note(sender: object, event) -> None:
            received.append(event.note)

        generator = ClinicalNoteGenerator(FakeLLM(), settings)
        with note_generated.connected_to(on_note, sender=generator):
            generator.generate("hello doctor")
            generator.generate("")

        assert received == [NOTE, empty_note()]


class TestPrompts:
    """プロンプト構築のテスト"""

    def test_empty_note_lists_every_section(self) -> None:
        note = empty_note()
        assert note.startswith("Chief Complaint:")
        assert note.endswith("Plan:")
        for header in ("HPI:", "ROS:", "Physical Exam:", "Assessment:"):
            assert f"\n\n\n{header}" in note

    def test_reference_fields_default_to_not_provided(self) -> None:
        prompt = ClinicalNotePromptStrategy().build_user_prompt("transcript text")
        assert f"Patient Name: {NOT_PROVIDED}" in prompt
        assert f"Visit Reason: {NOT_PROVIDED}" in prompt
        assert "TRANSCRIPT:\ntranscript text" in prompt

    def test_reference_fields_are_marked_reference_only(self) -> None:
        prompt = ClinicalNotePromptStrategy().build_user_prompt(
            "transcript text", patient_name="John", visit_reason="Follow-up"
        )
        assert (
            "Visit Reason: Follow-up (for reference only - do not use to infer information)"
            in prompt
        )

    def test_system_prompt_forbids_placeholders(self) -> None:
        system_prompt = ClinicalNotePromptStrategy().system_prompt
        assert "Do NOT add placeholder text" in system_prompt
        assert "OUTPUT FORMAT" in system_prompt


class TestOpenAICodeBlockExtraction:
    """OpenAIClientのコードブロック展開のテスト"""

    def test_extracts_fenced_note(self) -> None:
        response = "```text\nChief Complaint:\nCough\n```"
        assert OpenAIClient._strip_code_block(response) == "Chief Complaint:\nCough"

    def test_extracts_last_block_when_multiple(self) -> None:
        response = "```\nFirst\n```\n\nSome text.\n\n```plaintext\nPlan:\nRest\n```"
        assert OpenAIClient._strip_code_block(response) == "Plan:\nRest"

    def test_returns_plain_text_as_is(self) -> None:
        assert OpenAIClient._strip_code_block("  Plan:\nRest \n") == "Plan:\nRest"


class TestLLMClients:
    """LLMクライアント生成と呼び出しのテスト"""

    def test_factory_selects_openai(self) -> None:
        settings = NoteSettings(enabled=True, backend=LLMBackend.OPENAI, openai_api_key="sk-test")
        with patch("visit_scribe.infrastructure.ai.llm_client.OpenAI"):
            client = create_llm_client(settings)
        assert isinstance(client, OpenAIClient)
        assert client.get_backend_info() == "OpenAI (gpt-4o)"

    def test_factory_selects_claude(self) -> None:
        settings = NoteSettings(
            enabled=True, backend=LLMBackend.CLAUDE, anthropic_api_key="sk-ant-test"
        )
        with patch("visit_scribe.infrastructure.ai.llm_client.Anthropic"):
            client = create_llm_client(settings)
        assert isinstance(client, ClaudeClient)

    def test_openai_request(self) -> None:
        settings = NoteSettings(enabled=True, openai_api_key="sk-test", max_tokens=512)
        with patch("visit_scribe.infrastructure.ai.llm_client.OpenAI") as mock_cls:
            sdk = mock_cls.return_value
            sdk.chat.completions.create.return_value.choices = [
                MagicMock(message=MagicMock(content="```\nPlan:\nRest\n```"))
            ]
            client = OpenAIClient(settings)
            result = client("system", "user", temperature=0.0)

        assert result == "Plan:\nRest"
        kwargs = sdk.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["max_tokens"] == 512
        assert kwargs["temperature"] == 0.0
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}

    def test_openai_omits_temperature_when_none(self) -> None:
        settings = NoteSettings(enabled=True, openai_api_key="sk-test")
        with patch("visit_scribe.infrastructure.ai.llm_client.OpenAI") as mock_cls:
            sdk = mock_cls.return_value
            sdk.chat.completions.create.return_value.choices = []
            result = OpenAIClient(settings)("system", "user", temperature=None)

        assert result is None
        assert "temperature" not in sdk.chat.completions.create.call_args.kwargs


class TestNoteSettings:
    """NoteSettingsの検証ロジックのテスト"""

    def test_disabled_needs_no_key(self) -> None:
        NoteSettings(enabled=False, anthropic_api_key=None, openai_api_key=None)

    def test_openai_backend_requires_key(self) -> None:
        with pytest.raises(ValidationError, match="openai_api_key"):
            NoteSettings(enabled=True, backend="openai", openai_api_key=None)

    def test_claude_backend_requires_key(self) -> None:
        with pytest.raises(ValidationError, match="anthropic_api_key"):
            NoteSettings(enabled=True, backend="claude", anthropic_api_key=None)
