#!/usr/bin/env python3
"""
Visit Scribe - CLI Controller
1回の診察セッションを組み立て、終了操作を待って後始末する
"""

import select
import sys
import time
import traceback

from visit_scribe.domain import MessageLevel, TranscriptionConfigError, post_message
from visit_scribe.infrastructure.ai import (
    ClinicalNoteGenerator,
    LLMClient,
    create_llm_client,
)
from visit_scribe.infrastructure.audio import (
    AudioSource,
    FileAudioSource,
    MicrophoneAudioSource,
)
from visit_scribe.infrastructure.config import load_settings
from visit_scribe.infrastructure.stt import create_transcription_client
from visit_scribe.presentation.app import ScribeApp

from .view import CLIView


class CLIController:
    """
    CLIからの1セッション分の制御

    終了のしかたは3通り:
    - ファイル入力を最後まで処理した（残りを待って保存）
    - Ctrl+C（残りのセグメントを待って保存）
    - Ctrl+D（待たずに保存）
    """

    def __init__(
        self,
        device_id: int | None,
        file_path: str | None,
        session_id: str | None = None,
        patient_name: str | None = None,
        visit_reason: str | None = None,
        generate_note: bool = True,
    ):
        """
        Args:
            device_id: 入力デバイスID（Noneなら既定デバイス）
            file_path: 指定時はマイクの代わりにこのファイルを文字起こし
            session_id: Noneなら開始時刻から生成
            patient_name: ノート生成時の参考情報
            visit_reason: ノート生成時の参考情報
            generate_note: Falseなら設定に関わらずノートを作らない
        """
        self.device_id = device_id
        self.file_path = file_path
        self.session_id = session_id
        self.visit_details = {"patient_name": patient_name, "visit_reason": visit_reason}
        self.generate_note = generate_note
        self.settings = load_settings()

        self.app: ScribeApp | None = None
        self.view: CLIView | None = None

    def run(self) -> None:
        """セッションを実行（設定不備やエラー時は SystemExit）"""
        self.view = CLIView(settings=self.settings)

        try:
            transcription_client = create_transcription_client(
                settings=self.settings.transcription
            )
        except TranscriptionConfigError as e:
            post_message(self, f"Error: {e}", MessageLevel.ERROR)
            sys.exit(1)

        llm_client = self._create_llm_client()
        self.app = ScribeApp(
            transcription_client=transcription_client,
            audio_source=self._create_audio_source(),
            settings=self.settings,
            note_generator=(
                ClinicalNoteGenerator(llm_client=llm_client, settings=self.settings.note)
                if llm_client
                else None
            ),
            session_id=self.session_id,
        )

        self.view.show_banner(transcription_client, llm_client, self.app.session_id)
        self.app.store.subscribe(self.app.session_id, self.view.on_session_event)
        self.view.start(audio_stream=self.app.audio_stream, transcriber=self.app.transcriber)
        self.app.start_recording()

        hint = "Ctrl+C to stop, Ctrl+D to stop without waiting"
        post_message(self, f"🎙️  Recording visit... ({hint})\n", MessageLevel.SUCCESS)

        try:
            self._wait_for_exit_signal()
        except KeyboardInterrupt:
            post_message(
                self, "\nStopping... finishing pending segments.", MessageLevel.SUCCESS
            )
            self._shutdown(graceful=True)
        except EOFError:
            post_message(self, "\nStopping without waiting (Ctrl-D)", MessageLevel.WARNING)
            self._shutdown(graceful=False)
        except Exception as e:
            post_message(self, f"\nError: {e}", MessageLevel.ERROR)
            traceback.print_exc()
            sys.exit(1)
        else:
            post_message(self, "\nAudio file processed.", MessageLevel.SUCCESS)
            self._shutdown(graceful=True)

    def _create_llm_client(self) -> LLMClient | None:
        if not (self.generate_note and self.settings.note.enabled):
            return None
        return create_llm_client(settings=self.settings.note)

    def _create_audio_source(self) -> AudioSource:
        if self.file_path:
            return FileAudioSource(
                core_settings=self.settings.core,
                audio_settings=self.settings.audio,
                file_path=self.file_path,
            )
        return MicrophoneAudioSource(
            core_settings=self.settings.core,
            audio_settings=self.settings.audio,
            device_id=self.device_id,
        )

    def _input_finished(self) -> bool:
        """ファイル入力を読み終え、文字起こしも残っていないか"""
        assert self.app is not None
        if not self.app.is_file_mode:
            return False
        return not self.app.audio_stream.is_alive() and not self.app.transcriber.is_transcribing

    def _wait_for_exit_signal(self) -> None:
        """
        ファイル入力の完了まで、またはキー操作まで待つ

        Raises:
            KeyboardInterrupt: Ctrl+C
            EOFError: 端末で Ctrl+D
        """
        interval = self.settings.app.input_poll_interval_sec
        while not self._input_finished():
            if not sys.stdin.isatty():
                time.sleep(interval)
                continue
            readable, _, _ = select.select([sys.stdin], [], [], interval)
            if readable and sys.stdin.read(1) == "":
                raise EOFError

    def _shutdown(self, graceful: bool) -> None:
        if self.view:
            self.view.stop()
        if self.app:
            self.app.shutdown(graceful=graceful, **self.visit_details)
