#!/usr/bin/env python3
"""
Visit Scribe - Core Application
1回の診察セッションの配線と終了処理（CLI・組み込みで共用）
"""

import time
from datetime import datetime

from visit_scribe.domain import (
    MessageLevel,
    MessagePostedEvent,
    NoteGenerationError,
    SegmentCapturedEvent,
    SessionSnapshot,
    Settings,
    TranscriptionError,
    TranscriptionFailedError,
    VisitRecord,
    message_posted,
    post_message,
    segment_captured,
)
from visit_scribe.infrastructure.ai import ClinicalNoteGenerator
from visit_scribe.infrastructure.audio import AudioSource, AudioStream, Segmenter, encode_wav
from visit_scribe.infrastructure.persistence import SessionJsonExporter
from visit_scribe.infrastructure.session import EventDispatcher, SessionStore
from visit_scribe.infrastructure.stt import SegmentTranscriber, TranscriptionClient


class ScribeApp:
    """
    診察セッション

    AudioStream --segment_captured--> SegmentTranscriber --> SessionStore
    --"segment"/"final"--> store.subscribe() した購読者

    shutdown() で最終トランスクリプトを確定し、ノートを下書きして
    VisitRecord を保存する。
    """

    def __init__(
        self,
        transcription_client: TranscriptionClient,
        audio_source: AudioSource,
        settings: Settings,
        note_generator: ClinicalNoteGenerator | None = None,
        session_id: str | None = None,
    ):
        """
        Args:
            transcription_client: セグメントの音声認識
            audio_source: 録音元
            settings: 全設定
            note_generator: None ならノートを作らない
            session_id: None なら "visit-YYYYmmdd-HHMMSS"

        Raises:
            SegmentationConfigError: 窓長/オーバーラップがサンプル単位で成り立たない
        """
        self.settings = settings
        self.session_id = session_id or datetime.now().strftime("visit-%Y%m%d-%H%M%S")
        self.is_file_mode = not audio_source.is_realtime
        self.note_generator = note_generator
        self.transcription_client = transcription_client

        self.errors: list[TranscriptionError] = []
        self.clinical_note: str | None = None

        self.segmenter = Segmenter(
            core_settings=settings.core,
            segmentation_settings=settings.segmentation,
        )

        self.dispatcher: EventDispatcher | None = None
        if settings.session.async_dispatch:
            self.dispatcher = EventDispatcher(
                queue_get_timeout_sec=settings.transcription.queue_get_timeout_sec
            )
        self.store = SessionStore(
            settings=settings.session,
            stitch_settings=settings.stitch,
            dispatcher=self.dispatcher,
        )

        self.transcriber = SegmentTranscriber(
            client=transcription_client,
            store=self.store,
            session_id=self.session_id,
            core_settings=settings.core,
            settings=settings.transcription,
        )
        self.audio_stream = AudioStream(
            segmenter=self.segmenter,
            audio_source=audio_source,
            audio_settings=settings.audio,
            keep_recording=settings.transcription.final_pass,
        )

        # 他の ScribeApp の AudioStream からは受け取らない
        segment_captured.connect(self._on_segment_captured, sender=self.audio_stream)
        message_posted.connect(self._record_error)

    def _disconnect(self) -> None:
        segment_captured.disconnect(self._on_segment_captured, sender=self.audio_stream)
        message_posted.disconnect(self._record_error)

    def _on_segment_captured(self, _sender: object, event: SegmentCapturedEvent) -> None:
        self.transcriber.add_window(event.audio, event.segment)

    def _record_error(self, _sender: object, event: MessagePostedEvent) -> None:
        if event.level == MessageLevel.ERROR:
            self.errors.append(
                TranscriptionError(timestamp=event.timestamp, message=event.message)
            )

    # ========== 録音 ==========

    def start_recording(self) -> None:
        """配信・書き起こしスレッドを（未起動なら）起動してから録音を始める"""
        if self.dispatcher and not self.dispatcher.is_alive():
            self.dispatcher.start()
        if not self.transcriber.is_alive():
            self.transcriber.start()
        self.audio_stream.start()

    def pause_recording(self) -> None:
        """一時停止（この間の音声は捨てる）"""
        self.audio_stream.pause()

    def resume_recording(self) -> None:
        self.audio_stream.resume()

    # ========== 終了 ==========

    def shutdown(
        self,
        graceful: bool = True,
        patient_name: str | None = None,
        visit_reason: str | None = None,
    ) -> VisitRecord | None:
        """
        セッションを締める

        録音停止（末尾の窓を送る）→ 書き起こし完了待ち → "final" →
        ノート下書き → JSON保存 → セッション解放。
        transcription.final_pass が有効なら "final" には録音全体を1回で
        書き起こした結果を使う（失敗・空ならスティッチ結果）。
        graceful=False では未処理のセグメントとノート生成を諦め、
        その時点の結合済みテキストで確定する。

        Args:
            graceful: 残りのセグメントを待つか
            patient_name: ノートの参考情報
            visit_reason: ノートの参考情報

        Returns:
            VisitRecord | None: セッションが既に解放されていれば None
        """
        self.audio_stream.stop()
        self._drain_transcriber(graceful)

        snapshot = self.store.get_snapshot(self.session_id)
        if snapshot is None:
            self._stop_dispatcher(graceful)
            self._disconnect()
            return None

        final_transcript = snapshot.stitched_text
        if graceful and self.settings.transcription.final_pass:
            final_transcript = self._transcribe_whole_recording() or final_transcript
        self.store.set_final_transcript(self.session_id, final_transcript)
        self._stop_dispatcher(graceful)

        if graceful and self.note_generator:
            self.clinical_note = self._draft_note(final_transcript, patient_name, visit_reason)

        record = self._build_record(snapshot, patient_name, visit_reason)
        self._save_record(record)
        self.store.close(self.session_id)
        self._disconnect()
        return record

    def _drain_transcriber(self, graceful: bool) -> None:
        if not graceful:
            self.transcriber.stop(wait_for_queue=False)
            self.transcriber.join(timeout=1.0)
            return

        if self.transcriber.is_transcribing:
            post_message(self, "Waiting for pending segments...", MessageLevel.INFO)
        reported = -1
        while self.transcriber.is_transcribing:
            pending = self.transcriber.pending
            if pending and pending != reported:
                post_message(
                    self, f"  {pending} segment(s) still transcribing", MessageLevel.WARNING
                )
                reported = pending
            time.sleep(self.settings.app.transcription_progress_poll_interval_sec)

        self.transcriber.stop(wait_for_queue=True)
        self.transcriber.join(timeout=self.settings.transcription.shutdown_timeout_sec)
        if self.transcriber.is_alive():
            post_message(
                self, "Transcription workers did not stop in time", MessageLevel.WARNING
            )

    def _transcribe_whole_recording(self) -> str:
        """
        録音全体を final.wav として1回で書き起こす

        Returns:
            str: 書き起こし結果（音声が無い・失敗した場合は空文字）
        """
        audio = self.audio_stream.recorded_audio()
        if audio.size == 0:
            return ""

        post_message(self, "Transcribing the whole recording...", MessageLevel.INFO)
        wav_bytes = encode_wav(audio, self.settings.core.sample_rate)
        try:
            return self.transcription_client.transcribe(wav_bytes, "final.wav").strip()
        except TranscriptionFailedError as e:
            post_message(
                self,
                f"Whole-recording transcription failed, using stitched transcript: {e}",
                MessageLevel.ERROR,
            )
            return ""

    def _stop_dispatcher(self, graceful: bool) -> None:
        """graceful なら積まれたイベントを配り切ってから止める"""
        if self.dispatcher is None or not self.dispatcher.is_alive():
            return
        self.dispatcher.stop(wait_for_queue=graceful)
        self.dispatcher.join(timeout=self.settings.session.dispatcher_shutdown_timeout_sec)

    def _draft_note(
        self, transcript: str, patient_name: str | None, visit_reason: str | None
    ) -> str | None:
        assert self.note_generator is not None
        try:
            return self.note_generator.generate(
                transcript, patient_name=patient_name, visit_reason=visit_reason
            )
        except NoteGenerationError as e:
            post_message(self, str(e), MessageLevel.ERROR)
            return None

    def _build_record(
        self, snapshot: SessionSnapshot, patient_name: str | None, visit_reason: str | None
    ) -> VisitRecord:
        # "final" 反映後のスナップショットを優先
        latest = self.store.get_snapshot(self.session_id) or snapshot
        return VisitRecord(
            snapshot=latest,
            clinical_note=self.clinical_note,
            patient_name=patient_name,
            visit_reason=visit_reason,
            errors=list(self.errors),
        )

    def _save_record(self, record: VisitRecord) -> None:
        # 音声が1セグメントも無かった診察は保存しない
        if not self.settings.app.save_json or not record.snapshot.segments:
            return
        path = SessionJsonExporter.save_to_file(record, output_dir=self.settings.app.output_dir)
        post_message(self, f"Visit record saved to: {path}", MessageLevel.SUCCESS)
