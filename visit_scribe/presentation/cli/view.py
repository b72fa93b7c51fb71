#!/usr/bin/env python3
"""
Visit Scribe - CLI View
コンソール表示：スティッチ済みセグメント、最終トランスクリプト、臨床ノート、
メッセージ、および最下行のステータスバー
"""

import os
import re
import sys
import threading
import time

import wcwidth  # type: ignore[import-untyped]
from colorama import Fore, Style  # type: ignore[import-untyped]

from visit_scribe import __version__
from visit_scribe.domain import (
    FinalTranscriptEvent,
    MessageLevel,
    MessagePostedEvent,
    NoteGeneratedEvent,
    SegmentStitchedEvent,
    SessionEvent,
    Settings,
    message_posted,
    note_generated,
)
from visit_scribe.infrastructure.ai import LLMClient
from visit_scribe.infrastructure.audio import AudioStream
from visit_scribe.infrastructure.stt import SegmentTranscriber, TranscriptionClient

CLEAR_LINE = "\r\033[K"
RULE_WIDTH = 58

LEVEL_COLORS = {
    MessageLevel.INFO: Fore.CYAN,
    MessageLevel.SUCCESS: Fore.GREEN,
    MessageLevel.WARNING: Fore.YELLOW,
    MessageLevel.ERROR: Fore.RED,
}


def format_ms(ms: int) -> str:
    """
    録音開始からのオフセットを mm:ss で表す

    >>> format_ms(75250)
    '01:15'
    """
    minutes, seconds = divmod(ms // 1000, 60)
    return f"{minutes:02d}:{seconds:02d}"


class CLIView:
    """
    コンソールへの描画を一手に引き受ける

    出力は self.lock で直列化する。ステータスバーは別スレッドから
    定期的に書き換え、本文の出力中はその回の更新を見送る。
    """

    _ANSI = re.compile(r"\x1b\[[0-9;]*m")
    _ANSI_SPLIT = re.compile(r"(\x1b\[[0-9;]*m)")

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.lock = threading.Lock()
        self.started_at = time.time()

        self._running = False
        self._status_thread: threading.Thread | None = None
        self._audio_stream: AudioStream | None = None
        self._transcriber: SegmentTranscriber | None = None

        note_generated.connect(self._on_note_generated)
        message_posted.connect(self._on_message_posted)

    # ========== イベント受信 ==========

    def on_session_event(self, _session_id: str, event: SessionEvent) -> None:
        """SessionStore.subscribe に渡す受信関数"""
        match event:
            case SegmentStitchedEvent():
                self._show_segment(event)
            case FinalTranscriptEvent():
                self._print_panel("Final transcript", event.final_transcript or "(empty)")

    def _on_note_generated(self, _sender: object, event: NoteGeneratedEvent) -> None:
        self._print_panel("Clinical note (DRAFT)", event.note)

    def _on_message_posted(self, _sender: object, event: MessagePostedEvent) -> None:
        color = LEVEL_COLORS.get(event.level, Fore.WHITE)
        self._print_line(f"{color}{event.message}{Style.RESET_ALL}")

    # ========== ステータスバー ==========

    def start(self, audio_stream: AudioStream, transcriber: SegmentTranscriber) -> None:
        """ステータスバーの更新スレッドを起動"""
        self._audio_stream = audio_stream
        self._transcriber = transcriber
        if self._running:
            return

        self._running = True
        self._status_thread = threading.Thread(
            target=self._refresh_loop, daemon=True, name="StatusBarThread"
        )
        self._status_thread.start()

    def stop(self) -> None:
        """更新スレッドを止め、ステータスバーを消す"""
        self._running = False
        if self._status_thread and self._status_thread.is_alive():
            self._status_thread.join(
                timeout=self.settings.app.status_update_manager_shutdown_timeout_sec
            )
        with self.lock:
            sys.stdout.write(CLEAR_LINE + "\n")
            sys.stdout.flush()

    def _refresh_loop(self) -> None:
        interval = self.settings.app.status_update_interval_sec
        while self._running:
            if self._audio_stream and self._transcriber:
                self._draw_status_bar()
            time.sleep(interval)

    def _recording_status(self) -> str:
        assert self._audio_stream is not None and self._transcriber is not None
        status = self._audio_stream.get_status()

        if status.is_paused:
            parts = [f"{Fore.YELLOW}⏸ PAUSED{Style.RESET_ALL}"]
        elif status.is_running:
            parts = [f"{Fore.RED}● REC [{status.elapsed_sec:.1f}s]{Style.RESET_ALL}"]
        else:
            parts = ["🎧 Input finished"]

        window_sec = self.settings.segmentation.segment_ms / 1000
        parts.append(f"Window: {status.buffered_ms / 1000:.1f}/{window_sec:.1f}s")

        if pending := self._transcriber.pending:
            parts.append(f"{Fore.MAGENTA}⏳ Transcribing ({pending}){Style.RESET_ALL}")
        return " | ".join(parts)

    def _visit_summary(self) -> str:
        assert self._audio_stream is not None
        minutes, seconds = divmod(int(time.time() - self.started_at), 60)
        segments = self._audio_stream.get_status().segments_emitted
        return (
            f"{Fore.CYAN}Visit: {minutes}m{seconds:02d}s{Style.RESET_ALL} | "
            f"{Fore.YELLOW}Segments: {segments}{Style.RESET_ALL}"
        )

    def _draw_status_bar(self) -> None:
        # 本文を書いている最中なら今回は描かない
        if not self.lock.acquire(blocking=False):
            return
        try:
            columns = os.get_terminal_size().columns
            left, right = self._recording_status(), self._visit_summary()
            right_width = self._get_display_width(right)

            room = columns - right_width
            if self._get_display_width(left) > room:
                left = self._truncate_text(left, room - 3) + "..." if room > 3 else "..."

            gap = " " * max(0, room - self._get_display_width(left))
            sys.stdout.write(f"{CLEAR_LINE}{left}{gap}{right}")
            sys.stdout.flush()
        finally:
            self.lock.release()

    # ========== 本文出力 ==========

    def _print_line(self, text: str) -> None:
        with self.lock:
            sys.stdout.write(f"{CLEAR_LINE}{text}\n")
            sys.stdout.flush()

    def _print_panel(self, title: str, body: str) -> None:
        header = f" {title} ".center(RULE_WIDTH, "─")
        self._print_line(
            f"\n{Fore.CYAN}{header}{Style.RESET_ALL}\n{body}\n"
            f"{Fore.CYAN}{'─' * RULE_WIDTH}{Style.RESET_ALL}\n"
        )

    def _show_segment(self, event: SegmentStitchedEvent) -> None:
        seg = event.segment
        span = f"{format_ms(seg.start_ms)}-{format_ms(seg.end_ms)}"
        text = seg.transcript or f"{Fore.RED}(no transcript){Style.RESET_ALL}"
        self._print_line(
            f"{Fore.GREEN}[{span}]{Style.RESET_ALL} "
            f"{Fore.MAGENTA}#{seg.seq_no}{Style.RESET_ALL} {text}"
        )

    def show_banner(
        self,
        transcription_client: TranscriptionClient,
        llm_client: LLMClient | None,
        session_id: str,
    ) -> None:
        """起動時に使用バックエンドと窓設定を表示"""
        version = __version__.split(".dev")[0]
        seg = self.settings.segmentation
        workers = self.settings.transcription.max_concurrency
        note_backend = llm_client.get_backend_info() if llm_client else "Disabled"

        lines = [
            "",
            f"{Fore.CYAN}{Style.BRIGHT}Visit Scribe {version}{Style.RESET_ALL}"
            f"{Fore.CYAN}  clinical visit transcription{Style.RESET_ALL}",
            "",
            f"{Fore.YELLOW}Visit session:{Style.RESET_ALL} {session_id}",
            f"{Fore.YELLOW}Speech-to-text:{Style.RESET_ALL} "
            f"{transcription_client.get_backend_info()}, {workers} parallel",
            f"{Fore.YELLOW}Windows:{Style.RESET_ALL} "
            f"{seg.segment_ms}ms every {seg.hop_ms}ms ({seg.overlap_ms}ms overlap)",
            f"{Fore.YELLOW}Clinical note:{Style.RESET_ALL} {note_backend}",
            "",
            "",
        ]
        sys.stdout.write("\n".join(lines))
        sys.stdout.flush()

    # ========== 表示幅 ==========

    def _get_display_width(self, text: str) -> int:
        """端末上の桁数（ANSIエスケープは0桁、全角は2桁）"""
        return max(0, int(wcwidth.wcswidth(self._ANSI.sub("", text))))

    def _truncate_text(self, text: str, max_width: int) -> str:
        """表示幅 max_width に収まるところで切る（エスケープシーケンスは残す）"""
        kept: list[str] = []
        width = 0
        # 分割結果は奇数番目がエスケープシーケンス
        for index, piece in enumerate(self._ANSI_SPLIT.split(text)):
            if index % 2:
                kept.append(piece)
                continue
            for char in piece:
                width += max(0, wcwidth.wcwidth(char))
                if width > max_width:
                    return "".join(kept)
                kept.append(char)
        return text
