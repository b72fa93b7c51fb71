#!/usr/bin/env python3
"""
Visit Scribe - Settings Schema
設定スキーマ（Pydantic）

セクション名は config.toml のテーブル名と一致する。
"""

from enum import StrEnum

from pydantic import Field, computed_field, model_validator
from pydantic_settings import BaseSettings
from typing_extensions import Self

from .constants import DEFAULT_OVERLAP_MS, DEFAULT_SEGMENT_MS, TARGET_SAMPLE_RATE
from .errors import SegmentationConfigError


# ========================================
# [core]
# ========================================
class CoreSettings(BaseSettings):
    """パイプライン全体で共有する値"""

    sample_rate: int = Field(
        default=TARGET_SAMPLE_RATE,
        gt=0,
        description="パイプライン内部とWAV送信に使うサンプルレート（Hz）",
    )


# ========================================
# [audio]
# ========================================
class AudioSettings(BaseSettings):
    """音声入力元"""

    block_sec: float = Field(default=0.1, description="マイク入力1ブロックの長さ（秒）")
    chunk_ms: int = Field(
        default=100, gt=0, description="ファイル/メモリ入力を区切る単位（ミリ秒）"
    )
    queue_get_timeout_sec: float = Field(
        default=0.5, description="マイクのブロック待ちの上限（秒）"
    )
    stream_shutdown_timeout_sec: float = Field(
        default=2.0, description="キャプチャスレッド終了待ちの上限（秒）"
    )


# ========================================
# [segmentation]
# ========================================
class SegmentationSettings(BaseSettings):
    """固定長・重なりありの窓切り出し"""

    segment_ms: int = Field(default=DEFAULT_SEGMENT_MS, description="1窓の長さ（ミリ秒）")
    overlap_ms: int = Field(
        default=DEFAULT_OVERLAP_MS,
        description="隣り合う窓が共有する長さ（ミリ秒）。境界で切れた単語を両側に残す",
    )
    flush_tail: bool = Field(
        default=True, description="入力終了時、窓に満たない残りも1セグメントとして送る"
    )
    min_tail_ms: int = Field(
        default=500, ge=0, description="残りがこれより短ければ送らない（ミリ秒）"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def hop_ms(self) -> int:
        """窓の開始位置の間隔（ミリ秒）"""
        return self.segment_ms - self.overlap_ms

    @model_validator(mode="after")
    def validate_window(self) -> Self:
        # hop_ms <= 0 だと切り出しが進まない
        if self.segment_ms <= 0:
            raise SegmentationConfigError(
                f"segmentation.segment_ms must be positive (got {self.segment_ms})"
            )
        if not 0 <= self.overlap_ms < self.segment_ms:
            raise SegmentationConfigError(
                "segmentation.overlap_ms must satisfy 0 <= overlap_ms < segment_ms "
                f"(got overlap_ms={self.overlap_ms}, segment_ms={self.segment_ms})"
            )
        return self


# ========================================
# [stitch]
# ========================================
class StitchSettings(BaseSettings):
    """重なり部分の単語の重複除去"""

    max_overlap_words: int = Field(
        default=50,
        gt=0,
        description="まず照合する語数の上限。この範囲で一致が無ければ全長まで広げて探す",
    )
    min_overlap_words: int = Field(
        default=1, gt=0, description="この語数以上一致したときだけ重複として削る"
    )
    fuzzy_threshold: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="語の近似一致に使う difflib 類似度の下限。None なら正規化後の完全一致のみ",
    )
    fuzzy_min_token_length: int = Field(
        default=4, gt=0, description="近似一致を許す語の最小文字数"
    )


# ========================================
# [transcription]
# ========================================
class TranscriptionSettings(BaseSettings):
    """音声認識API（OpenAI audio.transcriptions）"""

    openai_api_key: str | None = Field(
        default=None, description="未設定なら環境変数 OPENAI_API_KEY を使う"
    )
    model: str = Field(default="whisper-1", description="音声認識モデル")
    # `language` だと環境変数 LANGUAGE を拾ってしまう
    language_code: str | None = Field(
        default=None, description="ISO-639-1 の言語コード。None ならAPI側で判定"
    )
    base_url: str | None = Field(default=None, description="互換サーバを使う場合のURL")
    timeout_sec: float = Field(default=60.0, gt=0, description="1セグメントの送信タイムアウト（秒）")
    max_concurrency: int = Field(default=4, gt=0, description="並行して処理するセグメント数")
    final_pass: bool = Field(
        default=False,
        description="終了時に録音全体を1回で書き起こし、最終トランスクリプトとする"
        "（失敗時や空の結果ならスティッチ結果を使う）",
    )
    queue_get_timeout_sec: float = Field(
        default=0.5, description="ワーカーがセグメントを待つ上限（秒）"
    )
    shutdown_timeout_sec: float = Field(
        default=30.0, description="ワーカー終了待ちの上限（秒）"
    )


# ========================================
# [session]
# ========================================
class SessionStoreSettings(BaseSettings):
    """セッションの保持とイベント配信"""

    final_ttl_sec: float = Field(
        default=600.0, ge=0, description="確定したセッションを破棄するまでの秒数"
    )
    closed_session_memory: int = Field(
        default=1024,
        gt=0,
        description="閉じたセッションIDを覚えておく件数（遅れて届いたセグメントを捨てるため）",
    )
    async_dispatch: bool = Field(
        default=True, description="購読者への配信を専用スレッドに任せる（False なら呼び出し元で配信）"
    )
    dispatcher_shutdown_timeout_sec: float = Field(
        default=2.0, description="配信スレッド終了待ちの上限（秒）"
    )


# ========================================
# [note]
# ========================================
class LLMBackend(StrEnum):
    CLAUDE = "claude"
    OPENAI = "openai"


class NoteSettings(BaseSettings):
    """確定トランスクリプトからの臨床ノート下書き"""

    enabled: bool = Field(default=False, description="ノートの下書きを作るか")
    backend: LLMBackend = Field(default=LLMBackend.OPENAI, description="claude / openai")

    anthropic_api_key: str | None = Field(default=None, description="backend=claude で必須")
    claude_model: str = Field(default="claude-sonnet-4-5-20250929")

    openai_api_key: str | None = Field(default=None, description="backend=openai で必須")
    openai_model: str = Field(default="gpt-4o")
    openai_base_url: str | None = Field(default=None, description="互換サーバを使う場合のURL")

    max_tokens: int = Field(default=2048, description="ノート本文の上限トークン数")
    temperature: float | None = Field(
        default=0.0, description="None ならプロバイダの既定値"
    )

    @model_validator(mode="after")
    def validate_backend_config(self) -> Self:
        """選んだバックエンドのAPIキーが揃っているか"""
        if not self.enabled:
            return self

        required_key = {
            LLMBackend.CLAUDE: ("anthropic_api_key", self.anthropic_api_key),
            LLMBackend.OPENAI: ("openai_api_key", self.openai_api_key),
        }
        name, value = required_key[self.backend]
        if not value:
            raise ValueError(f"note.{name} is required when backend='{self.backend}'")
        return self


# ========================================
# [app]
# ========================================
class AppSettings(BaseSettings):
    """保存先とCLIの更新間隔"""

    save_json: bool = Field(default=True, description="終了時に診察記録をJSONで書き出す")
    output_dir: str = Field(default=".", description="診察記録の保存先")
    transcription_progress_poll_interval_sec: float = Field(
        default=0.5, description="終了時に残りセグメント数を確認する間隔（秒）"
    )
    input_poll_interval_sec: float = Field(
        default=0.1, description="Ctrl+D / 入力終了を確認する間隔（秒）"
    )
    status_update_interval_sec: float = Field(
        default=0.1, description="ステータスバーの再描画間隔（秒）"
    )
    status_update_manager_shutdown_timeout_sec: float = Field(
        default=1.0, description="ステータスバースレッド終了待ちの上限（秒）"
    )


# ========================================
# ルート
# ========================================
class Settings(BaseSettings):
    """
    Visit Scribe の全設定

    既定値 < config.toml < config.local.toml の順に上書きされる
    （infrastructure.config.load_settings）。
    """

    core: CoreSettings = Field(default_factory=CoreSettings)
    audio: AudioSettings = Field(default_factory=AudioSettings)
    segmentation: SegmentationSettings = Field(default_factory=SegmentationSettings)
    stitch: StitchSettings = Field(default_factory=StitchSettings)
    transcription: TranscriptionSettings = Field(default_factory=TranscriptionSettings)
    session: SessionStoreSettings = Field(default_factory=SessionStoreSettings)
    note: NoteSettings = Field(default_factory=NoteSettings)
    app: AppSettings = Field(default_factory=AppSettings)
