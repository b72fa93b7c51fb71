#!/usr/bin/env python3
"""
Visit Scribe - Domain Errors
ドメイン層：例外階層（外部依存なし）
"""


class ScribeError(Exception):
    """Visit Scribe全体の基底例外"""


class SegmentationConfigError(ScribeError, ValueError):
    """セグメント長・オーバーラップ設定の不整合（起動時に即座に失敗させる）"""


class WavFormatError(ScribeError, ValueError):
    """
    WAVヘッダの解析失敗

    Attributes:
        field: 欠落または不正だったヘッダフィールド名（例: "RIFF", "fmt ", "sample_rate"）
    """

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"Invalid WAV header ({field}): {message}")
        self.field = field


class TranscriptionConfigError(ScribeError):
    """文字起こしクライアントの設定不備（APIキー未設定など）"""


class TranscriptionFailedError(ScribeError):
    """文字起こしに失敗した（このセグメントの書き起こしは利用不可）"""


class TranscriptionRejectedError(TranscriptionFailedError):
    """
    上流サービスがリクエストを拒否した（認証エラー、レート制限、不正な音声など）

    Attributes:
        status_code: HTTPステータスコード
    """

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Transcription failed: {status_code} - {message}")
        self.status_code = status_code


class TranscriptionTransportError(TranscriptionFailedError):
    """通信エラー（接続失敗、タイムアウト）"""


class NoteGenerationError(ScribeError):
    """臨床ノート生成の失敗"""
