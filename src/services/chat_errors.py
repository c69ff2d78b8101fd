"""Chat API failures and their user-facing descriptions."""

from typing import Any

# Apology appended to the transcript when a send fails.
CHAT_FAILURE_MESSAGE = "申し訳ありません。エラーが発生しました。もう一度お試しください。"

TIMEOUT_DETAIL = "リクエストがタイムアウトしました。ネットワーク接続を確認してください。"
NETWORK_DETAIL = "ネットワークエラーが発生しました。インターネット接続を確認してください。"
RATE_LIMIT_DETAIL = "サーバーへのリクエストが多すぎます。しばらく待ってから再試行してください。"
SERVER_DETAIL = "サーバーエラーが発生しました。しばらく待ってから再試行してください。"
UNKNOWN_DETAIL = "エラーが発生しました。もう一度お試しください。"


class ChatAPIError(Exception):
    """A chat exchange failed.

    Raised by chat backends for transport failures, non-OK statuses,
    malformed bodies and responses that carry an ``error`` field.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ChatTimeoutError(ChatAPIError):
    """The chat backend did not answer in time."""


class ChatNetworkError(ChatAPIError):
    """The chat backend could not be reached."""


class ChatResponseFormatError(ChatAPIError):
    """The chat backend answered with a body that could not be decoded."""


def describe_error(error: Any) -> str:
    """Classify a failure into a short user-facing explanation.

    Args:
        error: Exception or error text.

    Returns:
        str: Localised description of the failure.
    """
    if isinstance(error, ChatTimeoutError):
        return TIMEOUT_DETAIL
    if isinstance(error, ChatNetworkError):
        return NETWORK_DETAIL

    status_code = getattr(error, "status_code", None)
    text = getattr(error, "message", None) or (str(error) if error is not None else "")

    if status_code == 429 or "429" in text:
        return RATE_LIMIT_DETAIL
    if status_code == 500 or "500" in text:
        return SERVER_DETAIL
    return text or UNKNOWN_DETAIL


def add_error_info(message: str, error: Any) -> str:
    """Append the classified error detail to a user-facing message."""
    return f"{message}\n\n(エラー詳細: {describe_error(error)})"
