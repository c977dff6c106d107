"""StyleMix 的錯誤分類。

所有錯誤都以 ``str(exc)`` 作為可直接顯示給使用者的訊息。
"""

from __future__ import annotations


class StyleMixError(Exception):
    """Base class for every error surfaced to the user."""

    #: HTTP status used by the API layer when the error ends a request.
    http_status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__


class ValidationError(StyleMixError):
    """必要輸入缺漏；一定在任何網路呼叫之前拋出。"""

    http_status = 400


class ReadError(StyleMixError):
    """本機檔案無法讀成二進位內容。"""

    http_status = 400


class GenerationError(StyleMixError):
    """上游呼叫完成，但沒有產出可用的圖片。"""

    http_status = 502


class TransportError(StyleMixError):
    """呼叫上游服務時的網路或傳輸層失敗。"""

    http_status = 503


class UpstreamTimeoutError(TransportError):
    """上游呼叫超過設定的逾時秒數。"""

    http_status = 504
