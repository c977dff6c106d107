"""將上傳檔案或既有結果轉為上游服務需要的 (bytes, media type) 形式。"""

from __future__ import annotations

import base64
import binascii
import mimetypes
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Union

from PIL import Image, UnidentifiedImageError
from werkzeug.datastructures import FileStorage

from stylemix.common.errors import ReadError


DEFAULT_MEDIA_TYPE = "image/jpeg"


@dataclass(frozen=True)
class Artifact:
    """An encoded image: raw bytes plus their media type."""

    data: bytes
    media_type: str = DEFAULT_MEDIA_TYPE

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.to_base64()}"

    def __repr__(self) -> str:
        return f"Artifact(media_type={self.media_type!r}, size={len(self.data)})"


def encode_file(file: Optional[FileStorage]) -> Artifact:
    """讀取整個檔案並回傳 Artifact；讀不到內容時拋出 ReadError。

    檔案由 Upload Intake 持有，這裡只借用且不關閉串流。記憶體串流直接取整個緩衝區，
    不移動游標，可與預覽讀取同時進行；其他串流讀取前後都會倒回開頭。
    """

    if file is None or file.stream is None:
        raise ReadError("The selected file is missing.")
    name = file.filename or "upload"
    try:
        if isinstance(file.stream, BytesIO):
            data = file.stream.getvalue()
        else:
            file.stream.seek(0)
            data = file.stream.read()
            file.stream.seek(0)
    except (OSError, ValueError) as exc:
        raise ReadError(f"Could not read {name}.") from exc
    if not data:
        raise ReadError(f"{name} is empty.")
    return Artifact(data=bytes(data), media_type=_detect_media_type(file, data))


def wrap_encoded_result(
    data: Union[bytes, str], media_type: str = DEFAULT_MEDIA_TYPE
) -> Artifact:
    """Wrap an already produced image for reuse as input to an edit call.

    ``data`` may be raw bytes or the base64 text a browser sends back.
    """

    if isinstance(data, str):
        try:
            data = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ReadError("The current image could not be decoded.") from exc
    if not data:
        raise ReadError("The current image is empty.")
    return Artifact(data=bytes(data), media_type=media_type or DEFAULT_MEDIA_TYPE)


def _detect_media_type(file: FileStorage, data: bytes) -> str:
    declared = (file.mimetype or "").strip().lower()
    if declared and declared != "application/octet-stream":
        return declared
    if file.filename:
        guessed, _ = mimetypes.guess_type(file.filename)
        if guessed:
            return guessed
    return _sniff_media_type(data) or DEFAULT_MEDIA_TYPE


def _sniff_media_type(data: bytes) -> Optional[str]:
    try:
        with Image.open(BytesIO(data)) as img:
            return Image.MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError):
        return None
