"""處理使用者上傳圖片與預覽控制代碼的服務模組。"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from werkzeug.datastructures import FileStorage

from stylemix.common.errors import ReadError
from stylemix.services.encoding import Artifact, encode_file


logger = logging.getLogger(__name__)

PREVIEW_PREFIX = "/api/previews/"


@dataclass(frozen=True)
class UploadedItem:
    """一張尚未送出的使用者圖片。"""

    item_id: str
    file: FileStorage
    preview: str

    @property
    def filename(self) -> str:
        return self.file.filename or ""

    def to_dict(self) -> dict:
        return {
            "id": self.item_id,
            "filename": self.filename,
            "media_type": self.file.mimetype or None,
            "preview_url": self.preview,
        }


class PreviewStore:
    """可在本機解析的短期預覽代碼，等同瀏覽器的 object URL。"""

    def __init__(self, prefix: str = PREVIEW_PREFIX) -> None:
        self._prefix = prefix
        self._files: Dict[str, FileStorage] = {}

    def create(self, file: FileStorage) -> str:
        token = uuid4().hex
        self._files[token] = file
        return f"{self._prefix}{token}"

    def resolve(self, handle: str) -> Optional[Artifact]:
        file = self._files.get(self._token(handle))
        if file is None:
            return None
        try:
            return encode_file(file)
        except ReadError:
            logger.warning("preview %s could not be read", handle)
            return None

    def release(self, handle: str) -> None:
        self._files.pop(self._token(handle), None)

    def __contains__(self, handle: str) -> bool:
        return self._token(handle) in self._files

    def __len__(self) -> int:
        return len(self._files)

    def _token(self, handle: str) -> str:
        if handle.startswith(self._prefix):
            return handle[len(self._prefix):]
        return handle


class UploadIntake:
    """管理服飾圖片清單與單張參考照片（使用者照片）。"""

    def __init__(
        self,
        previews: Optional[PreviewStore] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.previews = previews if previews is not None else PreviewStore()
        self._clock = clock
        self._items: List[UploadedItem] = []
        self._reference: Optional[UploadedItem] = None

    @property
    def items(self) -> Tuple[UploadedItem, ...]:
        return tuple(self._items)

    @property
    def reference(self) -> Optional[UploadedItem]:
        return self._reference

    def add_items(self, files: Iterable[FileStorage]) -> List[UploadedItem]:
        """依輸入順序加入每個檔案，不在這一層檢查檔案類型。"""

        added = []
        for file in files:
            item = self._new_item(file, taken={i.item_id for i in self._items})
            self._items.append(item)
            added.append(item)
        if added:
            logger.debug("added %d item(s), total=%d", len(added), len(self._items))
        return added

    def set_single_reference(self, files: Iterable[FileStorage]) -> Optional[UploadedItem]:
        """Replace the reference image with the first file; the rest are ignored."""

        first = next(iter(files), None)
        if first is None:
            return None
        self.clear_reference()
        self._reference = self._new_item(first, taken=set())
        return self._reference

    def remove(self, item_id: str) -> None:
        for index, item in enumerate(self._items):
            if item.item_id == item_id:
                del self._items[index]
                self.previews.release(item.preview)
                return

    def clear_items(self) -> None:
        for item in self._items:
            self.previews.release(item.preview)
        self._items = []

    def clear_reference(self) -> None:
        if self._reference is not None:
            self.previews.release(self._reference.preview)
            self._reference = None

    def clear(self) -> None:
        self.clear_items()
        self.clear_reference()

    def _new_item(self, file: FileStorage, taken: set) -> UploadedItem:
        base = f"{file.filename or 'upload'}-{int(self._clock() * 1000)}"
        item_id = base
        suffix = 2
        while item_id in taken:
            item_id = f"{base}-{suffix}"
            suffix += 1
        return UploadedItem(item_id=item_id, file=file, preview=self.previews.create(file))
