"""單一瀏覽器工作階段的狀態機：模式、輸入、目前結果與請求狀態。"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import asdict, dataclass, field, replace
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from werkzeug.datastructures import FileStorage

from stylemix.common.errors import StyleMixError, ValidationError
from stylemix.services.orchestrator import (
    AspectRatio,
    EditRequest,
    GenerateRequest,
    GenerationOrchestrator,
    GenerationRequest,
    GenerationResult,
    Mode,
    TryOnRequest,
)
from stylemix.services.upload_intake import UploadedItem, UploadIntake


logger = logging.getLogger(__name__)

UNKNOWN_ERROR_MESSAGE = "An unknown error occurred."
DOWNLOAD_PREFIX = "stylemix-studio"
_EXTENSIONS = {"image/jpeg": "jpeg", "image/png": "png", "image/webp": "webp"}


class RequestStatus(str, enum.Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Action(str, enum.Enum):
    SUBMIT = "submit"
    RE_EDIT = "re_edit"
    DOWNLOAD = "download"
    ZOOM = "zoom"
    RESET = "reset"


@dataclass(frozen=True)
class RequestState:
    status: RequestStatus = RequestStatus.IDLE
    reason: Optional[str] = None
    error_kind: Optional[str] = None

    @classmethod
    def failed(cls, exc: StyleMixError) -> "RequestState":
        return cls(RequestStatus.FAILED, reason=str(exc), error_kind=exc.kind)


@dataclass
class SessionInputs:
    """各模式的文字與選項輸入。"""

    scene_text: str = ""
    want_analysis: bool = False
    prompt_text: str = ""
    aspect_ratio: AspectRatio = AspectRatio.SQUARE
    edit_text: str = ""


@dataclass(frozen=True)
class DownloadFile:
    filename: str
    data: bytes
    media_type: str


class SessionStateMachine:
    """
    狀態：idle → submitting → {succeeded, failed}，下一次送出時再回到 submitting。
    - submitting 期間的送出一律忽略（回傳 False），狀態與結果不變
    - reset 可在任何狀態執行；進行中的請求完成後其結果會被丟棄，
      但在它完成之前不接受新的送出
    - 網路呼叫期間不持有鎖
    """

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        intake: Optional[UploadIntake] = None,
        clock: Callable[[], float] = time.time,
        session_id: Optional[str] = None,
    ) -> None:
        self.session_id = session_id
        self._orchestrator = orchestrator
        self._intake = intake if intake is not None else UploadIntake(clock=clock)
        self._clock = clock
        self._lock = threading.Lock()
        self._mode = Mode.TRY_ON
        self._inputs = SessionInputs()
        self._state = RequestState()
        self._result: Optional[GenerationResult] = None
        self._zoom_open = False
        self._epoch = 0
        self._in_flight = False

    # Read-only views -------------------------------------------------------

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def status(self) -> RequestStatus:
        return self._state.status

    @property
    def result(self) -> Optional[GenerationResult]:
        return self._result

    @property
    def inputs(self) -> SessionInputs:
        return replace(self._inputs)

    @property
    def intake(self) -> UploadIntake:
        return self._intake

    @property
    def zoom_open(self) -> bool:
        return self._zoom_open

    @property
    def in_flight(self) -> bool:
        """上游呼叫是否仍在進行（reset 之後仍可能為 True）。"""
        return self._in_flight

    # Intents ---------------------------------------------------------------

    def set_mode(self, mode: Union[Mode, str]) -> Mode:
        new_mode = _parse_mode(mode)
        with self._lock:
            self._mode = new_mode
        return new_mode

    def update_inputs(self, **fields) -> SessionInputs:
        known = set(asdict(SessionInputs()))
        unknown = sorted(set(fields) - known)
        if unknown:
            raise ValidationError(f"Unknown input field(s): {', '.join(unknown)}")
        if "aspect_ratio" in fields:
            fields["aspect_ratio"] = AspectRatio.parse(fields["aspect_ratio"])
        if "want_analysis" in fields:
            flag = fields["want_analysis"]
            if isinstance(flag, str):
                flag = flag.strip().lower() in ("1", "true", "yes", "on")
            fields["want_analysis"] = bool(flag)
        for name in ("scene_text", "prompt_text", "edit_text"):
            if name in fields:
                fields[name] = "" if fields[name] is None else str(fields[name])
        with self._lock:
            self._inputs = replace(self._inputs, **fields)
            return replace(self._inputs)

    def add_items(self, files: Iterable[FileStorage]) -> list:
        with self._lock:
            return self._intake.add_items(files)

    def remove_item(self, item_id: str) -> None:
        with self._lock:
            self._intake.remove(item_id)

    def set_reference(self, files: Iterable[FileStorage]) -> Optional[UploadedItem]:
        with self._lock:
            return self._intake.set_single_reference(files)

    def clear_reference(self) -> None:
        with self._lock:
            self._intake.clear_reference()

    def submit(self) -> bool:
        """送出目前模式的請求；已有請求進行中時回傳 False。"""

        with self._lock:
            if self._in_flight:
                logger.info("session %s: submit ignored, request in flight", self.session_id)
                return False
            request = self._build_request()
            try:
                request.validate()
            except ValidationError as exc:
                self._state = RequestState.failed(exc)
                return True
            if request.clears_result:
                # 開始時即清除目前結果：重新生成失敗時輸出區維持空白
                self._result = None
                self._zoom_open = False
            self._state = RequestState(RequestStatus.SUBMITTING)
            epoch = self._epoch
            self._in_flight = True

        try:
            result = self._orchestrator.run(request)
        except StyleMixError as exc:
            logger.warning("session %s: %s failed: %s: %s", self.session_id, request.mode.value, exc.kind, exc)
            self._finish(epoch, request, state=RequestState.failed(exc))
        except Exception:
            logger.exception("session %s: %s failed unexpectedly", self.session_id, request.mode.value)
            self._finish(
                epoch,
                request,
                state=RequestState(RequestStatus.FAILED, reason=UNKNOWN_ERROR_MESSAGE, error_kind="Exception"),
            )
        else:
            self._finish(epoch, request, state=RequestState(RequestStatus.SUCCEEDED), result=result)
        return True

    def reset(self, mode: Optional[Union[Mode, str]] = None) -> None:
        """清除輸入與結果並回到 idle；指定 mode 時只清除該模式的輸入。"""

        scope = _parse_mode(mode) if mode is not None else None
        with self._lock:
            self._epoch += 1
            if scope in (None, Mode.TRY_ON):
                self._intake.clear()
                self._inputs.scene_text = ""
                self._inputs.want_analysis = False
            if scope in (None, Mode.GENERATE):
                self._inputs.prompt_text = ""
                self._inputs.aspect_ratio = AspectRatio.SQUARE
            if scope in (None, Mode.EDIT):
                self._inputs.edit_text = ""
            self._result = None
            self._zoom_open = False
            self._state = RequestState()

    def open_zoom(self) -> bool:
        with self._lock:
            self._zoom_open = self._result is not None
            return self._zoom_open

    def close_zoom(self) -> None:
        with self._lock:
            self._zoom_open = False

    def download(self) -> DownloadFile:
        with self._lock:
            result = self._result
        if result is None:
            raise ValidationError("There is no image to download yet.")
        image = result.image
        ext = _EXTENSIONS.get(image.media_type, "jpeg")
        filename = f"{DOWNLOAD_PREFIX}-{int(self._clock() * 1000)}.{ext}"
        return DownloadFile(filename=filename, data=image.data, media_type=image.media_type)

    def available_actions(self) -> FrozenSet[Action]:
        with self._lock:
            return self._available_actions()

    def snapshot(self) -> Dict:
        with self._lock:
            inputs = asdict(self._inputs)
            inputs["aspect_ratio"] = self._inputs.aspect_ratio.value
            return {
                "mode": self._mode.value,
                "status": self._state.status.value,
                "error": self._state.reason,
                "error_kind": self._state.error_kind,
                "inputs": inputs,
                "items": [item.to_dict() for item in self._intake.items],
                "reference": self._intake.reference.to_dict() if self._intake.reference else None,
                "result": self._result.to_dict() if self._result else None,
                "zoom_open": self._zoom_open,
                "actions": sorted(a.value for a in self._available_actions()),
            }

    # Internals -------------------------------------------------------------

    def _build_request(self) -> GenerationRequest:
        if self._mode is Mode.TRY_ON:
            return TryOnRequest(
                items=self._intake.items,
                reference=self._intake.reference,
                scene_text=self._inputs.scene_text,
                want_analysis=self._inputs.want_analysis,
            )
        if self._mode is Mode.GENERATE:
            return GenerateRequest(self._inputs.prompt_text, self._inputs.aspect_ratio)
        current = self._result.image if self._result is not None else None
        return EditRequest(current_image=current, edit_text=self._inputs.edit_text)

    def _finish(
        self,
        epoch: int,
        request: GenerationRequest,
        state: RequestState,
        result: Optional[GenerationResult] = None,
    ) -> None:
        with self._lock:
            self._in_flight = False
            if epoch != self._epoch:
                logger.info("session %s: discarding %s outcome after reset", self.session_id, request.mode.value)
                return
            if result is not None:
                self._result = result
                if request.mode is Mode.EDIT:
                    self._inputs.edit_text = ""
            self._state = state

    def _available_actions(self) -> FrozenSet[Action]:
        actions = {Action.RESET}
        busy = self._in_flight
        if not busy:
            actions.add(Action.SUBMIT)
            if self._result is not None:
                actions.update({Action.DOWNLOAD, Action.ZOOM})
                if self._mode is Mode.EDIT:
                    actions.add(Action.RE_EDIT)
        return frozenset(actions)


def _parse_mode(mode: Union[Mode, str]) -> Mode:
    try:
        return Mode(mode)
    except ValueError:
        raise ValidationError(f"Unknown mode: {mode}") from None


@dataclass
class SessionRegistry:
    """每個瀏覽器工作階段各有一個狀態機；工作階段之間不互相協調。

    閒置超過 ``idle_timeout`` 秒的工作階段會在下一次 ``get`` 時被清除，
    數量超過 ``max_sessions`` 時先清除最久未使用者；清除時會 reset，
    釋放預覽與結果。仍有上游呼叫進行中的工作階段不會被清除。
    """

    factory: Callable[[str], SessionStateMachine]
    idle_timeout: float = 1800.0
    max_sessions: int = 500
    clock: Callable[[], float] = time.time
    _sessions: Dict[str, SessionStateMachine] = field(default_factory=dict)
    _touched: Dict[str, float] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def get(self, session_id: str) -> SessionStateMachine:
        now = self.clock()
        with self._lock:
            evicted = self._pop_stale(now, keep=session_id)
            machine = self._sessions.get(session_id)
            if machine is None:
                machine = self.factory(session_id)
                self._sessions[session_id] = machine
            self._touched[session_id] = now
        for stale_id, stale in evicted:
            logger.info("session %s: evicted", stale_id)
            stale.reset()
        return machine

    def find(self, session_id: Optional[str]) -> Optional[SessionStateMachine]:
        with self._lock:
            return self._sessions.get(session_id) if session_id else None

    def __len__(self) -> int:
        return len(self._sessions)

    def _pop_stale(self, now: float, keep: str) -> List[Tuple[str, SessionStateMachine]]:
        idle = [sid for sid in self._touched if sid != keep and not self._sessions[sid].in_flight]
        idle.sort(key=self._touched.__getitem__)
        over = len(self._sessions) - self.max_sessions + (0 if keep in self._sessions else 1)
        evicted = []
        for session_id in idle:
            if over <= 0 and now - self._touched[session_id] < self.idle_timeout:
                break
            evicted.append((session_id, self._sessions.pop(session_id)))
            del self._touched[session_id]
            over -= 1
        return evicted
