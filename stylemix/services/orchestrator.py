"""依模式組合上游請求：虛擬試穿、文字生圖、圖片編輯。"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Tuple, Union

from stylemix.common.errors import GenerationError, StyleMixError, ValidationError
from stylemix.services.encoding import Artifact, encode_file
from stylemix.services.upload_intake import UploadedItem


logger = logging.getLogger(__name__)

NO_IMAGE_MESSAGE = "no image produced"


class Mode(str, enum.Enum):
    TRY_ON = "try_on"
    GENERATE = "generate"
    EDIT = "edit"


class AspectRatio(str, enum.Enum):
    SQUARE = "1:1"
    TALL = "3:4"
    STANDARD = "4:3"
    PORTRAIT = "9:16"
    LANDSCAPE = "16:9"

    @classmethod
    def parse(cls, value: Union[str, "AspectRatio", None]) -> "AspectRatio":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip())
        except ValueError:
            allowed = ", ".join(r.value for r in cls)
            raise ValidationError(f"Aspect ratio must be one of {allowed}.") from None


class ImageBackend(Protocol):
    def compose_image(self, parts: Sequence[Union[str, Artifact]]) -> Optional[Artifact]: ...

    def analyze_image(self, image: Artifact, prompt: str) -> str: ...

    def text_to_image(self, prompt: str, aspect_ratio: str) -> Optional[Artifact]: ...


@dataclass(frozen=True)
class GenerationResult:
    """目前唯一的輸出成品，可附帶造型分析文字。"""

    image: Artifact
    analysis: Optional[str] = None
    analysis_requested: bool = False
    analysis_error: Optional[str] = None

    @property
    def is_partial(self) -> bool:
        return self.analysis_requested and self.analysis is None

    def to_dict(self) -> dict:
        return {
            "image": self.image.data_url,
            "media_type": self.image.media_type,
            "analysis": self.analysis,
            "partial": self.is_partial,
            "analysis_error": self.analysis_error,
        }


# Requests --------------------------------------------------------------------

@dataclass(frozen=True)
class TryOnRequest:
    items: Tuple[UploadedItem, ...]
    reference: Optional[UploadedItem]
    scene_text: str
    want_analysis: bool = False

    mode = Mode.TRY_ON
    clears_result = True

    def validate(self) -> None:
        if not self.items or not (self.scene_text or "").strip():
            raise ValidationError("Please upload at least one item and describe the scene.")


@dataclass(frozen=True)
class GenerateRequest:
    prompt_text: str
    aspect_ratio: AspectRatio = AspectRatio.SQUARE

    mode = Mode.GENERATE
    clears_result = True

    def validate(self) -> None:
        if not (self.prompt_text or "").strip():
            raise ValidationError("Please enter a prompt to generate an image.")
        AspectRatio.parse(self.aspect_ratio)


@dataclass(frozen=True)
class EditRequest:
    current_image: Optional[Artifact]
    edit_text: str

    mode = Mode.EDIT
    # 編輯需要沿用目前的圖片，因此開始時不清除結果
    clears_result = False

    def validate(self) -> None:
        if self.current_image is None or not (self.edit_text or "").strip():
            raise ValidationError("Please generate an image first and enter an edit prompt.")


GenerationRequest = Union[TryOnRequest, GenerateRequest, EditRequest]


# Prompts ---------------------------------------------------------------------

def build_try_on_prompt(scene_text: str, has_reference: bool) -> str:
    prompt = f'Generate a photorealistic image of a person in the following scene: "{scene_text}". '
    if has_reference:
        prompt += (
            "The person in the image should be the person from the provided user photo, "
            "wearing the following items. Blend the items naturally onto the person."
        )
    else:
        prompt += (
            "The person should be an AI-generated model, wearing the following items. "
            "The items should look natural on the model."
        )
    return prompt


def build_analysis_prompt(scene_text: str) -> str:
    return (
        "You are a world-class fashion stylist. Provide a detailed, professional fashion analysis "
        f'of the outfit shown in the image, considering the described scene: "{scene_text}". '
        "Focus on style, color coordination, suitability for the occasion, and suggest potential "
        "improvements or alternative accessories."
    )


# Orchestrator ----------------------------------------------------------------

class GenerationOrchestrator:
    """把單一使用者動作轉成一次上游呼叫序列，並判定結果。"""

    def __init__(self, backend: ImageBackend) -> None:
        self._backend = backend

    def run(self, request: GenerationRequest) -> GenerationResult:
        if isinstance(request, TryOnRequest):
            return self.try_on(request.items, request.reference, request.scene_text, request.want_analysis)
        if isinstance(request, GenerateRequest):
            return self.generate(request.prompt_text, request.aspect_ratio)
        if isinstance(request, EditRequest):
            return self.edit(request.current_image, request.edit_text)
        raise TypeError(f"unsupported request: {type(request).__name__}")

    def try_on(
        self,
        items: Sequence[UploadedItem],
        reference: Optional[UploadedItem],
        scene_text: str,
        want_analysis: bool = False,
    ) -> GenerationResult:
        TryOnRequest(tuple(items), reference, scene_text, want_analysis).validate()
        scene_text = scene_text.strip()

        parts: list = [build_try_on_prompt(scene_text, reference is not None)]
        if reference is not None:
            parts.append(encode_file(reference.file))
        parts.extend(encode_file(item.file) for item in items)

        logger.info(
            "try-on: items=%d reference=%s analysis=%s",
            len(items),
            reference is not None,
            want_analysis,
        )
        image = self._backend.compose_image(parts)
        if image is None:
            raise GenerationError(NO_IMAGE_MESSAGE)

        if not want_analysis:
            return GenerationResult(image=image)
        return self._with_analysis(image, scene_text)

    def generate(self, prompt_text: str, aspect_ratio: Union[AspectRatio, str] = AspectRatio.SQUARE) -> GenerationResult:
        GenerateRequest(prompt_text, aspect_ratio).validate()
        ratio = AspectRatio.parse(aspect_ratio)
        logger.info("generate: aspect_ratio=%s", ratio.value)
        image = self._backend.text_to_image(prompt_text.strip(), ratio.value)
        if image is None:
            raise GenerationError(NO_IMAGE_MESSAGE)
        return GenerationResult(image=image)

    def edit(self, current_image: Optional[Artifact], edit_text: str) -> GenerationResult:
        EditRequest(current_image, edit_text).validate()
        logger.info("edit: source=%r", current_image)
        image = self._backend.compose_image([current_image, edit_text.strip()])
        if image is None:
            raise GenerationError(NO_IMAGE_MESSAGE)
        return GenerationResult(image=image)

    def _with_analysis(self, image: Artifact, scene_text: str) -> GenerationResult:
        # 分析失敗不影響已取得的圖片：回報為部分成功
        try:
            analysis = self._backend.analyze_image(image, build_analysis_prompt(scene_text))
        except StyleMixError as exc:
            logger.warning("analysis failed, keeping image: %s", exc)
            return GenerationResult(image=image, analysis_requested=True, analysis_error=str(exc))
        except Exception as exc:
            logger.exception("analysis failed unexpectedly, keeping image")
            return GenerationResult(image=image, analysis_requested=True, analysis_error=type(exc).__name__)
        analysis = (analysis or "").strip() or None
        return GenerationResult(
            image=image,
            analysis=analysis,
            analysis_requested=True,
            analysis_error=None if analysis else "empty analysis",
        )
