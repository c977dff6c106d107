import concurrent.futures
import logging
from typing import Any, Callable, List, Optional, Sequence, Union

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from stylemix.common.errors import TransportError, UpstreamTimeoutError
from stylemix.config import StyleMixConfig
from stylemix.services.encoding import DEFAULT_MEDIA_TYPE, Artifact


Part = Union[str, Artifact]


class GeminiService:
    """
    Gemini API 整合服務：
    - compose_image：多張圖片 + 文字 → 一張圖片（試穿、編輯）
    - analyze_image：圖片 + 文字 → 造型分析文字
    - text_to_image：Imagen 文字生圖
    每個呼叫都有逾時保護；傳輸層錯誤統一轉為 TransportError。
    """

    def __init__(self, config: StyleMixConfig, client: Optional[Any] = None) -> None:
        self.logger = logging.getLogger(__name__)
        self.config = config
        self.client: Optional[Any] = client
        if self.client is None:
            self._init_client()

    @property
    def available(self) -> bool:
        return self.client is not None

    # Public API -----------------------------------------------------------------

    def compose_image(self, parts: Sequence[Part]) -> Optional[Artifact]:
        """Send an ordered sequence of text and image parts; return the first image."""

        contents = [genai_types.Content(role="user", parts=self._to_parts(parts))]
        cfg = genai_types.GenerateContentConfig(
            response_modalities=[genai_types.Modality.IMAGE],
            safety_settings=self._get_safety_settings(),
        )
        model = self.config.image_model
        response = self._invoke(
            f"compose_image model={model}",
            lambda: self.client.models.generate_content(model=model, contents=contents, config=cfg),
        )
        image = self._extract_image_from_sdk(response)
        if image is None:
            self.logger.warning("compose_image: no image part in response (%s)", self._describe_block(response))
        return image

    def analyze_image(self, image: Artifact, prompt: str) -> str:
        contents = [genai_types.Content(role="user", parts=self._to_parts([prompt, image]))]
        cfg = genai_types.GenerateContentConfig(
            thinking_config=genai_types.ThinkingConfig(thinking_budget=self.config.thinking_budget),
        )
        model = self.config.analysis_model
        response = self._invoke(
            f"analyze_image model={model}",
            lambda: self.client.models.generate_content(model=model, contents=contents, config=cfg),
        )
        return self._extract_text_from_sdk(response) or ""

    def text_to_image(self, prompt: str, aspect_ratio: str) -> Optional[Artifact]:
        cfg = genai_types.GenerateImagesConfig(
            number_of_images=1,
            aspect_ratio=aspect_ratio,
            output_mime_type=DEFAULT_MEDIA_TYPE,
        )
        model = self.config.imagen_model
        response = self._invoke(
            f"text_to_image model={model} aspect_ratio={aspect_ratio}",
            lambda: self.client.models.generate_images(model=model, prompt=prompt, config=cfg),
        )
        generated = getattr(response, "generated_images", None) or []
        if not generated:
            return None
        image = getattr(generated[0], "image", None)
        data = getattr(image, "image_bytes", None)
        if not data:
            return None
        return Artifact(data=bytes(data), media_type=getattr(image, "mime_type", None) or DEFAULT_MEDIA_TYPE)

    # Internal helpers ------------------------------------------------------------

    def _init_client(self) -> None:
        if not self.config.gemini_api_key:
            self.logger.warning("GEMINI_API_KEY 未設定，Gemini 功能停用")
            self.client = None
            return
        self.client = genai.Client(api_key=self.config.gemini_api_key)
        self.logger.info(
            "GeminiService 初始化完成，模型：%s / %s / %s",
            self.config.image_model,
            self.config.analysis_model,
            self.config.imagen_model,
        )

    def _invoke(self, label: str, call: Callable[[], Any]) -> Any:
        if self.client is None:
            raise TransportError("Gemini client not configured")
        timeout_s = self.config.api_timeout
        self.logger.info("%s starting, timeout=%ss", label, timeout_s)
        # 以單一 worker 執行，避免阻塞的 SDK 呼叫卡住請求執行緒
        ex = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        try:
            result = ex.submit(call).result(timeout=timeout_s)
            self.logger.info("%s completed, result type=%s", label, type(result).__name__)
            return result
        except concurrent.futures.TimeoutError as exc:
            self.logger.error("%s TIMEOUT after %ss", label, timeout_s)
            raise UpstreamTimeoutError(
                f"The image service did not respond within {timeout_s:g} seconds."
            ) from exc
        except genai_errors.APIError as exc:
            self.logger.error("%s API error: %s %s", label, exc.code, exc.message)
            raise TransportError("The image service request failed. Please try again.") from exc
        except (httpx.HTTPError, OSError) as exc:
            self.logger.error("%s NETWORK ERROR: %s: %s", label, type(exc).__name__, exc)
            raise TransportError("Could not reach the image service. Please try again.") from exc
        finally:
            ex.shutdown(wait=False, cancel_futures=True)

    @staticmethod
    def _to_parts(parts: Sequence[Part]) -> List[Any]:
        converted = []
        for part in parts:
            if isinstance(part, Artifact):
                converted.append(genai_types.Part.from_bytes(data=part.data, mime_type=part.media_type))
            else:
                converted.append(genai_types.Part.from_text(text=str(part)))
        return converted

    def _get_safety_settings(self) -> Optional[List[Any]]:
        level = self.config.safety_level
        threshold = getattr(genai_types.HarmBlockThreshold, level, None)
        if threshold is None:
            return None
        categories = (
            genai_types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
            genai_types.HarmCategory.HARM_CATEGORY_HARASSMENT,
            genai_types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
            genai_types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
        )
        return [genai_types.SafetySetting(category=c, threshold=threshold) for c in categories]

    @staticmethod
    def _extract_image_from_sdk(response: Any) -> Optional[Artifact]:
        candidates = getattr(response, "candidates", None) or []
        for candidate in candidates:
            content = getattr(candidate, "content", None)
            parts = getattr(content, "parts", None) or []
            for part in parts:
                inline = getattr(part, "inline_data", None)
                data = getattr(inline, "data", None)
                if isinstance(data, (bytes, bytearray)) and data:
                    mime_type = getattr(inline, "mime_type", None) or "image/png"
                    return Artifact(data=bytes(data), media_type=mime_type)
        return None

    @staticmethod
    def _extract_text_from_sdk(response: Any) -> Optional[str]:
        """從 SDK 回應擷取文字內容（略過思考過程）。"""
        texts = []
        for candidate in getattr(response, "candidates", None) or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                if getattr(part, "thought", False):
                    continue
                txt = getattr(part, "text", None)
                if isinstance(txt, str) and txt.strip():
                    texts.append(txt.strip())
        if texts:
            return "\n".join(texts)
        return None

    @staticmethod
    def _describe_block(response: Any) -> str:
        feedback = getattr(response, "prompt_feedback", None)
        reason = getattr(feedback, "block_reason", None)
        if reason:
            return f"block_reason={reason}"
        candidates = getattr(response, "candidates", None) or []
        if candidates:
            return f"finish_reason={getattr(candidates[0], 'finish_reason', None)}"
        return "no candidates"
