"""StyleMix Studio 應用設定模組。"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv


DEFAULT_SETTINGS: Dict[str, Any] = {
    "GEMINI_API_KEY": "",
    "GEMINI_IMAGE_MODEL": "gemini-2.5-flash-image",
    "GEMINI_ANALYSIS_MODEL": "gemini-2.5-pro",
    "GEMINI_IMAGEN_MODEL": "imagen-4.0-generate-001",
    "GEMINI_THINKING_BUDGET": 8192,
    "GEMINI_SAFETY_LEVEL": "BLOCK_ONLY_HIGH",
    "GEMINI_API_TIMEOUT": 90,
}

SAFETY_LEVELS = {"BLOCK_NONE", "BLOCK_ONLY_HIGH", "BLOCK_MEDIUM_AND_ABOVE"}


@dataclass
class StyleMixConfig:
    """封裝 StyleMix Studio 的設定值。"""

    secret_key: str
    app_root: Path
    gemini_api_key: Optional[str]
    image_model: str = "gemini-2.5-flash-image"
    analysis_model: str = "gemini-2.5-pro"
    imagen_model: str = "imagen-4.0-generate-001"
    thinking_budget: int = 8192
    safety_level: str = "BLOCK_ONLY_HIGH"
    api_timeout: float = 90.0
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 6055
    session_idle_timeout: float = 1800.0
    max_sessions: int = 500

    @property
    def data_dir(self) -> Path:
        return self.app_root / "data"

    @property
    def settings_file(self) -> Path:
        return self.data_dir / "settings.json"

    @classmethod
    def load(cls, app_root: Optional[Path] = None) -> "StyleMixConfig":
        """從 settings.json 與環境變數建構設定，settings.json 優先。"""

        app_root = Path(app_root) if app_root else Path(__file__).resolve().parent
        load_dotenv(app_root.parent / ".env")

        settings_file = app_root / "data" / "settings.json"
        if not settings_file.exists():
            settings_file.parent.mkdir(parents=True, exist_ok=True)
            settings_file.write_text(
                json.dumps(DEFAULT_SETTINGS, indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
            print(f"[StyleMixConfig] 已創建預設設定檔: {settings_file}")
        settings = _load_settings_file(settings_file)

        def pick(key: str, default: Any = None) -> Any:
            value = settings.get(key)
            if value in (None, ""):
                value = os.getenv(key)
            return default if value in (None, "") else value

        safety_level = str(pick("GEMINI_SAFETY_LEVEL", "BLOCK_ONLY_HIGH")).strip().upper()
        if safety_level not in SAFETY_LEVELS:
            print(f"[StyleMixConfig] 無效的 GEMINI_SAFETY_LEVEL={safety_level}，改用 BLOCK_ONLY_HIGH")
            safety_level = "BLOCK_ONLY_HIGH"

        return cls(
            secret_key=str(pick("STYLEMIX_SECRET_KEY", "stylemix-studio-dev")),
            app_root=app_root,
            gemini_api_key=pick("GEMINI_API_KEY"),
            image_model=str(pick("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image")),
            analysis_model=str(pick("GEMINI_ANALYSIS_MODEL", "gemini-2.5-pro")),
            imagen_model=str(pick("GEMINI_IMAGEN_MODEL", "imagen-4.0-generate-001")),
            thinking_budget=_as_number(pick("GEMINI_THINKING_BUDGET"), 8192, int, "GEMINI_THINKING_BUDGET"),
            safety_level=safety_level,
            api_timeout=_as_number(pick("GEMINI_API_TIMEOUT"), 90.0, float, "GEMINI_API_TIMEOUT"),
            log_level=str(pick("LOG_LEVEL", "INFO")).upper(),
            host=str(pick("STYLEMIX_HOST", "0.0.0.0")),
            port=_as_number(pick("STYLEMIX_PORT"), 6055, int, "STYLEMIX_PORT"),
            session_idle_timeout=_as_number(
                pick("STYLEMIX_SESSION_IDLE_TIMEOUT"), 1800.0, float, "STYLEMIX_SESSION_IDLE_TIMEOUT"
            ),
            max_sessions=_as_number(pick("STYLEMIX_MAX_SESSIONS"), 500, int, "STYLEMIX_MAX_SESSIONS"),
        )


def _load_settings_file(path: Path) -> Dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        print(f"[StyleMixConfig] 讀取 {path} 失敗: {exc}")
        return {}
    if not isinstance(data, dict):
        print(f"[StyleMixConfig] {path} 內容不是 JSON 物件，已忽略")
        return {}
    return data


def _as_number(value: Any, default, cast, key: str):
    if value is None:
        return default
    try:
        number = cast(value)
    except (TypeError, ValueError):
        print(f"[StyleMixConfig] 無效的 {key}={value!r}，改用預設值 {default}")
        return default
    if number <= 0:
        print(f"[StyleMixConfig] {key} 必須大於 0，改用預設值 {default}")
        return default
    return number
