"""Pytest fixtures for StyleMix tests."""

from __future__ import annotations

from io import BytesIO
from typing import Callable, List, Optional, Tuple

import pytest
from PIL import Image
from werkzeug.datastructures import FileStorage

from stylemix.app import create_app
from stylemix.config import StyleMixConfig
from stylemix.services import Artifact, GenerationOrchestrator, SessionStateMachine, UploadIntake


def png_bytes(color=(200, 30, 30)) -> bytes:
    img = Image.new("RGB", (8, 6), color)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class FakeBackend:
    """Records every upstream call; results and errors are configurable per operation."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, tuple]] = []
        self.compose_result: Optional[Artifact] = Artifact(b"composed-image", "image/png")
        self.text_result: Optional[Artifact] = Artifact(b"imagen-image", "image/jpeg")
        self.analysis_result = "A confident, well-balanced look."
        self.compose_error: Optional[Exception] = None
        self.analysis_error: Optional[Exception] = None
        self.text_error: Optional[Exception] = None
        self.on_call: Optional[Callable[[str], None]] = None
        self.available = True

    def compose_image(self, parts):
        return self._record("compose_image", (list(parts),), self.compose_error, self.compose_result)

    def analyze_image(self, image, prompt):
        return self._record("analyze_image", (image, prompt), self.analysis_error, self.analysis_result)

    def text_to_image(self, prompt, aspect_ratio):
        return self._record("text_to_image", (prompt, aspect_ratio), self.text_error, self.text_result)

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    def args(self, name: str) -> tuple:
        return [args for call, args in self.calls if call == name][-1]

    def _record(self, name, args, error, result):
        self.calls.append((name, args))
        if self.on_call is not None:
            self.on_call(name)
        if error is not None:
            raise error
        return result


@pytest.fixture
def make_upload() -> Callable[..., FileStorage]:
    def _make(filename: str = "dress.png", data: Optional[bytes] = None, content_type: Optional[str] = "image/png"):
        return FileStorage(
            stream=BytesIO(png_bytes() if data is None else data),
            filename=filename,
            content_type=content_type,
        )

    return _make


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def orchestrator(backend: FakeBackend) -> GenerationOrchestrator:
    return GenerationOrchestrator(backend)


@pytest.fixture
def clock() -> Callable[[], float]:
    return lambda: 1700000000.5


@pytest.fixture
def machine(orchestrator: GenerationOrchestrator, clock) -> SessionStateMachine:
    return SessionStateMachine(orchestrator, intake=UploadIntake(clock=clock), clock=clock, session_id="test")


@pytest.fixture
def config(tmp_path) -> StyleMixConfig:
    return StyleMixConfig(
        secret_key="test-secret",
        app_root=tmp_path,
        gemini_api_key=None,
        api_timeout=5.0,
    )


@pytest.fixture
def app(config: StyleMixConfig, backend: FakeBackend):
    app = create_app(config, backend=backend)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
