"""StyleMix Studio Flask 應用。"""

from __future__ import annotations

import logging
from typing import Any, Optional

from flask import Flask

from stylemix.common.services.gemini_service import GeminiService
from stylemix.config import StyleMixConfig
from stylemix.routes import api
from stylemix.services import GenerationOrchestrator, SessionRegistry, SessionStateMachine


def create_app(config: Optional[StyleMixConfig] = None, backend: Optional[Any] = None) -> Flask:
    config = config or StyleMixConfig.load()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.secret_key
    app.config["STYLEMIX_CONFIG"] = config

    gemini = backend if backend is not None else GeminiService(config)
    orchestrator = GenerationOrchestrator(gemini)
    components = {
        "gemini": gemini,
        "orchestrator": orchestrator,
        "sessions": SessionRegistry(
            factory=lambda session_id: SessionStateMachine(orchestrator, session_id=session_id),
            idle_timeout=config.session_idle_timeout,
            max_sessions=config.max_sessions,
        ),
    }
    app.extensions["stylemix_components"] = components

    app.register_blueprint(api.api_bp)

    return app


def main() -> None:
    config = StyleMixConfig.load()
    app = create_app(config)
    app.run(host=config.host, port=config.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
