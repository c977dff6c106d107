"""StyleMix Studio 服務模組入口。"""

from .encoding import Artifact, encode_file, wrap_encoded_result
from .orchestrator import AspectRatio, GenerationOrchestrator, GenerationResult, Mode
from .session_state import RequestStatus, SessionRegistry, SessionStateMachine
from .upload_intake import PreviewStore, UploadedItem, UploadIntake

__all__ = [
    "Artifact",
    "encode_file",
    "wrap_encoded_result",
    "AspectRatio",
    "GenerationOrchestrator",
    "GenerationResult",
    "Mode",
    "RequestStatus",
    "SessionRegistry",
    "SessionStateMachine",
    "PreviewStore",
    "UploadedItem",
    "UploadIntake",
]
