"""Message sanitization and tool-call confirmation/execution pipeline."""

from app.orchestration.driver import OrchestrationDriver, run_orchestration
from app.orchestration.errors import ModelCallError, OrchestrationError
from app.orchestration.executor import execute, execute_all
from app.orchestration.resolver import Resolution, resolve
from app.orchestration.sanitizer import prepare_for_model, sanitize
from app.orchestration.stream import EventChannel, merge

__all__ = [
    "EventChannel",
    "ModelCallError",
    "OrchestrationDriver",
    "OrchestrationError",
    "Resolution",
    "execute",
    "execute_all",
    "merge",
    "prepare_for_model",
    "resolve",
    "run_orchestration",
    "sanitize",
]
