"""Chat relay engine: run bookkeeping shared by the router and the gateway."""
from .models import (
    AgentEvent,
    AgentStream,
    ChatEventState,
    LifecyclePhase,
    RunLink,
    SessionEntry,
    ToolPhase,
)
from .config import GatewayConfig
from .run_registry import RunLinkRegistry
from .run_state import ChatRunState
from .run_context import RunContext, RunContextStore
from .sequence import SequenceGap, SequenceGuard
from .verbose import VerboseResolver, normalize_verbose_level
from .errors import (
    ChatRelayError,
    ConfigError,
    GatewayRequestError,
    InvalidAgentEventError,
    SessionLookupError,
)

__all__ = [
    # Models
    "AgentEvent",
    "AgentStream",
    "ChatEventState",
    "LifecyclePhase",
    "RunLink",
    "SessionEntry",
    "ToolPhase",
    # Config
    "GatewayConfig",
    # YAML config (lazy import)
    "RelayConfig",
    "load_yaml_config",
    # Run bookkeeping
    "RunLinkRegistry",
    "ChatRunState",
    "RunContext",
    "RunContextStore",
    "SequenceGap",
    "SequenceGuard",
    "VerboseResolver",
    "normalize_verbose_level",
    # Errors
    "ChatRelayError",
    "ConfigError",
    "GatewayRequestError",
    "InvalidAgentEventError",
    "SessionLookupError",
]


def __getattr__(name: str):
    if name == "RelayConfig":
        from .yaml_config import RelayConfig
        return RelayConfig
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
