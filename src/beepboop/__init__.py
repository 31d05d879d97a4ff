"""beepboop: directory work coordination for cooperating agents."""

__version__ = "0.1.0"

# Public API
from beepboop.config import Config, get_config, load_config, validate_config
from beepboop.conversations import (
    ConversationOutcome,
    ConversationRecord,
    InboxStore,
    Platform,
    ReplyCorrelator,
)
from beepboop.coordination import (
    DirectoryCoordinator,
    DirectoryStatus,
    HoldRecord,
    LockStore,
    ReleaseRecord,
    WorkState,
)
from beepboop.delegation import DelegationClient, DelegationResult
from beepboop.errors import (
    AgentMismatchError,
    ConfigError,
    ConflictInUseError,
    CoordinationError,
    CorrelationTimeoutError,
    DirectoryNotFoundError,
    ErrorCode,
    InvalidAgentIdError,
    InvalidStateError,
    IOFailureError,
    NotHeldError,
    PermissionDeniedError,
)
from beepboop.tools import CoordinationTools, ToolResult

__all__ = [
    "__version__",
    # Config
    "Config",
    "load_config",
    "get_config",
    "validate_config",
    # Coordination
    "DirectoryCoordinator",
    "DirectoryStatus",
    "LockStore",
    "HoldRecord",
    "ReleaseRecord",
    "WorkState",
    # Delegation
    "DelegationClient",
    "DelegationResult",
    # Conversations
    "ReplyCorrelator",
    "InboxStore",
    "ConversationRecord",
    "ConversationOutcome",
    "Platform",
    # Tools
    "CoordinationTools",
    "ToolResult",
    # Errors
    "ErrorCode",
    "CoordinationError",
    "DirectoryNotFoundError",
    "PermissionDeniedError",
    "IOFailureError",
    "InvalidAgentIdError",
    "NotHeldError",
    "AgentMismatchError",
    "ConflictInUseError",
    "InvalidStateError",
    "CorrelationTimeoutError",
    "ConfigError",
]
