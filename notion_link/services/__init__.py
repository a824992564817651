"""Service layer exports."""

from .authorization import AuthorizationFlowManager
from .callback import CallbackHandler
from .discovery import MetadataCache, MetadataDiscoverer
from .health import HealthMonitor
from .notion_tokens import TokenVault
from .orchestrator import OPERATION_ALIASES, RequestOrchestrator
from .pkce import PKCEPair, generate_pkce
from .state_cleanup import StateSweeper
from .token_cipher import TokenCipherService
from .usage import LastUsedRecorder

__all__ = [
    "OPERATION_ALIASES",
    "AuthorizationFlowManager",
    "CallbackHandler",
    "HealthMonitor",
    "LastUsedRecorder",
    "MetadataCache",
    "MetadataDiscoverer",
    "PKCEPair",
    "RequestOrchestrator",
    "StateSweeper",
    "TokenCipherService",
    "TokenVault",
    "generate_pkce",
]
