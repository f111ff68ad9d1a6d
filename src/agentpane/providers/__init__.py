"""Terminal providers"""

from .base import (
    REQUIRED_OPERATIONS,
    ManagedTerminalProvider,
    ProviderContext,
    TerminalProvider,
    TerminalState,
    discard_session,
)
from .custom import CustomProvider, missing_operations, validate_provider
from .external import ExternalProvider, build_external_argv
from .factory import create_provider, select_provider
from .lifecycle import CloseReason, Phase, SessionLifecycle
from .native import NativeProvider
from .none import NoneProvider
from .widget import WidgetProvider

__all__ = [
    "REQUIRED_OPERATIONS",
    "TerminalProvider",
    "ManagedTerminalProvider",
    "ProviderContext",
    "TerminalState",
    "discard_session",
    "NativeProvider",
    "WidgetProvider",
    "ExternalProvider",
    "NoneProvider",
    "CustomProvider",
    "build_external_argv",
    "missing_operations",
    "validate_provider",
    "create_provider",
    "select_provider",
    "SessionLifecycle",
    "Phase",
    "CloseReason",
]
