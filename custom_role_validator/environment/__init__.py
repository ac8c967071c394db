from .context import SuiteContext
from .initializer import EnvironmentInitializer, EnvironmentSetupError, SetupResult
from .cleanup import CleanupReport, EnvironmentCleanup
from .resolver import (
    ConfigurationError,
    resolve_custom_role,
    resolve_subscription,
    validate_region,
)
from .state import load_state, save_state

__all__ = [
    "SuiteContext",
    "EnvironmentInitializer",
    "EnvironmentSetupError",
    "SetupResult",
    "CleanupReport",
    "EnvironmentCleanup",
    "ConfigurationError",
    "resolve_custom_role",
    "resolve_subscription",
    "validate_region",
    "load_state",
    "save_state",
]
