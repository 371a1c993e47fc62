"""forgewatch: rerun a build command whenever watched sources change."""

__version__ = "0.1.0"

# Public API
from forgewatch.config import ConfigError, load_config
from forgewatch.controller import WatchController
from forgewatch.debounce import DebounceGate
from forgewatch.filters import is_noise, is_watched_extension, parse_extensions
from forgewatch.models import ChangeEvent, ChangeKind, EnrollResult, WatchConfig
from forgewatch.registry import WatchRegistry
from forgewatch.supervisor import BuildSupervisor, ShellChildProcess
from forgewatch.watchers import BackendError, SubscriptionError, WatchBackend

__all__ = [
    "__version__",
    # Pipeline
    "WatchController",
    "WatchRegistry",
    "DebounceGate",
    "BuildSupervisor",
    "ShellChildProcess",
    # Filters
    "is_noise",
    "is_watched_extension",
    "parse_extensions",
    # Models
    "WatchConfig",
    "ChangeEvent",
    "ChangeKind",
    "EnrollResult",
    # Backends
    "WatchBackend",
    "BackendError",
    "SubscriptionError",
    # Config
    "ConfigError",
    "load_config",
]
