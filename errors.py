"""
===========================================================================
errors.py — Start-up Error Types
===========================================================================

PURPOSE:
    Every way the configuration build can fail has its own exception
    class here. They all share one base class, ConfigurationError, so
    main.py can catch "anything that stops us from starting" in one place.

    ConfigurationError
    ├── InvalidEnvironmentError  : a PORT / interval / flag env var is malformed
    ├── ConfigParseError         : the warm-up prompt file is missing or bad JSON
    ├── ProbeError
    │   ├── ProbeExecutionError  : the ComfyUI describe script exited non-zero
    │   └── ProbeOutputError     : its JSON output is missing or malformed
    └── ModelRootUnreadable      : the models directory can't be listed

    All of these are FATAL: the service refuses to start.

USED BY:
    config_loader.py, comfy_probe.py, models_loader.py, main.py
===========================================================================
"""


class ConfigurationError(Exception):
    """Base class for everything that aborts start-up."""


class InvalidEnvironmentError(ConfigurationError):
    pass


class ConfigParseError(ConfigurationError):
    pass


class ProbeError(ConfigurationError):
    """Raised when ComfyUI's sampler/scheduler lists can't be obtained."""


class ProbeExecutionError(ProbeError):
    pass


class ProbeOutputError(ProbeError):
    pass


class ModelRootUnreadable(ConfigurationError):
    pass
