"""
Library config for the platform installer. Values here are process-wide
defaults; reconcilers receive explicit PlatformConfig objects built from them.
"""

# Local
from . import validation
from .config import library_config


# Delegate attribute access on this module to the loaded library config
def __getattr__(name):
    if name in library_config or hasattr({}, name):
        return getattr(library_config, name)
    raise AttributeError(f"No such config attribute {name}")


__all__ = list(library_config.keys())
