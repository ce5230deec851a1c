"""Castellan: live audience event fanout for stream overlays."""

__version__ = "0.1.0"
SERVICE_NAME = "Castellan"

from .exceptions import CastellanError, ConfigurationError, WireDecodeError  # noqa: E402

__all__ = ["CastellanError", "ConfigurationError", "WireDecodeError", "SERVICE_NAME", "__version__"]
