"""Exception types raised inside Castellan."""


class CastellanError(Exception):
    """Base class for Castellan errors."""


class WireDecodeError(CastellanError):
    """An inbound frame could not be decoded into a known wire record."""

    def __init__(self, message: str, raw: str | bytes | None = None):
        super().__init__(message)
        self.raw = raw

    @property
    def preview(self) -> str:
        if self.raw is None:
            return ""
        text = self.raw.decode("utf-8", errors="replace") if isinstance(self.raw, bytes) else self.raw
        return text[:100]


class ConfigurationError(CastellanError):
    """Configuration failed validation at startup."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors
