from __future__ import annotations

__all__ = [
    "SymbolApiError",
    "MalformedRequest",
    "FetchError",
    "DecodeError",
    "CacheIOError",
    "CacheMiss",
    "SymbolParseError",
]


class SymbolApiError(Exception):
    """Base error for symbolication failures."""

    code = "SYMBOLAPI_ERROR"

    def __init__(self, message: str, *, module: str | None = None) -> None:
        super().__init__(message)
        self.module = module


class MalformedRequest(SymbolApiError, ValueError):
    """Incoming request could not be decoded."""

    code = "MALFORMED_REQUEST"


class FetchError(SymbolApiError):
    """Remote symbol retrieval failed."""

    code = "FETCH_FAILED"

    def __init__(
        self,
        message: str,
        *,
        module: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, module=module)
        self.status_code = status_code


class DecodeError(SymbolApiError):
    """Body could not be decoded per its Content-Encoding."""

    code = "DECODE_FAILED"


class CacheIOError(SymbolApiError):
    """Local symbol cache could not be written."""

    code = "CACHE_IO"


class CacheMiss(SymbolApiError, KeyError):
    """Symbol file is not present in the cache."""

    code = "CACHE_MISS"

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class SymbolParseError(SymbolApiError):
    """Symbol file could not be turned into a lookup table."""

    code = "SYMBOL_PARSE_FAILED"
