"""FXWatch — error types shared across the analysis and trading core.

Validation failures subclass ``ValueError`` so callers that only care about
"bad input" can keep catching the builtin.
"""


class FXWatchError(Exception):
    """Base class for every error raised by the core."""


class InsufficientData(FXWatchError, ValueError):
    """Not enough price bars to fill an indicator window."""


class InvalidQuote(FXWatchError, ValueError):
    """A quote whose bid/ask are inconsistent or non-positive."""


class InsufficientFunds(FXWatchError):
    """A buy would spend more portfolio cash than is available."""


class InsufficientHoldings(FXWatchError):
    """A sell would dispose of more foreign currency than is held."""


class ConfigurationError(FXWatchError, ValueError):
    """Invalid start-up parameters. Fatal before the first monitoring tick."""


# ── Data provider ────────────────────────────────────────────────────────

RATE_LIMITED = "rate_limited"
AUTH_FAILED = "auth_failed"
NOT_FOUND = "not_found"
NETWORK = "network"
MALFORMED = "malformed"

PROVIDER_ERROR_KINDS = (RATE_LIMITED, AUTH_FAILED, NOT_FOUND, NETWORK, MALFORMED)


class DataProviderError(FXWatchError):
    """A market-data fetch failed.

    Args:
        kind: One of ``PROVIDER_ERROR_KINDS``.
        message: Human-readable detail.
    """

    def __init__(self, kind: str, message: str) -> None:
        if kind not in PROVIDER_ERROR_KINDS:
            raise ValueError(f"Unknown provider error kind '{kind}'")
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def is_rate_limited(self) -> bool:
        return self.kind == RATE_LIMITED

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"
