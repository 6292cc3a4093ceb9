"""
Engine error taxonomy.

Every engine failure aborts the whole operation. Nothing is retried here;
callers retry with adjusted parameters if they want to.

All errors subclass ValueError so code that only knows "the engine said no"
can keep catching ValueError.
"""


class EngineError(ValueError):
    """Base class. `code` is the machine-readable name used by the API."""

    code = "engine_error"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ListingError(EngineError):
    """Unlisted position, duplicate listing, or unknown ledger position."""

    code = "listing_error"


class DomainError(EngineError):
    """A log/exp argument outside its valid range, or exhausted liquidity."""

    code = "domain_error"


class InvariantViolation(EngineError):
    """Post-update S <= 0 or negative reserve. Fatal for the operation."""

    code = "invariant_violation"


class SlippageError(EngineError):
    """Caller's maximum spend or minimum output not met."""

    code = "slippage"


class ConfigurationError(EngineError):
    """Bad market setup: outcome count, depth, reserve flag, dust, fee."""

    code = "configuration_error"


class ReentrancyError(EngineError):
    """A mutating call arrived while a trade's ledger callback was running."""

    code = "reentrancy"
