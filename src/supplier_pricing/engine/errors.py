"""
Error types raised by the pricing engine.

Only ValidationError, NotFoundError and AllSourcesFailedError are meant to reach
callers; upstream errors are converted into fallbacks and cache write errors are
logged and dropped.
"""


class PricingError(Exception):
    """Base class for all pricing errors."""

    kind = "error"


class ValidationError(PricingError):
    """Bad input: negative cost, non-positive quantity, malformed id."""

    kind = "validation"


class NotFoundError(PricingError):
    """Unknown customer, supplier or supplier product."""

    kind = "not_found"


class UpstreamError(PricingError):
    """The live supplier call failed."""

    kind = "upstream"


class UpstreamTimeoutError(UpstreamError):
    """The live supplier call did not answer within its time budget."""

    kind = "upstream_timeout"


class AllSourcesFailedError(PricingError):
    """Live call failed and no cached or catalog price exists."""

    kind = "all_sources_failed"


class CacheWriteError(PricingError):
    """Writing to the price cache failed."""

    kind = "cache_write"
