"""Custom exception hierarchy for pricewatch."""

from typing import Any


class PricewatchError(Exception):
    """Base exception for all pricewatch errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(PricewatchError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field: str — the config field that failed validation
        value: Any — the invalid value (redacted for secrets)
    """


class InvalidAsset(PricewatchError, ValueError):
    """Asset symbol is blank after normalization.

    Also a ValueError, so pydantic validators report it as a validation
    error. Outside a model it is a client error (HTTP 400).

    Context keys:
        asset: str — the symbol as received
    """


class SourceError(PricewatchError):
    """The price source could not produce a price.

    Context keys:
        asset: str — the asset that was requested
    """


class UnsupportedAsset(SourceError):
    """Asset symbol cannot be mapped to a source identifier.

    Policy: surfaced to the caller of start_tracking / query as a client error.
    Inside a collector tick it is logged like any other source failure.
    """


class SourceUnavailable(SourceError):
    """Network, HTTP or parse failure while talking to the price source.

    Policy: log and retry on the next tick. Never surfaced synchronously.

    Context keys:
        url: str — the URL that was being fetched
        status_code: int | None — HTTP status if a response arrived
    """


class NoQuote(SourceError):
    """The source answered but has no current quote for the asset.

    Policy: log and retry on the next tick.
    """


class CacheError(PricewatchError):
    """The cache engine failed a primitive operation.

    Policy: log; reads fall through to the durable store, writes are skipped.

    Context keys:
        operation: str — the primitive that failed
        key: str — the cache key involved
    """


class CacheMiss(PricewatchError):
    """No cached sample is acceptably close to the queried timestamp.

    Internal signal that triggers the durable-store fallback. Never surfaced.
    """


class PriceNotFound(PricewatchError):
    """No sample exists anywhere for the asset.

    Policy: surfaced to the query caller as "not found" (HTTP 404).

    Context keys:
        asset: str
        timestamp: int
    """


class StorageError(PricewatchError):
    """Durable store operation failed.

    Policy: reads raise immediately; writes are wrapped in DurableWriteFailed.

    Context keys:
        operation: str — "insert", "query", "migrate", etc.
        table: str — the table involved
    """


class DurableWriteFailed(StorageError):
    """A sample could not be persisted.

    Policy: log and drop the sample. Collection continues.
    """


class StoreUnreachable(StorageError):
    """Durable store or cache engine not reachable at startup.

    Policy: fatal. The process must not start serving.

    Context keys:
        attempts: int — connection attempts made
    """
