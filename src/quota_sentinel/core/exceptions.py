"""Custom exception hierarchy for quota-sentinel."""

from typing import Any


class QuotaSentinelError(Exception):
    """Base exception for all quota-sentinel errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(QuotaSentinelError):
    """The YAML config file cannot be read, parsed, or validated.

    CLI commands exit with the message. A running monitor that hits this on
    re-read logs it and carries on with the settings it already has.

    Context keys:
        field (str): the config field that failed validation
        value (Any): the offending value, or the file path for parse errors
    """


class AdapterError(QuotaSentinelError):
    """Base class for failures raised inside a platform adapter.

    fetch_usage() catches these and reports them through FetchResult.error.

    Context keys:
        account_id (str): the account whose adapter failed
        platform_type (str): the adapter's platform type
    """


class FetchError(AdapterError):
    """Network, authentication, or response-shape failure while fetching usage.

    The account shows the error until the next refresh succeeds.

    Context keys:
        url (str): the URL that was being fetched
        status_code (int | None): HTTP status code if applicable
    """


class AdapterConfigError(AdapterError):
    """Account config does not validate against the platform's settings model.

    Raised when an adapter is constructed, and by ``accounts add``/``accounts
    set`` before settings are written. The factory logs and skips such
    accounts; the rest still load.
    """


class UnknownPlatformError(AdapterError):
    """Account references a platform type that is not registered.

    Context keys:
        platform_type (str): the unknown type id
    """


class StorageError(QuotaSentinelError):
    """History persistence failed.

    Logged; the affected account simply has no history to predict from.

    Context keys:
        operation (str): "load" or "save"
        key (str): the key-value store key involved
    """


class SchedulerError(QuotaSentinelError):
    """Scheduler misuse, e.g. starting without a running event loop."""


class AccountError(QuotaSentinelError):
    """Account record lookup or mutation failed.

    Context keys:
        account_id (str): the account id that was requested
    """
