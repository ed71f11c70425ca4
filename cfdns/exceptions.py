"""
cfdns/exceptions.py

Responsibility: Defines all custom exception classes used across the application.
Does NOT: contain business logic, logging, or HTTP handling.
"""

from __future__ import annotations


class IpFetchError(Exception):
    """
    Raised by IpService when the public IP address cannot be determined.

    This may occur due to network connectivity issues or an unexpected
    response from an upstream address-echo provider (e.g. api.ipify.org).
    """


class NoAddressAvailableError(IpFetchError):
    """
    Raised by IpService when every provider for an address family has been
    tried without producing a valid IP literal.
    """


class DnsProviderError(Exception):
    """
    Raised by any DNSProvider implementation when a DNS API call fails.

    Includes a human-readable message describing the failure and, when the
    failure came from an HTTP response, its status code. Callers
    (typically DnsService) must catch this and log the affected record.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_auth_error(self) -> bool:
        """True when the provider rejected the credential (HTTP 401/403)."""
        return self.status_code in (401, 403)


class ConfigLoadError(Exception):
    """
    Raised by load_config when the configuration file is missing, has an
    unsupported extension, cannot be parsed, or fails validation.
    """


class ConfigReplaceError(Exception):
    """
    Raised by ConfigStore.replace when a new configuration cannot be
    activated. The previously active configuration remains in effect.
    """


class PoolClosedError(Exception):
    """
    Raised by WorkerPool.submit when the pool has been closed or aborted
    and no longer admits work.
    """


class TaskCancelledError(Exception):
    """
    Set on a TaskFuture when its task was aborted (queued or in flight)
    before it could settle on its own.
    """
