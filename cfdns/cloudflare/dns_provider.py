"""
cfdns/cloudflare/dns_provider.py

Responsibility: Defines the DNSProvider Protocol and the DnsRecord value object.
Does NOT: make HTTP calls, read configuration, or implement any provider logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

RECORD_TYPE_IPV4 = "A"
RECORD_TYPE_IPV6 = "AAAA"


# ---------------------------------------------------------------------------
# Value object — stable shape returned by all DNSProvider implementations
# ---------------------------------------------------------------------------


@dataclass
class DnsRecord:
    """
    Represents a single DNS A/AAAA record as returned by a DNSProvider.

    The engine never changes a record's id or type; it only writes
    content and the proxied flag.
    """

    # Provider-assigned unique identifier for the record
    id: str

    # Fully-qualified DNS name, e.g. "home.example.com"
    name: str

    # "A" or "AAAA"
    type: str

    # Current IP address stored in the record
    content: str

    # Whether the record is proxied through the provider's CDN; None when
    # the provider did not report it
    proxied: bool | None = None

    # TTL in seconds; 1 means "automatic" on Cloudflare
    ttl: int = 1

    # The zone ID to which this record belongs
    zone_id: str = ""


# ---------------------------------------------------------------------------
# Abstract interface — the capability calls the reconciliation engine needs
# ---------------------------------------------------------------------------


@runtime_checkable
class DNSProvider(Protocol):
    """
    Abstract protocol for zone-scoped DNS record management.

    A provider instance is bound to one credential. DnsService depends on
    this abstraction, never on a concrete implementation, so tests can
    substitute an in-memory fake.
    """

    async def list_zones(self) -> list[str]:
        """
        Returns the IDs of every zone visible to the provider's credential.

        Raises:
            DnsProviderError: If the API call fails or the credential is rejected.
        """
        ...

    async def list_records(self, zone_id: str, hostname: str, record_type: str) -> list[DnsRecord]:
        """
        Returns every record of the given type and name within the zone.

        Args:
            zone_id: The provider-assigned zone identifier.
            hostname: The fully-qualified DNS name to look up.
            record_type: "A" or "AAAA".

        Returns:
            A list of DnsRecord instances, possibly empty.

        Raises:
            DnsProviderError: If the API call fails.
        """
        ...

    async def create_record(
        self,
        zone_id: str,
        hostname: str,
        record_type: str,
        content: str,
        proxied: bool | None,
    ) -> DnsRecord:
        """
        Creates a new record in the given zone.

        Args:
            zone_id: The provider-assigned zone identifier.
            hostname: The fully-qualified DNS name for the new record.
            record_type: "A" or "AAAA".
            content: The IP address for the new record.
            proxied: Requested proxy setting; None leaves the provider default.

        Returns:
            The newly created DnsRecord.

        Raises:
            DnsProviderError: If the API call fails.
        """
        ...

    async def update_record(
        self,
        zone_id: str,
        record_id: str,
        content: str,
        proxied: bool | None,
    ) -> DnsRecord:
        """
        Updates content (and, when specified, the proxy setting) of an existing record.

        Args:
            zone_id: The provider-assigned zone identifier.
            record_id: The provider-assigned record identifier.
            content: The new IP address to write.
            proxied: Requested proxy setting; None leaves the remote value unchanged.

        Returns:
            The updated DnsRecord as confirmed by the provider.

        Raises:
            DnsProviderError: If the API call fails.
        """
        ...
