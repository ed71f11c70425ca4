"""
cfdns/services/ip_service.py

Responsibility: Determines the host machine's current public IPv4/IPv6
address by asking a shuffled list of address-echo providers.
Does NOT: interact with Cloudflare, read config files, or cache addresses
between calls.
"""

from __future__ import annotations

import ipaddress
import logging
import random
from collections.abc import Callable, Mapping, Sequence
from enum import Enum

import httpx

from cfdns.cloudflare.dns_provider import RECORD_TYPE_IPV4, RECORD_TYPE_IPV6
from cfdns.exceptions import NoAddressAvailableError

logger = logging.getLogger(__name__)


class AddressFamily(str, Enum):
    """The two address families the service can resolve and publish."""

    IPV4 = "ipv4"
    IPV6 = "ipv6"

    @property
    def record_type(self) -> str:
        """DNS record type carrying addresses of this family."""
        return RECORD_TYPE_IPV4 if self is AddressFamily.IPV4 else RECORD_TYPE_IPV6


# NOTE: each provider returns the caller's public address as plain text.
DEFAULT_PROVIDERS: Mapping[AddressFamily, tuple[str, ...]] = {
    AddressFamily.IPV4: (
        "https://api.ipify.org",
        "https://ipv4.icanhazip.com",
        "https://v4.ident.me",
    ),
    AddressFamily.IPV6: (
        "https://api6.ipify.org",
        "https://ipv6.icanhazip.com",
        "https://v6.ident.me",
    ),
}

DEFAULT_TIMEOUT = 5.0

# Anything longer than this cannot be a bare IP literal
_MAX_BODY_CHARS = 128


def canonical_ip(text: str, family: AddressFamily) -> str | None:
    """
    Parses an IP literal strictly and returns its canonical form.

    IPv4 addresses come back in dotted-quad form, IPv6 addresses in the
    compressed form produced by the ipaddress module. An IPv4-mapped IPv6
    literal counts as IPv4.

    Args:
        text: Candidate literal, already stripped of whitespace.
        family: The family the caller expects.

    Returns:
        The canonical string, or None if the text is not a literal of the
        requested family.
    """
    try:
        ip = ipaddress.ip_address(text)
    except ValueError:
        return None

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    if family is AddressFamily.IPV4 and isinstance(ip, ipaddress.IPv4Address):
        return str(ip)
    if family is AddressFamily.IPV6 and isinstance(ip, ipaddress.IPv6Address):
        return str(ip)
    return None


class IpService:
    """
    Resolves the host machine's current public address for one family at a time.

    Providers are tried in a freshly shuffled order on every call so load
    is spread and no single provider is favoured. A provider that errors,
    returns a non-200 status, or answers with something other than an IP
    literal of the requested family is logged and skipped.

    Cancellation of the calling task is never swallowed: it propagates out
    of get_public_ip immediately without trying further providers.

    Collaborators:
        - httpx.AsyncClient: injected; must be kept alive externally
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        providers: Mapping[AddressFamily, Sequence[str]] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        shuffle: Callable[[list[str]], None] = random.shuffle,
    ) -> None:
        """
        Initialises the service with a shared HTTP client.

        Args:
            http_client: A long-lived httpx.AsyncClient instance created
                         during application startup.
            providers: Provider URLs per family. Defaults to DEFAULT_PROVIDERS.
            timeout: Per-provider request timeout in seconds.
            shuffle: In-place shuffle applied to a copy of the provider list.
        """
        self._client = http_client
        self._providers = providers if providers is not None else DEFAULT_PROVIDERS
        self._timeout = timeout
        self._shuffle = shuffle

    async def get_public_ip(self, family: AddressFamily) -> str:
        """
        Returns the current public address of the host for the given family.

        Args:
            family: AddressFamily.IPV4 or AddressFamily.IPV6.

        Returns:
            The canonical address string, e.g. "203.0.113.9" or "2001:db8::1".

        Raises:
            NoAddressAvailableError: If every provider was tried without a
                                     valid answer.
        """
        services = list(self._providers.get(family, ()))
        self._shuffle(services)

        for url in services:
            address = await self._query(url, family)
            if address is not None:
                logger.debug("Public %s from %s: %s", family.value, url, address)
                return address

        raise NoAddressAvailableError(
            f"Could not determine public {family.value} address from {len(services)} provider(s)."
        )

    async def _query(self, url: str, family: AddressFamily) -> str | None:
        """
        Asks a single provider for the caller's address.

        Args:
            url: Provider endpoint returning the address as plain text.
            family: The family being resolved.

        Returns:
            The canonical address, or None if this provider should be skipped.
        """
        try:
            response = await self._client.get(url, timeout=self._timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "IP provider %s returned status %d — skipping.",
                url,
                exc.response.status_code,
            )
            return None
        except httpx.RequestError as exc:
            logger.warning("Could not reach IP provider %s: %s — skipping.", url, exc)
            return None

        text = response.text.strip()
        if not text or len(text) > _MAX_BODY_CHARS:
            logger.warning("IP provider %s returned an unusable body — skipping.", url)
            return None

        address = canonical_ip(text, family)
        if address is None:
            logger.warning(
                "IP provider %s returned %r, not a valid %s address — skipping.",
                url,
                text,
                family.value,
            )
        return address
