"""
cfdns/cloudflare/cloudflare_client.py

Responsibility: Implements the DNSProvider protocol using the Cloudflare REST API.
All Cloudflare HTTP calls are concentrated here — no other module may call the
Cloudflare API directly.
Does NOT: read configuration files, resolve public IPs, or decide when a
record needs to change.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from cfdns.cloudflare.dns_provider import DnsRecord
from cfdns.exceptions import DnsProviderError

logger = logging.getLogger(__name__)

_CLOUDFLARE_BASE = "https://api.cloudflare.com/client/v4"

# Largest page size accepted by the /zones endpoint
_ZONES_PER_PAGE = 50


class CloudflareClient:
    """
    Implements DNSProvider for the Cloudflare DNS REST API (v4).

    Each instance is bound to one zone-scoped API token. All outbound
    requests go through the injected httpx.AsyncClient, making this class
    fully testable without real network calls (use respx.mock).

    Collaborators:
        - httpx.AsyncClient: injected HTTP client; must be kept alive externally
        - DNSProvider: this class satisfies the protocol contract
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_token: str,
        base_url: str = _CLOUDFLARE_BASE,
    ) -> None:
        """
        Initialises the client with an HTTP client and a Cloudflare API token.

        Args:
            http_client: A long-lived httpx.AsyncClient instance.
            api_token: A Cloudflare API token with DNS edit permissions.
            base_url: API root; overridable for tests.

        Raises:
            ValueError: If the token is empty.
        """
        token = api_token.strip()
        if not token:
            raise ValueError("Cloudflare API token cannot be empty.")
        self._client = http_client
        self._base = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    # ---------------------------------------------------------------------------
    # DNSProvider implementation
    # ---------------------------------------------------------------------------

    async def list_zones(self) -> list[str]:
        """
        Returns the IDs of all zones the token can see, following pagination.

        Returns:
            A list of zone IDs, possibly empty.

        Raises:
            DnsProviderError: If the Cloudflare API returns an error.
        """
        url = f"{self._base}/zones"
        zone_ids: list[str] = []
        page = 1

        while True:
            params = {"page": page, "per_page": _ZONES_PER_PAGE}
            logger.debug("GET %s params=%s", url, params)
            data = await self._request("GET", url, params=params)

            try:
                zone_ids.extend(zone["id"] for zone in data.get("result") or [])
            except (KeyError, TypeError) as exc:
                raise DnsProviderError(
                    f"Cloudflare API returned a malformed zone list for GET {url}: {exc!r}"
                ) from exc

            info = data.get("result_info") or {}
            total_pages = info.get("total_pages") or 1
            if page >= total_pages:
                return zone_ids
            page += 1

    async def list_records(self, zone_id: str, hostname: str, record_type: str) -> list[DnsRecord]:
        """
        Returns every record of the given type and name in the Cloudflare zone.

        Args:
            zone_id: The Cloudflare zone ID.
            hostname: The fully-qualified DNS name to look up.
            record_type: "A" or "AAAA".

        Returns:
            A list of DnsRecord instances, possibly empty.

        Raises:
            DnsProviderError: If the Cloudflare API returns an error.
        """
        url = f"{self._base}/zones/{zone_id}/dns_records"
        params = {"type": record_type, "name": hostname}

        logger.debug("GET %s params=%s", url, params)
        data = await self._request("GET", url, params=params)

        return [self._parse_record(r) for r in data.get("result") or []]

    async def create_record(
        self,
        zone_id: str,
        hostname: str,
        record_type: str,
        content: str,
        proxied: bool | None,
    ) -> DnsRecord:
        """
        Creates a new record in the given Cloudflare zone.

        Args:
            zone_id: The Cloudflare zone ID.
            hostname: The fully-qualified DNS name for the new record.
            record_type: "A" or "AAAA".
            content: The IP address for the new record.
            proxied: Requested proxy setting; omitted from the payload when None.

        Returns:
            The newly created DnsRecord.

        Raises:
            DnsProviderError: If the Cloudflare API returns an error.
        """
        url = f"{self._base}/zones/{zone_id}/dns_records"
        payload: dict[str, Any] = {
            "type": record_type,
            "name": hostname,
            "content": content,
            "ttl": 1,  # 1 = automatic TTL on Cloudflare
        }
        if proxied is not None:
            payload["proxied"] = proxied

        logger.debug("POST %s payload=%s", url, payload)
        data = await self._request("POST", url, json=payload)

        return self._parse_record(data.get("result"))

    async def update_record(
        self,
        zone_id: str,
        record_id: str,
        content: str,
        proxied: bool | None,
    ) -> DnsRecord:
        """
        Patches the content (and, when given, proxy flag) of an existing record.

        PATCH is used so the record's type, name and TTL are left untouched.

        Args:
            zone_id: The Cloudflare zone ID.
            record_id: The Cloudflare-assigned record identifier.
            content: The new IP address to write.
            proxied: Requested proxy setting; omitted from the payload when None.

        Returns:
            The updated DnsRecord.

        Raises:
            DnsProviderError: If the Cloudflare API returns an error.
        """
        url = f"{self._base}/zones/{zone_id}/dns_records/{record_id}"
        payload: dict[str, Any] = {"content": content}
        if proxied is not None:
            payload["proxied"] = proxied

        logger.debug("PATCH %s payload=%s", url, payload)
        data = await self._request("PATCH", url, json=payload)

        return self._parse_record(data.get("result"))

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Sends an authenticated HTTP request to the Cloudflare API.

        Args:
            method: HTTP verb ("GET", "POST", "PATCH").
            url: Full URL of the Cloudflare API endpoint.
            params: Optional query-string parameters.
            json: Optional JSON request body.

        Returns:
            The parsed JSON response body as a dict.

        Raises:
            DnsProviderError: If the HTTP call fails or the API returns
                              success=false in the response body.
        """
        try:
            response = await self._client.request(
                method, url, headers=self._headers, params=params, json=json
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DnsProviderError(
                f"Cloudflare API error {exc.response.status_code} for {method} {url}: "
                f"{exc.response.text}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.RequestError as exc:
            raise DnsProviderError(
                f"Network error calling Cloudflare API ({method} {url}): {exc}"
            ) from exc

        try:
            body: dict[str, Any] = response.json()
        except ValueError as exc:
            raise DnsProviderError(
                f"Cloudflare API returned a non-JSON body for {method} {url}."
            ) from exc
        if not isinstance(body, dict):
            raise DnsProviderError(
                f"Cloudflare API returned a {type(body).__name__} instead of an object "
                f"for {method} {url}."
            )

        # NOTE: Cloudflare wraps all responses in {"success": bool, "result": ...}
        if not body.get("success", False):
            errors = body.get("errors", [])
            raise DnsProviderError(
                f"Cloudflare API returned success=false for {method} {url}. "
                f"Errors: {errors}",
                status_code=response.status_code,
            )

        return body

    @staticmethod
    def _parse_record(raw: Any) -> DnsRecord:
        """
        Converts a raw Cloudflare API record dict into a typed DnsRecord.

        Args:
            raw: A single record object from the Cloudflare API response.

        Returns:
            A DnsRecord populated from the raw dict.

        Raises:
            DnsProviderError: If the object is not a record or lacks id/name.
        """
        try:
            return DnsRecord(
                id=raw["id"],
                name=raw["name"],
                type=raw.get("type", ""),
                content=raw.get("content", ""),
                proxied=raw.get("proxied"),
                ttl=raw.get("ttl", 1),
                zone_id=raw.get("zone_id", ""),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise DnsProviderError(
                f"Cloudflare API returned a malformed DNS record: {exc!r}"
            ) from exc
