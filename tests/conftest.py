"""
tests/conftest.py

Shared pytest fixtures used by both unit and integration test suites.
All HTTP fixtures use respx.mock and all DNS fixtures use an in-memory
provider — no real network calls are made in any test.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

import httpx
import pytest
import respx

from cfdns.cloudflare.dns_provider import DnsRecord
from cfdns.config import Configuration
from cfdns.exceptions import DnsProviderError

ZONE_ID = "zone123"
TOKEN = "test-token"


# ---------------------------------------------------------------------------
# HTTP mock fixture — intercepts all httpx calls
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_http():
    """
    Yields a respx router that intercepts all httpx.AsyncClient calls.

    No real network traffic is allowed during tests. Use this fixture
    wherever a service or client would normally make an outbound request.
    """
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture()
async def http_client():
    """
    Yields a real httpx.AsyncClient instance for use in tests.

    Pair with the mock_http fixture so all requests are intercepted by respx.
    The client is closed after each test.
    """
    async with httpx.AsyncClient() as client:
        yield client


# ---------------------------------------------------------------------------
# Configuration factory
# ---------------------------------------------------------------------------


def build_config(**overrides: Any) -> Configuration:
    data: dict[str, Any] = {
        "zone_id": ZONE_ID,
        "token": TOKEN,
        "frequency": 3600,
        "timeout": 5,
        "workers": 4,
        "ipv4": True,
        "ipv6": False,
        "domains": [{"hostname": "a.example.com"}],
    }
    data.update(overrides)
    return Configuration.model_validate(data)


@pytest.fixture()
def make_config():
    """Returns a factory building a valid Configuration with overrides applied."""
    return build_config


# ---------------------------------------------------------------------------
# In-memory DNS provider
# ---------------------------------------------------------------------------


class FakeProvider:
    """
    In-memory DNSProvider double.

    Records every call in `calls`. Set `errors[method]` to make a method
    raise, `record_errors[record_id]` to fail update_record for one record
    only, or `gate` to make update_record block until the event is set.
    """

    def __init__(self, zones: tuple[str, ...] = (ZONE_ID,)) -> None:
        self.zones = list(zones)
        self.records: dict[tuple[str, str], list[DnsRecord]] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.errors: dict[str, Exception] = {}
        self.record_errors: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.in_flight = 0
        self._ids = itertools.count(1)

    def add_record(
        self,
        hostname: str,
        record_type: str,
        content: str,
        proxied: bool | None = None,
    ) -> DnsRecord:
        record = DnsRecord(
            id=f"rec{next(self._ids)}",
            name=hostname,
            type=record_type,
            content=content,
            proxied=proxied,
            zone_id=ZONE_ID,
        )
        self.records.setdefault((hostname, record_type), []).append(record)
        return record

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == method]

    def _maybe_fail(self, method: str) -> None:
        if method in self.errors:
            raise self.errors[method]

    async def list_zones(self) -> list[str]:
        self.calls.append(("list_zones",))
        self._maybe_fail("list_zones")
        return list(self.zones)

    async def list_records(self, zone_id: str, hostname: str, record_type: str) -> list[DnsRecord]:
        self.calls.append(("list_records", zone_id, hostname, record_type))
        self._maybe_fail("list_records")
        return [
            DnsRecord(**vars(r)) for r in self.records.get((hostname, record_type), [])
        ]

    async def create_record(self, zone_id, hostname, record_type, content, proxied) -> DnsRecord:
        self.calls.append(("create_record", zone_id, hostname, record_type, content, proxied))
        self._maybe_fail("create_record")
        return self.add_record(hostname, record_type, content, proxied)

    async def update_record(self, zone_id, record_id, content, proxied) -> DnsRecord:
        self.calls.append(("update_record", zone_id, record_id, content, proxied))
        self.in_flight += 1
        try:
            if self.gate is not None:
                await self.gate.wait()
            self._maybe_fail("update_record")
            if record_id in self.record_errors:
                raise self.record_errors[record_id]
        finally:
            self.in_flight -= 1
        for records in self.records.values():
            for record in records:
                if record.id == record_id:
                    record.content = content
                    if proxied is not None:
                        record.proxied = proxied
                    return DnsRecord(**vars(record))
        raise DnsProviderError(f"record {record_id} not found", status_code=404)


@pytest.fixture()
def fake_provider():
    """Yields a fresh in-memory FakeProvider."""
    return FakeProvider()

