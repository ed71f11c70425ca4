"""
tests/unit/test_ip_service.py

Unit tests for cfdns/services/ip_service.py.
Verifies provider fallback order, strict literal validation, canonical
forms, and typed error raising when every provider fails.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from cfdns.exceptions import IpFetchError, NoAddressAvailableError
from cfdns.services.ip_service import AddressFamily, IpService, canonical_ip

_V4 = ("https://v4-a.test", "https://v4-b.test", "https://v4-c.test")
_V6 = ("https://v6-a.test", "https://v6-b.test", "https://v6-c.test")
_PROVIDERS = {AddressFamily.IPV4: _V4, AddressFamily.IPV6: _V6}


def _keep_order(services):
    """Shuffle stand-in that leaves the provider order untouched."""


def _service(client):
    return IpService(http_client=client, providers=_PROVIDERS, shuffle=_keep_order)


# ---------------------------------------------------------------------------
# canonical_ip
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "text, family, expected",
    [
        ("203.0.113.9", AddressFamily.IPV4, "203.0.113.9"),
        ("::ffff:203.0.113.9", AddressFamily.IPV4, "203.0.113.9"),
        ("2001:0db8:0000:0000:0000:0000:0000:0001", AddressFamily.IPV6, "2001:db8::1"),
        ("2001:db8::1", AddressFamily.IPV4, None),
        ("203.0.113.9", AddressFamily.IPV6, None),
        ("not-an-ip", AddressFamily.IPV4, None),
        ("203.0.113.256", AddressFamily.IPV4, None),
    ],
)
def test_canonical_ip(text, family, expected):
    """canonical_ip accepts only literals of the requested family."""
    assert canonical_ip(text, family) == expected


def test_record_type_per_family():
    assert AddressFamily.IPV4.record_type == "A"
    assert AddressFamily.IPV6.record_type == "AAAA"


# ---------------------------------------------------------------------------
# get_public_ip
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_falls_through_failing_providers_in_order(mock_http, http_client):
    """A 503 and a malformed body are skipped; the third provider's answer wins."""
    mock_http.get(_V6[0]).mock(return_value=httpx.Response(503))
    mock_http.get(_V6[1]).mock(return_value=httpx.Response(200, text="hello"))
    mock_http.get(_V6[2]).mock(return_value=httpx.Response(200, text="2001:db8::1\n"))

    ip = await _service(http_client).get_public_ip(AddressFamily.IPV6)

    assert ip == "2001:db8::1"
    assert [str(call.request.url).rstrip("/") for call in mock_http.calls] == list(_V6)


@pytest.mark.asyncio
async def test_first_valid_answer_stops_the_search(mock_http, http_client):
    """Providers after the first valid answer are never contacted."""
    mock_http.get(_V4[0]).mock(return_value=httpx.Response(200, text="  203.0.113.9\n"))
    later = mock_http.get(_V4[1]).mock(return_value=httpx.Response(200, text="198.51.100.1"))

    ip = await _service(http_client).get_public_ip(AddressFamily.IPV4)

    assert ip == "203.0.113.9"
    assert not later.called


@pytest.mark.asyncio
async def test_wrong_family_answer_is_skipped(mock_http, http_client):
    """An IPv4 literal from an IPv6 provider does not count as an answer."""
    mock_http.get(_V6[0]).mock(return_value=httpx.Response(200, text="203.0.113.9"))
    mock_http.get(_V6[1]).mock(return_value=httpx.Response(200, text="2001:db8::2"))

    assert await _service(http_client).get_public_ip(AddressFamily.IPV6) == "2001:db8::2"


@pytest.mark.asyncio
async def test_network_error_is_skipped(mock_http, http_client):
    """Connection failures move on to the next provider."""
    mock_http.get(_V4[0]).mock(side_effect=httpx.ConnectError("refused"))
    mock_http.get(_V4[1]).mock(side_effect=httpx.ReadTimeout("slow"))
    mock_http.get(_V4[2]).mock(return_value=httpx.Response(200, text="203.0.113.9"))

    assert await _service(http_client).get_public_ip(AddressFamily.IPV4) == "203.0.113.9"


@pytest.mark.asyncio
async def test_oversized_body_is_skipped(mock_http, http_client):
    """A body far longer than any IP literal is rejected without parsing."""
    mock_http.get(_V4[0]).mock(return_value=httpx.Response(200, text="1" * 500))
    mock_http.get(_V4[1]).mock(return_value=httpx.Response(200, text="203.0.113.9"))

    assert await _service(http_client).get_public_ip(AddressFamily.IPV4) == "203.0.113.9"


@pytest.mark.asyncio
async def test_all_providers_failing_raises(mock_http, http_client):
    """NoAddressAvailableError (an IpFetchError) is raised after every provider fails."""
    for url in _V4:
        mock_http.get(url).mock(return_value=httpx.Response(500))

    with pytest.raises(NoAddressAvailableError):
        await _service(http_client).get_public_ip(AddressFamily.IPV4)

    assert issubclass(NoAddressAvailableError, IpFetchError)
    assert len(mock_http.calls) == len(_V4)


@pytest.mark.asyncio
async def test_no_providers_raises(http_client):
    """An empty provider list cannot produce an address."""
    service = IpService(http_client=http_client, providers={AddressFamily.IPV4: ()})

    with pytest.raises(NoAddressAvailableError):
        await service.get_public_ip(AddressFamily.IPV4)


@pytest.mark.asyncio
async def test_shuffle_applies_to_a_copy(mock_http, http_client):
    """The configured provider list is never reordered in place."""
    seen = []

    def reverse(services):
        services.reverse()
        seen.append(list(services))

    for url in _V4:
        mock_http.get(url).mock(return_value=httpx.Response(200, text="203.0.113.9"))
    service = IpService(http_client=http_client, providers=_PROVIDERS, shuffle=reverse)

    await service.get_public_ip(AddressFamily.IPV4)

    assert seen == [list(reversed(_V4))]
    assert _PROVIDERS[AddressFamily.IPV4] == _V4
    assert str(mock_http.calls.last.request.url).rstrip("/") == _V4[2]


@pytest.mark.asyncio
async def test_cancellation_is_not_swallowed(mock_http, http_client):
    """Cancellation propagates at once and no further provider is tried."""
    mock_http.get(_V4[0]).mock(side_effect=asyncio.CancelledError())
    later = mock_http.get(_V4[1]).mock(return_value=httpx.Response(200, text="203.0.113.9"))

    with pytest.raises(asyncio.CancelledError):
        await _service(http_client).get_public_ip(AddressFamily.IPV4)

    assert not later.called
