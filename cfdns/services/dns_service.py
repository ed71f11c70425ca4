"""
cfdns/services/dns_service.py

Responsibility: Orchestrates the DDNS reconciliation cycle — validates the
zone, resolves the public addresses, then creates or updates each managed
record whose content or proxy setting differs.
Does NOT: make HTTP calls directly, read configuration files, or decide
when a cycle runs.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from cfdns.cloudflare.dns_provider import DnsRecord
from cfdns.config import Domain
from cfdns.exceptions import (
    DnsProviderError,
    IpFetchError,
    PoolClosedError,
    TaskCancelledError,
)
from cfdns.services.config_store import ConfigStore, Generation
from cfdns.services.ip_service import AddressFamily, IpService
from cfdns.services.worker_pool import TaskFuture

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RecordOutcome(str, Enum):
    """What a reconcile task did to one remote record."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"


@dataclass
class PublicAddresses:
    """
    The most recently resolved public addresses.

    Owned by DnsService and overwritten at the start of every cycle; an
    empty string means the family is disabled or could not be resolved.
    """

    ipv4: str = ""
    ipv6: str = ""

    def get(self, family: AddressFamily) -> str:
        return self.ipv4 if family is AddressFamily.IPV4 else self.ipv6

    def set(self, family: AddressFamily, address: str) -> None:
        if family is AddressFamily.IPV4:
            self.ipv4 = address
        else:
            self.ipv6 = address


@dataclass
class CycleReport:
    """Per-cycle tally of record outcomes and task failures."""

    generation: int = 0
    zone_valid: bool = True
    addresses: PublicAddresses = field(default_factory=PublicAddresses)
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    cancelled: int = 0

    def add(self, outcome: RecordOutcome) -> None:
        if outcome is RecordOutcome.CREATED:
            self.created += 1
        elif outcome is RecordOutcome.UPDATED:
            self.updated += 1
        elif outcome is RecordOutcome.FAILED:
            self.failed += 1
        else:
            self.unchanged += 1

    def summary(self) -> str:
        parts = []
        if self.unchanged:
            parts.append(f"{self.unchanged} in sync")
        if self.created:
            parts.append(f"{self.created} created")
        if self.updated:
            parts.append(f"{self.updated} updated")
        if self.failed:
            parts.append(f"{self.failed} failed")
        if self.cancelled:
            parts.append(f"{self.cancelled} cancelled")
        return ", ".join(parts) if parts else "nothing to do"


def _same_address(a: str, b: str) -> bool:
    try:
        return ipaddress.ip_address(a) == ipaddress.ip_address(b)
    except ValueError:
        return a == b


def record_matches(record: DnsRecord, address: str, proxied: bool | None) -> bool:
    """
    Tells whether a remote record already carries the desired state.

    The proxy flag is only compared when both the remote record and the
    domain specify it.

    Args:
        record: The remote record.
        address: The freshly resolved address for the record's family.
        proxied: The domain's requested proxy setting.

    Returns:
        True if no update is needed.
    """
    if not _same_address(record.content, address):
        return False
    if record.proxied is None or proxied is None:
        return True
    return record.proxied == proxied


class DnsService:
    """
    Runs reconciliation cycles against the active configuration generation.

    Every provider call and address lookup runs as a task on the leased
    generation's WorkerPool; each task succeeds or fails on its own and a
    failed task never stops its siblings.

    Collaborators:
        - ConfigStore: supplies the configuration, DNSProvider and WorkerPool
        - IpService: resolves the host's public IPv4/IPv6 address
    """

    def __init__(self, store: ConfigStore, ip_service: IpService) -> None:
        """
        Initialises the engine.

        Args:
            store: Holder of the active configuration generation.
            ip_service: Resolver for the host's public addresses.
        """
        self._store = store
        self._ip_service = ip_service
        self._addresses = PublicAddresses()

    @property
    def addresses(self) -> PublicAddresses:
        """Addresses resolved by the most recent cycle."""
        return PublicAddresses(self._addresses.ipv4, self._addresses.ipv6)

    # ---------------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------------

    async def validate_zone(self) -> bool:
        """
        Checks that the configured zone is visible to the configured token.

        Returns:
            True if the zone is listed for the credential; False if it is
            not, or if the credential itself is rejected.

        Raises:
            DnsProviderError: For provider failures other than a rejected credential.
            asyncio.TimeoutError: If listing zones exceeds the configured timeout.
            TaskCancelledError: If the pool was aborted while checking.
        """
        async with self._store.acquire() as generation:
            return await self._zone_is_valid(generation)

    async def process(self) -> CycleReport:
        """
        Runs one full reconciliation cycle and waits for all of its tasks.

        Returns:
            A CycleReport; zone_valid is False when the cycle was skipped.

        Raises:
            PoolClosedError: If the pool stopped admitting work mid-cycle.
                             Tasks submitted before that have settled.
        """
        async with self._store.acquire() as generation:
            report = CycleReport(generation=generation.number)
            config = generation.config

            try:
                report.zone_valid = await self._zone_is_valid(generation)
            except (DnsProviderError, asyncio.TimeoutError, TaskCancelledError) as exc:
                logger.warning(
                    "Zone validation failed for %s — skipping cycle: %s",
                    config.zone_id,
                    exc or type(exc).__name__,
                )
                report.zone_valid = False
                return report
            if not report.zone_valid:
                logger.warning("Zone %s is not accessible with the configured token — skipping cycle.", config.zone_id)
                return report

            addresses = await self._resolve_addresses(generation)
            report.addresses = addresses

            tasks: list[tuple[str, str, TaskFuture[list[RecordOutcome]]]] = []
            try:
                for domain in config.domains:
                    for family in AddressFamily:
                        address = addresses.get(family)
                        if not address:
                            continue
                        future = await generation.pool.submit(
                            self._check_and_update,
                            generation,
                            domain,
                            family.record_type,
                            address,
                            name=f"{domain.hostname}/{family.record_type}",
                        )
                        tasks.append((domain.hostname, family.record_type, future))
            except PoolClosedError:
                logger.warning("Worker pool closed mid-cycle; %d task(s) already submitted.", len(tasks))
                await self._collect(tasks, report)
                raise

            await self._collect(tasks, report)

        level = logging.WARNING if report.failed or report.cancelled else logging.INFO
        logger.log(level, "Cloudflare pass: %s.", report.summary())
        return report

    async def wait_idle(self) -> None:
        """Waits until every task submitted to the active pool so far has settled."""
        await self._store.current().pool.wait_idle()

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    async def _zone_is_valid(self, generation: Generation) -> bool:
        future = await generation.pool.submit(
            self._bounded, generation, generation.provider.list_zones, name="list-zones"
        )
        try:
            zones = await future.result()
        except DnsProviderError as exc:
            if exc.is_auth_error:
                logger.error("Cloudflare rejected the API token: %s", exc)
                return False
            raise
        return generation.config.zone_id in zones

    async def _resolve_addresses(self, generation: Generation) -> PublicAddresses:
        config = generation.config
        enabled = {AddressFamily.IPV4: config.ipv4, AddressFamily.IPV6: config.ipv6}

        futures: dict[AddressFamily, TaskFuture[str]] = {}
        for family, on in enabled.items():
            if on:
                futures[family] = await generation.pool.submit(
                    self._ip_service.get_public_ip, family, name=f"resolve-{family.value}"
                )
            else:
                self._addresses.set(family, "")

        for family, future in futures.items():
            try:
                address = await future.result()
            except (IpFetchError, TaskCancelledError) as exc:
                # NOTE: never reuse a stale address after a failed lookup.
                self._addresses.set(family, "")
                logger.error("Failed to get public %s address: %s", family.value, exc)
                continue
            if address != self._addresses.get(family):
                logger.info("Public %s address is now %s.", family.value, address)
            self._addresses.set(family, address)

        return self.addresses

    async def _bounded(
        self,
        generation: Generation,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
    ) -> T:
        # Every provider call is individually bounded by the configured timeout.
        return await asyncio.wait_for(fn(*args), timeout=generation.config.timeout)

    async def _check_and_update(
        self,
        generation: Generation,
        domain: Domain,
        record_type: str,
        address: str,
    ) -> list[RecordOutcome]:
        """
        Brings every record of one hostname/type in line with the address.

        Creates the record when none exists; otherwise evaluates each
        existing record independently and updates those that differ. A
        failed update is recorded as FAILED and the remaining duplicates
        are still evaluated.

        Args:
            generation: The leased generation supplying provider and config.
            domain: The managed domain.
            record_type: "A" or "AAAA".
            address: The freshly resolved address for the record type.

        Returns:
            One outcome per record touched.

        Raises:
            DnsProviderError: If listing or creating the record fails.
            asyncio.TimeoutError: If listing or creating exceeds the configured timeout.
        """
        provider = generation.provider
        zone_id = generation.config.zone_id

        records = await self._bounded(
            generation, provider.list_records, zone_id, domain.hostname, record_type
        )

        if not records:
            created = await self._bounded(
                generation,
                provider.create_record,
                zone_id,
                domain.hostname,
                record_type,
                address,
                domain.proxied,
            )
            logger.info(
                "Created DNS record %s %s → %s (id=%s).",
                created.type or record_type,
                created.name or domain.hostname,
                created.content or address,
                created.id,
            )
            return [RecordOutcome.CREATED]

        outcomes: list[RecordOutcome] = []
        for record in records:
            if record_matches(record, address, domain.proxied):
                logger.debug(
                    "%s %s already up to date (%s, id=%s).",
                    record_type,
                    record.name,
                    record.content,
                    record.id,
                )
                outcomes.append(RecordOutcome.UNCHANGED)
                continue

            try:
                updated = await self._bounded(
                    generation,
                    provider.update_record,
                    zone_id,
                    record.id,
                    address,
                    domain.proxied,
                )
            except (DnsProviderError, asyncio.TimeoutError) as exc:
                logger.error(
                    "Failed to update %s %s (id=%s, was %s): %s",
                    record_type,
                    record.name,
                    record.id,
                    record.content,
                    exc or type(exc).__name__,
                )
                outcomes.append(RecordOutcome.FAILED)
                continue
            logger.info(
                "Updated DNS record %s %s: %s → %s (id=%s).",
                record_type,
                record.name,
                record.content,
                updated.content or address,
                record.id,
            )
            outcomes.append(RecordOutcome.UPDATED)

        return outcomes

    async def _collect(
        self,
        tasks: list[tuple[str, str, TaskFuture[list[RecordOutcome]]]],
        report: CycleReport,
    ) -> None:
        for hostname, record_type, future in tasks:
            try:
                outcomes = await future.result()
            except TaskCancelledError:
                report.cancelled += 1
                logger.warning("Reconcile task for %s %s was cancelled.", record_type, hostname)
                continue
            except asyncio.TimeoutError:
                report.failed += 1
                logger.error("Timed out reconciling %s %s.", record_type, hostname)
                continue
            except DnsProviderError as exc:
                report.failed += 1
                logger.error("Failed to reconcile %s %s: %s", record_type, hostname, exc)
                continue
            except Exception:
                report.failed += 1
                logger.exception("Unexpected error reconciling %s %s.", record_type, hostname)
                continue
            for outcome in outcomes:
                report.add(outcome)
