"""
cfdns/services/config_store.py

Responsibility: Holds the active configuration together with the API client
and worker pool built from it, and swaps all three atomically on reload.
Does NOT: read configuration files or run reconciliation cycles.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from cfdns.cloudflare.dns_provider import DNSProvider
from cfdns.config import Configuration
from cfdns.exceptions import ConfigReplaceError, DnsProviderError
from cfdns.services.worker_pool import WorkerPool

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Configuration], DNSProvider]
PoolFactory = Callable[[int, str], WorkerPool]


def _default_pool_factory(workers: int, name: str) -> WorkerPool:
    return WorkerPool(workers, name=name)


@dataclass(eq=False)
class Generation:
    """
    One immutable snapshot of configuration, API client and worker pool.

    Readers lease a generation for the whole of a reconciliation cycle;
    the store closes a superseded generation's pool only after its last
    lease is released.
    """

    number: int
    config: Configuration
    provider: DNSProvider
    pool: WorkerPool
    # Earlier generations still sharing this generation's pool
    _sharers: tuple[Generation, ...] = field(default=(), repr=False)
    _leases: int = field(default=0, repr=False)
    _released: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def __post_init__(self) -> None:
        self._released.set()

    @property
    def leases(self) -> int:
        return self._leases

    async def _drained(self) -> None:
        # Waits until no lease on any generation using this pool remains.
        for generation in (self, *self._sharers):
            await generation._released.wait()

    def _acquire(self) -> None:
        self._leases += 1
        self._released.clear()

    def _release(self) -> None:
        self._leases -= 1
        if self._leases == 0:
            self._released.set()


class ConfigStore:
    """
    Current-generation holder for the configuration and its resources.

    replace() publishes a new Generation with a single reference swap.
    Cycles that already leased the previous generation keep using its
    client and pool until they finish; the old pool is then closed in the
    background. When a replacement leaves the zone, token and worker count
    unchanged the existing client and pool carry over to the new
    generation instead of being rebuilt.

    Collaborators:
        - provider_factory: builds a credentialed DNSProvider from a Configuration
        - pool_factory: builds a WorkerPool of the requested size
    """

    def __init__(
        self,
        provider_factory: ProviderFactory,
        pool_factory: PoolFactory = _default_pool_factory,
    ) -> None:
        self._provider_factory = provider_factory
        self._pool_factory = pool_factory
        self._current: Generation | None = None
        self._write_lock = asyncio.Lock()
        self._retiring: set[asyncio.Task[None]] = set()
        self._retiring_generations: set[Generation] = set()
        self._counter = 0
        self._closed = False

    # ---------------------------------------------------------------------------
    # Read side
    # ---------------------------------------------------------------------------

    def get(self) -> Configuration:
        """
        Returns the active configuration.

        Raises:
            ConfigReplaceError: If no configuration has been activated yet.
        """
        return self.current().config

    def current(self) -> Generation:
        """
        Returns the active generation without leasing it.

        Raises:
            ConfigReplaceError: If no configuration has been activated yet.
        """
        if self._current is None:
            raise ConfigReplaceError("No configuration has been activated.")
        return self._current

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Generation]:
        """
        Leases the active generation for the duration of the block.

        The leased generation's pool is not closed until the block exits,
        even if replace() publishes a newer generation in the meantime.
        """
        generation = self.current()
        generation._acquire()
        try:
            yield generation
        finally:
            generation._release()

    # ---------------------------------------------------------------------------
    # Write side
    # ---------------------------------------------------------------------------

    async def replace(self, config: Configuration | None) -> Generation:
        """
        Activates a new configuration.

        Args:
            config: The validated configuration to activate.

        Returns:
            The newly published Generation.

        Raises:
            ConfigReplaceError: If config is None, the store is closed, or
                                the API client or pool cannot be built. The
                                previous generation stays active.
        """
        if config is None:
            raise ConfigReplaceError("Cannot activate an empty configuration.")

        async with self._write_lock:
            if self._closed:
                raise ConfigReplaceError("Configuration store is closed.")

            previous = self._current
            number = self._counter + 1

            sharers: tuple[Generation, ...] = ()
            if previous is not None and previous.config.connection_key() == config.connection_key():
                provider, pool = previous.provider, previous.pool
                # Only still-leased generations can hold the shared pool open;
                # replaced generations never gain new leases.
                sharers = tuple(
                    g for g in (previous, *previous._sharers) if g.leases or not g._released.is_set()
                )
            else:
                try:
                    provider = self._provider_factory(config)
                except (ValueError, DnsProviderError) as exc:
                    raise ConfigReplaceError(f"Could not build API client: {exc}") from exc
                try:
                    pool = self._pool_factory(config.workers, f"gen{number}")
                except ValueError as exc:
                    raise ConfigReplaceError(f"Could not build worker pool: {exc}") from exc

            generation = Generation(
                number=number,
                config=config,
                provider=provider,
                pool=pool,
                _sharers=sharers,
            )
            self._counter = number
            self._current = generation

        logger.info(
            "Configuration generation %d active: zone=%s domains=%d workers=%d.",
            number,
            config.zone_id,
            len(config.domains),
            config.workers,
        )

        if previous is not None and previous.pool is not generation.pool:
            self._retire(previous)
        return generation

    def abort(self) -> None:
        """Aborts the pools of the active and all retiring generations."""
        if self._current is not None:
            self._current.pool.abort()
        for generation in list(self._retiring_generations):
            generation.pool.abort()

    async def aclose(self) -> None:
        """
        Closes the active generation's pool and waits for every retiring
        generation to be torn down. No replacement is accepted afterwards.
        """
        async with self._write_lock:
            self._closed = True
            current = self._current

        if current is not None:
            await current._drained()
            await current.pool.close()
        if self._retiring:
            await asyncio.gather(*self._retiring)

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    def _retire(self, generation: Generation) -> None:
        self._retiring_generations.add(generation)
        task = asyncio.get_running_loop().create_task(
            self._teardown(generation), name=f"retire-gen{generation.number}"
        )
        self._retiring.add(task)
        task.add_done_callback(self._retiring.discard)

    async def _teardown(self, generation: Generation) -> None:
        try:
            if generation.leases:
                logger.debug(
                    "Generation %d superseded; waiting for %d active cycle(s).",
                    generation.number,
                    generation.leases,
                )
            await generation._drained()
            await generation.pool.close()
            logger.debug("Generation %d retired.", generation.number)
        finally:
            self._retiring_generations.discard(generation)
