"""Backend merge coordinator.

Fetches every configured backend, merges their mapping sets in precedence
order and publishes a fresh ``MappingIndex`` with a single reference swap.
Readers call ``current_index()`` once per resolution and keep using that
snapshot, so they never observe a half-merged state.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Sequence

from iam_identity_mapper.errors import BackendUnavailableError, ConfigurationError
from iam_identity_mapper.mapping.index import MappingIndex
from iam_identity_mapper.mapping.models import (
    MappingSet,
    RoleMapping,
    UserMapping,
    validate_backend_order,
)
from iam_identity_mapper.mapping.sources import MappingSource
from iam_identity_mapper.utils.masking import scrub_arn

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MappingConflict:
    """The same ARN defined by two backends; the earlier backend's rule is kept."""

    arn: str
    kept_from: str
    dropped_from: str


@dataclass(frozen=True)
class MergeResult:
    entries: tuple[tuple[str, RoleMapping | UserMapping], ...]
    auto_mapped_accounts: tuple[str, ...]
    conflicts: tuple[MappingConflict, ...]


@dataclass(frozen=True)
class BackendHealth:
    healthy: bool
    error: str | None = None
    role_count: int = 0
    user_count: int = 0
    account_count: int = 0


@dataclass(frozen=True)
class IndexSnapshot:
    index: MappingIndex
    generation: int
    health: Mapping[str, BackendHealth]


@dataclass(frozen=True)
class ReloadReport:
    """Outcome of one reload attempt."""

    generation: int
    published: bool
    stale: bool
    health: Mapping[str, BackendHealth]
    conflicts: tuple[MappingConflict, ...] = field(default=())

    @property
    def failed_backends(self) -> list[str]:
        return [name for name, h in self.health.items() if not h.healthy]


def merge_mapping_sets(ordered: Iterable[tuple[str, MappingSet]]) -> MergeResult:
    """Union mapping sets; for a repeated ARN the earliest backend wins."""
    entries: list[tuple[str, RoleMapping | UserMapping]] = []
    owners: dict[tuple[str, str], str] = {}
    conflicts: list[MappingConflict] = []
    accounts: list[str] = []

    for source, mapping_set in ordered:
        mappings: list[RoleMapping | UserMapping] = [
            *mapping_set.role_mappings,
            *mapping_set.user_mappings,
        ]
        for mapping in mappings:
            key = (type(mapping).__name__, mapping.arn)
            owner = owners.get(key)
            if owner is not None:
                conflicts.append(
                    MappingConflict(arn=mapping.arn, kept_from=owner, dropped_from=source)
                )
                continue
            owners[key] = source
            entries.append((source, mapping))
        for account in mapping_set.auto_mapped_accounts:
            if account not in accounts:
                accounts.append(account)

    return MergeResult(
        entries=tuple(entries),
        auto_mapped_accounts=tuple(accounts),
        conflicts=tuple(conflicts),
    )


class BackendMergeCoordinator:
    """
    Builds and publishes mapping indexes from an ordered list of backends.

    Degrade policy:
    - a failed backend is skipped as long as one backend succeeds
    - if every backend fails the previous index keeps serving (stale)
    - if every backend fails before any index was published, reload raises
    """

    def __init__(
        self,
        backend_order: Sequence[str],
        sources: Mapping[str, MappingSource],
        *,
        partition_id: str = "aws",
        scrubbed_accounts: Iterable[str] = (),
    ) -> None:
        try:
            order = validate_backend_order(list(backend_order))
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        missing = [name for name in order if name not in sources]
        if missing:
            raise ConfigurationError(f"No mapping source configured for backend(s): {missing}")

        self._order = tuple(order)
        self._sources = dict(sources)
        self._partition_id = partition_id
        self._scrubbed = frozenset(scrubbed_accounts)
        self._snapshot: IndexSnapshot | None = None
        self._publish_lock = threading.Lock()
        self._ticket = 0
        self._published_ticket = 0

    @property
    def backend_order(self) -> tuple[str, ...]:
        return self._order

    def current_index(self) -> MappingIndex | None:
        """Return the published index. Lock-free; a single attribute read."""
        snapshot = self._snapshot
        return snapshot.index if snapshot is not None else None

    def snapshot(self) -> IndexSnapshot | None:
        return self._snapshot

    async def reload(self, timeout: float | None = None) -> ReloadReport:
        """Fetch all backends, merge, and publish a new index.

        ``timeout`` bounds each backend fetch; a backend that misses it is
        treated as unavailable.
        """
        with self._publish_lock:
            self._ticket += 1
            ticket = self._ticket

        results = await asyncio.gather(
            *(self._fetch(name, timeout) for name in self._order)
        )

        health: dict[str, BackendHealth] = {}
        healthy_sets: list[tuple[str, MappingSet]] = []
        for name, mapping_set, error in results:
            if mapping_set is None:
                health[name] = BackendHealth(healthy=False, error=error)
                continue
            roles, users, accounts = mapping_set.counts()
            health[name] = BackendHealth(
                healthy=True, role_count=roles, user_count=users, account_count=accounts
            )
            healthy_sets.append((name, mapping_set))
        frozen_health = MappingProxyType(health)

        if not healthy_sets:
            return self._handle_total_failure(frozen_health)

        merged = merge_mapping_sets(healthy_sets)
        for conflict in merged.conflicts:
            logger.warning(
                "Mapping for %s from backend %s ignored; already defined by %s",
                scrub_arn(conflict.arn, self._scrubbed),
                conflict.dropped_from,
                conflict.kept_from,
            )
        index = MappingIndex.build(
            merged.entries,
            merged.auto_mapped_accounts,
            self._partition_id,
            self._scrubbed,
        )

        with self._publish_lock:
            if ticket < self._published_ticket:
                # A reload that started later has already published.
                current = self._snapshot
                logger.info("Discarding superseded mapping reload #%d", ticket)
                return ReloadReport(
                    generation=current.generation if current else 0,
                    published=False,
                    stale=False,
                    health=frozen_health,
                    conflicts=merged.conflicts,
                )
            generation = (self._snapshot.generation + 1) if self._snapshot else 1
            self._snapshot = IndexSnapshot(index=index, generation=generation, health=frozen_health)
            self._published_ticket = ticket

        logger.info(
            "Published mapping index generation %d with %d rules and %d auto-mapped accounts "
            "(%d/%d backends healthy)",
            generation,
            len(index),
            len(merged.auto_mapped_accounts),
            len(healthy_sets),
            len(self._order),
        )
        return ReloadReport(
            generation=generation,
            published=True,
            stale=False,
            health=frozen_health,
            conflicts=merged.conflicts,
        )

    def reload_sync(self, timeout: float | None = None) -> ReloadReport:
        """Blocking wrapper around ``reload`` for callers without an event loop."""
        return asyncio.run(self.reload(timeout))

    async def _fetch(
        self, name: str, timeout: float | None
    ) -> tuple[str, MappingSet | None, str | None]:
        source = self._sources[name]
        try:
            mapping_set = await asyncio.wait_for(asyncio.to_thread(source.fetch), timeout)
        except asyncio.TimeoutError:
            logger.warning("Mapping backend %s timed out after %ss", name, timeout)
            return name, None, f"timed out after {timeout}s"
        except ConfigurationError as exc:
            logger.error("Mapping backend %s has invalid configuration: %s", name, exc)
            return name, None, str(exc)
        except Exception as exc:
            # Any backend failure degrades to "unavailable" for this backend only.
            logger.warning("Mapping backend %s unavailable: %s", name, exc, exc_info=True)
            return name, None, str(exc)

        if not isinstance(mapping_set, MappingSet):
            logger.error("Mapping backend %s returned %r", name, type(mapping_set))
            return name, None, f"expected MappingSet, got {type(mapping_set).__name__}"
        return name, mapping_set, None

    def _handle_total_failure(self, health: Mapping[str, BackendHealth]) -> ReloadReport:
        errors = "; ".join(f"{name}: {h.error}" for name, h in health.items())
        current = self._snapshot
        if current is None:
            logger.critical("No mapping backend available and no index was ever built: %s", errors)
            raise BackendUnavailableError(
                f"All mapping backends failed on first load: {errors}",
                ",".join(self._order),
            )
        logger.critical(
            "All mapping backends failed; continuing with stale index generation %d: %s",
            current.generation,
            errors,
        )
        return ReloadReport(
            generation=current.generation,
            published=False,
            stale=True,
            health=health,
        )
