"""Immutable lookup index over merged role/user mappings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Collection, Iterable

from iam_identity_mapper.arn import (
    MatchFields,
    ParsedARN,
    canonical_arn,
    match,
    parse_arn,
)
from iam_identity_mapper.mapping.models import MappingSet, RoleMapping, UserMapping
from iam_identity_mapper.utils.masking import scrub_arn

logger = logging.getLogger(__name__)

STATIC_SOURCE = "static"
AUTO_MAPPED_SOURCE = "auto-mapped"


class MappingKind(str, Enum):
    ROLE = "role"
    USER = "user"
    ROOT = "root"
    FEDERATED_USER = "federated-user"


@dataclass(frozen=True)
class ResolvedMapping:
    """A mapping rule ready for expansion, tagged with its kind and origin."""

    kind: MappingKind
    arn: str
    username: str
    groups: tuple[str, ...]
    source: str
    synthesized: bool = False


@dataclass(frozen=True)
class IndexMatch:
    mapping: ResolvedMapping
    fields: MatchFields
    exact: bool


@dataclass(frozen=True)
class _Rule:
    pattern: ParsedARN
    mapping: ResolvedMapping


# (resource type, partition, account, final name segment)
_BucketKey = tuple[str, str, str, str]


def _bucket_key(parsed: ParsedARN) -> _BucketKey:
    return (parsed.resource_type, parsed.partition, parsed.account_id, parsed.name)


class MappingIndex:
    """
    Read-only index of mapping rules.

    Rules are bucketed by resource type, partition, account and final name so
    lookups are a dict hit plus a scan of the (usually single-entry) bucket.
    Within a bucket rules keep declaration order:
    - an exact full-resource match (path included) wins
    - otherwise the first declared path-ignoring match wins
    Auto-mapped accounts are consulted only when no rule matches.
    """

    def __init__(
        self,
        rules: Iterable[_Rule],
        auto_mapped_accounts: Iterable[str],
        partition_id: str = "aws",
    ) -> None:
        buckets: dict[_BucketKey, list[_Rule]] = {}
        count = 0
        for rule in rules:
            buckets.setdefault(_bucket_key(rule.pattern), []).append(rule)
            count += 1
        self._buckets = MappingProxyType({k: tuple(v) for k, v in buckets.items()})
        self._auto_mapped = frozenset(auto_mapped_accounts)
        self._partition_id = partition_id
        self._rule_count = count

    @classmethod
    def build(
        cls,
        entries: Iterable[tuple[str, RoleMapping | UserMapping]],
        auto_mapped_accounts: Iterable[str] = (),
        partition_id: str = "aws",
        scrubbed_accounts: Collection[str] = (),
    ) -> "MappingIndex":
        """Build an index from ``(source, mapping)`` pairs in precedence order."""
        rules: list[_Rule] = []
        for source, mapping in entries:
            pattern = parse_arn(mapping.arn)
            if pattern is None:
                # Models validate ARNs, so this only happens for hand-built objects.
                raise ValueError(f"invalid mapping ARN: {mapping.arn!r}")
            if pattern.partition != partition_id:
                logger.info(
                    "Mapping %s overrides partition %s with %s",
                    scrub_arn(mapping.arn, scrubbed_accounts),
                    partition_id,
                    pattern.partition,
                )
            kind = MappingKind.ROLE if isinstance(mapping, RoleMapping) else MappingKind.USER
            rules.append(
                _Rule(
                    pattern=pattern,
                    mapping=ResolvedMapping(
                        kind=kind,
                        arn=mapping.arn,
                        username=mapping.username,
                        groups=tuple(mapping.groups),
                        source=source,
                    ),
                )
            )
        return cls(rules, auto_mapped_accounts, partition_id)

    @classmethod
    def from_mapping_set(
        cls,
        mapping_set: MappingSet,
        partition_id: str = "aws",
        source: str = STATIC_SOURCE,
        scrubbed_accounts: Collection[str] = (),
    ) -> "MappingIndex":
        entries: list[tuple[str, RoleMapping | UserMapping]] = [
            (source, m) for m in mapping_set.role_mappings
        ]
        entries.extend((source, m) for m in mapping_set.user_mappings)
        return cls.build(
            entries, mapping_set.auto_mapped_accounts, partition_id, scrubbed_accounts
        )

    def lookup(self, candidate: str | ParsedARN) -> IndexMatch | None:
        """Find the rule for a caller ARN, or ``None`` when the caller is unmapped."""
        parsed = parse_arn(candidate) if isinstance(candidate, str) else candidate
        if parsed is None:
            return None

        fallback: IndexMatch | None = None
        for rule in self._buckets.get(_bucket_key(parsed), ()):
            result = match(rule.pattern, parsed)
            if not result.matched or result.fields is None:
                continue
            if result.exact:
                return IndexMatch(rule.mapping, result.fields, exact=True)
            if fallback is None:
                fallback = IndexMatch(rule.mapping, result.fields, exact=False)
        if fallback is not None:
            return fallback

        if parsed.account_id in self._auto_mapped and parsed.partition == self._partition_id:
            return self._auto_map(parsed)
        return None

    @staticmethod
    def _auto_map(parsed: ParsedARN) -> IndexMatch:
        username = canonical_arn(parsed)
        kind = MappingKind(parsed.resource_type)
        fields = MatchFields(
            partition=parsed.partition,
            account_id=parsed.account_id,
            resource_type=parsed.resource_type,
            resource_id=parsed.name,
            session_name=parsed.session_name,
        )
        mapping = ResolvedMapping(
            kind=kind,
            arn=username,
            username=username,
            groups=(),
            source=AUTO_MAPPED_SOURCE,
            synthesized=True,
        )
        return IndexMatch(mapping, fields, exact=True)

    @property
    def partition_id(self) -> str:
        return self._partition_id

    @property
    def auto_mapped_accounts(self) -> frozenset[str]:
        return self._auto_mapped

    def __len__(self) -> int:
        return self._rule_count
