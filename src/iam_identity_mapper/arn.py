"""ARN parsing and principal matching.

Only IAM/STS principal ARNs are understood:

    arn:<partition>:iam::<account>:role/<path/><name>
    arn:<partition>:iam::<account>:user/<path/><name>
    arn:<partition>:iam::<account>:root
    arn:<partition>:sts::<account>:assumed-role/<name>/<session>
    arn:<partition>:sts::<account>:federated-user/<name>

Parsing never raises. Anything else yields ``None`` so callers can treat a
malformed ARN as a plain "no match".
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache

import botocore.session

ROLE = "role"
USER = "user"
ROOT = "root"
FEDERATED_USER = "federated-user"

_ACCOUNT_ID_RE = re.compile(r"[0-9]{12}")


@dataclass(frozen=True)
class ParsedARN:
    """Structured view of a principal ARN."""

    partition: str
    service: str
    account_id: str
    resource_type: str
    name: str
    path: str = ""
    session_name: str | None = None

    @property
    def resource(self) -> str:
        """Resource portion including any path (``role/team/Foo``)."""
        if self.resource_type == ROOT:
            return ROOT
        return f"{self.resource_type}/{self.path}{self.name}"

    @property
    def is_assumed_role(self) -> bool:
        return self.service == "sts" and self.resource_type == ROLE


@dataclass(frozen=True)
class MatchFields:
    """Values extracted from a matched caller ARN for template expansion."""

    partition: str
    account_id: str
    resource_type: str
    resource_id: str
    session_name: str | None = None


@dataclass(frozen=True)
class MatchResult:
    matched: bool
    fields: MatchFields | None = None
    exact: bool = False


_NO_MATCH = MatchResult(matched=False)


def is_account_id(value: str) -> bool:
    return bool(_ACCOUNT_ID_RE.fullmatch(value or ""))


@lru_cache(maxsize=1)
def known_partitions() -> frozenset[str]:
    """Partition IDs known to botocore's bundled endpoint data."""
    session = botocore.session.get_session()
    return frozenset(session.get_available_partitions())


def _split_path(segments: list[str]) -> tuple[str, str] | None:
    if not segments or any(not s for s in segments):
        return None
    path = "".join(f"{s}/" for s in segments[:-1])
    return path, segments[-1]


def parse_arn(value: str | None) -> ParsedARN | None:
    """Parse a principal ARN, returning ``None`` when it is malformed."""
    if not value or not isinstance(value, str):
        return None

    parts = value.strip().split(":", 5)
    if len(parts) != 6 or parts[0] != "arn":
        return None

    _, partition, service, region, account_id, resource = parts
    if not partition or not service or not resource:
        return None
    if region or not is_account_id(account_id):
        return None

    segments = resource.split("/")
    kind, rest = segments[0], segments[1:]

    if service == "iam":
        if kind == ROOT and not rest:
            return ParsedARN(partition, service, account_id, ROOT, ROOT)
        if kind not in (ROLE, USER):
            return None
        split = _split_path(rest)
        if split is None:
            return None
        path, name = split
        return ParsedARN(partition, service, account_id, kind, name, path=path)

    if service == "sts":
        if kind == "assumed-role":
            if len(rest) != 2 or not all(rest):
                return None
            return ParsedARN(
                partition, service, account_id, ROLE, rest[0], session_name=rest[1]
            )
        if kind == FEDERATED_USER:
            if len(rest) != 1 or not rest[0]:
                return None
            return ParsedARN(partition, service, account_id, FEDERATED_USER, rest[0])

    return None


def canonical_arn(parsed: ParsedARN) -> str:
    """Render the canonical principal ARN.

    Assumed-role session ARNs collapse to the IAM role they were assumed
    from; everything else is rendered unchanged.
    """
    if parsed.is_assumed_role:
        return f"arn:{parsed.partition}:iam::{parsed.account_id}:role/{parsed.name}"
    return f"arn:{parsed.partition}:{parsed.service}::{parsed.account_id}:{parsed.resource}"


def match(pattern: str | ParsedARN, candidate: str | ParsedARN) -> MatchResult:
    """Match a configured mapping ARN against a caller ARN.

    Partition, account, resource type and final name must be equal. The
    path between ``role/``/``user/`` and the name is ignored; ``exact`` on
    the result reports whether it was equal too. Session names are carried
    through from the candidate but never compared.
    """
    pat = parse_arn(pattern) if isinstance(pattern, str) else pattern
    cand = parse_arn(candidate) if isinstance(candidate, str) else candidate
    if pat is None or cand is None:
        return _NO_MATCH

    # Mapping patterns name IAM roles/users, never sessions.
    if pat.service != "iam" or pat.resource_type not in (ROLE, USER):
        return _NO_MATCH

    if (
        pat.partition != cand.partition
        or pat.account_id != cand.account_id
        or pat.resource_type != cand.resource_type
        or pat.name != cand.name
    ):
        return _NO_MATCH

    fields = MatchFields(
        partition=cand.partition,
        account_id=cand.account_id,
        resource_type=cand.resource_type,
        resource_id=cand.name,
        session_name=cand.session_name,
    )
    return MatchResult(matched=True, fields=fields, exact=pat.path == cand.path)
