"""Resolve a verified IAM caller into a Kubernetes identity."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Iterable

from iam_identity_mapper.arn import ROLE, canonical_arn, parse_arn
from iam_identity_mapper.errors import UnresolvedTemplateError
from iam_identity_mapper.mapping.index import MappingIndex
from iam_identity_mapper.templates import expand_mapping
from iam_identity_mapper.utils.masking import scrub_arn, scrub_text

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class Identity:
    """Kubernetes username and groups."""

    username: str
    groups: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResolveResult:
    outcome: Outcome
    identity: Identity | None = None
    reason: str = ""
    account_id: str = ""
    session_name: str | None = None
    canonical_arn: str | None = None
    mapping_arn: str | None = None
    mapping_source: str | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOWED


IndexProvider = Callable[[], MappingIndex | None]


class IdentityResolver:
    """
    Public entry point for identity resolution.

    Fail-closed: anything other than a fully expanded mapping is DENIED or
    MALFORMED, never ALLOWED. The index reference is taken once per call so
    a concurrent reload cannot change the rules mid-resolution.
    """

    def __init__(
        self,
        index_provider: IndexProvider,
        scrubbed_accounts: Iterable[str] = (),
    ) -> None:
        self._index_provider = index_provider
        self._scrubbed = frozenset(scrubbed_accounts)

    @classmethod
    def from_index(
        cls, index: MappingIndex, scrubbed_accounts: Iterable[str] = ()
    ) -> "IdentityResolver":
        return cls(lambda: index, scrubbed_accounts)

    def resolve(
        self,
        arn: str,
        account_id: str = "",
        session_name: str = "",
    ) -> ResolveResult:
        """Map a verified caller ARN to a Kubernetes identity."""
        parsed = parse_arn(arn)
        log_arn = scrub_arn(arn, self._scrubbed)
        if parsed is None:
            logger.warning("Rejecting malformed principal ARN %s", log_arn)
            return ResolveResult(Outcome.MALFORMED, reason="malformed principal ARN")

        if account_id and account_id != parsed.account_id:
            logger.warning("Caller account does not own principal %s", log_arn)
            return ResolveResult(
                Outcome.MALFORMED,
                reason="account ID does not match principal ARN",
                account_id=parsed.account_id,
            )

        canonical = canonical_arn(parsed)
        session = (session_name or parsed.session_name) if parsed.resource_type == ROLE else None
        base = ResolveResult(
            Outcome.DENIED,
            account_id=parsed.account_id,
            session_name=session,
            canonical_arn=canonical,
        )

        index = self._index_provider()
        if index is None:
            logger.error("No mapping index available; denying %s", log_arn)
            return replace(base, reason="no mapping index available")

        found = index.lookup(parsed)
        if found is None:
            logger.info("No mapping for %s", log_arn)
            return replace(base, reason="no mapping for principal")

        mapping = found.mapping
        base = replace(base, mapping_arn=mapping.arn, mapping_source=mapping.source)
        if mapping.synthesized:
            identity = Identity(username=mapping.username, groups=mapping.groups)
        else:
            fields = replace(found.fields, session_name=session)
            try:
                username, groups = expand_mapping(mapping.username, mapping.groups, fields)
            except UnresolvedTemplateError as exc:
                logger.error(
                    "Mapping %s from backend %s cannot be expanded for %s: %s",
                    scrub_arn(mapping.arn, self._scrubbed),
                    mapping.source,
                    log_arn,
                    exc,
                )
                return replace(base, outcome=Outcome.MALFORMED, reason=str(exc))
            identity = Identity(username=username, groups=groups)

        logger.info(
            "Mapped %s to username=%s groups=%s via %s",
            log_arn,
            scrub_text(identity.username, self._scrubbed),
            [scrub_text(group, self._scrubbed) for group in identity.groups],
            mapping.source,
        )
        return replace(base, outcome=Outcome.ALLOWED, identity=identity)
