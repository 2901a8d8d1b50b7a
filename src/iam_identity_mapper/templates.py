"""Username/group template expansion."""

from __future__ import annotations

import re

from iam_identity_mapper.arn import MatchFields
from iam_identity_mapper.errors import UnresolvedTemplateError

ACCOUNT_ID = "AccountID"
SESSION_NAME = "SessionName"
KNOWN_TOKENS = frozenset({ACCOUNT_ID, SESSION_NAME})

_TOKEN_RE = re.compile(r"\{\{([^{}]*)\}\}")


def find_tokens(pattern: str) -> list[str]:
    """Return every ``{{...}}`` token name in *pattern*, in order."""
    return _TOKEN_RE.findall(pattern)


def validate_template(pattern: str, *, allow_session: bool = True) -> None:
    """Raise ``ValueError`` if *pattern* uses a token that can never resolve."""
    for token in find_tokens(pattern):
        if token not in KNOWN_TOKENS:
            raise ValueError(f"unknown template parameter {{{{{token}}}}} in {pattern!r}")
        if token == SESSION_NAME and not allow_session:
            raise ValueError(
                f"{{{{{SESSION_NAME}}}}} is not available for IAM users: {pattern!r}"
            )


def expand(pattern: str, fields: MatchFields) -> str:
    """Substitute template parameters in a single pass.

    Substituted values are never scanned again, so a session name that
    happens to contain ``{{...}}`` is rendered literally.
    """

    def replace(m: re.Match[str]) -> str:
        token = m.group(1)
        if token == ACCOUNT_ID:
            return fields.account_id
        if token == SESSION_NAME:
            if not fields.session_name:
                raise UnresolvedTemplateError(
                    f"{{{{{SESSION_NAME}}}}} requested but no session name is available",
                    token,
                )
            return fields.session_name
        raise UnresolvedTemplateError(f"unknown template parameter {{{{{token}}}}}", token)

    return _TOKEN_RE.sub(replace, pattern)


def expand_mapping(
    username: str,
    groups: tuple[str, ...] | list[str],
    fields: MatchFields,
) -> tuple[str, tuple[str, ...]]:
    """Expand a username and all of its groups; any failure fails the whole mapping."""
    return expand(username, fields), tuple(expand(group, fields) for group in groups)
