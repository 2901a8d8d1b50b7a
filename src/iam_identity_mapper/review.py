"""Render resolution results as a Kubernetes TokenReview status."""

from __future__ import annotations

from typing import Any

from iam_identity_mapper.resolver import ResolveResult

UID_PREFIX = "aws-iam-authenticator"


def token_review_status(result: ResolveResult) -> dict[str, Any]:
    """Build the ``status`` block of an ``authentication.k8s.io/v1`` TokenReview."""
    if not result.allowed or result.identity is None:
        return {"authenticated": False, "error": result.reason or result.outcome.value}

    extra: dict[str, list[str]] = {"accountId": [result.account_id]}
    if result.canonical_arn:
        extra["arn"] = [result.canonical_arn]
    if result.session_name:
        extra["sessionName"] = [result.session_name]

    return {
        "authenticated": True,
        "user": {
            "username": result.identity.username,
            "uid": f"{UID_PREFIX}:{result.account_id}:{result.canonical_arn}",
            "groups": list(result.identity.groups),
            "extra": extra,
        },
    }
