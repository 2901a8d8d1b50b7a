"""ARN scrubbing for log and audit output.

``scrub_arn`` redacts principal ARNs that belong to scrubbed accounts,
keeping only the resource type. ``scrub_text`` does the same for every ARN
embedded in a free-form string, and ``ScrubbingFilter`` applies it to log
records. These are used at log emission sites only; resolved identities
are never scrubbed.
"""

from __future__ import annotations

import logging
import re
from typing import Collection, Iterable

from iam_identity_mapper.arn import parse_arn

MASK = "***"
FULLY_REDACTED = f"arn:{MASK}:{MASK}"

# arn:<partition>:<service>:<region>:<12-digit account>:<resource>
_ARN_IN_TEXT_RE = re.compile(r"arn:[\w-]+:[\w-]+:[\w-]*:[0-9]{12}:[^\s,;'\"()\[\]{}]+")


def scrub_arn(arn: str, scrubbed_accounts: Collection[str]) -> str:
    """Redact *arn* when its account is scrubbed.

    Idempotent: a redacted value no longer parses as an ARN and carries no
    account ID, so it is returned unchanged.
    """
    if not scrubbed_accounts or not arn:
        return arn
    parsed = parse_arn(arn)
    if parsed is not None:
        if parsed.account_id in scrubbed_accounts:
            return f"arn:{MASK}:{parsed.resource_type}/{MASK}"
        return arn
    # Unparseable input still must not leak a scrubbed account.
    if any(account in arn for account in scrubbed_accounts):
        return FULLY_REDACTED
    return arn


def scrub_text(text: str, scrubbed_accounts: Collection[str]) -> str:
    """Redact every scrubbed-account ARN embedded in *text*."""
    if not scrubbed_accounts or "arn:" not in text:
        return text
    return _ARN_IN_TEXT_RE.sub(lambda m: scrub_arn(m.group(0), scrubbed_accounts), text)


class ScrubbingFilter(logging.Filter):
    """Logging filter that redacts scrubbed-account ARNs in rendered messages."""

    def __init__(self, scrubbed_accounts: Iterable[str]) -> None:
        super().__init__()
        self.scrubbed_accounts = frozenset(scrubbed_accounts)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.scrubbed_accounts:
            return True
        message = record.getMessage()
        scrubbed = scrub_text(message, self.scrubbed_accounts)
        if scrubbed != message:
            record.msg = scrubbed
            record.args = None
        return True
