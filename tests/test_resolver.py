"""Tests for IdentityResolver."""

from __future__ import annotations

import logging

import pytest

from iam_identity_mapper.mapping.index import MappingIndex
from iam_identity_mapper.mapping.models import MappingSet
from iam_identity_mapper.resolver import Identity, IdentityResolver, Outcome

BASTION_ARN = "arn:aws:iam::123456789012:role/Bastion"


def _resolver(scrubbed: tuple[str, ...] = (), **data: object) -> IdentityResolver:
    mapping_set = MappingSet.from_data(data)
    return IdentityResolver.from_index(MappingIndex.from_mapping_set(mapping_set), scrubbed)


def _bastion_resolver(scrubbed: tuple[str, ...] = ()) -> IdentityResolver:
    return _resolver(
        scrubbed,
        mapRoles=[
            {
                "rolearn": BASTION_ARN,
                "username": "{{SessionName}}@bastion",
                "groups": ["system:masters"],
            }
        ],
    )


class TestAllowed:
    """Tests for successful resolution."""

    def test_bastion_example(self) -> None:
        result = _bastion_resolver().resolve(BASTION_ARN, "123456789012", "i-0abc")
        assert result.outcome is Outcome.ALLOWED
        assert result.allowed
        assert result.identity == Identity(username="i-0abc@bastion", groups=("system:masters",))
        assert result.mapping_arn == BASTION_ARN
        assert result.canonical_arn == BASTION_ARN

    def test_assumed_role_arn_supplies_session(self) -> None:
        result = _bastion_resolver().resolve(
            "arn:aws:sts::123456789012:assumed-role/Bastion/i-0def", "123456789012"
        )
        assert result.outcome is Outcome.ALLOWED
        assert result.identity is not None
        assert result.identity.username == "i-0def@bastion"
        assert result.canonical_arn == BASTION_ARN

    def test_explicit_session_wins_over_arn_session(self) -> None:
        result = _bastion_resolver().resolve(
            "arn:aws:sts::123456789012:assumed-role/Bastion/from-arn", "", "explicit"
        )
        assert result.identity is not None
        assert result.identity.username == "explicit@bastion"

    def test_path_insensitive(self) -> None:
        resolver = _resolver(
            mapRoles=[{"rolearn": "arn:aws:iam::111111111111:role/Foo", "username": "foo"}]
        )
        result = resolver.resolve("arn:aws:iam::111111111111:role/team/Foo", "111111111111")
        assert result.outcome is Outcome.ALLOWED

    def test_account_id_template(self) -> None:
        resolver = _resolver(
            mapUsers=[
                {
                    "userarn": "arn:aws:iam::111111111111:user/Test",
                    "username": "test-{{AccountID}}",
                    "groups": ["acct:{{AccountID}}"],
                }
            ]
        )
        result = resolver.resolve("arn:aws:iam::111111111111:user/Test", "111111111111", "ignored")
        assert result.identity == Identity("test-111111111111", ("acct:111111111111",))
        assert result.session_name is None

    def test_auto_mapped_account(self) -> None:
        resolver = _resolver(mapAccounts=["222222222222"])
        result = resolver.resolve(
            "arn:aws:sts::222222222222:assumed-role/Dev/alice", "222222222222"
        )
        assert result.outcome is Outcome.ALLOWED
        assert result.identity == Identity("arn:aws:iam::222222222222:role/Dev", ())

    def test_auto_mapped_username_is_literal(self) -> None:
        resolver = _resolver(mapAccounts=["222222222222"])
        result = resolver.resolve("arn:aws:iam::222222222222:role/{{SessionName}}")
        assert result.outcome is Outcome.ALLOWED
        assert result.identity is not None
        assert result.identity.username == "arn:aws:iam::222222222222:role/{{SessionName}}"

    @pytest.mark.parametrize("session", ["s1", "i-0abc", "user@example.com"])
    def test_static_mapping_ignores_session(self, session: str) -> None:
        resolver = _resolver(
            mapRoles=[
                {"rolearn": BASTION_ARN, "username": "admin", "groups": ["system:masters"]}
            ]
        )
        result = resolver.resolve(BASTION_ARN, "123456789012", session)
        assert result.identity == Identity("admin", ("system:masters",))


class TestDenied:
    """Tests for DENIED outcomes."""

    def test_wrong_account(self) -> None:
        result = _bastion_resolver().resolve(
            "arn:aws:iam::999999999999:role/Bastion", "999999999999", "i-0abc"
        )
        assert result.outcome is Outcome.DENIED
        assert result.identity is None

    def test_unmapped_role(self) -> None:
        result = _bastion_resolver().resolve("arn:aws:iam::123456789012:role/Other")
        assert result.outcome is Outcome.DENIED

    def test_no_index_denies(self) -> None:
        resolver = IdentityResolver(lambda: None)
        result = resolver.resolve(BASTION_ARN, "123456789012", "s")
        assert result.outcome is Outcome.DENIED
        assert "no mapping index" in result.reason


class TestMalformed:
    """Tests for MALFORMED outcomes."""

    def test_malformed_arn(self) -> None:
        result = _bastion_resolver().resolve("arn:aws:iam::bad", "123456789012", "s")
        assert result.outcome is Outcome.MALFORMED

    def test_account_mismatch(self) -> None:
        result = _bastion_resolver().resolve(BASTION_ARN, "999999999999", "s")
        assert result.outcome is Outcome.MALFORMED

    def test_missing_session_is_malformed(self) -> None:
        result = _bastion_resolver().resolve(BASTION_ARN, "123456789012", "")
        assert result.outcome is Outcome.MALFORMED
        assert result.identity is None
        assert result.mapping_arn == BASTION_ARN
        assert "SessionName" in result.reason


class TestLogging:
    """Resolution logs never carry scrubbed-account ARNs."""

    def test_scrubbed_arn_not_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        resolver = _bastion_resolver(scrubbed=("123456789012",))
        with caplog.at_level(logging.INFO, logger="iam_identity_mapper.resolver"):
            result = resolver.resolve(BASTION_ARN, "123456789012", "i-0abc")

        assert result.identity is not None
        assert result.canonical_arn == BASTION_ARN
        assert "arn:***:role/***" in caplog.text
        assert BASTION_ARN not in caplog.text

    def test_malformed_mapping_logged_with_mapping_identity(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        resolver = _bastion_resolver()
        with caplog.at_level(logging.ERROR, logger="iam_identity_mapper.resolver"):
            resolver.resolve(BASTION_ARN, "123456789012", "")
        assert "cannot be expanded" in caplog.text
        assert BASTION_ARN in caplog.text

    def test_auto_mapped_username_scrubbed_in_log(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        arn = "arn:aws:iam::222222222222:role/Dev"
        resolver = _resolver(("222222222222",), mapAccounts=["222222222222"])
        with caplog.at_level(logging.INFO, logger="iam_identity_mapper.resolver"):
            result = resolver.resolve(arn)

        assert result.identity is not None
        assert result.identity.username == arn
        assert "via auto-mapped" in caplog.text
        assert "222222222222" not in caplog.text

    def test_expanded_arn_in_username_scrubbed_in_log(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        resolver = _resolver(
            ("123456789012",),
            mapRoles=[
                {
                    "rolearn": BASTION_ARN,
                    "username": "arn:aws:iam::{{AccountID}}:role/Bastion",
                    "groups": ["arn:aws:iam::{{AccountID}}:role/Bastion"],
                }
            ],
        )
        with caplog.at_level(logging.INFO, logger="iam_identity_mapper.resolver"):
            result = resolver.resolve(BASTION_ARN, "123456789012", "i-0abc")

        assert result.identity is not None
        assert result.identity.username == BASTION_ARN
        assert BASTION_ARN not in caplog.text
