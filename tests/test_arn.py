"""Tests for ARN parsing and matching."""

from __future__ import annotations

import pytest

from iam_identity_mapper.arn import (
    FEDERATED_USER,
    ROLE,
    ROOT,
    USER,
    canonical_arn,
    is_account_id,
    known_partitions,
    match,
    parse_arn,
)


class TestParseArn:
    """Tests for parse_arn."""

    def test_role_without_path(self) -> None:
        parsed = parse_arn("arn:aws:iam::123456789012:role/Foo")
        assert parsed is not None
        assert parsed.partition == "aws"
        assert parsed.account_id == "123456789012"
        assert parsed.resource_type == ROLE
        assert parsed.path == ""
        assert parsed.name == "Foo"
        assert parsed.session_name is None

    def test_role_with_path(self) -> None:
        parsed = parse_arn("arn:aws:iam::123456789012:role/team/ops/Foo")
        assert parsed is not None
        assert parsed.path == "team/ops/"
        assert parsed.name == "Foo"
        assert parsed.resource == "role/team/ops/Foo"

    def test_user(self) -> None:
        parsed = parse_arn("arn:aws-cn:iam::123456789012:user/Test")
        assert parsed is not None
        assert parsed.partition == "aws-cn"
        assert parsed.resource_type == USER
        assert parsed.name == "Test"

    def test_assumed_role_carries_session(self) -> None:
        parsed = parse_arn("arn:aws:sts::123456789012:assumed-role/Bastion/i-0abc")
        assert parsed is not None
        assert parsed.resource_type == ROLE
        assert parsed.name == "Bastion"
        assert parsed.session_name == "i-0abc"
        assert parsed.is_assumed_role

    def test_federated_user(self) -> None:
        parsed = parse_arn("arn:aws:sts::123456789012:federated-user/Bob")
        assert parsed is not None
        assert parsed.resource_type == FEDERATED_USER
        assert parsed.name == "Bob"

    def test_root(self) -> None:
        parsed = parse_arn("arn:aws:iam::123456789012:root")
        assert parsed is not None
        assert parsed.resource_type == ROOT

    @pytest.mark.parametrize(
        "value",
        [
            "",
            None,
            "not-an-arn",
            "arn:aws:iam::123456789012",
            "arn::iam::123456789012:role/Foo",
            "arn:aws:iam::12345:role/Foo",
            "arn:aws:iam::123456789012:",
            "arn:aws:iam::123456789012:role/",
            "arn:aws:iam::123456789012:role//Foo",
            "arn:aws:iam:us-east-1:123456789012:role/Foo",
            "arn:aws:s3:::bucket",
            "arn:aws:iam::123456789012:group/Admins",
            "arn:aws:sts::123456789012:assumed-role/Bastion",
            "xrn:aws:iam::123456789012:role/Foo",
        ],
    )
    def test_malformed_returns_none(self, value: str | None) -> None:
        assert parse_arn(value) is None


class TestCanonicalArn:
    """Tests for canonical_arn."""

    def test_assumed_role_collapses_to_role(self) -> None:
        parsed = parse_arn("arn:aws:sts::123456789012:assumed-role/Bastion/i-0abc")
        assert parsed is not None
        assert canonical_arn(parsed) == "arn:aws:iam::123456789012:role/Bastion"

    def test_iam_arn_unchanged(self) -> None:
        value = "arn:aws:iam::123456789012:role/team/Foo"
        parsed = parse_arn(value)
        assert parsed is not None
        assert canonical_arn(parsed) == value

    def test_root_unchanged(self) -> None:
        parsed = parse_arn("arn:aws:iam::123456789012:root")
        assert parsed is not None
        assert canonical_arn(parsed) == "arn:aws:iam::123456789012:root"


class TestMatch:
    """Tests for match."""

    def test_exact_match(self) -> None:
        result = match(
            "arn:aws:iam::111111111111:role/Foo",
            "arn:aws:iam::111111111111:role/Foo",
        )
        assert result.matched
        assert result.exact
        assert result.fields is not None
        assert result.fields.account_id == "111111111111"
        assert result.fields.resource_id == "Foo"

    def test_path_is_ignored(self) -> None:
        result = match(
            "arn:aws:iam::111111111111:role/Foo",
            "arn:aws:iam::111111111111:role/team/Foo",
        )
        assert result.matched
        assert not result.exact

    def test_pattern_path_is_ignored_for_assumed_role(self) -> None:
        result = match(
            "arn:aws:iam::111111111111:role/team/Foo",
            "arn:aws:sts::111111111111:assumed-role/Foo/session-1",
        )
        assert result.matched
        assert result.fields is not None
        assert result.fields.session_name == "session-1"

    def test_name_is_case_sensitive(self) -> None:
        assert not match(
            "arn:aws:iam::111111111111:role/Foo",
            "arn:aws:iam::111111111111:role/foo",
        ).matched

    def test_account_must_match(self) -> None:
        assert not match(
            "arn:aws:iam::111111111111:role/Foo",
            "arn:aws:iam::222222222222:role/Foo",
        ).matched

    def test_partition_must_match(self) -> None:
        assert not match(
            "arn:aws:iam::111111111111:role/Foo",
            "arn:aws-cn:iam::111111111111:role/Foo",
        ).matched

    def test_resource_type_must_match(self) -> None:
        assert not match(
            "arn:aws:iam::111111111111:role/Foo",
            "arn:aws:iam::111111111111:user/Foo",
        ).matched

    def test_no_globbing(self) -> None:
        assert not match(
            "arn:aws:iam::111111111111:role/*",
            "arn:aws:iam::111111111111:role/Foo",
        ).matched

    def test_malformed_fails_closed(self) -> None:
        result = match("arn:aws:iam::111111111111:role/Foo", "garbage")
        assert not result.matched
        assert result.fields is None

    def test_session_pattern_never_matches(self) -> None:
        assert not match(
            "arn:aws:sts::111111111111:assumed-role/Foo/s",
            "arn:aws:sts::111111111111:assumed-role/Foo/s",
        ).matched

    def test_federated_user_never_matches_user_pattern(self) -> None:
        assert not match(
            "arn:aws:iam::111111111111:user/Bob",
            "arn:aws:sts::111111111111:federated-user/Bob",
        ).matched


def test_known_partitions_include_standard_partitions() -> None:
    partitions = known_partitions()
    assert {"aws", "aws-cn", "aws-us-gov"} <= partitions


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("123456789012", True),
        ("12345678901", False),
        ("123456789012\n", False),
        ("１２３４５６７８９０１２", False),
        ("٣٢١٤٥٦٧٨٩٠١٢", False),
        ("", False),
    ],
)
def test_is_account_id_accepts_ascii_digits_only(value: str, expected: bool) -> None:
    assert is_account_id(value) is expected


def test_parse_rejects_non_ascii_account() -> None:
    assert parse_arn("arn:aws:iam::１２３４５６７８９０１２:role/Foo") is None
