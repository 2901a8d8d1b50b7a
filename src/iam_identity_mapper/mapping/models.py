"""Mapping configuration models."""

from __future__ import annotations

from typing import Any, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from iam_identity_mapper.arn import ROLE, USER, is_account_id, known_partitions, parse_arn
from iam_identity_mapper.errors import ConfigurationError
from iam_identity_mapper.templates import validate_template

BACKEND_MOUNTED_FILE = "MountedFile"
BACKEND_CONFIG_MAP = "EKSConfigMap"
BACKEND_CRD = "CRD"
KNOWN_BACKENDS = (BACKEND_MOUNTED_FILE, BACKEND_CONFIG_MAP, BACKEND_CRD)


def _ensure_list(v: Any) -> list:
    """Convert None to empty list, wrap scalars, pass through sequences."""
    if v is None:
        return []
    if isinstance(v, (str, bytes)):
        return [v]
    return list(v)


def _validate_mapping_arn(value: str, resource_type: str) -> str:
    value = value.strip()
    parsed = parse_arn(value)
    if parsed is None or parsed.service != "iam":
        raise ValueError(f"invalid IAM ARN: {value!r}")
    if parsed.resource_type != resource_type:
        raise ValueError(f"expected a {resource_type} ARN, got {value!r}")
    return value


def _validate_accounts(v: Any) -> tuple[str, ...]:
    accounts: list[str] = []
    for raw in _ensure_list(v):
        account = str(raw).strip()
        if not is_account_id(account):
            raise ValueError(f"invalid AWS account ID: {account!r}")
        if account not in accounts:
            accounts.append(account)
    return tuple(accounts)


class _Mapping(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    username: str = Field(validation_alias=AliasChoices("username", "Username"))
    groups: tuple[str, ...] = Field(
        default=(), validation_alias=AliasChoices("groups", "Groups")
    )

    @field_validator("groups", mode="before")
    @classmethod
    def _validate_groups(cls, v: Any) -> list:
        return _ensure_list(v)

    @field_validator("username")
    @classmethod
    def _validate_username(cls, v: str) -> str:
        if not v:
            raise ValueError("username must not be empty")
        return v


class RoleMapping(_Mapping):
    """IAM role ARN to Kubernetes username/groups.

    ``username`` and each group may use ``{{AccountID}}`` and
    ``{{SessionName}}``.
    """

    role_arn: str = Field(
        validation_alias=AliasChoices("role_arn", "rolearn", "roleARN", "RoleARN")
    )

    @property
    def arn(self) -> str:
        return self.role_arn

    @field_validator("role_arn")
    @classmethod
    def _validate_role_arn(cls, v: str) -> str:
        return _validate_mapping_arn(v, ROLE)

    @model_validator(mode="after")
    def _validate_templates(self) -> "RoleMapping":
        for pattern in (self.username, *self.groups):
            validate_template(pattern)
        return self


class UserMapping(_Mapping):
    """IAM user ARN to Kubernetes username/groups. Users have no session name."""

    user_arn: str = Field(
        validation_alias=AliasChoices("user_arn", "userarn", "userARN", "UserARN")
    )

    @property
    def arn(self) -> str:
        return self.user_arn

    @field_validator("user_arn")
    @classmethod
    def _validate_user_arn(cls, v: str) -> str:
        return _validate_mapping_arn(v, USER)

    @model_validator(mode="after")
    def _validate_templates(self) -> "UserMapping":
        for pattern in (self.username, *self.groups):
            validate_template(pattern, allow_session=False)
        return self


class IdentityMapping(_Mapping):
    """Type-agnostic mapping as stored in an ``IAMIdentityMapping`` resource."""

    identity_arn: str = Field(
        validation_alias=AliasChoices("identity_arn", "arn", "identityARN", "IdentityARN")
    )

    def to_variant(self) -> Union[RoleMapping, UserMapping]:
        """Narrow to a role or user mapping based on the ARN's resource type."""
        parsed = parse_arn(self.identity_arn)
        if parsed is not None and parsed.resource_type == ROLE:
            return RoleMapping(
                role_arn=self.identity_arn, username=self.username, groups=self.groups
            )
        if parsed is not None and parsed.resource_type == USER:
            return UserMapping(
                user_arn=self.identity_arn, username=self.username, groups=self.groups
            )
        raise ValueError(f"identity ARN must name an IAM role or user: {self.identity_arn!r}")


def _check_unique(arns: list[str], label: str) -> None:
    seen: set[str] = set()
    for arn in arns:
        if arn in seen:
            raise ValueError(f"duplicate {label} {arn!r}")
        seen.add(arn)


class MappingSet(BaseModel):
    """Role mappings, user mappings and auto-mapped accounts from one backend."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    role_mappings: tuple[RoleMapping, ...] = Field(
        default=(), validation_alias=AliasChoices("role_mappings", "mapRoles", "RoleMappings")
    )
    user_mappings: tuple[UserMapping, ...] = Field(
        default=(), validation_alias=AliasChoices("user_mappings", "mapUsers", "UserMappings")
    )
    auto_mapped_accounts: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices(
            "auto_mapped_accounts", "mapAccounts", "AutoMappedAWSAccounts"
        ),
    )

    @field_validator("role_mappings", "user_mappings", mode="before")
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)

    @field_validator("auto_mapped_accounts", mode="before")
    @classmethod
    def _validate_accounts(cls, v: Any) -> tuple[str, ...]:
        return _validate_accounts(v)

    @model_validator(mode="after")
    def _validate_unique_arns(self) -> "MappingSet":
        _check_unique([m.role_arn for m in self.role_mappings], "RoleARN")
        _check_unique([m.user_arn for m in self.user_mappings], "UserARN")
        return self

    @classmethod
    def from_data(cls, data: Any, source: str = "") -> "MappingSet":
        return validate_model(cls, data or {}, source or "mapping set")

    def counts(self) -> tuple[int, int, int]:
        return len(self.role_mappings), len(self.user_mappings), len(self.auto_mapped_accounts)


class MapperConfig(BaseModel):
    """Complete mapper configuration as handed over by the loader."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    partition_id: str = Field(
        default="aws", validation_alias=AliasChoices("partition_id", "partitionID", "PartitionID")
    )
    cluster_id: str = Field(
        default="",
        validation_alias=AliasChoices("cluster_id", "clusterID", "ClusterID"),
        description="Selects IAMIdentityMapping resources labelled for this cluster",
    )
    role_mappings: tuple[RoleMapping, ...] = Field(
        default=(), validation_alias=AliasChoices("role_mappings", "mapRoles", "RoleMappings")
    )
    user_mappings: tuple[UserMapping, ...] = Field(
        default=(), validation_alias=AliasChoices("user_mappings", "mapUsers", "UserMappings")
    )
    auto_mapped_aws_accounts: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices(
            "auto_mapped_aws_accounts", "mapAccounts", "AutoMappedAWSAccounts"
        ),
    )
    scrubbed_aws_accounts: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices(
            "scrubbed_aws_accounts", "scrubbedAccounts", "ScrubbedAWSAccounts"
        ),
    )
    backend_mode: tuple[str, ...] = Field(
        default=(BACKEND_MOUNTED_FILE,),
        validation_alias=AliasChoices("backend_mode", "backendMode", "BackendMode"),
    )

    @field_validator("partition_id")
    @classmethod
    def _validate_partition(cls, v: str) -> str:
        if v not in known_partitions():
            raise ValueError(
                f"unknown partition {v!r}; expected one of {sorted(known_partitions())}"
            )
        return v

    @field_validator("role_mappings", "user_mappings", mode="before")
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)

    @field_validator("auto_mapped_aws_accounts", "scrubbed_aws_accounts", mode="before")
    @classmethod
    def _validate_accounts(cls, v: Any) -> tuple[str, ...]:
        return _validate_accounts(v)

    @field_validator("backend_mode", mode="before")
    @classmethod
    def _validate_backend_mode(cls, v: Any) -> list[str]:
        if isinstance(v, str):
            v = [item.strip() for item in v.split(",") if item.strip()]
        return validate_backend_order(_ensure_list(v))

    @model_validator(mode="after")
    def _validate_unique_arns(self) -> "MapperConfig":
        _check_unique([m.role_arn for m in self.role_mappings], "RoleARN")
        _check_unique([m.user_arn for m in self.user_mappings], "UserARN")
        return self

    def mapping_set(self) -> MappingSet:
        """Mappings carried inline by this config (the mounted-file backend)."""
        return MappingSet(
            role_mappings=self.role_mappings,
            user_mappings=self.user_mappings,
            auto_mapped_accounts=self.auto_mapped_aws_accounts,
        )


def validate_backend_order(names: list[str]) -> list[str]:
    """Check a backend precedence list, raising ``ValueError`` on problems."""
    if not names:
        raise ValueError("backend mode must name at least one backend")
    seen: set[str] = set()
    for name in names:
        if name not in KNOWN_BACKENDS:
            raise ValueError(
                f"unknown backend {name!r}; expected one of {', '.join(KNOWN_BACKENDS)}"
            )
        if name in seen:
            raise ValueError(f"backend {name!r} listed more than once")
        seen.add(name)
    return list(names)


def validate_model(model: type[BaseModel], data: Any, what: str) -> Any:
    """Validate *data* against *model*, raising ``ConfigurationError`` on failure."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid {what}: {exc}") from exc
