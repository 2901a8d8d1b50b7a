"""Mapping backends.

Each backend turns whatever document its collaborator fetched into a
``MappingSet``. Fetching from Kubernetes is left to the caller: the
ConfigMap and custom-resource backends take a zero-argument callable.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Protocol, runtime_checkable

import yaml

from iam_identity_mapper.errors import BackendUnavailableError, ConfigurationError
from iam_identity_mapper.mapping.models import (
    BACKEND_CONFIG_MAP,
    BACKEND_CRD,
    BACKEND_MOUNTED_FILE,
    IdentityMapping,
    MappingSet,
    RoleMapping,
    UserMapping,
)

logger = logging.getLogger(__name__)

# Keys of the aws-auth ConfigMap ``data`` section.
MAP_ROLES = "mapRoles"
MAP_USERS = "mapUsers"
MAP_ACCOUNTS = "mapAccounts"

# IAMIdentityMapping label restricting a resource to one cluster.
CLUSTER_ID_LABEL = "iamidentitymapper.k8s.aws/cluster-id"


@runtime_checkable
class MappingSource(Protocol):
    """A backend producing the current mapping set. ``fetch`` may block."""

    name: str

    def fetch(self) -> MappingSet: ...


class FileMappingSource:
    """Mappings from a mounted YAML file (``mapRoles``/``mapUsers``/``mapAccounts``)."""

    def __init__(self, path: str | Path, name: str = BACKEND_MOUNTED_FILE) -> None:
        self.name = name
        self._path = Path(path)

    def fetch(self) -> MappingSet:
        if not self._path.exists():
            raise BackendUnavailableError(f"Mapping file not found: {self._path}", self.name)
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Mapping file {self._path} must contain a mapping")
        # The authenticator's own config file nests mappings under ``server``.
        if isinstance(data.get("server"), dict):
            data = data["server"]
        return MappingSet.from_data(data, f"mapping file {self._path}")


def _load_yaml_list(raw: Any, key: str) -> list:
    if raw is None or raw == "":
        return []
    if isinstance(raw, str):
        try:
            raw = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in ConfigMap key {key}: {exc}") from exc
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigurationError(f"ConfigMap key {key} must be a YAML list")
    return raw


class ConfigMapMappingSource:
    """Mappings from the ``data`` section of an aws-auth style ConfigMap."""

    def __init__(
        self,
        fetch: Callable[[], Mapping[str, Any] | None],
        name: str = BACKEND_CONFIG_MAP,
    ) -> None:
        self.name = name
        self._fetch = fetch

    def fetch(self) -> MappingSet:
        data = self._fetch()
        if data is None:
            raise BackendUnavailableError("ConfigMap not found", self.name)
        return MappingSet.from_data(
            {
                "role_mappings": _load_yaml_list(data.get(MAP_ROLES), MAP_ROLES),
                "user_mappings": _load_yaml_list(data.get(MAP_USERS), MAP_USERS),
                "auto_mapped_accounts": _load_yaml_list(data.get(MAP_ACCOUNTS), MAP_ACCOUNTS),
            },
            "aws-auth ConfigMap",
        )


class CustomResourceMappingSource:
    """Mappings from ``IAMIdentityMapping`` custom resources.

    Resources labelled with ``CLUSTER_ID_LABEL`` only apply to that cluster;
    unlabelled resources apply everywhere. With no ``cluster_id`` every
    resource is read.
    """

    def __init__(
        self,
        fetch: Callable[[], Iterable[Mapping[str, Any]]],
        name: str = BACKEND_CRD,
        cluster_id: str = "",
    ) -> None:
        self.name = name
        self._fetch = fetch
        self._cluster_id = cluster_id

    def fetch(self) -> MappingSet:
        roles: list[RoleMapping] = []
        users: list[UserMapping] = []
        for item in self._fetch():
            metadata = item.get("metadata") or {}
            resource_name = metadata.get("name", "<unnamed>")
            target = (metadata.get("labels") or {}).get(CLUSTER_ID_LABEL)
            if self._cluster_id and target and target != self._cluster_id:
                logger.debug(
                    "Skipping IAMIdentityMapping %s labelled for cluster %s",
                    resource_name,
                    target,
                )
                continue
            spec = item.get("spec") or {}
            try:
                variant = IdentityMapping.model_validate(spec).to_variant()
            except ValueError as exc:
                raise ConfigurationError(
                    f"Invalid IAMIdentityMapping {resource_name}: {exc}"
                ) from exc
            if isinstance(variant, RoleMapping):
                roles.append(variant)
            else:
                users.append(variant)
        logger.debug("Read %d role and %d user identity mappings", len(roles), len(users))
        return MappingSet.from_data(
            {"role_mappings": roles, "user_mappings": users},
            "IAMIdentityMapping resources",
        )


class StaticMappingSource:
    """A fixed mapping set, typically the one carried inline by ``MapperConfig``."""

    def __init__(self, mapping_set: MappingSet, name: str = BACKEND_MOUNTED_FILE) -> None:
        self.name = name
        self._mapping_set = mapping_set

    def fetch(self) -> MappingSet:
        return self._mapping_set
