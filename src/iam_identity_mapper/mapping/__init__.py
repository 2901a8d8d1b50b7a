"""Mapping configuration, backends, index and merge coordination."""

from iam_identity_mapper.mapping.coordinator import (
    BackendHealth,
    BackendMergeCoordinator,
    MappingConflict,
    ReloadReport,
    merge_mapping_sets,
)
from iam_identity_mapper.mapping.index import (
    IndexMatch,
    MappingIndex,
    MappingKind,
    ResolvedMapping,
)
from iam_identity_mapper.mapping.models import (
    IdentityMapping,
    MapperConfig,
    MappingSet,
    RoleMapping,
    UserMapping,
)

__all__ = [
    "BackendHealth",
    "BackendMergeCoordinator",
    "IdentityMapping",
    "IndexMatch",
    "MapperConfig",
    "MappingConflict",
    "MappingIndex",
    "MappingKind",
    "MappingSet",
    "ReloadReport",
    "ResolvedMapping",
    "RoleMapping",
    "UserMapping",
    "merge_mapping_sets",
]
