"""Application context assembly."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from iam_identity_mapper.config import Settings, load_settings
from iam_identity_mapper.errors import ConfigurationError
from iam_identity_mapper.logging_utils import configure_logging
from iam_identity_mapper.mapping.coordinator import BackendMergeCoordinator, ReloadReport
from iam_identity_mapper.mapping.loader import load_mapper_config
from iam_identity_mapper.mapping.models import (
    BACKEND_CONFIG_MAP,
    BACKEND_CRD,
    BACKEND_MOUNTED_FILE,
    MapperConfig,
    validate_model,
)
from iam_identity_mapper.mapping.sources import (
    ConfigMapMappingSource,
    CustomResourceMappingSource,
    FileMappingSource,
    MappingSource,
    StaticMappingSource,
)
from iam_identity_mapper.resolver import IdentityResolver

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Application-wide dependency container.

    Holds the loaded configuration, the coordinator that owns the published
    mapping index and the resolver reading from it.
    """

    settings: Settings
    config: MapperConfig
    coordinator: BackendMergeCoordinator
    resolver: IdentityResolver
    initial_reload: ReloadReport

    def reload(self) -> ReloadReport:
        return self.coordinator.reload_sync(self.settings.mapper.reload_timeout_seconds)


def _load_config(settings: Settings) -> MapperConfig:
    if settings.mapper.config_path:
        config = load_mapper_config(settings.mapper.config_path)
        overrides = {
            name: getattr(settings.mapper, name)
            for name in sorted(settings.mapper.env_overrides)
        }
        if not overrides:
            return config
        logger.info("Environment overrides mapper config fields: %s", ", ".join(overrides))
        # Revalidate so overridden values go through the same checks as the file.
        return validate_model(
            MapperConfig, {**config.model_dump(), **overrides}, "mapper settings"
        )
    return validate_model(
        MapperConfig,
        {
            "partition_id": settings.mapper.partition_id,
            "cluster_id": settings.mapper.cluster_id,
            "backend_mode": list(settings.mapper.backend_mode),
            "scrubbed_aws_accounts": list(settings.mapper.scrubbed_accounts),
        },
        "mapper settings",
    )


def build_sources(
    config: MapperConfig,
    *,
    mapping_file: str | None = None,
    config_map_fetch: Callable[[], Mapping[str, Any] | None] | None = None,
    custom_resource_fetch: Callable[[], Iterable[Mapping[str, Any]]] | None = None,
) -> dict[str, MappingSource]:
    """Create one source per backend named in ``config.backend_mode``."""
    sources: dict[str, MappingSource] = {}
    for name in config.backend_mode:
        if name == BACKEND_MOUNTED_FILE:
            if mapping_file:
                sources[name] = FileMappingSource(mapping_file)
            else:
                sources[name] = StaticMappingSource(config.mapping_set())
        elif name == BACKEND_CONFIG_MAP:
            if config_map_fetch is None:
                raise ConfigurationError(f"Backend {name} requires a ConfigMap fetcher")
            sources[name] = ConfigMapMappingSource(config_map_fetch)
        elif name == BACKEND_CRD:
            if custom_resource_fetch is None:
                raise ConfigurationError(f"Backend {name} requires a custom resource fetcher")
            sources[name] = CustomResourceMappingSource(
                custom_resource_fetch, cluster_id=config.cluster_id
            )
    return sources


def build_app_context(
    settings: Settings | None = None,
    *,
    config_map_fetch: Callable[[], Mapping[str, Any] | None] | None = None,
    custom_resource_fetch: Callable[[], Iterable[Mapping[str, Any]]] | None = None,
) -> AppContext:
    """Load configuration, build the first index and wire the resolver.

    The first reload must succeed; ``BackendUnavailableError`` propagates
    when no backend can be read at startup.
    """
    settings = settings or load_settings()
    config = _load_config(settings)
    scrubbed = sorted({*config.scrubbed_aws_accounts, *settings.mapper.scrubbed_accounts})
    configure_logging(scrubbed)

    sources = build_sources(
        config,
        mapping_file=settings.mapper.mapping_file,
        config_map_fetch=config_map_fetch,
        custom_resource_fetch=custom_resource_fetch,
    )
    coordinator = BackendMergeCoordinator(
        config.backend_mode,
        sources,
        partition_id=config.partition_id,
        scrubbed_accounts=scrubbed,
    )
    report = coordinator.reload_sync(settings.mapper.reload_timeout_seconds)
    logger.info(
        "Identity mapper ready for cluster %s (partition=%s, backends=%s)",
        config.cluster_id or "<unset>",
        config.partition_id,
        ",".join(config.backend_mode),
    )
    resolver = IdentityResolver(coordinator.current_index, scrubbed)
    return AppContext(
        settings=settings,
        config=config,
        coordinator=coordinator,
        resolver=resolver,
        initial_reload=report,
    )
