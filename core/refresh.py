"""Concurrent registry refresh for every declared dependency."""

import asyncio
import logging

from .config import Settings, get_settings
from .models import Dependency, PackageSource, ProjectList, SelectionSettings
from .registry import RegistryClient, create_registry_client
from .select import DEFAULT_POLICY, LegacyChannelPolicy, assign_versions
from .version import sort_versions_descending

logger = logging.getLogger("pkgdrift.refresh")

NOT_FOUND_MESSAGE = "Package could not be found in the registry."


class RefreshPipeline:
    """Fetches the version history of each dependency and resolves it in place."""

    def __init__(
        self,
        client: RegistryClient,
        settings: SelectionSettings | None = None,
        debug: bool = False,
        max_concurrency: int = 8,
        policy: LegacyChannelPolicy = DEFAULT_POLICY,
    ):
        """Initialize refresh pipeline.

        Args:
            client: Registry client shared by every lookup
            settings: Version selection settings applied to every record
            debug: Process records one at a time, in declaration order
            max_concurrency: Maximum concurrent registry lookups
            policy: Legacy compatibility channel handling
        """
        self.client = client
        self.settings = settings or SelectionSettings()
        self.debug = debug
        self.max_concurrency = max(1, max_concurrency)
        self.policy = policy
        self._semaphore = asyncio.Semaphore(self.max_concurrency)

    async def refresh(self, projects: ProjectList) -> ProjectList:
        """Resolve every dependency of every project.

        A failing lookup is recorded on its own record and never stops the
        others. Cancelling the caller's task cancels pending lookups; records
        already resolved keep their values.
        """
        dependencies = projects.all_dependencies
        for dependency in dependencies:
            dependency.apply_settings(self.settings)

        if self.debug:
            for dependency in dependencies:
                await self.refresh_dependency(dependency)
        else:
            await asyncio.gather(*(self._bounded_refresh(d) for d in dependencies))

        projects.update_project_names()
        failed = sum(1 for d in dependencies if d.has_failed)
        logger.info("Refreshed %d dependencies (%d failed)", len(dependencies), failed)
        return projects

    async def _bounded_refresh(self, dependency: Dependency) -> Dependency:
        async with self._semaphore:
            return await self.refresh_dependency(dependency)

    def _wanted(self, dependency: Dependency, version) -> bool:
        # A dependency already declared on a pre-release keeps seeing pre-releases.
        return (
            "-" in dependency.current_version.raw
            or self.settings.include_pre_release
            or not version.is_pre_release
        )

    async def refresh_dependency(self, dependency: Dependency) -> Dependency:
        dependency.clear_failure()
        try:
            package = await self.client.fetch_versions(
                dependency.name, include_pre_release=self.settings.include_pre_release
            )
        except Exception as e:
            logger.warning("Lookup failed for %s: %s", dependency.name, e)
            dependency.set_failure(e)
            return dependency

        if not package.versions:
            logger.warning("No versions found for %s", dependency.name)
            dependency.set_failure(NOT_FOUND_MESSAGE)
            return dependency

        try:
            versions = sort_versions_descending(v for v in package.versions if self._wanted(dependency, v))
            assign_versions(dependency, versions, policy=self.policy)
            dependency.package_url = package.package_url
            dependency.project_url = package.project_url
        except Exception as e:
            logger.warning("Could not resolve versions for %s: %s", dependency.name, e)
            dependency.set_failure(f"Exception occurred while processing package info: {e}")
            return dependency

        logger.debug(
            "%s: current=%s latest=%s latest-minor=%s",
            dependency.name,
            dependency.current_version,
            dependency.latest_version,
            dependency.latest_minor_version,
        )
        return dependency


async def refresh_projects(
    projects: ProjectList,
    source: PackageSource,
    selection: SelectionSettings | None = None,
    config: Settings | None = None,
    debug: bool | None = None,
    client: RegistryClient | None = None,
) -> ProjectList:
    """Refresh a project list against the registry of its package source.

    When no client is given, one is created for this call and closed when it
    returns.
    """
    config = config or get_settings()
    debug = config.debug if debug is None else debug

    async def run(registry: RegistryClient) -> ProjectList:
        pipeline = RefreshPipeline(
            registry,
            settings=selection,
            debug=debug,
            max_concurrency=config.max_concurrency,
            policy=config.legacy_channel_policy,
        )
        return await pipeline.refresh(projects)

    if client is not None:
        return await run(client)
    async with create_registry_client(source, config) as registry:
        return await run(registry)
