"""Tests for the registry refresh pipeline."""

import asyncio

import pytest

from core.config import Settings
from core.errors import RegistryError
from core.models import Dependency, PackageSource, Project, ProjectList, SelectionSettings
from core.refresh import NOT_FOUND_MESSAGE, RefreshPipeline, refresh_projects
from core.select import LegacyChannelPolicy


def make_projects(*declared):
    dependencies = [
        Dependency.declared(name, version, PackageSource.NPM, order=i) for i, (name, version) in enumerate(declared)
    ]
    projects = ProjectList()
    projects.add_project(Project(name="web", file_path="web/package.json", dependencies=dependencies))
    return projects


def snapshot(projects):
    return [
        (
            d.name,
            d.current_version.raw,
            str(d.latest_version),
            str(d.latest_minor_version),
            d.is_current_version_invalid,
            d.has_failed,
            d.failure_message,
        )
        for d in projects.all_dependencies
    ]


REGISTRY = {
    "react": ["18.2.0", "18.1.0", "17.0.2"],
    "lodash": ["4.17.21", "4.17.20", "3.10.1"],
    "express": ["5.0.0", "4.19.2", "4.18.0"],
    "jest": ["29.7.0", "29.0.0"],
    "left-pad": ["1.3.0"],
}


class TestRefreshPipeline:
    """Test resolving dependencies against a registry."""

    @pytest.mark.asyncio
    async def test_resolves_every_dependency(self, fake_registry):
        """Should fill in version fields, URLs and project names."""
        projects = make_projects(("react", "^18.1.0"), ("lodash", "~4.17.20"))
        await RefreshPipeline(fake_registry(REGISTRY)).refresh(projects)

        react, lodash = projects.all_dependencies
        assert react.latest_version.normalized == "18.2.0"
        assert react.latest_minor_version.normalized == "18.2.0"
        assert react.current_version.raw == "18.1.0"
        assert lodash.latest_version.normalized == "4.17.21"
        assert react.package_url == "https://www.npmjs.com/package/react"
        assert react.project_url == "https://example.com/react"
        assert all(d.project_name == "web" for d in projects.all_dependencies)

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, fake_registry):
        """Should record a lookup failure on one record and resolve the rest."""
        projects = make_projects(
            ("react", "18.1.0"), ("lodash", "4.17.20"), ("express", "4.18.0"), ("jest", "29.0.0"), ("left-pad", "1.3.0")
        )
        client = fake_registry(REGISTRY, failures={"express": RegistryError("Timeout fetching express")})
        await RefreshPipeline(client).refresh(projects)

        failed = [d for d in projects.all_dependencies if d.has_failed]
        assert [d.name for d in failed] == ["express"]
        assert failed[0].failure_message == "Timeout fetching express"
        assert failed[0].latest_version is None
        assert all(d.latest_version is not None for d in projects.all_dependencies if d.name != "express")

    @pytest.mark.asyncio
    async def test_unknown_package(self, fake_registry):
        """Should fail a record when the registry lists no versions."""
        projects = make_projects(("ghost", "1.0.0"))
        await RefreshPipeline(fake_registry({})).refresh(projects)

        ghost = projects.all_dependencies[0]
        assert ghost.has_failed
        assert ghost.failure_message == NOT_FOUND_MESSAGE

    @pytest.mark.asyncio
    async def test_clears_previous_failure(self, fake_registry):
        """Should clear a failure left by an earlier refresh."""
        projects = make_projects(("react", "18.1.0"))
        projects.all_dependencies[0].set_failure("old failure")
        await RefreshPipeline(fake_registry(REGISTRY)).refresh(projects)
        assert not projects.all_dependencies[0].has_failed

    @pytest.mark.asyncio
    async def test_pre_release_filter(self, fake_registry):
        """Should hide pre-releases unless asked for or already in use."""
        registry = {"vite": ["6.0.0-beta.2", "5.4.0", "5.0.0"]}

        projects = make_projects(("vite", "^5.0.0"))
        await RefreshPipeline(fake_registry(registry)).refresh(projects)
        assert projects.all_dependencies[0].latest_version.normalized == "5.4.0"

        projects = make_projects(("vite", "^5.0.0"))
        settings = SelectionSettings(include_pre_release=True)
        await RefreshPipeline(fake_registry(registry), settings=settings).refresh(projects)
        assert projects.all_dependencies[0].latest_version.raw == "6.0.0-beta.2"

        projects = make_projects(("vite", "6.0.0-beta.2"))
        await RefreshPipeline(fake_registry(registry)).refresh(projects)
        assert projects.all_dependencies[0].latest_version.raw == "6.0.0-beta.2"
        assert not projects.all_dependencies[0].is_current_version_invalid

    @pytest.mark.asyncio
    async def test_binds_settings(self, fake_registry):
        """Should bind selection settings to every record."""
        projects = make_projects(("express", "4.18.0"))
        settings = SelectionSettings(keep_major=True)
        await RefreshPipeline(fake_registry(REGISTRY), settings=settings).refresh(projects)

        express = projects.all_dependencies[0]
        assert express.keep_major
        assert express.desired_version.normalized == "4.19.2"

    @pytest.mark.asyncio
    async def test_debug_mode_matches_parallel(self, fake_registry):
        """Should produce the same records sequentially, in declaration order."""
        declared = [("express", "4.18.0"), ("react", "17.0.2"), ("ghost", "1.0.0"), ("jest", "29.0.0")]
        delays = {"express": 0.02, "react": 0.01}

        parallel = make_projects(*declared)
        await RefreshPipeline(fake_registry(REGISTRY, delays=delays)).refresh(parallel)

        sequential = make_projects(*declared)
        client = fake_registry(REGISTRY, delays=delays)
        await RefreshPipeline(client, debug=True).refresh(sequential)

        assert snapshot(sequential) == snapshot(parallel)
        assert client.calls == ["express", "react", "ghost", "jest"]
        assert client.peak == 1

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self, fake_registry):
        """Should never run more lookups at once than allowed."""
        projects = make_projects(*[(name, "1.0.0") for name in REGISTRY])
        client = fake_registry(REGISTRY, delays={name: 0.01 for name in REGISTRY})
        await RefreshPipeline(client, max_concurrency=2).refresh(projects)

        assert client.peak == 2
        assert len(client.calls) == len(REGISTRY)

    @pytest.mark.asyncio
    async def test_zero_concurrency_still_runs(self, fake_registry):
        """Should treat a non-positive limit as one lookup at a time."""
        projects = make_projects(("react", "17.0.2"), ("jest", "29.0.0"))
        client = fake_registry(REGISTRY)
        pipeline = RefreshPipeline(client, max_concurrency=0)

        await asyncio.wait_for(pipeline.refresh(projects), timeout=5)

        assert pipeline.max_concurrency == 1
        assert client.peak == 1
        assert all(d.latest_version is not None for d in projects.all_dependencies)

    @pytest.mark.asyncio
    async def test_cancellation_keeps_finished_records(self, fake_registry):
        """Should stop pending lookups and keep records that already resolved."""
        projects = make_projects(("react", "18.1.0"), ("lodash", "4.17.20"))
        client = fake_registry(REGISTRY, delays={"lodash": 5})

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(RefreshPipeline(client).refresh(projects), timeout=0.2)

        react, lodash = projects.all_dependencies
        assert react.latest_version.normalized == "18.2.0"
        assert lodash.latest_version is None
        assert not lodash.has_failed

    @pytest.mark.asyncio
    async def test_legacy_policy(self, fake_registry):
        """Should apply the legacy channel policy it is given."""
        registry = {"@syncfusion/ej2-angular-grids": ["25.1.35", "25.1.35-ngcc", "24.2.3-ngcc"]}
        projects = make_projects(("@syncfusion/ej2-angular-grids", "24.2.3-ngcc"))
        await RefreshPipeline(fake_registry(registry)).refresh(projects)
        assert projects.all_dependencies[0].latest_version.raw == "25.1.35-ngcc"

        projects = make_projects(("@syncfusion/ej2-angular-grids", "24.2.3-ngcc"))
        policy = LegacyChannelPolicy(marker=None)
        await RefreshPipeline(fake_registry(registry), policy=policy).refresh(projects)
        assert projects.all_dependencies[0].latest_version.raw == "25.1.35"


class TestRefreshProjects:
    """Test the refresh entry point."""

    @pytest.mark.asyncio
    async def test_uses_given_client(self, fake_registry):
        """Should refresh through an explicit client and leave it open."""
        projects = make_projects(("react", "17.0.2"))
        client = fake_registry(REGISTRY)

        result = await refresh_projects(
            projects, PackageSource.NPM, SelectionSettings(keep_major=True), config=Settings(), client=client
        )

        assert result is projects
        assert projects.all_dependencies[0].desired_version.normalized == "17.0.2"
        assert not client.closed

    @pytest.mark.asyncio
    async def test_creates_and_closes_client(self, fake_registry, monkeypatch):
        """Should build a client from settings and close it afterwards."""
        client = fake_registry(REGISTRY)
        monkeypatch.setattr("core.refresh.create_registry_client", lambda source, config: client)

        projects = make_projects(("react", "17.0.2"))
        await refresh_projects(projects, PackageSource.NPM, config=Settings(max_concurrency=1))

        assert projects.all_dependencies[0].latest_version.normalized == "18.2.0"
        assert client.closed
        assert client.peak == 1
