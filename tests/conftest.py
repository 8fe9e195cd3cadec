"""Pytest configuration and fixtures."""

import asyncio

import pytest

from core.models import PackageSource
from core.registry import RegistryPackage
from core.version import Version, parse_version


class FakeRegistryClient:
    """In-memory registry: package name -> version strings or parsed versions."""

    source = PackageSource.NPM

    def __init__(self, packages=None, failures=None, delays=None):
        self.packages = packages or {}
        self.failures = failures or {}
        self.delays = delays or {}
        self.calls: list[str] = []
        self.active = 0
        self.peak = 0
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True

    async def fetch_versions(self, name, include_pre_release=False):
        self.calls.append(name)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delays.get(name, 0))
            if name in self.failures:
                raise self.failures[name]
            return RegistryPackage(
                name=name,
                versions=[v if isinstance(v, Version) else parse_version(v) for v in self.packages.get(name, [])],
                project_url=f"https://example.com/{name}",
                package_url=f"https://www.npmjs.com/package/{name}",
            )
        finally:
            self.active -= 1


@pytest.fixture
def fake_registry():
    """Factory for in-memory registry clients."""
    return FakeRegistryClient


@pytest.fixture
def sample_package_json():
    """Sample package.json content for testing."""
    return """{
  "name": "test-project",
  "dependencies": {
    "express": "^4.18.0",
    "lodash": "~4.17.20"
  },
  "devDependencies": {
    "jest": "29.0.0"
  }
}
"""


@pytest.fixture
def sample_csproj():
    """Sample .csproj content for testing."""
    return """<Project Sdk="Microsoft.NET.Sdk">
  <PropertyGroup>
    <TargetFramework>net8.0</TargetFramework>
  </PropertyGroup>
  <ItemGroup>
    <PackageReference Include="Newtonsoft.Json" Version="12.0.1" />
    <PackageReference Include="Serilog" Version="3.0.0" />
    <!-- <PackageReference Include="Dapper" Version="2.0.0" /> -->
  </ItemGroup>
</Project>
"""


@pytest.fixture
def npm_project_dir(tmp_path, sample_package_json):
    """A folder holding one package.json project named 'web'."""
    project_dir = tmp_path / "web"
    project_dir.mkdir()
    (project_dir / "package.json").write_text(sample_package_json)
    return tmp_path
