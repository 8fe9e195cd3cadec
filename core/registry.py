"""Package registry clients for npm and NuGet."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from .config import Settings
from .errors import RegistryError
from .models import PackageSource
from .version import (
    SupportedPlatform,
    Version,
    Vulnerability,
    highest_version,
    parse_version,
    version_sort_key,
)

logger = logging.getLogger("pkgdrift.registry")

NPM_PACKAGE_URL = "https://www.npmjs.com/package/{name}"
NUGET_PACKAGE_URL = "https://www.nuget.org/packages/{name}"

_NUGET_SEVERITIES = {"0": "low", "1": "moderate", "2": "high", "3": "critical"}
_ANY_FRAMEWORK = SupportedPlatform(name="Any Framework", short_name="net0", nickname="net0")


@dataclass
class RegistryPackage:
    """Everything a registry knows about one package."""

    name: str
    versions: list[Version] = field(default_factory=list)
    project_url: str | None = None
    package_url: str | None = None


class RegistryClient(Protocol):
    source: PackageSource

    async def fetch_versions(self, name: str, include_pre_release: bool = False) -> RegistryPackage:
        ...


def parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class HttpRegistryClient:
    """Shared HTTP plumbing for JSON registries.

    Use as an async context manager: one client per command invocation,
    closed at the end. The underlying httpx.AsyncClient is safe to share
    across concurrent lookups.
    """

    source = PackageSource.UNKNOWN

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        user_agent: str = "pkgdrift/0.1",
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize registry client.

        Args:
            base_url: Registry root URL
            timeout: Per-request timeout in seconds
            user_agent: User-Agent header value
            client: Externally owned httpx client; not closed by this object
            transport: Optional httpx transport, mostly for tests
        """
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport
        self._client = client
        self._owns_client = client is None
        self._cache: dict[tuple[str, bool], RegistryPackage] = {}

    async def __aenter__(self):
        self._http()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                follow_redirects=True,
                headers={
                    "Accept": "application/json",
                    "User-Agent": self.user_agent,
                },
            )
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, url: str) -> dict:
        try:
            response = await self._http().get(url)
        except httpx.TimeoutException as e:
            raise RegistryError(f"Timeout fetching {url}") from e
        except httpx.HTTPError as e:
            raise RegistryError(f"Network error fetching {url}: {e}") from e

        if response.status_code == 404:
            raise RegistryError("Package could not be found in the registry.")
        if not response.is_success:
            raise RegistryError(
                f"Failed to fetch package info from registry. "
                f"Status code: {response.status_code} {response.reason_phrase}"
            )
        if not response.content.strip():
            raise RegistryError("Registry returned empty content.")

        try:
            payload = response.json()
        except ValueError as e:
            raise RegistryError(f"Failed to decode registry response: {e}") from e
        if not isinstance(payload, dict):
            raise RegistryError("Registry response is not a JSON object.")
        return payload

    async def fetch_versions(self, name: str, include_pre_release: bool = False) -> RegistryPackage:
        """Fetch every published version of a package.

        Args:
            name: Package name as declared in the manifest
            include_pre_release: Whether pre-release versions are wanted

        Returns:
            The package's versions and URLs

        Raises:
            RegistryError: lookup failed or the response could not be used
        """
        key = (name.lower(), include_pre_release)
        if key in self._cache:
            return self._cache[key]

        logger.debug("Fetching %s from %s", name, self.base_url)
        package = await self._fetch(name, include_pre_release)
        self._cache[key] = package
        return package

    async def _fetch(self, name: str, include_pre_release: bool) -> RegistryPackage:
        raise NotImplementedError


class NpmRegistryClient(HttpRegistryClient):
    """Reads the npm registry packument (`GET /{name}`)."""

    source = PackageSource.NPM

    def __init__(self, base_url: str = "https://registry.npmjs.org/", **kwargs):
        super().__init__(base_url, **kwargs)

    async def _fetch(self, name: str, include_pre_release: bool) -> RegistryPackage:
        payload = await self._get_json(quote(name, safe="@"))

        times = payload.get("time")
        if not isinstance(times, dict):
            raise RegistryError("Registry response has no version history.")

        versions = [
            parse_version(version, published_at=parse_timestamp(published))
            for version, published in times.items()
            if version not in ("created", "modified")
        ]
        homepage = payload.get("homepage")

        return RegistryPackage(
            name=name,
            versions=versions,
            project_url=homepage if isinstance(homepage, str) else None,
            package_url=NPM_PACKAGE_URL.format(name=name),
        )


def parse_target_framework(target_framework: str | None) -> SupportedPlatform | None:
    """Map a NuGet dependency-group framework to a platform tag.

    .NET Standard and framework-less groups count as "any framework";
    monikers outside the .NET family are dropped.
    """
    if not target_framework:
        return _ANY_FRAMEWORK

    lowered = target_framework.strip().lower()
    if lowered.startswith(".netstandard") or lowered.startswith("netstandard"):
        return _ANY_FRAMEWORK
    if lowered.startswith(".netframework"):
        short_name = "net" + lowered.removeprefix(".netframework").replace(".", "")
        return SupportedPlatform(name=target_framework, short_name=short_name, nickname=short_name)
    if lowered.startswith(".netcoreapp") or lowered.startswith("netcoreapp"):
        number = lowered.split("netcoreapp", 1)[1]
        return SupportedPlatform(
            name=target_framework, short_name=f"netcoreapp{number}", nickname=f"net{number}"
        )
    if lowered.startswith("net") and lowered[3:4].isdigit():
        short_name = lowered.split("-", 1)[0]
        return SupportedPlatform(name=target_framework, short_name=short_name, nickname=short_name)
    return None


def _nuget_platforms(catalog_entry: dict) -> list[SupportedPlatform]:
    groups = catalog_entry.get("dependencyGroups") or []
    if not groups:
        return [_ANY_FRAMEWORK]

    platforms: list[SupportedPlatform] = []
    for group in groups:
        platform = parse_target_framework(group.get("targetFramework"))
        if platform is not None and platform not in platforms:
            platforms.append(platform)
    return sorted(platforms, key=lambda p: version_sort_key(p.version), reverse=True)


def _nuget_severity(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return _NUGET_SEVERITIES.get(str(value), str(value))


def _nuget_vulnerabilities(catalog_entry: dict) -> list[Vulnerability]:
    return [
        Vulnerability(
            advisory_url=item.get("advisoryUrl"),
            severity=_nuget_severity(item.get("severity")),
        )
        for item in catalog_entry.get("vulnerabilities") or []
    ]


class NuGetRegistryClient(HttpRegistryClient):
    """Reads the NuGet v3 registration index, following non-inlined pages."""

    source = PackageSource.NUGET

    def __init__(self, base_url: str = "https://api.nuget.org/v3/registration5-gz-semver2/", **kwargs):
        super().__init__(base_url, **kwargs)

    async def _leaves(self, index: dict) -> list[dict]:
        leaves: list[dict] = []
        for page in index.get("items") or []:
            items = page.get("items")
            if items is None and page.get("@id"):
                items = (await self._get_json(page["@id"])).get("items")
            leaves.extend(items or [])
        return leaves

    async def _fetch(self, name: str, include_pre_release: bool) -> RegistryPackage:
        index = await self._get_json(f"{name.strip().lower()}/index.json")

        versions: list[Version] = []
        entries: dict[str, dict] = {}
        for leaf in await self._leaves(index):
            entry = leaf.get("catalogEntry")
            if not isinstance(entry, dict) or not entry.get("version"):
                continue
            version = parse_version(
                entry["version"],
                published_at=parse_timestamp(entry.get("published")),
                vulnerabilities=_nuget_vulnerabilities(entry),
                platforms=_nuget_platforms(entry),
            )
            if not include_pre_release and version.is_pre_release:
                continue
            versions.append(version)
            entries[version.normalized] = entry

        latest = highest_version(versions)
        project_url = entries[latest.normalized].get("projectUrl") if latest else None

        return RegistryPackage(
            name=name,
            versions=versions,
            project_url=project_url or None,
            package_url=NUGET_PACKAGE_URL.format(name=name),
        )


def create_registry_client(source: PackageSource, settings: Settings, **kwargs) -> HttpRegistryClient:
    """Build the registry client for a package source from settings."""
    options = {"timeout": settings.http_timeout, "user_agent": settings.user_agent, **kwargs}
    if source is PackageSource.NPM:
        return NpmRegistryClient(settings.npm_registry_url, **options)
    if source is PackageSource.NUGET:
        return NuGetRegistryClient(settings.nuget_registry_url, **options)
    raise ValueError(f"Unsupported package source: {source}")
