"""Core data models for pkgdrift."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .version import Version, parse_version, versions_equal


class PackageSource(str, Enum):
    """Registry family a dependency belongs to."""

    UNKNOWN = "unknown"
    NPM = "npm"
    NUGET = "nuget"


@dataclass
class SelectionSettings:
    """Per-run version selection policy."""

    keep_major: bool = False
    requested_major: int | None = None
    include_pre_release: bool = False


@dataclass(frozen=True)
class VersionAssignment:
    """Every field resolved for one dependency, applied to the record in one step."""

    all_versions: tuple[Version, ...]
    current_version: Version
    latest_version: Version | None = None
    latest_minor_version: Version | None = None
    requested_version: Version | None = None
    is_current_version_invalid: bool = False
    is_requested_version_invalid: bool = False


@dataclass(eq=False)
class Dependency:
    """One declared package inside one project manifest."""

    name: str
    current_version: Version
    source: PackageSource = PackageSource.UNKNOWN
    order: int = 0
    dev_dependency: bool = False
    all_versions: list[Version] = field(default_factory=list)
    latest_version: Version | None = None
    latest_minor_version: Version | None = None
    requested_version: Version | None = None
    keep_major: bool = False
    requested_major: int | None = None
    is_current_version_invalid: bool = False
    is_requested_version_invalid: bool = False
    has_failed: bool = False
    failure_message: str | None = None
    project_name: str | None = None
    package_url: str | None = None
    project_url: str | None = None

    @classmethod
    def declared(
        cls,
        name: str,
        version_text: str | None,
        source: PackageSource = PackageSource.UNKNOWN,
        order: int = 0,
        dev_dependency: bool = False,
    ) -> "Dependency":
        """Create a record straight from manifest text."""
        return cls(
            name=name,
            current_version=parse_version(version_text),
            source=source,
            order=order,
            dev_dependency=dev_dependency,
        )

    @property
    def is_latest_version(self) -> bool:
        return versions_equal(self.current_version, self.latest_version)

    @property
    def is_latest_minor_version(self) -> bool:
        return versions_equal(self.current_version, self.latest_minor_version)

    @property
    def is_requested_version_match(self) -> bool:
        return self.requested_version is not None and versions_equal(
            self.requested_version, self.current_version
        )

    @property
    def has_version_mismatch(self) -> bool:
        """Whether the current version differs from the target under the bound settings."""
        if self.requested_version is None:
            if self.keep_major:
                return not self.is_latest_minor_version
            return not self.is_latest_version
        return not versions_equal(self.current_version, self.requested_version)

    @property
    def desired_version(self) -> Version | None:
        """Requested version, else latest-minor when keeping the major, else latest."""
        if self.requested_version is not None:
            return self.requested_version
        return self.latest_minor_version if self.keep_major else self.latest_version

    @property
    def latest_version_url(self) -> str | None:
        if self.latest_version is None:
            return None
        return self.latest_version.version_url(self.package_url)

    @property
    def target_framework(self) -> str | None:
        """First released framework supported by the desired (else current) version."""
        version = self.desired_version or self.current_version
        if version is None:
            return None
        platform = next((p for p in version.platforms if not p.version.is_pre_release), None)
        if platform is None:
            return None
        return platform.nickname or platform.short_name

    def apply_settings(self, settings: SelectionSettings) -> None:
        self.keep_major = settings.keep_major
        self.requested_major = settings.requested_major

    def apply_assignment(self, assignment: VersionAssignment) -> None:
        # No awaits in here: a concurrent reader sees all fields or none.
        self.all_versions = list(assignment.all_versions)
        self.current_version = assignment.current_version
        self.latest_version = assignment.latest_version
        self.latest_minor_version = assignment.latest_minor_version
        self.requested_version = assignment.requested_version
        self.is_current_version_invalid = assignment.is_current_version_invalid
        self.is_requested_version_invalid = assignment.is_requested_version_invalid

    def set_failure(self, reason: str | BaseException) -> None:
        self.has_failed = True
        self.failure_message = str(reason)

    def clear_failure(self) -> None:
        self.has_failed = False
        self.failure_message = None

    def __str__(self) -> str:
        return f"{self.name}: {self.current_version} - {len(self.all_versions)} versions"


def _matches_any(name: str, fragments: list[str]) -> bool:
    lowered = name.lower()
    return any(fragment.lower() in lowered for fragment in fragments)


@dataclass
class Project:
    """Dependencies declared in one manifest file."""

    name: str
    file_path: str
    dependencies: list[Dependency] = field(default_factory=list)
    source: PackageSource = PackageSource.UNKNOWN

    @property
    def is_valid(self) -> bool:
        return bool(self.name) and bool(self.file_path) and len(self.dependencies) > 0

    @property
    def file_name(self) -> str:
        return Path(self.file_path).name

    def update_dependency_project_names(self) -> None:
        for dependency in self.dependencies:
            dependency.project_name = self.name

    def filter(self, include: list[str] | None = None, ignore: list[str] | None = None) -> "Project":
        """Keep dependencies whose names contain an include fragment and no ignore fragment."""
        dependencies = self.dependencies
        if include:
            dependencies = [d for d in dependencies if _matches_any(d.name, include)]
        if ignore:
            dependencies = [d for d in dependencies if not _matches_any(d.name, ignore)]
        return Project(
            name=self.name,
            file_path=self.file_path,
            dependencies=dependencies,
            source=self.source,
        )


@dataclass
class ProjectList:
    """All valid projects found under one path."""

    projects: list[Project] = field(default_factory=list)

    @property
    def all_dependencies(self) -> list[Dependency]:
        return [d for project in self.projects for d in project.dependencies]

    @property
    def primary_project(self) -> Project | None:
        if not self.projects:
            return None
        return min(self.projects, key=lambda p: len(p.file_path))

    def add_project(self, project: Project) -> bool:
        if not project.is_valid:
            return False
        self.projects.append(project)
        return True

    def update_project_names(self) -> None:
        for project in self.projects:
            project.update_dependency_project_names()

    def filter(self, include: list[str] | None = None, ignore: list[str] | None = None) -> None:
        filtered = [project.filter(include, ignore) for project in self.projects]
        self.projects = [project for project in filtered if project.is_valid]


class UpdateAction(str, Enum):
    SKIP = "skip"
    UPDATE = "update"
    FAIL = "fail"


@dataclass(frozen=True)
class PlannedUpdate:
    """What the patcher will do for one dependency."""

    dependency: Dependency
    action: UpdateAction
    target: Version | None = None
    reason: str | None = None


@dataclass
class UpdateOutcome:
    dependency: Dependency
    updated: bool
    failed: bool
    message: str | None = None


@dataclass
class UpdateResult:
    """Report of changes made to one or more manifests."""

    outcomes: list[UpdateOutcome] = field(default_factory=list)

    def add(self, dependency: Dependency, updated: bool, failed: bool, message: str | None = None) -> None:
        self.outcomes.append(UpdateOutcome(dependency, updated, failed, message))

    def extend(self, other: "UpdateResult") -> None:
        self.outcomes.extend(other.outcomes)

    @property
    def failed(self) -> bool:
        return any(outcome.failed for outcome in self.outcomes)

    @property
    def updated_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.updated)

    @property
    def failed_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.failed)
