"""Version selection: known versions + settings -> latest / latest-minor / requested."""

from dataclasses import dataclass

from .models import Dependency, SelectionSettings, VersionAssignment
from .version import Version, highest_version

DEFAULT_LEGACY_CHANNEL_MARKER = "ngcc"


@dataclass(frozen=True)
class LegacyChannelPolicy:
    """Versions tagged with a vendor's compatibility marker form their own branch.

    Syncfusion's Angular compatibility packages publish "-ngcc" builds next to
    the regular ones. A package declared on that branch is only compared with
    tagged versions; every other package never sees them.
    """

    marker: str | None = DEFAULT_LEGACY_CHANNEL_MARKER

    def applies_to(self, version: Version | None) -> bool:
        if not self.marker or version is None:
            return False
        return self.marker.lower() in version.raw.lower()


DEFAULT_POLICY = LegacyChannelPolicy()


def _highest_with_major(versions, major: str | None) -> Version | None:
    return highest_version(v for v in versions if v.major == major)


def select_versions(
    current: Version,
    discovered: list[Version],
    requested_major: int | None = None,
    policy: LegacyChannelPolicy = DEFAULT_POLICY,
) -> VersionAssignment:
    """Resolve every version field for one dependency.

    Args:
        current: Version declared in the manifest
        discovered: All versions returned by the registry
        requested_major: Major version to pin against, ignored unless > 0
        policy: Legacy compatibility channel handling

    Returns:
        The assignment to apply to the dependency record
    """
    if policy.applies_to(current):
        candidates = list(discovered)
    else:
        candidates = [v for v in discovered if not policy.applies_to(v)]

    if not candidates:
        return VersionAssignment(all_versions=(), current_version=current)

    latest = highest_version(candidates) or candidates[0]
    latest_minor = _highest_with_major(candidates, current.major) or current

    if current.is_wildcard:
        resolved = highest_version(candidates)
    else:
        resolved = next((v for v in candidates if v.normalized == current.normalized), None)
    current_invalid = resolved is None
    resolved_current = resolved or current

    requested = None
    requested_invalid = False
    wants_major = requested_major is not None and requested_major > 0
    if wants_major:
        requested = _highest_with_major(candidates, str(requested_major))
        requested_invalid = requested is None

    # Edge channel: a package on the tagged branch only competes with tagged versions.
    if policy.applies_to(resolved_current):
        tagged = [v for v in candidates if policy.applies_to(v)]
        latest = highest_version(tagged) or highest_version(candidates)
        latest_minor = _highest_with_major(tagged, resolved_current.major) or resolved_current
        if wants_major:
            requested = _highest_with_major(tagged, str(requested_major))
            requested_invalid = requested is None

    return VersionAssignment(
        all_versions=tuple(candidates),
        current_version=resolved_current,
        latest_version=latest,
        latest_minor_version=latest_minor,
        requested_version=requested,
        is_current_version_invalid=current_invalid,
        is_requested_version_invalid=requested_invalid,
    )


def assign_versions(
    dependency: Dependency,
    versions: list[Version],
    settings: SelectionSettings | None = None,
    policy: LegacyChannelPolicy = DEFAULT_POLICY,
) -> Dependency:
    """Resolve and store the version fields of a dependency in place."""
    if settings is not None:
        dependency.apply_settings(settings)
    assignment = select_versions(
        dependency.current_version,
        versions,
        requested_major=dependency.requested_major,
        policy=policy,
    )
    dependency.apply_assignment(assignment)
    return dependency
