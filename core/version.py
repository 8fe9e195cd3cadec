"""Version parsing and comparison.

Registry and manifest version strings are freeform ("^23.1.0", "1.0.0-beta.2",
">= 2.1 || 3.0", "9.0.305.1", "*"). They are parsed into a structured value
that keeps the raw text for display and a normalized segment string for
equality. Ordering is a separate operation (`compare_versions`) with its own
rule for missing segments, so the two must not be mixed up.
"""

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from functools import cmp_to_key
from typing import Iterable

DEFAULT_VERSION = "0.0.0"
MAX_SEGMENTS = 7
WILDCARD = "*"

_RANGE_OPERATORS = (" - ", " || ", " && ")
_PREFIX_SYMBOLS = str.maketrans("", "", "^~><=")
_NON_DIGITS = re.compile(r"\D")


class VersionChannel(str, Enum):
    """Release channel parsed from a version suffix."""

    RELEASE = "release"
    ALPHA = "alpha"
    BETA = "beta"
    RELEASE_CANDIDATE = "rc"
    NEXT = "next"
    DEV = "dev"
    NIGHTLY = "nightly"
    CUSTOM = "custom"


# Checked in order; the first marker found wins.
_CHANNEL_MARKERS = (
    ("-alpha", VersionChannel.ALPHA),
    ("-beta", VersionChannel.BETA),
    ("-rc", VersionChannel.RELEASE_CANDIDATE),
    ("-next", VersionChannel.NEXT),
    ("-dev", VersionChannel.DEV),
    ("-nightly", VersionChannel.NIGHTLY),
)


@dataclass(frozen=True)
class Vulnerability:
    """A known advisory affecting one published version."""

    advisory_url: str | None = None
    severity: str | None = None
    title: str | None = None
    cve: str | None = None
    affected_range: str | None = None


@dataclass(frozen=True)
class SupportedPlatform:
    """A target framework a published version declares support for."""

    name: str
    short_name: str
    nickname: str | None = None

    @property
    def version(self) -> "Version":
        """Framework version derived from the nickname (net472 -> 4.7.2, net8.0 -> 8.0)."""
        text = (self.nickname or "0").replace("net", "")
        # .NET Framework monikers carry no dots: 462, 472, 48
        if text.startswith("4") and "." not in text:
            text = ".".join(text)
        return parse_version(text)

    @property
    def any_version(self) -> bool:
        return self.version.major == "0"

    def __str__(self) -> str:
        return str(self.version)


@dataclass(frozen=True)
class Version:
    """An immutable parsed version.

    Equality and hashing use only the normalized segment string; the raw text,
    channel, timestamp and side tables never take part in it.
    """

    normalized: str
    raw: str = field(compare=False)
    segments: tuple[str, ...] = field(default=(), compare=False)
    channel: VersionChannel = field(default=VersionChannel.RELEASE, compare=False)
    published_at: datetime | None = field(default=None, compare=False)
    vulnerabilities: tuple[Vulnerability, ...] = field(default=(), compare=False)
    platforms: tuple[SupportedPlatform, ...] = field(default=(), compare=False)

    def segment(self, index: int) -> str | None:
        if index < len(self.segments):
            return self.segments[index]
        return None

    @property
    def major(self) -> str | None:
        return self.segment(0)

    @property
    def minor(self) -> str | None:
        return self.segment(1)

    @property
    def build(self) -> str | None:
        return self.segment(2)

    @property
    def revisions(self) -> tuple[str | None, ...]:
        return tuple(self.segment(i) for i in range(3, MAX_SEGMENTS))

    @property
    def is_pre_release(self) -> bool:
        return self.channel is not VersionChannel.RELEASE

    @property
    def is_wildcard(self) -> bool:
        return self.major == WILDCARD

    def version_url(self, package_url: str | None) -> str | None:
        if not package_url:
            return None
        return f"{package_url}/v/{self.raw}"

    def with_vulnerabilities(self, vulnerabilities: Iterable[Vulnerability]) -> "Version":
        return replace(self, vulnerabilities=tuple(vulnerabilities))

    def __str__(self) -> str:
        return self.normalized


def _normalize(raw: str) -> str:
    text = raw
    for operator in _RANGE_OPERATORS:
        text = text.replace(operator, " ")
    alternatives = text.split()
    if not alternatives:
        return DEFAULT_VERSION
    return alternatives[-1].translate(_PREFIX_SYMBOLS) or DEFAULT_VERSION


def _classify(raw: str) -> VersionChannel:
    lowered = raw.lower()
    for marker, channel in _CHANNEL_MARKERS:
        if marker in lowered:
            return channel
    if "-" in raw:
        return VersionChannel.CUSTOM
    return VersionChannel.RELEASE


def parse_version(
    raw: str | None,
    published_at: datetime | None = None,
    vulnerabilities: Iterable[Vulnerability] = (),
    platforms: Iterable[SupportedPlatform] = (),
) -> Version:
    """Parse a raw version string.

    Never raises: empty or malformed input degrades to "0.0.0" while the raw
    text is kept for display.

    Args:
        raw: Version text as found in a manifest or registry response
        published_at: Optional publish timestamp from the registry
        vulnerabilities: Advisories known for this version
        platforms: Target frameworks this version supports

    Returns:
        Parsed Version
    """
    raw = raw if raw is not None else ""
    normalized = _normalize(raw)
    segments = tuple(part for part in normalized.split(".") if part)[:MAX_SEGMENTS]
    if not segments:
        normalized = DEFAULT_VERSION
        segments = ("0", "0", "0")

    return Version(
        normalized=normalized,
        raw=raw,
        segments=segments,
        channel=_classify(raw),
        published_at=published_at,
        vulnerabilities=tuple(vulnerabilities),
        platforms=tuple(platforms),
    )


def segment_value(segment: str | None) -> int:
    """Integer value of a segment after dropping non-digit characters; 0 if none remain."""
    if not segment:
        return 0
    digits = _NON_DIGITS.sub("", segment)
    return int(digits) if digits else 0


def compare_versions(left: Version | None, right: Version | None) -> int:
    """Order two versions segment by segment.

    The major segment is always compared. Every later segment is compared only
    while both sides have it; the first segment missing on either side ends the
    comparison with the result so far. This lets "9.0" compare against
    "9.0.305.1" on major/minor only.

    Returns:
        Negative, zero or positive, like a classic cmp function
    """
    if left is None or right is None:
        return (left is not None) - (right is not None)

    result = _cmp(segment_value(left.major), segment_value(right.major))
    if result:
        return result

    for index in range(1, MAX_SEGMENTS):
        mine, theirs = left.segment(index), right.segment(index)
        if not mine or not theirs:
            break
        result = _cmp(segment_value(mine), segment_value(theirs))
        if result:
            return result
    return result


def _cmp(a: int, b: int) -> int:
    return (a > b) - (a < b)


def versions_equal(left: Version | None, right: Version | None) -> bool:
    """Equality on the normalized segment string; two missing versions are equal."""
    if left is None or right is None:
        return left is None and right is None
    return left.normalized == right.normalized


version_sort_key = cmp_to_key(compare_versions)


def highest_version(versions: Iterable[Version]) -> Version | None:
    """Highest version by `compare_versions`; the first of equal candidates wins."""
    return max(versions, key=version_sort_key, default=None)


def sort_versions_descending(versions: Iterable[Version]) -> list[Version]:
    return sorted(versions, key=version_sort_key, reverse=True)
