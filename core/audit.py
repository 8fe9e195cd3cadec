"""Decoding of `npm audit --json` reports.

The `via` entries of a vulnerability are either the name of another
vulnerable package or a full advisory object. They are decoded once, at the
wire boundary, into `ViaReference` / `ViaAdvisory`; everything downstream
branches on `.kind`.
"""

import json
from dataclasses import dataclass, field
from typing import Literal, Union

from .errors import PkgDriftError
from .models import ProjectList
from .version import Vulnerability


@dataclass(frozen=True)
class ViaReference:
    """Vulnerable because of another package in the tree."""

    name: str
    kind: Literal["reference"] = "reference"


@dataclass(frozen=True)
class ViaAdvisory:
    """A published advisory against this package."""

    source: int | None = None
    name: str = ""
    dependency: str = ""
    title: str = ""
    url: str = ""
    severity: str = ""
    range: str = ""
    kind: Literal["advisory"] = "advisory"


Via = Union[ViaReference, ViaAdvisory]


@dataclass
class AuditVulnerability:
    name: str
    severity: str = ""
    is_direct: bool = False
    via: list[Via] = field(default_factory=list)
    effects: list[str] = field(default_factory=list)
    range: str = ""
    nodes: list[str] = field(default_factory=list)

    @property
    def advisories(self) -> list[ViaAdvisory]:
        return [item for item in self.via if item.kind == "advisory"]


@dataclass
class AuditReport:
    audit_report_version: int = 0
    vulnerabilities: dict[str, AuditVulnerability] = field(default_factory=dict)


def _decode_via(item) -> Via:
    if isinstance(item, str):
        return ViaReference(name=item)
    if isinstance(item, dict):
        return ViaAdvisory(
            source=item.get("source"),
            name=item.get("name", ""),
            dependency=item.get("dependency", ""),
            title=item.get("title", ""),
            url=item.get("url", ""),
            severity=item.get("severity", ""),
            range=item.get("range", ""),
        )
    raise PkgDriftError(f"Unexpected 'via' entry in audit report: {item!r}")


def parse_audit_report(text: str) -> AuditReport:
    """Parse the JSON printed by `npm audit --json`.

    Raises:
        PkgDriftError: the text is not an audit report
    """
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise PkgDriftError(f"Could not parse audit report: {e}") from e
    if not isinstance(document, dict):
        raise PkgDriftError("Audit report must be a JSON object")

    vulnerabilities = {}
    for name, entry in (document.get("vulnerabilities") or {}).items():
        vulnerabilities[name] = AuditVulnerability(
            name=entry.get("name", name),
            severity=entry.get("severity", ""),
            is_direct=bool(entry.get("isDirect", False)),
            via=[_decode_via(item) for item in entry.get("via") or []],
            effects=list(entry.get("effects") or []),
            range=entry.get("range", ""),
            nodes=list(entry.get("nodes") or []),
        )

    return AuditReport(
        audit_report_version=int(document.get("auditReportVersion") or 0),
        vulnerabilities=vulnerabilities,
    )


def attach_audit(projects: ProjectList, report: AuditReport) -> int:
    """Attach advisories to the current version of matching direct dependencies.

    Returns:
        Number of dependencies that received at least one advisory
    """
    touched = 0
    for dependency in projects.all_dependencies:
        entry = report.vulnerabilities.get(dependency.name)
        if entry is None or not entry.is_direct:
            continue
        advisories = [
            Vulnerability(
                advisory_url=advisory.url or None,
                severity=advisory.severity or entry.severity or None,
                title=advisory.title or None,
                affected_range=advisory.range or None,
            )
            for advisory in entry.advisories
        ]
        if not advisories:
            continue
        dependency.current_version = dependency.current_version.with_vulnerabilities(advisories)
        touched += 1
    return touched
