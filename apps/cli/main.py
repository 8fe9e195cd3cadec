"""CLI application for pkgdrift."""

import asyncio
import json
import logging

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from core.audit import attach_audit, parse_audit_report
from core.errors import PkgDriftError
from core.manifest import load_projects, read_manifest
from core.models import (
    Dependency,
    PackageSource,
    Project,
    ProjectList,
    SelectionSettings,
    UpdateResult,
)
from core.patch import update_projects
from core.refresh import refresh_projects

console = Console()

_SEVERITY_STYLES = {"low": "yellow", "moderate": "dark_orange", "medium": "dark_orange", "high": "red"}


def split_names(value: str | None) -> list[str]:
    """Split a comma separated option into package name fragments."""
    return [name.strip() for name in (value or "").split(",") if name.strip()]


def dependency_status(dependency: Dependency) -> tuple[str, str]:
    """Return a status label and its Rich style for one dependency."""
    if dependency.has_failed:
        return f"failed: {dependency.failure_message}", "red"
    if dependency.is_current_version_invalid:
        return "invalid version", "red"
    if dependency.is_requested_version_invalid:
        return "requested major not found", "red"
    vulnerable = ", vulnerable" if dependency.current_version.vulnerabilities else ""
    if dependency.has_version_mismatch:
        return "outdated" + vulnerable, "yellow"
    return "up to date" + vulnerable, "red" if vulnerable else "green"


def build_table(project: Project, selection: SelectionSettings, show_url: bool = False) -> Table:
    """Build the Rich table for one project."""
    table = Table(title=f"{project.name} ({project.file_name})", title_justify="left")
    table.add_column("Package")
    table.add_column("Current")
    table.add_column("Latest minor" if selection.keep_major else "Latest")
    if selection.requested_major:
        table.add_column(f"Requested ({selection.requested_major}.x)")
    if project.source is PackageSource.NUGET:
        table.add_column("Framework")
    table.add_column("Status")
    if show_url:
        table.add_column("URL", overflow="fold")

    for dependency in sorted(project.dependencies, key=lambda d: (d.dev_dependency, d.order)):
        status, style = dependency_status(dependency)
        target = dependency.latest_minor_version if selection.keep_major else dependency.latest_version
        name = escape(dependency.name) + (" [dim](dev)[/]" if dependency.dev_dependency else "")
        row = [name, escape(dependency.current_version.raw), str(target or "-")]
        if selection.requested_major:
            row.append(str(dependency.requested_version or "-"))
        if project.source is PackageSource.NUGET:
            row.append(dependency.target_framework or "-")
        row.append(f"[{style}]{escape(status)}[/]")
        if show_url:
            row.append(dependency.latest_version_url or dependency.package_url or "")
        table.add_row(*row)
    return table


def build_vulnerability_table(projects: ProjectList) -> Table | None:
    """List every advisory on a current version, or None when there are none."""
    table = Table(title="Vulnerabilities", title_justify="left")
    table.add_column("Project")
    table.add_column("Package")
    table.add_column("Severity")
    table.add_column("Details", overflow="fold")

    for dependency in projects.all_dependencies:
        for vulnerability in dependency.current_version.vulnerabilities:
            severity = (vulnerability.severity or "unknown").lower()
            style = _SEVERITY_STYLES.get(severity, "bold red")
            details = vulnerability.advisory_url or vulnerability.title or ""
            table.add_row(
                escape(dependency.project_name or ""),
                f"{escape(dependency.name)} {escape(dependency.current_version.raw)}",
                f"[{style}]{escape(severity)}[/]",
                escape(details),
            )
    return table if table.row_count else None


def summarize(projects: ProjectList) -> dict[str, int]:
    dependencies = projects.all_dependencies
    return {
        "total": len(dependencies),
        "outdated": sum(1 for d in dependencies if not d.has_failed and d.has_version_mismatch),
        "invalid": sum(1 for d in dependencies if d.is_current_version_invalid or d.is_requested_version_invalid),
        "failed": sum(1 for d in dependencies if d.has_failed),
    }


def format_json_output(projects: ProjectList, update_result: UpdateResult | None = None) -> str:
    """Format JSON output, with the outcome of an update when one ran."""
    reports = []
    for dependency in projects.all_dependencies:
        reports.append({
            "project": dependency.project_name,
            "name": dependency.name,
            "current_version": dependency.current_version.raw,
            "latest_version": str(dependency.latest_version) if dependency.latest_version else None,
            "latest_minor_version": (
                str(dependency.latest_minor_version) if dependency.latest_minor_version else None
            ),
            "requested_version": str(dependency.requested_version) if dependency.requested_version else None,
            "desired_version": str(dependency.desired_version) if dependency.desired_version else None,
            "has_version_mismatch": dependency.has_version_mismatch,
            "is_current_version_invalid": dependency.is_current_version_invalid,
            "framework": dependency.target_framework,
            "vulnerabilities": [
                {"severity": v.severity, "advisory_url": v.advisory_url, "title": v.title}
                for v in dependency.current_version.vulnerabilities
            ],
            "has_failed": dependency.has_failed,
            "failure_message": dependency.failure_message,
        })

    output = {"reports": reports, "summary": summarize(projects)}
    if update_result is not None:
        output["updates"] = [
            {
                "name": outcome.dependency.name,
                "project": outcome.dependency.project_name,
                "updated": outcome.updated,
                "failed": outcome.failed,
                "message": outcome.message,
            }
            for outcome in update_result.outcomes
        ]
    return json.dumps(output, indent=2)


def render_update_result(result: UpdateResult) -> None:
    for outcome in result.outcomes:
        name = escape(outcome.dependency.name)
        if outcome.updated:
            target = outcome.dependency.desired_version
            console.print(f"[green]✓[/] {name} -> {target}")
        elif outcome.failed:
            console.print(f"[red]✗[/] {name}: {escape(outcome.message or 'update failed')}")
    console.print(f"Updated {result.updated_count} package(s), {result.failed_count} failed")


def run(
    source: PackageSource,
    path: str,
    update: bool,
    minor: bool,
    major: int | None,
    pre_release: bool,
    include: str | None,
    ignore: str | None,
    show_url: bool,
    debug: bool,
    verbose: bool,
    format_type: str,
    audit: str | None = None,
) -> None:
    """Load, refresh, render and optionally update the manifests under a path."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG if debug else logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )

    selection = SelectionSettings(keep_major=minor, requested_major=major, include_pre_release=pre_release)

    try:
        projects = load_projects(path, source)
        projects.filter(split_names(include), split_names(ignore))

        if not projects.all_dependencies:
            console.print("No dependencies found")
            raise typer.Exit(0)

        projects = asyncio.run(refresh_projects(projects, source, selection, debug=debug or None))
        if audit:
            attach_audit(projects, parse_audit_report(read_manifest(audit)))

        if format_type == "json":
            # stdout carries exactly one JSON document, update outcome included.
            update_result = update_projects(projects, selection) if update else None
            typer.echo(format_json_output(projects, update_result))
            return

        for project in projects.projects:
            console.print(build_table(project, selection, show_url))
        vulnerabilities = build_vulnerability_table(projects)
        if vulnerabilities is not None:
            console.print(vulnerabilities)
        counts = summarize(projects)
        console.print(
            f"{counts['total']} packages: [yellow]{counts['outdated']} outdated[/], "
            f"[red]{counts['invalid']} invalid[/], [red]{counts['failed']} failed[/]"
        )

        if update:
            render_update_result(update_projects(projects, selection))

    except typer.Exit:
        raise
    except (PkgDriftError, ValueError) as e:
        console.print(f"Error: {escape(str(e))}", style="red")
        raise typer.Exit(1)


app = typer.Typer(
    name="pkgdrift",
    help="pkgdrift - Check npm and NuGet dependencies against their registries and update manifests",
    add_completion=False,
)

PathArgument = typer.Argument(".", help="Manifest file or folder to scan")
UpdateOption = typer.Option(False, "--update", "-u", help="Rewrite manifests to the desired versions")
MinorOption = typer.Option(False, "--minor", "-m", help="Keep the current major version")
MajorOption = typer.Option(None, "--major", help="Pin against this major version")
PreReleaseOption = typer.Option(False, "--pre-release", "-p", help="Include pre-release versions")
IncludeOption = typer.Option(None, "--include", help="Only packages whose names contain these (comma separated)")
IgnoreOption = typer.Option(None, "--ignore", help="Skip packages whose names contain these (comma separated)")
UrlOption = typer.Option(False, "--url", help="Show package URLs")
DebugOption = typer.Option(False, "--debug", help="Query the registry one package at a time")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Enable logging")
FormatOption = typer.Option("table", "--format", help="Output format: table or json")
AuditOption = typer.Option(None, "--audit", help="Attach advisories from a saved npm audit --json report")


@app.command()
def npm(
    path: str = PathArgument,
    update: bool = UpdateOption,
    minor: bool = MinorOption,
    major: int | None = MajorOption,
    pre_release: bool = PreReleaseOption,
    include: str | None = IncludeOption,
    ignore: str | None = IgnoreOption,
    show_url: bool = UrlOption,
    debug: bool = DebugOption,
    verbose: bool = VerboseOption,
    format_type: str = FormatOption,
    audit: str | None = AuditOption,
) -> None:
    """Check package.json dependencies against the npm registry."""
    run(PackageSource.NPM, path, update, minor, major, pre_release, include, ignore,
        show_url, debug, verbose, format_type, audit)


@app.command()
def nuget(
    path: str = PathArgument,
    update: bool = UpdateOption,
    minor: bool = MinorOption,
    major: int | None = MajorOption,
    pre_release: bool = PreReleaseOption,
    include: str | None = IncludeOption,
    ignore: str | None = IgnoreOption,
    show_url: bool = UrlOption,
    debug: bool = DebugOption,
    verbose: bool = VerboseOption,
    format_type: str = FormatOption,
) -> None:
    """Check *.csproj / *.Packages.props references against the NuGet registry."""
    run(PackageSource.NUGET, path, update, minor, major, pre_release, include, ignore,
        show_url, debug, verbose, format_type)


if __name__ == "__main__":
    app()
