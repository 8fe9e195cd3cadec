"""Plan and apply in-place version updates to manifest text."""

import logging
import re
from pathlib import Path

from .errors import ManifestError
from .models import (
    Dependency,
    PackageSource,
    PlannedUpdate,
    Project,
    ProjectList,
    SelectionSettings,
    UpdateAction,
    UpdateResult,
)

logger = logging.getLogger("pkgdrift.patch")

NOT_FOUND_MESSAGE = "Could not find package in file."
NOT_REWRITTEN_MESSAGE = "Could not update version in file."
NO_TARGET_MESSAGE = "No target version available."

_UTF8_BOM = "\ufeff"


def plan_updates(
    dependencies: list[Dependency], settings: SelectionSettings | None = None
) -> list[PlannedUpdate]:
    """Decide, per dependency, whether and where to move its version.

    Failed records and records without current version text are left out.
    The result is ordered by declaration order; planning never mutates the
    records beyond binding `settings` when given.
    """
    if settings is not None:
        for dependency in dependencies:
            dependency.apply_settings(settings)

    included = sorted(
        (
            d
            for d in dependencies
            if not d.has_failed and d.current_version is not None and d.current_version.raw.strip()
        ),
        key=lambda d: d.order,
    )

    plan: list[PlannedUpdate] = []
    for dependency in included:
        if not dependency.has_version_mismatch:
            plan.append(PlannedUpdate(dependency, UpdateAction.SKIP))
            continue
        target = dependency.desired_version
        if target is None:
            plan.append(PlannedUpdate(dependency, UpdateAction.FAIL, reason=NO_TARGET_MESSAGE))
            continue
        plan.append(PlannedUpdate(dependency, UpdateAction.UPDATE, target=target))
    return plan


def _npm_declaration(name: str) -> re.Pattern:
    # "name": "<operators><version>"  -- operators and trailing text survive
    return re.compile(
        r'(?P<head>"' + re.escape(name) + r'"\s*:\s*"[~^>=<v\s]*)(?P<version>\d[^"\s|]*)'
    )


def _nuget_declaration(name: str) -> re.Pattern:
    return re.compile(
        r'(?P<head><Package(?:Reference|Version)\s+Include="'
        + re.escape(name)
        + r'"\s+Version=")(?P<version>[^"]+)(?="\s*/?>)',
        re.IGNORECASE,
    )


def replace_version_in_line(line: str, name: str, new_version: str, source: PackageSource) -> str:
    """Substitute only the version token of a package declaration on one line.

    Args:
        line: A manifest line
        name: Package name declared on the line
        new_version: Version text to write
        source: Manifest family, selecting the declaration syntax

    Returns:
        The line with the version replaced, or unchanged when no declaration matched
    """
    if not line:
        return line
    if source is PackageSource.NUGET:
        pattern = _nuget_declaration(name)
    elif source is PackageSource.NPM:
        pattern = _npm_declaration(name)
    else:
        raise ValueError(f"Unsupported package source: {source}")
    return pattern.sub(lambda m: m.group("head") + new_version, line, count=1)


def _find_declaration(lines: list[str], dependency: Dependency) -> int:
    quoted = f'"{dependency.name}"'
    current = dependency.current_version.raw
    for index, line in enumerate(lines):
        if quoted in line and current in line:
            return index
    return -1


def apply_updates(plan: list[PlannedUpdate], lines: list[str]) -> tuple[list[str], UpdateResult]:
    """Apply a plan to manifest lines.

    Every record gets an outcome; one record failing never stops the others.

    Returns:
        The new line list and the per-record outcomes
    """
    lines = list(lines)
    result = UpdateResult()

    for item in plan:
        dependency = item.dependency
        if item.action is UpdateAction.SKIP:
            result.add(dependency, updated=False, failed=False)
            continue
        if item.action is UpdateAction.FAIL:
            result.add(dependency, updated=False, failed=True, message=item.reason)
            continue

        try:
            index = _find_declaration(lines, dependency)
            if index == -1:
                result.add(dependency, updated=False, failed=True, message=NOT_FOUND_MESSAGE)
                continue

            new_line = replace_version_in_line(
                lines[index], dependency.name, item.target.normalized, dependency.source
            )
            if new_line == lines[index]:
                result.add(dependency, updated=False, failed=True, message=NOT_REWRITTEN_MESSAGE)
                continue

            lines[index] = new_line
            result.add(dependency, updated=True, failed=False)
            logger.debug("%s: %s -> %s", dependency.name, dependency.current_version, item.target)
        except Exception as e:
            logger.warning("Update failed for %s: %s", dependency.name, e)
            result.add(dependency, updated=False, failed=True, message=str(e))

    return lines, result


def patch_manifest_text(
    content: str, dependencies: list[Dependency], settings: SelectionSettings | None = None
) -> tuple[str, UpdateResult]:
    """Plan and apply updates to manifest text, keeping its line endings."""
    newline = "\r\n" if "\r\n" in content else "\n"
    lines, result = apply_updates(plan_updates(dependencies, settings), content.split(newline))
    return newline.join(lines), result


def update_manifest(project: Project, settings: SelectionSettings | None = None) -> UpdateResult:
    """Rewrite one manifest file in place.

    The file is read once and written back once, with the same encoding,
    byte-order mark and line-ending convention.

    Raises:
        ManifestError: the file is missing or unreadable
    """
    path = Path(project.file_path)
    if not path.is_file():
        raise ManifestError(f"Could not find file: {path}", path=str(path))
    try:
        with open(path, encoding="utf-8", newline="") as handle:
            content = handle.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestError(f"Could not read file {path}: {e}", path=str(path)) from e

    bom = content.startswith(_UTF8_BOM)
    if bom:
        content = content[len(_UTF8_BOM):]

    new_content, result = patch_manifest_text(content, project.dependencies, settings)
    if not result.outcomes:
        return result

    try:
        with open(path, "w", encoding="utf-8", newline="") as handle:
            handle.write((_UTF8_BOM if bom else "") + new_content)
    except OSError as e:
        raise ManifestError(f"Could not write file {path}: {e}", path=str(path)) from e

    logger.info("Updated %d of %d packages in %s", result.updated_count, len(result.outcomes), path)
    return result


def update_projects(projects: ProjectList, settings: SelectionSettings | None = None) -> UpdateResult:
    """Rewrite every project manifest, one file at a time.

    Raises:
        ValueError: there are no projects with dependencies to update
        ManifestError: a manifest file is missing or unreadable
    """
    if not projects.projects or any(not p.dependencies for p in projects.projects):
        raise ValueError("No projects found to update.")

    result = UpdateResult()
    for project in projects.projects:
        result.extend(update_manifest(project, settings))
    return result
