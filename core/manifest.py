"""Locate and load manifest files under a path."""

import logging
from pathlib import Path

from .errors import ManifestError
from .models import PackageSource, Project, ProjectList
from .parse_dotnet import parse_project_file
from .parse_node import parse_package_json

logger = logging.getLogger("pkgdrift.manifest")

PACKAGE_JSON = "package.json"
PACKAGES_PROPS_PATTERN = "*.Packages.props"
CSPROJ_PATTERN = "*.csproj"


def read_manifest(path: str | Path) -> str:
    """Read a manifest file as text.

    Raises:
        ManifestError: the file is missing, unreadable or not UTF-8
    """
    file_path = Path(path)
    if not file_path.is_file():
        raise ManifestError(f"Could not find file: {file_path}", path=str(file_path))
    try:
        return file_path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestError(f"Could not read file {file_path}: {e}", path=str(file_path)) from e


def load_project(path: str | Path, source: PackageSource) -> Project:
    """Load one manifest file as a project named after its folder."""
    file_path = Path(path).resolve()
    content = read_manifest(file_path)
    if source is PackageSource.NPM:
        dependencies = parse_package_json(content)
    elif source is PackageSource.NUGET:
        dependencies = parse_project_file(content)
    else:
        raise ValueError(f"Unsupported package source: {source}")

    project = Project(
        name=file_path.parent.name,
        file_path=str(file_path),
        dependencies=dependencies,
        source=source,
    )
    project.update_dependency_project_names()
    return project


def _require_path(path: str | Path) -> Path:
    root = Path(path)
    if not root.exists():
        raise ManifestError(f"Path does not exist: {root}", path=str(root))
    return root


def _is_hidden_or_vendored(path: Path, root: Path) -> bool:
    relative = path.parent.relative_to(root).parts
    return any(part.startswith(".") or part.lower() == "node_modules" for part in relative)


def load_npm_projects(path: str | Path) -> ProjectList:
    """Load a package.json file, or every package.json below a folder.

    Folders inside node_modules and dot-folders are skipped.
    """
    root = _require_path(path)
    result = ProjectList()
    if root.is_file():
        result.add_project(load_project(root, PackageSource.NPM))
        return result

    for manifest in sorted(root.rglob(PACKAGE_JSON)):
        if _is_hidden_or_vendored(manifest, root):
            continue
        if not result.add_project(load_project(manifest, PackageSource.NPM)):
            logger.debug("Skipping %s: no dependencies", manifest)
    return result


def find_packages_props(folder: Path, search_down: bool = True) -> Path | None:
    """Find a central package management file below a folder, then up through its parents."""
    matches = folder.rglob(PACKAGES_PROPS_PATTERN) if search_down else folder.glob(PACKAGES_PROPS_PATTERN)
    found = next(iter(sorted(matches)), None)
    if found is not None:
        return found
    if folder.parent != folder:
        return find_packages_props(folder.parent, search_down=False)
    return None


def load_nuget_projects(path: str | Path) -> ProjectList:
    """Load a project file, or the projects of a solution folder.

    A *.Packages.props file takes precedence over individual *.csproj files.
    """
    root = _require_path(path)
    result = ProjectList()
    if root.is_file():
        result.add_project(load_project(root, PackageSource.NUGET))
        return result

    props = find_packages_props(root.resolve())
    if props is not None:
        result.add_project(load_project(props, PackageSource.NUGET))
        return result

    for manifest in sorted(root.rglob(CSPROJ_PATTERN)):
        if not result.add_project(load_project(manifest, PackageSource.NUGET)):
            logger.debug("Skipping %s: no package references", manifest)
    return result


def load_projects(path: str | Path, source: PackageSource) -> ProjectList:
    if source is PackageSource.NPM:
        return load_npm_projects(path)
    if source is PackageSource.NUGET:
        return load_nuget_projects(path)
    raise ValueError(f"Unsupported package source: {source}")
