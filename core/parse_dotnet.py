"""MSBuild project file (*.csproj, *.Packages.props) parsing."""

import re

from .models import Dependency, PackageSource

_PACKAGE_REFERENCE = re.compile(
    r'(?<!<!--)(?<!<!-- )<Package(?:Reference|Version)\s+Include="(?P<name>[^"]+)"\s+'
    r'Version="(?P<version>[^"]+)"\s*/?>(?!\s*-->)',
    re.IGNORECASE,
)


def parse_project_file(content: str) -> list[Dependency]:
    """Parse PackageReference / PackageVersion elements into dependency records.

    Commented-out references are skipped. When a package is declared twice
    the last declaration wins but keeps the first position.

    Args:
        content: The project or props file content

    Returns:
        Declared dependencies
    """
    declared: dict[str, tuple[str, str]] = {}
    for match in _PACKAGE_REFERENCE.finditer(content or ""):
        name, version = match.group("name").strip(), match.group("version").strip()
        if name and version:
            declared[name.lower()] = (name, version)

    return [
        Dependency.declared(name, version, PackageSource.NUGET, order=order)
        for order, (name, version) in enumerate(declared.values())
    ]
