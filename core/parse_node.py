"""Node.js package.json parsing."""

import json

from .errors import ManifestError
from .models import Dependency, PackageSource

DEPENDENCY_SECTIONS = (("dependencies", False), ("devDependencies", True))


def parse_package_json(content: str) -> list[Dependency]:
    """Parse package.json content into dependency records.

    Regular dependencies come first, then dev dependencies; `order` is the
    position inside each section.

    Args:
        content: The package.json file content

    Returns:
        Declared dependencies

    Raises:
        ManifestError: content is not a JSON object
    """
    try:
        document = json.loads(content)
    except json.JSONDecodeError as e:
        raise ManifestError(f"Could not parse package.json: {e}") from e
    if not isinstance(document, dict):
        raise ManifestError("package.json must contain a JSON object")

    dependencies: list[Dependency] = []
    for section, dev in DEPENDENCY_SECTIONS:
        declared = document.get(section) or {}
        if not isinstance(declared, dict):
            continue
        for order, (name, version) in enumerate(declared.items()):
            if not isinstance(version, str):
                continue
            dependencies.append(
                Dependency.declared(name, version, PackageSource.NPM, order=order, dev_dependency=dev)
            )
    return dependencies
