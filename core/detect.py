"""Ecosystem detection for dependency manifests."""

import re


def identify(content: str, filename: str | None = None) -> str:
    """Detect ecosystem from content and filename hints.

    Args:
        content: The manifest file content
        filename: Optional filename for additional context

    Returns:
        Detected ecosystem: 'npm', 'nuget', or 'unknown'
    """
    # Filename-based detection (takes precedence)
    if filename:
        lowered = filename.lower()
        if lowered.endswith("package.json"):
            return "npm"
        if lowered.endswith((".csproj", ".props")):
            return "nuget"

    # MSBuild package references
    nuget_patterns = [
        r"<PackageReference\s+Include=",
        r"<PackageVersion\s+Include=",
    ]

    for pattern in nuget_patterns:
        if re.search(pattern, content, re.IGNORECASE):
            return "nuget"

    # Node.js patterns
    node_patterns = [
        r'"dependencies"\s*:',
        r'"devDependencies"\s*:',
    ]

    for pattern in node_patterns:
        if re.search(pattern, content):
            return "npm"

    return "unknown"
