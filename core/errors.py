"""Exceptions raised by the pkgdrift core."""


class PkgDriftError(Exception):
    """Base class for pkgdrift errors."""


class RegistryError(PkgDriftError):
    """A registry lookup for one package failed.

    Caught by the refresh pipeline and recorded on the dependency; it never
    aborts sibling lookups.
    """


class ManifestError(PkgDriftError):
    """A manifest file is missing, unreadable or cannot be decoded.

    Fatal for the project it belongs to and propagated to the caller.
    """

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path
