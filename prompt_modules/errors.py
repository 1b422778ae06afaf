"""Error taxonomy for module resolution.

Every failure raised by this package derives from ModuleLoadError so callers
can catch resolution problems with a single except clause, while still being
able to tell a missing package from a rate-limited API or a version conflict.
"""

from __future__ import annotations


class ModuleLoadError(Exception):
    """Raised when a module or prompt source cannot be resolved."""

    def with_context(self, context: str) -> ModuleLoadError:
        """Return a copy of this error with ``context`` prepended to its message.

        The copy keeps the concrete class and any extra attributes (status codes,
        version info) so callers can still dispatch on the error type.

        Args:
            context: Operation and origin description, e.g. 'Failed to load npm package "x"'

        Returns:
            New error instance of the same class
        """
        wrapped = self.__class__.__new__(self.__class__)
        wrapped.__dict__.update(self.__dict__)
        wrapped.args = (f"{context}: {self}",)
        return wrapped


class NotFoundError(ModuleLoadError):
    """Missing local path, package, tarball or a 404 response."""


class VersionConflictError(ModuleLoadError):
    """Two different explicit versions were requested for one package name."""

    def __init__(
        self,
        message: str,
        *,
        name: str | None = None,
        requested: str | None = None,
        loaded: str | None = None,
    ):
        super().__init__(message)
        self.name = name
        self.requested = requested
        self.loaded = loaded


class RateLimitedError(ModuleLoadError):
    """The hosting API refused the request because of rate limiting."""


class MalformedSourceError(ModuleLoadError):
    """A source identifier or archive entry does not have the expected shape."""


class InvalidPackageReferenceError(ModuleLoadError):
    """A package reference's default export is not a usable prompt source factory."""


class NetworkFailureError(ModuleLoadError):
    """Transport-level failure or an unexpected non-2xx HTTP response."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def wrap_error(error: Exception, context: str) -> ModuleLoadError:
    """Attach operation context to any exception raised during resolution.

    Args:
        error: Original exception
        context: Operation and origin description

    Returns:
        ModuleLoadError (same subclass when the original already was one)
    """
    if isinstance(error, ModuleLoadError):
        return error.with_context(context)
    return ModuleLoadError(f"{context}: {error}")
