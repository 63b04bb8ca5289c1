"""Exception shared by every build stage."""


class BuildError(RuntimeError):
    """Raised when a build cannot be completed."""
