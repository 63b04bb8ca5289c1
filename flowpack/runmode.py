"""Run-mode resolution."""

from collections.abc import Sequence
import enum

from flowpack import constants


class RunMode(enum.Enum):
    """Startup posture, fixed for the lifetime of a process."""

    DESIGN_TIME = 1
    PRODUCTION_LOCKED = 2
    PRODUCTION_FREE_ROAM = 3

    @property
    def label(self) -> str:
        """Human-readable name shown in titles and logs."""

        return _LABELS[self]

    @property
    def read_only(self) -> bool:
        """Whether the runtime must treat flows as read-only."""

        return self is RunMode.PRODUCTION_LOCKED


_LABELS: dict[RunMode, str] = {
    RunMode.DESIGN_TIME: "Design Time",
    RunMode.PRODUCTION_LOCKED: "Production (Locked)",
    RunMode.PRODUCTION_FREE_ROAM: "Production (Free Roam)",
}


def resolve_run_mode(argv: Sequence[str], *, embedded_flow_exists: bool) -> RunMode:
    """Pick the run mode from the first argument and the embedded flows file.

    ``--develop`` always wins. Otherwise ``--noload``, or a bundle without an
    embedded flows file, means free roam. Anything else is locked.

    :param argv: Arguments without the program name.
    :param embedded_flow_exists: Whether the snapshot holds a flows file.
    :returns: Run mode.
    """

    first: str | None = argv[0] if len(argv) > 0 else None
    if first == constants.DEVELOP_FLAG:
        return RunMode.DESIGN_TIME
    if first == constants.NOLOAD_FLAG or embedded_flow_exists is False:
        return RunMode.PRODUCTION_FREE_ROAM
    return RunMode.PRODUCTION_LOCKED
