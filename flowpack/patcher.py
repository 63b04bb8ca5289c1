"""Source patcher.

Applies ordered, literal text substitutions to generated or third-party files
once they exist on disk. A rule whose search text is absent is a no-op, so
upstream text drift never breaks a build.
"""

from dataclasses import dataclass
import logging
import pathlib

from flowpack import constants


@dataclass(frozen=True, slots=True)
class PatchRule:
    """One literal substitution.

    Every occurrence is replaced, not just the first one.

    :ivar search: Exact text to find.
    :ivar replacement: Text substituted for every occurrence.
    """

    search: str
    replacement: str


@dataclass(frozen=True, slots=True)
class PatchReport:
    """Outcome of patching one file.

    :ivar path: Patched file.
    :ivar applied: Rules whose search text was found.
    :ivar missed: Rules whose search text was absent.
    """

    path: pathlib.Path
    applied: tuple[PatchRule, ...]
    missed: tuple[PatchRule, ...]

    @property
    def changed(self) -> bool:
        """Whether at least one rule applied."""

        return len(self.applied) > 0


@dataclass(frozen=True, slots=True)
class CompatShim:
    """A narrow patch to a dependency we do not control.

    :ivar name: Short identifier used in logs.
    :ivar relpath: File path relative to the dependency directory.
    :ivar rules: Ordered rules for that file.
    """

    name: str
    relpath: str
    rules: tuple[PatchRule, ...]


# The runtime reads its own metadata relative to its source file; bundling
# relocates the source, so point it at the copied dependency tree instead.
METADATA_LOOKUP: str = 'os.path.join(os.path.dirname(__file__), "..", "package.json")'
METADATA_LITERAL: str = f'"./{constants.DEPS_OUTPUT_DIR}/flow_runtime/package.json"'

LOCALES_LOOKUP: str = 'os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "locales"))'
LOCALES_EXEC_LOOKUP: str = (
    f'os.path.abspath(os.path.join(os.path.dirname(sys.executable), "{constants.LOCALES_DIR}"))'
)

HTTP_REQUEST_SHIM: CompatShim = CompatShim(
    name="http-request-sync-import",
    relpath="flow_runtime/nodes/core/network/http_request.py",
    rules=(
        PatchRule(
            search='httpx = await asyncio.to_thread(importlib.import_module, "httpx")',
            replacement='httpx = importlib.import_module("httpx")',
        ),
    ),
)


def output_rules(project_name: str) -> tuple[PatchRule, ...]:
    """Rules applied to the bundle file, in order.

    :param project_name: Name substituted for the project token.
    :returns: Ordered rules.
    """

    return (
        PatchRule(search=METADATA_LOOKUP, replacement=METADATA_LITERAL),
        PatchRule(search=constants.PROJECT_NAME, replacement=project_name),
        PatchRule(search=LOCALES_LOOKUP, replacement=LOCALES_EXEC_LOOKUP),
    )


def apply_rules(text: str, rules: tuple[PatchRule, ...] | list[PatchRule]) -> tuple[str, list[bool]]:
    """Apply rules to a string.

    Each rule sees the output of the previous one.

    :param text: Input text.
    :param rules: Ordered rules.
    :returns: ``(patched_text, hits)`` with one hit flag per rule.
    """

    hits: list[bool] = []
    for rule in rules:
        if len(rule.search) > 0 and rule.search in text:
            text = text.replace(rule.search, rule.replacement)
            hits.append(True)
        else:
            hits.append(False)
    return text, hits


def patch_file(
    path: pathlib.Path,
    rules: tuple[PatchRule, ...] | list[PatchRule],
    *,
    logger: logging.Logger | None = None,
) -> PatchReport:
    """Patch a file in place.

    The file is read once and written back once, and only when a rule applied.
    A missing file counts as every rule missing.

    :param path: Target file.
    :param rules: Ordered rules.
    :param logger: Optional logger.
    :returns: Patch report.
    """

    if logger is None:
        logger = logging.getLogger("flowpack")

    if path.is_file() is False:
        logger.debug(f"flowpack: patch target absent, skipped: {path}")
        return PatchReport(path=path, applied=(), missed=tuple(rules))

    original: str = path.read_text(encoding="utf-8")
    patched, hits = apply_rules(original, rules)
    applied: tuple[PatchRule, ...] = tuple(r for r, hit in zip(rules, hits) if hit is True)
    missed: tuple[PatchRule, ...] = tuple(r for r, hit in zip(rules, hits) if hit is False)

    if patched != original:
        path.write_text(patched, encoding="utf-8")

    logger.info(f"flowpack: patched {path.name} ({len(applied)}/{len(hits)} rules applied)")
    if len(missed) > 0 and logger.isEnabledFor(logging.DEBUG) is True:
        for rule in missed:
            logger.debug(f"flowpack: rule not found in {path.name}: {rule.search!r}")
    return PatchReport(path=path, applied=applied, missed=missed)


def apply_shim(
    shim: CompatShim,
    *,
    deps_dir: pathlib.Path,
    logger: logging.Logger | None = None,
) -> PatchReport:
    """Apply a compatibility shim to its dependency file.

    :param shim: Shim to apply.
    :param deps_dir: Installed packages directory.
    :param logger: Optional logger.
    :returns: Patch report.
    """

    if logger is None:
        logger = logging.getLogger("flowpack")
    logger.debug(f"flowpack: applying shim {shim.name}")
    return patch_file(deps_dir / shim.relpath, shim.rules, logger=logger)
