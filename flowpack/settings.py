"""Runtime settings merge.

User settings come from a JSON file beside the launcher. A handful of keys are
owned by flowpack and always overwritten, because they encode where the run
mode put things.
"""

import copy
import json
import pathlib
from typing import Any

from flowpack import constants
from flowpack.context import RuntimeContext
from flowpack.runmode import RunMode


class SettingsError(ValueError):
    """Raised when the settings file cannot be used."""


SETTINGS_FILE: str = "settings.json"

RESERVED_KEYS: frozenset[str] = frozenset({"userDir", "flowFile", "editorTheme", "readOnly", "logging"})

DEFAULT_SETTINGS: dict[str, Any] = {
    "consoleTitle": "Flowpack",
    "uiPort": 1880,
    "flowFilePretty": True,
    "httpAdminRoot": "/",
    "httpNodeRoot": "/",
    "disableEditor": False,
}

HEADER_IMAGE: str = "flowpack.png"
PAGE_CSS: str = "flowpack.css"
LOGIN_IMAGE_EMBEDDED: str = "flowpack-256-embedded.png"
LOGIN_IMAGE_EXTERNAL: str = "flowpack-256-external.png"


def load_settings(path: pathlib.Path) -> dict[str, Any]:
    """Read a JSON settings file.

    :param path: Settings file.
    :returns: Parsed settings, or an empty dict if the file does not exist.
    :raises SettingsError: If the file is unreadable, not JSON, or not an object.
    """

    if path.is_file() is False:
        return {}
    try:
        data: Any = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise SettingsError(f"Cannot read settings file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise SettingsError(f"Invalid JSON in settings file {path}: {e}") from e
    if isinstance(data, dict) is False:
        raise SettingsError(f"Settings file {path} must contain a JSON object, got {type(data).__name__}")
    return data


def runtime_settings(
    ctx: RuntimeContext,
    user_settings: dict[str, Any] | None = None,
    *,
    log_level: str = "info",
) -> dict[str, Any]:
    """Merge user settings with the values the run mode dictates.

    :param ctx: Runtime context.
    :param user_settings: Settings read from the settings file.
    :param log_level: Console log level handed to the runtime.
    :returns: A new settings dict; ``user_settings`` is not modified.
    """

    merged: dict[str, Any] = dict(DEFAULT_SETTINGS)
    for key, value in (user_settings or {}).items():
        if key in RESERVED_KEYS:
            continue
        merged[key] = copy.deepcopy(value)

    title: str = f"Flowpack [{ctx.mode.label}]"
    theme: dict[str, Any] = {
        "header": {"title": title},
        "page": {"title": title},
        "projects": {"enabled": False},
        "tours": False,
    }

    if ctx.mode is RunMode.PRODUCTION_LOCKED:
        resources: pathlib.Path = ctx.snapshot_path(constants.RESOURCES_DIR)
        theme["header"]["image"] = str(resources / HEADER_IMAGE)
        theme["page"]["css"] = str(resources / PAGE_CSS)
        theme["login"] = {"image": str(resources / LOGIN_IMAGE_EMBEDDED)}
    else:
        theme["login"] = {"image": str(ctx.source_dir / constants.RESOURCES_DIR / LOGIN_IMAGE_EXTERNAL)}

    merged["userDir"] = str(ctx.paths.user_dir)
    merged["flowFile"] = str(ctx.paths.flow_file)
    merged["editorTheme"] = theme
    merged["readOnly"] = ctx.mode.read_only
    merged["logging"] = {"console": {"level": log_level, "metrics": False, "audit": False}}

    if ctx.mode is RunMode.DESIGN_TIME:
        merged["disableEditor"] = False
    return merged
