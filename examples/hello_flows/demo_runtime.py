"""A minimal flow runtime for trying the launcher.

Serves the resolved settings as JSON and lists the flows it loaded. It stands
in for a real flow engine, which flowpack does not provide.
"""

import json
import pathlib
from typing import Any


class DemoRuntime:
    """Reads the flows file on start and reports it over HTTP."""

    def __init__(self) -> None:
        self.settings: dict[str, Any] = {}
        self.flows: list[Any] = []
        self.started: bool = False

    def init(self, settings: dict[str, Any]) -> None:
        self.settings = settings

    async def start(self) -> None:
        flow_file = pathlib.Path(self.settings["flowFile"])
        if flow_file.is_file() is True:
            self.flows = json.loads(flow_file.read_text(encoding="utf-8"))
        self.started = True

    async def app(self, scope: dict[str, Any], receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            return
        body: bytes = json.dumps(
            {
                "started": self.started,
                "readOnly": self.settings.get("readOnly"),
                "userDir": self.settings.get("userDir"),
                "flows": len(self.flows),
            },
            indent=2,
        ).encode("utf-8")
        await send(
            {
                "type": "http.response.start",
                "status": 200,
                "headers": [(b"content-type", b"application/json")],
            }
        )
        await send({"type": "http.response.body", "body": body})
