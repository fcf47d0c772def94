"""config.json-backed config source.

Implements the core ConfigSourcePort. The file is re-read whenever its
modification time changes, so rule edits apply without a restart. A file
that fails to parse keeps the last good configuration.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Optional

LOGGER = logging.getLogger(__name__)


class JsonConfigSource:
    def __init__(self, path: str, initial: Optional[dict[str, Any]] = None) -> None:
        self._path = path
        self._data: dict[str, Any] = dict(initial or {})
        self._mtime: Optional[float] = None

    def _load(self) -> dict[str, Any]:
        try:
            mtime = os.path.getmtime(self._path)
        except OSError:
            return self._data
        if mtime == self._mtime:
            return self._data
        try:
            with open(self._path, "r", encoding="utf-8") as handle:
                loaded = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("Keeping previous config; failed to read %s: %s", self._path, exc)
            return self._data
        if not isinstance(loaded, dict):
            LOGGER.warning("Keeping previous config; %s root must be an object", self._path)
            return self._data
        if self._mtime is not None:
            LOGGER.info("Reloaded %s", self._path)
        self._data = loaded
        self._mtime = mtime
        return self._data

    def rules(self) -> list[dict[str, Any]]:
        return list(self._load().get("rules", []))

    def tool_rules(self) -> list[dict[str, Any]]:
        return list((self._load().get("lead_tools") or {}).get("rules", []))

    def lead_tools(self) -> list[dict[str, Any]]:
        return list((self._load().get("lead_tools") or {}).get("tools", []))

    def router_settings(self) -> dict[str, Any]:
        return dict(self._load().get("reply") or {})

    def follow_up_settings(self) -> dict[str, Any]:
        return dict(self._load().get("follow_up") or {})
