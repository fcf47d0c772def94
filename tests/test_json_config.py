from __future__ import annotations

import json
import os

from adapters.json_config import JsonConfigSource


def _write(path, data, mtime: float) -> None:
    path.write_text(json.dumps(data), encoding="utf-8")
    os.utime(path, (mtime, mtime))


def test_reads_sections(tmp_path) -> None:
    path = tmp_path / "config.json"
    _write(
        path,
        {
            "rules": [{"name": "Price"}],
            "reply": {"enabled": False},
            "follow_up": {"enabled": True},
            "lead_tools": {"tools": [{"id": "form"}], "rules": [{"name": "form"}]},
        },
        1_000,
    )
    source = JsonConfigSource(str(path))

    assert source.rules() == [{"name": "Price"}]
    assert source.router_settings() == {"enabled": False}
    assert source.lead_tools() == [{"id": "form"}]
    assert source.tool_rules() == [{"name": "form"}]
    assert source.follow_up_settings() == {"enabled": True}


def test_reloads_when_file_changes(tmp_path) -> None:
    path = tmp_path / "config.json"
    _write(path, {"rules": [{"name": "old"}]}, 1_000)
    source = JsonConfigSource(str(path))
    assert source.rules() == [{"name": "old"}]

    _write(path, {"rules": [{"name": "new"}]}, 2_000)
    assert source.rules() == [{"name": "new"}]


def test_keeps_last_good_config_on_parse_error(tmp_path) -> None:
    path = tmp_path / "config.json"
    _write(path, {"rules": [{"name": "good"}]}, 1_000)
    source = JsonConfigSource(str(path))
    assert source.rules() == [{"name": "good"}]

    path.write_text("{broken", encoding="utf-8")
    os.utime(path, (2_000, 2_000))
    assert source.rules() == [{"name": "good"}]


def test_missing_file_uses_initial_config(tmp_path) -> None:
    source = JsonConfigSource(str(tmp_path / "missing.json"), {"reply": {"enabled": True}})
    assert source.router_settings() == {"enabled": True}
    assert source.rules() == []
    assert source.lead_tools() == []
