"""History tab for viewing and exporting conversation history."""

from __future__ import annotations

import csv
import json
from datetime import datetime
from typing import Any

from textual import on
from textual.containers import Container, Horizontal, Vertical
from textual.widgets import Button, DataTable, Static

from adapters.sqlite_storage import SQLiteStorage

from ..constants import DB_PATH, EXPORTS_DIR


def clip_text(value: str, limit: int = 64) -> str:
    value = " ".join(value.split())
    if len(value) <= limit:
        return value
    return value[: limit - 3] + "..."


def export_rows(rows: list[dict[str, Any]], fmt: str, directory=EXPORTS_DIR) -> str:
    """Write rows to a timestamped JSON or CSV file and return its path."""

    directory.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    path = directory / f"history-{timestamp}.{fmt}"
    if fmt == "json":
        path.write_text(json.dumps(rows, indent=2, ensure_ascii=False), encoding="utf-8")
    elif fmt == "csv":
        with path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=list(rows[0].keys()))
            writer.writeheader()
            writer.writerows(rows)
    else:
        raise ValueError(f"Unsupported export format: {fmt}")
    return str(path)


class HistoryTab(Container):
    """Browse the latest history lines and export them to JSON/CSV."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._rows: list[dict[str, Any]] = []
        self._table_ready = False

    def compose(self):
        with Vertical(id="history-panel"):
            yield Static("History", id="history-title")
            yield DataTable(id="history-table", cursor_type="row")
            with Horizontal(id="history-actions"):
                yield Button("Export JSON", id="export-json", variant="success")
                yield Button("Export CSV", id="export-csv")
            yield Static("", id="history-output")

    def on_mount(self) -> None:
        table = self.query_one("#history-table", DataTable)
        table.add_column("time", key="created_at", width=19)
        table.add_column("conversation", key="conversation_id", width=16)
        table.add_column("role", key="role", width=10)
        table.add_column("kind", key="kind", width=10)
        table.add_column("content", key="content", width=48)
        table.zebra_stripes = True
        table.styles.height = "1fr"
        self.query_one("#history-actions").styles.height = 3
        self._table_ready = True
        self.reload()

    @on(Button.Pressed, "#export-json")
    def _on_export_json(self) -> None:
        self._export("json")

    @on(Button.Pressed, "#export-csv")
    def _on_export_csv(self) -> None:
        self._export("csv")

    def reload(self) -> None:
        if not self._table_ready:
            return
        table = self.query_one("#history-table", DataTable)
        table.clear()
        if not DB_PATH.exists():
            self._rows = []
            self._set_output(f"db not found: {DB_PATH}")
            return
        self._rows = SQLiteStorage(str(DB_PATH)).recent_history()
        for row in self._rows:
            table.add_row(
                (row["created_at"] or "").replace("T", " ")[:19],
                row["conversation_id"] or "",
                row["role"] or "",
                row["kind"] or "",
                clip_text(row["content"] or ""),
                key=str(row["id"]),
            )
        self._set_output(f"loaded {len(self._rows)} lines from {DB_PATH}")

    def _export(self, fmt: str) -> None:
        if not self._rows:
            self._set_output("No history to export.")
            return
        try:
            path = export_rows(self._rows, fmt)
        except OSError as exc:
            self._set_output(f"export failed: {exc.strerror or exc}")
            return
        self._set_output(f"exported {len(self._rows)} lines to {path}")

    def _set_output(self, message: str) -> None:
        self.query_one("#history-output", Static).update(message)
