"""Statistics tab: reply counters, success rate and daily sends."""

from __future__ import annotations

from typing import Any

from rich.table import Table
from textual.containers import Container, VerticalScroll
from textual.widgets import Static

from adapters.sqlite_storage import SQLiteStorage

from ..constants import DB_PATH


def build_stats_table(stats: dict[str, Any], daily: list[tuple[str, int]]) -> Table:
    table = Table(expand=True)
    table.add_column("metric")
    table.add_column("value", justify="right")
    for key in ("total_messages", "total_replies", "template_replies", "ai_replies", "lead_tools_sent"):
        table.add_row(key.replace("_", " "), str(stats.get(key, 0)))
    table.add_row("success rate", f"{stats.get('success_rate', 0.0):.1%}")
    table.add_row("average latency", f"{stats.get('average_latency', 0.0):.2f}s")
    for day, total in daily:
        table.add_row(f"sent on {day}", str(total))
    for rule_name, hits in sorted(stats.get("rule_hits", {}).items(), key=lambda item: -item[1]):
        table.add_row(f"rule: {rule_name}", str(hits))
    return table


class StatsTab(Container):
    def compose(self):
        with VerticalScroll(id="stats-panel"):
            yield Static("", id="stats-body")

    def on_mount(self) -> None:
        self.reload()

    def reload(self) -> None:
        body = self.query_one("#stats-body", Static)
        if not DB_PATH.exists():
            body.update(f"db not found: {DB_PATH}")
            return
        storage = SQLiteStorage(str(DB_PATH))
        body.update(build_stats_table(storage.get_statistics(), storage.daily_totals()))
