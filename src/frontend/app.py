"""Read-only Textual dashboard over the dmpilot database."""

from __future__ import annotations

from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Center, Container, Horizontal, Vertical
from textual.widgets import ContentSwitcher, Footer, Static, Tab, Tabs

from .constants import DB_PATH, TELEGRAM_BLUE
from .tabs.guide import GuideTab
from .tabs.history import HistoryTab
from .tabs.stats import StatsTab


class DashboardApp(App):
    """Statistics, history and a short guide, refreshed on demand."""

    BINDINGS = [
        ("r", "refresh", "Refresh"),
        ("q", "quit", "Quit"),
    ]

    CSS = """
    Screen {
        background: #0f1a21;
        color: #e8eef5;
    }

    #header {
        height: 6;
        padding: 1 4;
        border-bottom: solid #2a3a46;
    }

    #header-left, #header-right {
        width: 1fr;
    }

    #header-right {
        content-align: right top;
        text-align: right;
    }

    #title {
        text-style: bold;
    }

    .subtle {
        color: #c6d2dd;
    }

    #tabs-bar {
        height: 5;
        padding: 0 4;
        border-bottom: solid #2a3a46;
        align: center middle;
    }

    #tabs {
        width: auto;
        min-width: 0;
    }

    Tab {
        height: 3;
        text-style: bold;
    }

    #tab-switcher {
        height: 1fr;
        padding: 1 4;
    }

    #history-output, #stats-body, #guide-body {
        color: #c6d2dd;
    }
    """

    def compose(self) -> ComposeResult:
        with Container(id="header"):
            with Horizontal():
                with Vertical(id="header-left"):
                    yield Static(self._title_text(), id="title")
                    yield Static("auto-reply dashboard", classes="subtle")
                with Vertical(id="header-right"):
                    yield Static(f"db: {DB_PATH.name}", classes="subtle")

        with Container(id="tabs-bar"):
            with Center():
                yield Tabs(
                    Tab("Stats", id="stats"),
                    Tab("History", id="history"),
                    Tab("Guide", id="guide"),
                    id="tabs",
                )

        with ContentSwitcher(initial="stats-tab", id="tab-switcher"):
            yield StatsTab(id="stats-tab")
            yield HistoryTab(id="history-tab")
            yield GuideTab(id="guide-tab")
        yield Footer()

    def on_tabs_tab_activated(self, event: Tabs.TabActivated) -> None:
        if event.tab.id:
            self.query_one("#tab-switcher", ContentSwitcher).current = f"{event.tab.id}-tab"

    def action_refresh(self) -> None:
        self.query_one(StatsTab).reload()
        self.query_one(HistoryTab).reload()

    @staticmethod
    def _title_text() -> Text:
        return Text.assemble(
            ("DM", TELEGRAM_BLUE),
            ("PILOT > Dashboard", "bold"),
        )


if __name__ == "__main__":
    DashboardApp().run()
