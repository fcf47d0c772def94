"""Guide tab with the operator cheat sheet."""

from __future__ import annotations

from textual.containers import Container
from textual.widgets import Static

GUIDE_TEXT = """\
[b]Running[/b]
  dmpilot login       authorize the Telegram session
  dmpilot run         start watching private chats
  dmpilot stats       print counters in the terminal

[b]Operator commands[/b] (send to Saved Messages while running)
  /status   pipeline state, queue depth, success rate
  /stop     stop observing and clear queued replies
  /start    start again
  /restart  stop, reset recovery counters, start

[b]Editing rules[/b]
  Rules, lead tools and reply gates live in config.json and are
  re-read automatically when the file changes.
"""


class GuideTab(Container):
    def compose(self):
        yield Static(GUIDE_TEXT, id="guide-body")
