"""Shared constants for the Textual dashboard."""

from __future__ import annotations

from pathlib import Path

TELEGRAM_BLUE = "#2AABEE"
PROJECT_ROOT = Path(__file__).resolve().parents[2]
DB_PATH = PROJECT_ROOT / "src" / "dmpilot.db"
EXPORTS_DIR = PROJECT_ROOT / "exports"
