"""Interactive Telegram login for the watched account.

``python -m get_session`` (or ``dmpilot login``) creates the .session file the
watcher reuses. LOGIN_METHOD, PHONE and 2FA may be preset in .env.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Awaitable, Callable

import qrcode
from dotenv import load_dotenv
from rich.console import Console
from rich.prompt import Prompt
from telethon import TelegramClient, errors

from client import build_client

LOGGER = logging.getLogger(__name__)

QR_TIMEOUT_SECONDS = 120

console = Console()


async def _sign_in_with_password(client: TelegramClient) -> None:
    password = os.getenv("2FA") or Prompt.ask("Two-step verification password", password=True)
    await client.sign_in(password=password)


async def _qr_login(client: TelegramClient) -> None:
    token = await client.qr_login()
    code = qrcode.QRCode(border=1)
    code.add_data(token.url)
    code.make(fit=True)
    code.print_ascii(invert=True)
    console.print(f"Open Telegram > Settings > Devices > Link Desktop Device ({QR_TIMEOUT_SECONDS}s)")
    await token.wait(timeout=QR_TIMEOUT_SECONDS)


async def _phone_login(client: TelegramClient) -> None:
    phone = os.getenv("PHONE") or Prompt.ask("Phone number (+country code)")
    sent = await client.send_code_request(phone)
    code = Prompt.ask("Code from Telegram")
    await client.sign_in(phone=phone, code=code, phone_code_hash=sent.phone_code_hash)


LOGIN_METHODS: dict[str, Callable[[TelegramClient], Awaitable[None]]] = {
    "qr": _qr_login,
    "phone": _phone_login,
}


def _choose_method() -> str:
    preset = (os.getenv("LOGIN_METHOD") or "").strip().lower()
    if preset in LOGIN_METHODS:
        return preset
    choice = Prompt.ask("Login with", choices=[*LOGIN_METHODS, "exit"], default="qr")
    if choice == "exit":
        raise SystemExit(0)
    return choice


async def authorize(client: TelegramClient) -> None:
    """Sign the connected client in, prompting only when the session is new."""

    if await client.is_user_authorized():
        return
    load_dotenv()
    method = _choose_method()
    LOGGER.info("Authorizing via %s", method)
    try:
        await LOGIN_METHODS[method](client)
    except errors.SessionPasswordNeededError:
        await _sign_in_with_password(client)


async def login() -> None:
    client = build_client()
    await client.connect()
    try:
        await authorize(client)
        me = await client.get_me()
        console.print(f"[bold green]Session ready[/] for {me.first_name or me.username or me.id}")
    finally:
        await client.disconnect()


if __name__ == "__main__":
    asyncio.run(login())
