"""Telegram-to-core mapping adapter.

This keeps Telethon-specific details out of the core pipeline: dialogs become
``ContactItem``s and messages become ``MessageItem``s. Link previews map to
the card marker; forwarded messages map to the source marker.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from telethon.tl.types import PeerChat, PeerUser

from core.models import ContactItem, MessageItem


def peer_conversation_id(peer: Any) -> Optional[str]:
    """Return the raw conversation id for a Telethon peer, if it is a chat we track."""

    if isinstance(peer, PeerUser):
        return str(peer.user_id)
    if isinstance(peer, PeerChat):
        return str(peer.chat_id)
    return None


def display_name(entity: Any) -> str:
    title = getattr(entity, "title", None)
    if title:
        return str(title)
    first = getattr(entity, "first_name", None)
    last = getattr(entity, "last_name", None)
    if first or last:
        return " ".join(part for part in [first, last] if part)
    username = getattr(entity, "username", None)
    if username:
        return f"@{username}"
    return str(getattr(entity, "id", "unknown"))


def is_lead_tagged(entity: Any, lead_tags: Iterable[str]) -> bool:
    """Lead tags are configured as user ids or @usernames."""

    tags = {str(tag).lower().lstrip("@") for tag in lead_tags}
    if not tags:
        return False
    username = (getattr(entity, "username", None) or "").lower()
    return str(getattr(entity, "id", "")) in tags or (bool(username) and username in tags)


def build_contact_item(dialog: Any, lead_tags: Iterable[str] = ()) -> ContactItem:
    """Build a core ContactItem from a Telethon Dialog."""

    entity = dialog.entity
    last = getattr(dialog, "message", None)
    last_text = (getattr(last, "raw_text", None) or "") if last is not None else ""
    # A conversation is unreplied when the newest message came from them.
    unreplied = last is not None and not getattr(last, "out", False)
    return ContactItem(
        ref=entity.id,
        ids=(str(entity.id),),
        name=display_name(entity),
        unread=int(getattr(dialog, "unread_count", 0) or 0),
        unreplied=unreplied,
        lead_tag=is_lead_tagged(entity, lead_tags),
        last_message=last_text,
    )


def _card_fields(media: Any) -> tuple[bool, str, str]:
    if media is None:
        return False, "", ""
    webpage = getattr(media, "webpage", None)
    if webpage is not None:
        title = getattr(webpage, "title", None) or getattr(webpage, "site_name", None) or ""
        info = getattr(webpage, "description", None) or getattr(webpage, "url", None) or ""
        return True, str(title), str(info)
    if getattr(media, "phone_number", None) is not None:
        name = " ".join(
            part for part in [getattr(media, "first_name", ""), getattr(media, "last_name", "")] if part
        )
        return True, name, str(media.phone_number)
    return False, "", ""


def _source_tip(message: Any) -> str:
    fwd = getattr(message, "fwd_from", None)
    if fwd is None:
        return ""
    origin = getattr(fwd, "from_name", None) or peer_conversation_id(getattr(fwd, "from_id", None))
    return f"Forwarded from {origin}" if origin else "Forwarded message"


def build_message_item(message: Any) -> MessageItem:
    """Build a core MessageItem from a Telethon Message."""

    conversation_id = peer_conversation_id(getattr(message, "peer_id", None)) or str(message.chat_id)
    has_card, card_title, card_info = _card_fields(getattr(message, "media", None))
    sender = getattr(message, "sender", None)
    date = getattr(message, "date", None)
    return MessageItem(
        ref=message.id,
        element_id=f"msg-{conversation_id}-{message.id}",
        conversation_id=conversation_id,
        incoming=not getattr(message, "out", False),
        timestamp_text=date.astimezone().strftime("%H:%M:%S") if date else "",
        text=message.raw_text or "",
        has_card=has_card,
        card_title=card_title,
        card_info=card_info,
        source_tip=_source_tip(message),
        sender=display_name(sender) if sender is not None else "",
    )
