"""Session key derivation for WhatsApp conversations."""

from __future__ import annotations

from app.schemas.conversa import Channel


def normalize_phone(phone: str) -> str:
    """Digits only; WhatsApp sends wa_id without '+', users sometimes type it."""
    return "".join(ch for ch in phone if ch.isdigit())


def build_session_key(sender: str, channel: Channel = Channel.WHATSAPP) -> str:
    """
    Build a deterministic session key for a sender.

    One conversation per (channel, phone number): {channel}:{digits}.
    """
    return f"{channel.value}:{normalize_phone(sender)}"
