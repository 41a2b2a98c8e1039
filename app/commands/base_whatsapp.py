"""
Base command for WhatsApp-related operations.

Provides a shared way to obtain the configured WhatsAppAdapter for use across
webhook, background processing and ledger commands.
"""

from __future__ import annotations

from typing import Optional

from app.adapters.whatsapp import WhatsAppAdapter, build_whatsapp_adapter_from_settings

_adapter: Optional[WhatsAppAdapter] = None


class BaseWhatsAppCommand:
    """
    Base for WhatsApp-related commands.
    Provides a shared, lazily built WhatsAppAdapter (one HTTP client per process).
    """

    @staticmethod
    def get_whatsapp_adapter() -> WhatsAppAdapter:
        """Return the process-wide WhatsAppAdapter built from settings."""
        global _adapter
        if _adapter is None:
            _adapter = build_whatsapp_adapter_from_settings()
        return _adapter

    @staticmethod
    async def close_whatsapp_adapter() -> None:
        """Close the shared HTTP client; the next call builds a fresh adapter."""
        global _adapter
        if _adapter is not None:
            await _adapter.aclose()
            _adapter = None
