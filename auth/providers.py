"""
Provider registry.

A provider is listed only when its settings load from the environment, so a
deployment without Discord credentials simply offers Telegram and vice versa.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from auth import discord, telegram

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderInfo:
    id: str
    name: str
    type: str
    signin_url: str
    callback_url: str


def _provider_table() -> list[tuple[ProviderInfo, Callable[[], object]]]:
    return [
        (
            ProviderInfo(
                id=discord.PROVIDER_ID,
                name="Discord",
                type="oauth",
                signin_url="/auth/signin/discord",
                callback_url="/auth/callback/discord",
            ),
            discord.get_discord_oauth_settings,
        ),
        (
            ProviderInfo(
                id=telegram.PROVIDER_ID,
                name="Telegram",
                type="credentials",
                signin_url="/auth/callback/telegram",
                callback_url="/auth/callback/telegram",
            ),
            telegram.get_telegram_login_settings,
        ),
    ]


def configured_providers() -> list[ProviderInfo]:
    """Return the providers whose configuration is complete."""
    providers: list[ProviderInfo] = []
    for info, load_settings in _provider_table():
        try:
            load_settings()
        except RuntimeError as exc:
            logger.debug("Provider %s not configured: %s", info.id, exc)
            continue
        providers.append(info)
    return providers


__all__ = ["ProviderInfo", "configured_providers"]
