"""Emoji definitions for system reporting."""

from shared.reporter.emojis.base_emojis import ComponentEmoji
from shared.reporter.emojis.essayeur_emojis import EssayeurEmoji
from shared.reporter.emojis.system_emojis import SystemEmoji

__all__ = [
    "ComponentEmoji",
    "EssayeurEmoji",
    "SystemEmoji",
]
