"""Guild-level configuration."""

from .guild import GuildSettings, GuildSettingsProvider, GuildSettingsRepository, StaticGuildSettingsProvider

__all__ = ["GuildSettings", "GuildSettingsProvider", "GuildSettingsRepository", "StaticGuildSettingsProvider"]
