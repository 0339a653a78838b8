import logging
from typing import Optional

import discord

from discord_retention_bot.config import RetentionConfig
from discord_retention_bot.services.config_watcher import ConfigStore
from discord_retention_bot.services.worker_supervisor import WorkerSupervisor
from discord_retention_bot.transport.discord_transport import DiscordChannelTransport

logger = logging.getLogger(__name__)


class RetentionBot(discord.Client):
    """Discord client that runs one retention worker per configured channel.

    Workers are reconciled once the gateway reports ready, and again every
    time the configuration store loads a new configuration.
    """

    def __init__(self, config_store: ConfigStore, supervisor: Optional[WorkerSupervisor] = None) -> None:
        intents = discord.Intents.none()
        intents.guilds = True
        super().__init__(intents=intents)
        self.config_store = config_store
        self.transport = DiscordChannelTransport(self)
        self.supervisor = supervisor or WorkerSupervisor(
            self.transport,
            get_step_delay=config_store.delete_action_delay_seconds,
        )
        self._subscribed = False

    async def on_ready(self) -> None:
        logger.info("Connected to Discord as %s.", self.user)
        if not self._subscribed:
            self.config_store.subscribe(self._on_config_loaded)
            self._subscribed = True
        self.supervisor.reconcile(self.config_store.current)

    def _on_config_loaded(self, config: RetentionConfig) -> None:
        self.supervisor.reconcile(config)

    async def close(self) -> None:
        if self._subscribed:
            self.config_store.unsubscribe(self._on_config_loaded)
            self._subscribed = False
        await self.supervisor.shutdown()
        await super().close()
