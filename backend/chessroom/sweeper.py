"""
Периодическая уборка: устаревшие записи очереди, не вернувшиеся игроки,
брошенные и давно завершённые партии.
"""
import asyncio
import logging

from . import payloads
from .constants import LOBBY_GROUP
from .services import Services

logger = logging.getLogger(__name__)


class Sweeper:
    def __init__(self, services: Services):
        self.services = services

    def run_once(self) -> None:
        services = self.services
        manager = services.manager

        timed_out = services.queue.sweep_stale()
        for address in timed_out:
            manager.post_to(address, payloads.queue_timed_out())
        if timed_out:
            manager.post(LOBBY_GROUP, payloads.queue_counts(services.queue.counts()))

        # session_over рассылают слушатели реестра
        for record in services.tracker.sweep_expired():
            logger.info("Sweeper: %s forfeited %s by disconnection", record.player_id, record.session_id)
        abandoned = services.registry.sweep_idle()
        if abandoned:
            logger.info("Sweeper: abandoned %s", ", ".join(abandoned))
        services.registry.sweep_finished()

    async def run(self, interval: float) -> None:
        logger.info("Sweeper: started, interval=%ss", interval)
        while True:
            await asyncio.sleep(interval)
            try:
                self.run_once()
            except Exception:
                logger.exception("Sweeper: pass failed")
