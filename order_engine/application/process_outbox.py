import logging

from order_engine.application.side_effects import SideEffectDispatcher

logger = logging.getLogger(__name__)


class ProcessOutboxEventsUseCase:
    def __init__(self, dispatcher: SideEffectDispatcher):
        self._dispatcher = dispatcher

    async def __call__(self, limit: int = 10) -> int:
        """Runs due pending outbox events. Returns the number that succeeded."""
        outcomes = await self._dispatcher.dispatch_due(limit=limit)
        if not outcomes:
            return 0

        published = sum(1 for outcome in outcomes if outcome.ok)
        logger.info(f"Outbox: {published} of {len(outcomes)} events published")
        return published
