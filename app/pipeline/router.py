"""
Result Router.

Subscribes to every stage reply channel and hands each reply to the
orchestrator as a typed event for the right saga and stage.  Replies for
sagas that are gone, or for stages the saga is not awaiting, are dropped
by the orchestrator's at-most-once check; the router itself only deals
with getting a message into shape.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from app.pipeline.orchestrator import SearchOrchestrator
from app.pipeline.stages import StageDefinition
from app.services.bus import MessageBus
from app.utils.logging import get_logger

logger = get_logger("searchsaga.pipeline.router")


class ResultRouter:
    def __init__(self, orchestrator: SearchOrchestrator, bus: MessageBus):
        self.orchestrator = orchestrator
        self.bus = bus
        self.applied = 0
        self.discarded = 0

    def subscribe(self) -> None:
        for definition in self.orchestrator.definitions:
            self.bus.subscribe(definition.reply_channel, self._handler_for(definition))
            logger.info("[ROUTER] Listening on %s", definition.reply_channel)

    def _handler_for(self, definition: StageDefinition):
        async def handle(message: dict[str, Any]) -> None:
            await self.route(definition, message)

        return handle

    async def route(self, definition: StageDefinition, message: dict[str, Any]) -> bool:
        """Deliver one raw reply.  Returns True if it advanced a saga."""
        stage = definition.stage
        try:
            reply = definition.parse_reply(message)
        except ValidationError as e:
            cid = message.get("correlation_id") if isinstance(message, dict) else None
            if not isinstance(cid, str) or not cid:
                logger.warning("[ROUTER] Dropped %s reply without correlation id", stage.value)
                self.discarded += 1
                return False
            logger.warning("[ROUTER] Malformed %s reply for %s: %s", stage.value, cid, e.errors()[:1])
            applied = await self.orchestrator.on_stage_failure(cid, stage, "malformed reply")
        else:
            applied = await self.orchestrator.on_stage_reply(reply.correlation_id, stage, reply)

        if applied:
            self.applied += 1
        else:
            self.discarded += 1
        return applied
