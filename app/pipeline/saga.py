"""
Saga transition function.

``advance`` consumes one typed event (a reply, a failure, or a timeout)
for one saga and returns the next state plus what the coordinator must
do next.  It never touches the bus, timers or the store, so the whole
state machine can be exercised without any transport:

    Created → Expanding → Retrieving → Ranking → Done
                 └────────────┴───────────┴──→ Failed   (dispatch errors only)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Sequence, Union

from app.pipeline.stages import StageDefinition
from app.schemas.messages import RetrieveReply, Stage, StageReply
from app.schemas.pipeline import PipelineState, SagaStatus
from app.schemas.search import SearchResponse


# ── Events ──────────────────────────────────────────────────────────
@dataclass(frozen=True)
class StageReplied:
    stage: Stage
    reply: StageReply


@dataclass(frozen=True)
class StageFailed:
    """Remote error or malformed reply."""
    stage: Stage
    reason: str


@dataclass(frozen=True)
class StageTimedOut:
    stage: Stage


SagaEvent = Union[StageReplied, StageFailed, StageTimedOut]


@dataclass(frozen=True)
class Transition:
    state: PipelineState
    applied: bool
    next_stage: StageDefinition | None = None
    degraded_reason: str | None = None

    @property
    def completed(self) -> bool:
        return self.applied and self.state.status is SagaStatus.DONE


# ── Transitions ─────────────────────────────────────────────────────
def begin(
    state: PipelineState,
    definitions: Sequence[StageDefinition],
    now: float | None = None,
) -> Transition:
    """Move a freshly created saga to awaiting the first stage."""
    if state.status is not SagaStatus.CREATED:
        return Transition(state=state, applied=False)
    first = definitions[0]
    new_state = state.model_copy(update={
        "status": first.awaiting,
        "stage_started_at": now if now is not None else time.time(),
    })
    return Transition(state=new_state, applied=True, next_stage=first)


def advance(
    state: PipelineState,
    event: SagaEvent,
    definitions: Sequence[StageDefinition],
    now: float | None = None,
) -> Transition:
    """
    Apply ``event`` if the saga is awaiting exactly ``event.stage``.

    Anything else (stale stage, terminal saga, duplicate reply) returns
    ``applied=False`` with the state untouched.  Timeouts and failures
    are turned into the stage's fallback reply first, so both paths share
    the same record-and-advance logic below.
    """
    index = _index_of(definitions, event.stage)
    definition = definitions[index]
    if state.status is not definition.awaiting:
        return Transition(state=state, applied=False)

    reply, degraded_reason = _resolve_reply(state, event, definition)
    now = now if now is not None else time.time()

    update = dict(definition.record(state, reply))
    degraded = list(state.degraded_stages)
    if degraded_reason and definition.stage not in degraded:
        degraded.append(definition.stage)
    update["degraded_stages"] = degraded

    timings = dict(state.stage_timings)
    timings[definition.stage.value] = max(0.0, now - state.stage_started_at)
    update["stage_timings"] = timings

    next_stage = definitions[index + 1] if index + 1 < len(definitions) else None
    if next_stage is not None:
        update["status"] = next_stage.awaiting
        update["stage_started_at"] = now
    else:
        update["status"] = SagaStatus.DONE

    return Transition(
        state=state.model_copy(update=update),
        applied=True,
        next_stage=next_stage,
        degraded_reason=degraded_reason,
    )


def fail(state: PipelineState, reason: str) -> Transition:
    """Dispatch-level failure.  Terminal sagas are left alone."""
    if state.status.is_terminal:
        return Transition(state=state, applied=False)
    return Transition(
        state=state.model_copy(update={"status": SagaStatus.FAILED, "failure": reason}),
        applied=True,
    )


def to_response(state: PipelineState) -> SearchResponse:
    return SearchResponse(
        correlation_id=state.correlation_id,
        query=state.query,
        results=list(state.ranked or []),
        degraded_stages=[s.value for s in state.degraded_stages],
        processing_time_seconds=state.elapsed_seconds,
    )


# ── Helpers ─────────────────────────────────────────────────────────
def _index_of(definitions: Sequence[StageDefinition], stage: Stage) -> int:
    for i, definition in enumerate(definitions):
        if definition.stage is stage:
            return i
    raise KeyError(f"Unknown stage: {stage}")


def _resolve_reply(
    state: PipelineState,
    event: SagaEvent,
    definition: StageDefinition,
) -> tuple[StageReply, str | None]:
    if isinstance(event, StageReplied):
        if event.reply.error:
            return definition.fallback.synthesize(state), f"remote error: {event.reply.error}"
        if isinstance(event.reply, RetrieveReply) and event.reply.degraded_sources:
            failed = ", ".join(event.reply.degraded_sources)
            return event.reply, f"partial retrieval, failed sources: {failed}"
        return event.reply, None
    if isinstance(event, StageFailed):
        return definition.fallback.synthesize(state), event.reason
    return definition.fallback.synthesize(state), "timeout"
