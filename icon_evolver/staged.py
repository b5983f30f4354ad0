"""
staged.py — Generic staged pipeline shared by the evolution and brief flows.

A flow is an ordered list of states plus a list of steps. Each step names the
states it may start from, its in-flight state, the reviewable state it lands
on when its external call succeeds, and the state it rolls back to when that
call fails. From those steps an explicit transition table is built:

    (current_state, "<step>.start")   → pending state
    (pending_state, "<step>.succeed") → done state
    (pending_state, "<step>.fail")    → fallback state

Every change produces a new frozen PipelineSnapshot; nothing is mutated in
place. Stage outputs survive rollbacks and backward navigation, and are only
replaced when their stage runs again.

Single flight: while a stage call is pending, further start requests are
ignored. Each call captures the generation counter it started under; if the
counter has moved on by the time the call resolves (reset, navigation) the
response is discarded.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Mapping, Optional, Sequence, Tuple

from .errors import ExternalServiceError, IconEvolverError, InvalidTransitionError

logger = logging.getLogger(__name__)

START = "start"
SUCCEED = "succeed"
FAIL = "fail"


# ── Flow definition ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StageStep:
    name: str
    entry: Tuple[str, ...]          # states the step may start from
    pending: str                    # state while the external call is in flight
    done: str                       # reviewable state after success
    fallback: str                   # state after failure (one step back)
    output: str                     # outputs key holding the step result
    requires: Tuple[str, ...] = ()  # upstream outputs that must be present


@dataclass(frozen=True)
class StageFlow:
    initial: str
    states: Tuple[str, ...]
    steps: Tuple[StageStep, ...]
    back_targets: Mapping[str, FrozenSet[str]] = field(default_factory=dict)

    def step(self, name: str) -> StageStep:
        for step in self.steps:
            if step.name == name:
                return step
        raise KeyError(f"Unknown step: {name}")

    @property
    def output_keys(self) -> Tuple[str, ...]:
        return tuple(step.output for step in self.steps)

    def transition_table(self) -> Dict[Tuple[str, str], str]:
        table: Dict[Tuple[str, str], str] = {}
        for step in self.steps:
            for state in step.entry:
                table[(state, f"{step.name}.{START}")] = step.pending
            table[(step.pending, f"{step.name}.{SUCCEED}")] = step.done
            table[(step.pending, f"{step.name}.{FAIL}")] = step.fallback
        return table

    def required_outputs(self, state: str) -> Tuple[str, ...]:
        """Outputs a state cannot be shown without."""
        for step in self.steps:
            if step.done == state:
                return step.requires + (step.output,)
            if step.pending == state:
                return step.requires
        return ()


@dataclass(frozen=True)
class PipelineSnapshot:
    """Read-only view of a pipeline at one point in time."""
    state: str
    outputs: Mapping[str, Any]
    context: Mapping[str, Any]
    busy: bool = False
    generation: int = 0
    error: Optional[str] = None

    def output(self, key: str) -> Any:
        return self.outputs.get(key)

    def get(self, key: str, default: Any = None) -> Any:
        return self.context.get(key, default)


def _freeze(values: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(values))


async def invoke(fn: Callable[..., Any], *args: Any) -> Any:
    """
    Await fn(*args). Coroutine functions are awaited directly; blocking
    functions run in the default executor so the event loop stays free.
    """
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(fn, *args))


# ── Runtime ───────────────────────────────────────────────────────────────────

class StagedPipeline:
    """Drives a StageFlow. One instance per user session."""

    def __init__(self, flow: StageFlow, context: Optional[Mapping[str, Any]] = None) -> None:
        self.flow = flow
        self._table = flow.transition_table()
        self._initial_context = dict(context or {})
        self._snapshot = PipelineSnapshot(
            state=flow.initial,
            outputs=_freeze({key: None for key in flow.output_keys}),
            context=_freeze(self._initial_context),
        )

    @property
    def snapshot(self) -> PipelineSnapshot:
        return self._snapshot

    @property
    def state(self) -> str:
        return self._snapshot.state

    @property
    def busy(self) -> bool:
        return self._snapshot.busy

    def _commit(self, **changes: Any) -> PipelineSnapshot:
        self._snapshot = replace(self._snapshot, **changes)
        return self._snapshot

    def next_state(self, state: str, event: str) -> str:
        try:
            return self._table[(state, event)]
        except KeyError:
            raise InvalidTransitionError(f"'{event}' is not allowed from state {state}") from None

    def can_start(self, step_name: str) -> bool:
        step = self.flow.step(step_name)
        return (
            not self.busy
            and (self.state, f"{step.name}.{START}") in self._table
            and all(self._snapshot.outputs.get(key) is not None for key in step.requires)
        )

    # ── context & outputs ─────────────────────────────────────────────────────

    def update_context(self, **values: Any) -> PipelineSnapshot:
        return self._commit(context=_freeze({**self._snapshot.context, **values}))

    def replace_output(self, key: str, value: Any) -> PipelineSnapshot:
        """Swap in a user-edited version of an existing stage output."""
        if key not in self._snapshot.outputs:
            raise KeyError(f"Unknown output: {key}")
        return self._commit(outputs=_freeze({**self._snapshot.outputs, key: value}))

    # ── stage execution ───────────────────────────────────────────────────────

    async def run(
        self,
        step_name: str,
        call: Callable[[], Awaitable[Any]],
        on_success: Optional[Callable[[Any], Mapping[str, Any]]] = None,
    ) -> PipelineSnapshot:
        """
        Run one stage: start → await call() → succeed / fail.

        Returns the resulting snapshot. A request made while another call is
        in flight is ignored and the current snapshot returned unchanged.
        On failure the state rolls back to the step's fallback and the error
        is re-raised; stage outputs are left untouched.
        """
        step = self.flow.step(step_name)
        if self.busy:
            logger.warning(f"Ignoring '{step.name}': a stage call is already in flight")
            return self._snapshot

        pending = self.next_state(self.state, f"{step.name}.{START}")
        missing = [key for key in step.requires if self._snapshot.outputs.get(key) is None]
        if missing:
            raise InvalidTransitionError(
                f"{', '.join(missing)} required before {step.name}", stage=step.name
            )

        generation = self._snapshot.generation + 1
        self._commit(state=pending, busy=True, generation=generation, error=None)
        logger.info(f"{step.name}: {pending} (generation {generation})")

        try:
            result = await call()
        except asyncio.CancelledError:
            if generation == self._snapshot.generation:
                fallback = self.next_state(pending, f"{step.name}.{FAIL}")
                self._commit(state=fallback, busy=False, error=f"{step.name} cancelled")
                logger.warning(f"{step.name} cancelled, rolled back to {fallback}")
            raise
        except Exception as exc:
            if generation != self._snapshot.generation:
                logger.warning(f"Discarding stale failure from '{step.name}' (generation {generation}): {exc}")
                return self._snapshot
            if not isinstance(exc, IconEvolverError):
                exc = ExternalServiceError(str(exc) or type(exc).__name__, stage=step.name, cause=exc)
            elif exc.stage is None:
                exc.stage = step.name
            fallback = self.next_state(pending, f"{step.name}.{FAIL}")
            self._commit(state=fallback, busy=False, error=str(exc))
            logger.warning(f"{step.name} failed, rolled back to {fallback}: {exc}")
            raise exc

        if generation != self._snapshot.generation:
            logger.warning(f"Discarding stale response from '{step.name}' (generation {generation})")
            return self._snapshot

        done = self.next_state(pending, f"{step.name}.{SUCCEED}")
        context = self._snapshot.context
        if on_success is not None:
            context = _freeze({**context, **on_success(result)})
        self._commit(
            state=done,
            outputs=_freeze({**self._snapshot.outputs, step.output: result}),
            context=context,
            busy=False,
        )
        logger.info(f"{step.name}: {done}")
        return self._snapshot

    async def run_task(self, label: str, call: Callable[[], Awaitable[Any]]) -> Tuple[bool, Any]:
        """
        Run an external call that does not move the state machine.

        Shares the single-flight lock and generation counter with stages.
        Returns (accepted, result); accepted is False when the call was
        ignored (busy) or its response arrived stale.
        """
        if self.busy:
            logger.warning(f"Ignoring '{label}': a call is already in flight")
            return False, None

        generation = self._snapshot.generation + 1
        self._commit(busy=True, generation=generation, error=None)
        try:
            result = await call()
        except asyncio.CancelledError:
            if generation == self._snapshot.generation:
                self._commit(busy=False, error=f"{label} cancelled")
                logger.warning(f"{label} cancelled")
            raise
        except Exception as exc:
            if generation != self._snapshot.generation:
                logger.warning(f"Discarding stale failure from '{label}': {exc}")
                return False, None
            if not isinstance(exc, IconEvolverError):
                exc = ExternalServiceError(str(exc) or type(exc).__name__, stage=label, cause=exc)
            self._commit(busy=False, error=str(exc))
            raise exc

        if generation != self._snapshot.generation:
            logger.warning(f"Discarding stale response from '{label}'")
            return False, None
        self._commit(busy=False)
        return True, result

    # ── navigation ────────────────────────────────────────────────────────────

    def go_to(self, target: str) -> PipelineSnapshot:
        """
        User-triggered backward move. Only whitelisted targets whose outputs
        exist are allowed. Any in-flight call is abandoned; outputs are kept.
        """
        allowed = self.flow.back_targets.get(self.state, frozenset())
        if target not in allowed:
            raise InvalidTransitionError(f"Cannot go from {self.state} to {target}")
        missing = [key for key in self.flow.required_outputs(target) if self._snapshot.outputs.get(key) is None]
        if missing:
            raise InvalidTransitionError(f"Cannot go to {target}: {', '.join(missing)} not computed yet")

        logger.info(f"Navigating {self.state} → {target}")
        return self._commit(
            state=target,
            busy=False,
            generation=self._snapshot.generation + 1,
            error=None,
        )

    def reset(self, **context: Any) -> PipelineSnapshot:
        """Back to the initial state with every output cleared."""
        self._snapshot = PipelineSnapshot(
            state=self.flow.initial,
            outputs=_freeze({key: None for key in self.flow.output_keys}),
            context=_freeze({**self._initial_context, **context}),
            generation=self._snapshot.generation + 1,
        )
        return self._snapshot


def back_targets(mapping: Mapping[str, Sequence[str]]) -> Dict[str, FrozenSet[str]]:
    return {state: frozenset(targets) for state, targets in mapping.items()}
