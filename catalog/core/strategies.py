"""
Ordered fallback chains.

A chain is a list of strategies tried in priority order. Each strategy is
data: a name, a viability predicate and a runner. The chain is a fold over
that list:

    for strategy in strategies:
        not viable        -> record SKIPPED, never run
        Failure/exception -> record FAILED, continue
        timeout           -> record TIMEOUT, continue
        empty result      -> record EMPTY, continue
        non-empty result  -> stop, this strategy wins

Exactly one strategy's output is returned; results are never merged.
Strategies run strictly one after another.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from catalog.core.db.executor import Failure

logger = logging.getLogger(__name__)

T = TypeVar("T")
C = TypeVar("C")


class AttemptOutcome(str, Enum):
    SKIPPED = "skipped"
    FAILED = "failed"
    TIMEOUT = "timeout"
    EMPTY = "empty"


class ResolutionStatus(str, Enum):
    FOUND = "found"
    EMPTY = "empty"  # every attempted strategy ran cleanly and found nothing
    FAILED = "failed"  # nothing found and at least one attempt failed
    INVALID = "invalid"  # malformed input, chain bypassed


@dataclass(frozen=True, slots=True)
class Attempt:
    strategy: str
    outcome: AttemptOutcome
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"strategy": self.strategy, "outcome": self.outcome.value, "reason": self.reason}


@dataclass(frozen=True, slots=True)
class Resolution(Generic[T]):
    """
    Typed result of a chain.

    `attempts` is only populated when nothing was found; on FOUND it is
    discarded.
    """

    status: ResolutionStatus
    items: tuple[T, ...] = ()
    strategy: str | None = None
    approximate: bool = False
    attempts: tuple[Attempt, ...] = ()
    message: str = ""

    @property
    def found(self) -> bool:
        return self.status is ResolutionStatus.FOUND

    @property
    def first(self) -> T | None:
        return self.items[0] if self.items else None

    @classmethod
    def invalid(cls, message: str) -> Resolution[Any]:
        return cls(ResolutionStatus.INVALID, message=message)

    def with_items(self, items: Sequence[T]) -> Resolution[T]:
        """Return a copy carrying different items (same winner)."""
        return Resolution(
            status=self.status,
            items=tuple(items),
            strategy=self.strategy,
            approximate=self.approximate,
            attempts=self.attempts,
            message=self.message,
        )


Viability = Callable[[C], Awaitable[bool]]
Runner = Callable[[C], Awaitable[Any]]  # -> Sequence[T] | Failure


async def always(_ctx: Any) -> bool:
    return True


@dataclass(frozen=True, slots=True)
class Strategy(Generic[C, T]):
    """
    One way of resolving a relationship.

    Args:
        name: Stable identifier reported to callers
        run: Produces entities or a `Failure`
        is_viable: Whether the strategy's preconditions hold
        approximate: Results are a heuristic, not a genuine relationship
    """

    name: str
    run: Runner
    is_viable: Viability = field(default=always)
    approximate: bool = False


class StrategyChain(Generic[C, T]):
    """
    Generic fold over an ordered list of strategies.

    Args:
        name: Chain name used in logs and messages
        strategies: Strategies in priority order
        timeout: Per-strategy timeout in seconds (None disables it)
        allow_approximate: When False, approximate strategies are skipped
    """

    def __init__(
        self,
        name: str,
        strategies: Sequence[Strategy[C, T]],
        *,
        timeout: float | None = None,
        allow_approximate: bool = True,
    ) -> None:
        self.name = name
        self.strategies = tuple(strategies)
        self._timeout = timeout
        self._allow_approximate = allow_approximate

    async def resolve(self, ctx: C) -> Resolution[T]:
        attempts: list[Attempt] = []

        for strategy in self.strategies:
            if strategy.approximate and not self._allow_approximate:
                attempts.append(
                    Attempt(strategy.name, AttemptOutcome.SKIPPED, "approximate strategies disabled")
                )
                continue

            if not await self._viable(strategy, ctx):
                logger.debug("%s: strategy %s not viable", self.name, strategy.name)
                attempts.append(Attempt(strategy.name, AttemptOutcome.SKIPPED, "not viable"))
                continue

            logger.debug("%s: trying strategy %s", self.name, strategy.name)
            attempt, items = await self._run(strategy, ctx)
            if attempt is not None:
                attempts.append(attempt)
                continue

            logger.info(
                "%s: resolved %d item(s) via %s%s",
                self.name,
                len(items),
                strategy.name,
                " (approximate)" if strategy.approximate else "",
            )
            return Resolution(
                status=ResolutionStatus.FOUND,
                items=tuple(items),
                strategy=strategy.name,
                approximate=strategy.approximate,
            )

        failed = any(a.outcome in (AttemptOutcome.FAILED, AttemptOutcome.TIMEOUT) for a in attempts)
        status = ResolutionStatus.FAILED if failed else ResolutionStatus.EMPTY
        message = f"{self.name}: every strategy failed or found nothing" if failed else ""
        logger.debug("%s: exhausted (%s) after %d attempt(s)", self.name, status.value, len(attempts))
        return Resolution(status=status, attempts=tuple(attempts), message=message)

    async def _viable(self, strategy: Strategy[C, T], ctx: C) -> bool:
        try:
            return bool(await strategy.is_viable(ctx))
        except Exception:
            logger.exception("%s: viability check of %s raised", self.name, strategy.name)
            return False

    async def _run(self, strategy: Strategy[C, T], ctx: C) -> tuple[Attempt | None, Sequence[T]]:
        try:
            if self._timeout is None:
                result = await strategy.run(ctx)
            else:
                result = await asyncio.wait_for(strategy.run(ctx), timeout=self._timeout)
        except TimeoutError:
            logger.warning("%s: strategy %s timed out after %ss", self.name, strategy.name, self._timeout)
            return Attempt(strategy.name, AttemptOutcome.TIMEOUT, f"timed out after {self._timeout}s"), ()
        except Exception as e:
            logger.exception("%s: strategy %s raised", self.name, strategy.name)
            return Attempt(strategy.name, AttemptOutcome.FAILED, f"{type(e).__name__}: {e}"), ()

        if isinstance(result, Failure):
            logger.debug("%s: strategy %s failed: %s", self.name, strategy.name, result)
            return Attempt(strategy.name, AttemptOutcome.FAILED, str(result)), ()

        if not result:
            return Attempt(strategy.name, AttemptOutcome.EMPTY, "no results"), ()

        return None, result
