from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Iterable, TypeVar

I = TypeVar("I")
O = TypeVar("O")


@dataclass(frozen=True)
class Failure(Generic[I]):
    input: I
    error: BaseException


@dataclass(frozen=True)
class Settled(Generic[I, O]):
    succeeded: list[O] = field(default_factory=list)
    failed: list[Failure[I]] = field(default_factory=list)


async def gather_settled(
    fn: Callable[[I], Awaitable[O]],
    inputs: Iterable[I],
) -> Settled[I, O]:
    """
    Run `fn` over every input concurrently and wait for all of them.

    Exceptions are collected per input instead of cancelling siblings.
    Successful outputs keep input order. Cancellation is not swallowed.
    """
    items = list(inputs)
    outcomes = await asyncio.gather(*(fn(i) for i in items), return_exceptions=True)

    succeeded: list[O] = []
    failed: list[Failure[I]] = []
    for item, outcome in zip(items, outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            failed.append(Failure(item, outcome))
        else:
            succeeded.append(outcome)
    return Settled(succeeded, failed)
