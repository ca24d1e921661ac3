"""
Per-message handler outcomes and the decision table that settles them.

Stage handlers never signal failure by raising. They return one of

    Processed()                     the work is done
    Skipped(reason)                 nothing to do; the message is consumed
    Failed(kind, detail)            the work could not be done

and the consumer maps that value to exactly one broker action:

    outcome              policy     action
    -------------------  ---------  -----------------------------------
    Processed            any        ack
    Skipped              any        ack
    Failed(malformed)    any        ack-and-drop (a retry cannot help)
    Failed(other)        drop       ack-and-drop, logged at ERROR
    Failed(other)        requeue    reject with requeue

There is no dead-letter queue; "drop" means the message is gone.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Union

from paperflow.core.config import FailurePolicy


class FailureKind(str, Enum):
    MALFORMED    = "malformed"      # body does not decode to the expected message
    EXTRACTION   = "extraction"     # OCR engine or rasterizer error
    PERSISTENCE  = "persistence"    # relational store or search index write failed
    BROKER       = "broker"         # downstream publish failed
    UNEXPECTED   = "unexpected"     # handler raised


@dataclass(frozen=True)
class Processed:
    pass


@dataclass(frozen=True)
class Skipped:
    reason: str


@dataclass(frozen=True)
class Failed:
    kind:   FailureKind
    detail: str = ""


HandlerOutcome = Union[Processed, Skipped, Failed]

# One handler per queue: raw message body in, outcome out.
Handler = Callable[[bytes], Awaitable[HandlerOutcome]]


class Disposition(str, Enum):
    ACK     = "ack"
    REQUEUE = "requeue"
    DROP    = "drop"      # acked, but the work was not done


def decide(outcome: HandlerOutcome, policy: FailurePolicy) -> Disposition:
    if isinstance(outcome, (Processed, Skipped)):
        return Disposition.ACK
    if outcome.kind is FailureKind.MALFORMED:
        return Disposition.DROP
    if policy == "requeue":
        return Disposition.REQUEUE
    return Disposition.DROP
