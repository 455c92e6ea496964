"""Reconcile requests and results exchanged with the work queue."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Request:
    """Identity of an object to reconcile."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class Result:
    """Requeue hint returned by a reconcile pass.

    requeue_after is in seconds; zero means no timed recheck.
    """

    requeue: bool = False
    requeue_after: float = 0.0

    def is_zero(self) -> bool:
        return not self.requeue and self.requeue_after == 0


def lowest_non_zero_result(i: Result, j: Result) -> Result:
    """Return whichever result asks for the earliest recheck."""
    if i.is_zero():
        return j
    if j.is_zero():
        return i
    if i.requeue:
        return i
    if j.requeue:
        return j
    if i.requeue_after < j.requeue_after:
        return i
    return j
