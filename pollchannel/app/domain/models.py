"""Domain models."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Message:
    """One delivery of a queued message.

    `receipt_handle` identifies this delivery, not the message: a redelivery of the
    same `id` carries a different handle, and only the current handle can delete it.
    """

    id: str
    body: str
    receipt_handle: str

    def __post_init__(self) -> None:
        if self.body is None:
            raise TypeError("message.body must not be None")

    def to_delete_entry(self) -> "DeleteEntry":
        return DeleteEntry(id=self.id, receipt_handle=self.receipt_handle)


@dataclass(frozen=True)
class DeleteEntry:
    """(id, receipt_handle) pair of a batched delete request."""

    id: str
    receipt_handle: str


@dataclass(frozen=True)
class BatchSummary:
    """Counts for one non-empty polling iteration."""

    requested: int
    received: int
    consumed: int
    deleted: int

    def status_line(self) -> str:
        return f"({self.requested}, {self.received}, {self.consumed}, {self.deleted})"
