"""Exception types shared by the job store, the record store and the worker.

Store errors are the only kind the worker loop retries. Records errors end up
as an ``err`` result on the job that raised them.
"""

from __future__ import annotations


class KrumnetError(Exception):
    """Base class for krumnet errors."""


class StoreError(KrumnetError):
    """The job store is unreachable, or a job payload could not be (de)serialized."""


class RecordsError(KrumnetError):
    """The record store rejected an operation."""


class NotFoundError(RecordsError):
    """A referenced lobby, game, round or member does not exist."""

    def __init__(self, kind: str, record_id: str) -> None:
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"Unable to find {kind} '{record_id}'")


class WorkerFatalError(KrumnetError):
    """The worker gave up after too many consecutive job store failures."""
