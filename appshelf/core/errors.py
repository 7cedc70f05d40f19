"""Error taxonomy shared by the record store, gateway and reconcilers.

Every failure of an external call is converted to one of these before a
reconciler acts on it; the manager decides scheduling from the class.
"""

from __future__ import annotations


class NotFoundError(LookupError):
    """A record vanished or never existed. Absorbed silently."""


class AlreadyExistsError(RuntimeError):
    """A create collided with an existing record."""


class ConflictError(RuntimeError):
    """An optimistic-concurrency write carried a stale resource version.

    Not an application error: the record is simply re-enqueued.
    """


class TransientDependencyError(RuntimeError):
    """A dependency (bucket, credential source) is not available yet.

    No phase change; the relevant watch will re-enqueue the record.
    """


class TransientStorageError(RuntimeError):
    """Storage failed although its bucket reports Ready.

    Retried with bounded backoff without touching status.
    """


class ValidationFailure(ValueError):
    """A record is internally inconsistent. Terminal for its current spec."""


class ReconcileCancelled(RuntimeError):
    """The shutdown signal fired while a reconcile was in progress."""
