"""Errors raised by the traversal engine for structural failures.

Transient store failures are absorbed inside the core; only the conditions
below reach the host.
"""

from __future__ import annotations


class PoolInitializationError(RuntimeError):
    """The pool could not establish its cursors against the store."""


class StoreUnavailableError(RuntimeError):
    """The store failed the connectivity check at startup."""


class ClusterValidationError(RuntimeError):
    """A generated cluster violated its invariants and was not emitted."""
