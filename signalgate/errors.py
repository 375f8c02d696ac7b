"""Failures raised by the stores.

Denials (expired, inactive, already claimed, over quota) are not errors:
the access controller reports them as result values.
"""
from __future__ import annotations


class SignalGateError(Exception):
    pass


class DuplicateKey(SignalGateError):
    """A key with the same value already exists."""


class StoreUnavailable(SignalGateError):
    """The underlying persistence layer failed; the change was rolled back."""
