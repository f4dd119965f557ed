"""Exceptions shared by the cache, scheduler and navigation layers."""
from __future__ import annotations

import logging

LOG = logging.getLogger(__name__)


class NavigationEdge(Exception):
    """Control signal raised when a step would leave the directory."""


class NoMoreImages(NavigationEdge):
    pass


class NoPreviousImages(NavigationEdge):
    pass


class DecodeError(OSError):
    """A single image could not be read or decoded."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class ContractError(RuntimeError):
    """Internal bookkeeping would be corrupted by the requested operation."""


def report_contract_violation(message: str, *, strict: bool) -> None:
    """Raise in strict mode, otherwise log and let the caller skip the operation."""
    if strict:
        raise ContractError(message)
    LOG.error("Contract violation ignored: %s", message)
