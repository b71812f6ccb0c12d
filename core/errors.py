"""
Error taxonomy for the domain stack.

Lookup/configuration errors are raised eagerly by the call that introduces
them. Numerical setbacks inside a solve are recovered by the continuation
policy and never surface here, except for SolveFailed once the full retry
budget is exhausted.
"""

from __future__ import annotations


class StackError(Exception):
    """Base class for all domain-stack errors."""


class NameNotFound(StackError, KeyError):
    """Unknown domain, component or solution id."""

    def __str__(self) -> str:  # KeyError quotes its message otherwise
        return str(self.args[0]) if self.args else ""


class DomainNotFound(NameNotFound):
    """No domain in the stack matches the given name or index."""


class InvalidArgument(StackError, ValueError):
    """Non-positive temperature, malformed criteria, bad configuration values."""


class ShapeMismatch(StackError, ValueError):
    """Profile table dimensions inconsistent with the component list."""


class IncompatibleSolution(StackError):
    """Stored solution does not match the live stack structure."""


class SolveFailed(StackError, RuntimeError):
    """Newton + time-stepping budget exhausted without convergence."""


class SolveCancelled(StackError):
    """Solve stopped at a cancellation point."""
