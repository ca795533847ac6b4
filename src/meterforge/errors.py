"""Exception types for MeterForge.

two families matter: validation errors are the caller's fault and carry a
detail that's safe to show back to them. composition errors are our fault -
they mean the compiler produced text that doesn't line up with its arguments,
so we refuse to hand anything back.
"""


class MeterForgeError(Exception):
    """Base class for all MeterForge errors."""


class QueryValidationError(MeterForgeError, ValueError):
    """A usage query (or its filter groups) can't be compiled as given."""


class CompositionError(MeterForgeError, RuntimeError):
    """Placeholder/argument bookkeeping went wrong while assembling a query.

    never include the sql text in the message - it ends up in error
    responses and the fragments can carry schema details.
    """


class MeterNotFoundError(MeterForgeError, KeyError):
    """Unknown meter name."""

    def __str__(self) -> str:
        # KeyError wraps its message in quotes, which reads badly in the cli
        return str(self.args[0]) if self.args else ""
