"""
Error taxonomy of the data-access layer.

Callers only ever see these types; native driver / ORM exceptions are kept
as the ``__cause__`` (and ``cause`` attribute) of a ``RepositoryError`` or
``TransactionError``.
"""

from typing import Optional


class UnitOfWorkError(Exception):
    """Base class for every error raised by the repository layer."""


class InvalidOperation(UnitOfWorkError):
    """A call that can never succeed: null entity, or use after disposal."""


class RepositoryError(UnitOfWorkError):
    """Store failure during a read or staging operation."""

    def __init__(self, entity_name: str, operation: str, cause: BaseException):
        self.entity_name = entity_name
        self.operation = operation
        self.cause = cause
        super().__init__(f"Error in {operation} for {entity_name}: {cause}")


class TransactionError(UnitOfWorkError):
    """Failure to begin/commit/rollback a transaction or to flush staged changes."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.message = message
        self.cause = cause
        super().__init__(f"{message}: {cause}" if cause is not None else message)
