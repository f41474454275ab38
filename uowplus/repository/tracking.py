"""
Change-tracking context: the explicit table of staged mutations for one
Unit of Work, and the only object that talks to its ``AsyncSession``.

Staging does not touch the session. Tagged entities are handed to the session
only inside ``flush()``, which applies them all and either commits (or, inside
an explicit transaction, releases a savepoint) everything, or rolls everything
back.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm.attributes import set_attribute, set_committed_value
from sqlmodel.ext.asyncio.session import AsyncSession

from uowplus.exceptions.errors import InvalidOperation, TransactionError
from uowplus.logging.logger import get_logger
from .query import TrackingMode

logger = get_logger("uowplus.tracking")


class MutationIntent(str, Enum):
    """Pending operation attached to a staged entity."""
    UNCHANGED = "unchanged"
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass
class TrackedEntry:
    entity: Any
    intent: MutationIntent


def _has_primary_key(state) -> bool:
    if state.key is not None:
        return True
    values = state.mapper.primary_key_from_instance(state.obj())
    return all(value is not None for value in values)


class ChangeTrackingContext:
    """
    Owns one session, the staged intents and the explicit-transaction flag.

    Entries are keyed by object identity and kept in staging order. An entity
    has at most one intent; staging it again overwrites the previous one.
    """

    def __init__(self, session: AsyncSession):
        if session is None:
            raise ValueError("Session must be provided.")
        self._session: Optional[AsyncSession] = session
        self._entries: Dict[int, TrackedEntry] = {}
        self._in_transaction = False
        # set when a failed commit already rolled the transaction back
        self._aborted = False

    @property
    def is_disposed(self) -> bool:
        return self._session is None

    def ensure_open(self) -> None:
        if self._session is None:
            raise InvalidOperation("Unit of work has been disposed; its repositories can no longer be used")

    @property
    def session(self) -> AsyncSession:
        self.ensure_open()
        return self._session

    @property
    def in_transaction(self) -> bool:
        """True while an explicitly begun transaction is open."""
        return self._in_transaction

    @property
    def has_changes(self) -> bool:
        return bool(self._entries)

    @property
    def pending(self) -> List[TrackedEntry]:
        return list(self._entries.values())

    def attach(self, entity: Any, intent: MutationIntent) -> None:
        self.ensure_open()
        intent = MutationIntent(intent)
        if intent is MutationIntent.UNCHANGED:
            self._entries.pop(id(entity), None)
        else:
            self._entries[id(entity)] = TrackedEntry(entity, intent)

    def intent_of(self, entity: Any) -> MutationIntent:
        entry = self._entries.get(id(entity))
        if entry is None or entry.entity is not entity:
            return MutationIntent.UNCHANGED
        return entry.intent

    # --- reads ---

    async def fetch(self, statement, tracking: TrackingMode, first: bool = False):
        """Execute an entity ``Select``; untracked results come back detached."""
        session = self.session
        if tracking is TrackingMode.TRACKED:
            result = await session.exec(statement)
            return result.first() if first else list(result.all())

        # Same connection and transaction, separate identity map
        connection = await session.connection()
        async with AsyncSession(bind=connection, expire_on_commit=False) as reader:
            result = await reader.exec(statement)
            return result.first() if first else list(result.all())

    async def scalar(self, statement):
        result = await self.session.exec(statement)
        return result.one()

    # --- save ---

    async def flush(self) -> int:
        """
        Apply every staged intent atomically. Returns the number of entries flushed.

        Outside an explicit transaction the save commits. Inside one it runs in
        a SAVEPOINT, so a failed save undoes only its own changes and the
        transaction stays open for a retry, a commit or a rollback.
        """
        session = self.session
        entries = list(self._entries.values())
        snapshot = self._snapshot_modified()
        try:
            savepoint = await session.begin_nested() if self._in_transaction else None
        except Exception as exc:
            raise TransactionError("Failed to open a savepoint for save", exc) from exc
        try:
            for entry in entries:
                await self._apply(session, entry)
            await session.flush()
            if savepoint is not None:
                await savepoint.commit()
            else:
                await session.commit()
        except Exception as exc:
            lost_transaction = await self._recover(session, savepoint, snapshot)
            if isinstance(exc, TransactionError) and not lost_transaction:
                raise
            message = "Save failed and was rolled back"
            if lost_transaction:
                message += " together with the open transaction"
            raise TransactionError(message, exc) from exc

        self._entries.clear()
        logger.debug(f"Flushed {len(entries)} staged change(s) (in_transaction={self._in_transaction})")
        return len(entries)

    async def _apply(self, session: AsyncSession, entry: TrackedEntry) -> None:
        entity, intent = entry.entity, entry.intent
        if intent is MutationIntent.ADDED:
            session.add(entity)
            return

        state = sa_inspect(entity)
        if intent is MutationIntent.MODIFIED:
            if not _has_primary_key(state):
                raise TransactionError(f"Cannot update {type(entity).__name__} without a primary key")
            await self._bind(session, entity, state)
        elif intent is MutationIntent.DELETED:
            if not _has_primary_key(state):
                # never persisted, nothing to delete
                return
            target = await self._bind(session, entity, state)
            await session.delete(target)

    async def _bind(self, session: AsyncSession, entity: Any, state):
        """Return the instance of ``entity`` that belongs to ``session``."""
        sync_session = session.sync_session
        if state.session is sync_session:
            return entity
        if (
            state.key is not None
            and state.session is None
            and state.key not in sync_session.identity_map
        ):
            session.add(entity)
            return entity
        return await session.merge(entity)

    def _snapshot_modified(self) -> List[Tuple[Any, Dict[str, Any]]]:
        """Column values of staged updates; a rollback expires them on attached instances."""
        snapshot = []
        for entry in self._entries.values():
            if entry.intent is not MutationIntent.MODIFIED:
                continue
            state = sa_inspect(entry.entity)
            values = {
                attr.key: state.dict[attr.key]
                for attr in state.mapper.column_attrs
                if attr.key in state.dict
            }
            snapshot.append((entry.entity, values))
        return snapshot

    @staticmethod
    def _restore_modified(snapshot) -> None:
        for entity, values in snapshot:
            mapper = sa_inspect(entity).mapper
            key_names = {mapper.get_property_by_column(column).key for column in mapper.primary_key}
            for key, value in values.items():
                if key in key_names:
                    set_committed_value(entity, key, value)
                else:
                    set_attribute(entity, key, value)

    async def _recover(self, session: AsyncSession, savepoint, snapshot) -> bool:
        """
        Undo a failed save, keeping staged intents and their in-memory values.

        Returns True when the explicit transaction was lost as well.
        """
        lost_transaction = False
        if savepoint is not None:
            try:
                await savepoint.rollback()
            except Exception as exc:
                logger.error(f"Savepoint rollback failed, rolling back the transaction: {exc}")
                lost_transaction = await self._abort(session)
        else:
            await self._abort(session)
        self._restore_modified(snapshot)
        return lost_transaction

    async def _abort(self, session: AsyncSession) -> bool:
        was_open = self._in_transaction
        self._in_transaction = False
        self._aborted = was_open
        if was_open:
            logger.warning("Rolling back open transaction")
        await session.rollback()
        return was_open

    # --- transactions ---

    async def begin(self) -> None:
        session = self.session
        if self._in_transaction:
            raise TransactionError("A transaction is already open")
        try:
            if not session.in_transaction():
                await session.begin()
        except Exception as exc:
            raise TransactionError("Failed to begin transaction", exc) from exc
        self._in_transaction = True
        self._aborted = False
        logger.debug("Transaction started")

    async def commit(self) -> None:
        session = self.session
        if not self._in_transaction:
            raise TransactionError("No transaction is open")
        try:
            await session.commit()
        except Exception as exc:
            await self._abort(session)
            raise TransactionError("Failed to commit transaction", exc) from exc
        self._in_transaction = False
        logger.debug("Transaction committed")

    async def rollback(self) -> None:
        session = self.session
        if self._aborted:
            self._aborted = False
            return
        if not self._in_transaction and not session.in_transaction():
            raise TransactionError("No transaction is open")
        try:
            await session.rollback()
        except Exception as exc:
            raise TransactionError("Failed to roll back transaction", exc) from exc
        finally:
            self._in_transaction = False
        logger.debug("Transaction rolled back")

    # --- lifetime ---

    async def dispose(self) -> None:
        """Close the session; an uncommitted transaction is rolled back."""
        if self._session is None:
            return
        session, self._session = self._session, None
        if self._entries:
            logger.warning(f"Discarding {len(self._entries)} unsaved staged change(s) on dispose")
        if self._in_transaction:
            logger.warning("Disposing with an open transaction; rolling back")
        self._entries.clear()
        self._in_transaction = False
        self._aborted = False
        await session.close()
