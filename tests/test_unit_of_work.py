"""Unit of Work registry, save atomicity, transactions and disposal."""
import asyncio
import pytest
from sqlalchemy.exc import IntegrityError
from apps.orders.models import Order, OrderLine
from apps.orders.repository import OrderRepository
from uowplus.exceptions.errors import InvalidOperation, TransactionError
from uowplus.repository.base import BaseRepository
from uowplus.repository.query import QueryDescriptor
from uowplus.repository.registry import RepositoryRegistry
from uowplus.repository.tracking import MutationIntent
from uowplus.repository.unit_of_work import UnitOfWork
from tests.conftest import committed_numbers


class TestRegistry:
    """Test the per-scope repository registry."""

    @pytest.mark.asyncio
    async def test_same_instance_per_entity_type(self, uow: UnitOfWork):
        """Test repository() is lazy and idempotent per type."""
        assert uow.repository(Order) is uow.repository(Order)
        assert uow.repository(OrderLine) is uow.repository(OrderLine)
        assert uow.repository(Order) is not uow.repository(OrderLine)
        assert uow.get_repository(Order) is uow.repository(Order)

    @pytest.mark.asyncio
    async def test_registered_override_else_default(self, uow: UnitOfWork):
        """Test two-tier lookup: registered class first, generic fallback second."""
        assert type(uow.repository(Order)) is OrderRepository
        line_repo = uow.repository(OrderLine)
        assert type(line_repo) is BaseRepository
        assert line_repo.model is OrderLine

    @pytest.mark.asyncio
    async def test_repositories_share_the_context(self, uow: UnitOfWork):
        """Test every repository stages onto the unit of work's context."""
        assert uow.repository(Order).context is uow.context
        assert uow.repository(OrderLine).context is uow.context

    def test_register_as_decorator_with_explicit_model(self):
        """Test register() returns the class and accepts an explicit model."""
        registry = RepositoryRegistry()

        class LineRepository(BaseRepository[OrderLine]):
            pass

        assert registry.register(LineRepository, OrderLine) is LineRepository
        assert OrderLine in registry
        assert registry.resolve(OrderLine) is LineRepository
        assert len(registry) == 1

    def test_register_requires_entity_type(self):
        """Test a repository class without a model cannot be registered alone."""
        class Anonymous(BaseRepository):
            pass

        with pytest.raises(InvalidOperation):
            RepositoryRegistry([Anonymous])

    def test_register_rejects_non_repositories(self):
        """Test only BaseRepository subclasses are accepted."""
        with pytest.raises(TypeError):
            RepositoryRegistry().register(object, Order)

    @pytest.mark.asyncio
    async def test_register_as_bare_decorator(self, session_factory):
        """Test a class registered by decorator is built for its declared model."""
        registry = RepositoryRegistry()

        @registry.register
        class LineRepository(BaseRepository[OrderLine]):
            model = OrderLine

        async with UnitOfWork(session_factory(), registry) as uow:
            repo = uow.repository(OrderLine)
            assert isinstance(repo, LineRepository)
            assert repo.model is OrderLine

    def test_session_is_required(self):
        """Test a unit of work cannot be built without a session."""
        with pytest.raises(ValueError):
            UnitOfWork(None)


class TestSave:
    """Test save atomicity."""

    @pytest.mark.asyncio
    async def test_failed_save_applies_nothing(self, uow: UnitOfWork, new_uow):
        """Test a constraint violation on entity 2 of 3 leaves entity 1 unsaved too."""
        repo = uow.repository(Order)
        order1 = repo.create(Order(number="C-1", customer="alice"))
        order2 = repo.create(Order(number="C-1", customer="bob"))
        repo.create(Order(number="C-3", customer="carol"))

        with pytest.raises(TransactionError) as exc_info:
            await uow.save()

        assert isinstance(exc_info.value.cause, IntegrityError)
        assert await committed_numbers(new_uow) == []
        # still staged, nothing was lost
        assert uow.context.intent_of(order1) is MutationIntent.ADDED
        assert len(uow.context.pending) == 3

        order2.number = "C-2"
        assert await uow.save() == 3
        assert await committed_numbers(new_uow) == ["C-1", "C-2", "C-3"]

    @pytest.mark.asyncio
    async def test_retry_keeps_tracked_update(self, uow: UnitOfWork, new_uow, sample_orders):
        """Test a staged edit survives a failed save and is written by the retry."""
        repo = uow.repository(Order)
        order = await repo.get_by_id(2)
        order.customer = "changed"
        repo.update(order)
        duplicate = repo.create(Order(number="A-001", customer="duplicate"))

        with pytest.raises(TransactionError):
            await uow.save()
        assert order.customer == "changed"
        assert uow.context.intent_of(order) is MutationIntent.MODIFIED

        duplicate.number = "A-011"
        assert await uow.save() == 2

        async with new_uow() as check:
            fresh = await check.repository(Order).get_by_id(2)
            assert fresh.customer == "changed"
            assert fresh.number == "A-002"

    @pytest.mark.asyncio
    async def test_save_spans_repositories(self, uow: UnitOfWork, new_uow):
        """Test one save flushes every repository's staged changes."""
        order = uow.repository(Order).create(Order(number="C-1", customer="alice"))
        await uow.save()

        uow.repository(OrderLine).create(OrderLine(order_id=order.id, sku="SKU-9"))
        order.customer = "alice b."
        uow.repository(Order).update(order)
        assert await uow.save() == 2

        async with new_uow() as check:
            fresh = await check.repository(Order).get_entity(
                QueryDescriptor(predicate=Order.id == order.id).include(Order.lines)
            )
            assert fresh.customer == "alice b."
            assert [line.sku for line in fresh.lines] == ["SKU-9"]

    @pytest.mark.asyncio
    async def test_update_without_key_fails(self, uow: UnitOfWork):
        """Test updating an entity that was never stored is a TransactionError."""
        uow.repository(Order).update(Order(number="C-1", customer="alice"))
        with pytest.raises(TransactionError):
            await uow.save()


class TestTransactions:
    """Test explicit transactions around saves."""

    @pytest.mark.asyncio
    async def test_commit_keeps_every_save(self, uow: UnitOfWork, new_uow):
        """Test saves inside a transaction land together on commit."""
        repo = uow.repository(Order)
        await uow.begin_transaction()
        assert uow.in_transaction

        repo.create(Order(number="D-1", customer="alice"))
        await uow.save()
        repo.create(Order(number="D-2", customer="bob"))
        await uow.save()
        assert uow.in_transaction

        await uow.commit_transaction()
        assert not uow.in_transaction
        assert await committed_numbers(new_uow) == ["D-1", "D-2"]

    @pytest.mark.asyncio
    async def test_rollback_discards_saves(self, uow: UnitOfWork, new_uow):
        """Test rolling back undoes saves made inside the transaction."""
        repo = uow.repository(Order)
        await uow.begin_transaction()
        repo.create(Order(number="D-1", customer="alice"))
        await uow.save()

        await uow.rollback_transaction()
        assert not uow.in_transaction
        assert await committed_numbers(new_uow) == []

    @pytest.mark.asyncio
    async def test_failed_save_keeps_transaction_open(self, uow: UnitOfWork, new_uow):
        """Test a failed save inside a transaction undoes only itself."""
        repo = uow.repository(Order)
        await uow.begin_transaction()
        repo.create(Order(number="D-1", customer="alice"))
        await uow.save()

        duplicate = repo.create(Order(number="D-1", customer="duplicate"))
        with pytest.raises(TransactionError):
            await uow.save()

        assert uow.in_transaction
        assert await repo.exists(Order.number == "D-1")
        assert await committed_numbers(new_uow) == []

        duplicate.number = "D-2"
        await uow.save()
        assert await committed_numbers(new_uow) == []

        await uow.commit_transaction()
        assert await committed_numbers(new_uow) == ["D-1", "D-2"]

    @pytest.mark.asyncio
    async def test_rollback_after_failed_save(self, uow: UnitOfWork, new_uow):
        """Test the usual cleanup path still works after a failed save."""
        repo = uow.repository(Order)
        await uow.begin_transaction()
        repo.create(Order(number="D-1", customer="alice"))
        await uow.save()
        repo.create(Order(number="D-1", customer="duplicate"))
        with pytest.raises(TransactionError):
            await uow.save()

        await uow.rollback_transaction()
        assert not uow.in_transaction
        assert await committed_numbers(new_uow) == []

    @pytest.mark.asyncio
    async def test_rollback_after_failed_commit(self, uow: UnitOfWork, new_uow, monkeypatch):
        """Test rollback is accepted once a failed commit has ended the transaction."""
        repo = uow.repository(Order)
        await uow.begin_transaction()
        repo.create(Order(number="D-1", customer="alice"))
        await uow.save()

        async def lost_connection():
            raise RuntimeError("connection lost")

        monkeypatch.setattr(uow.session, "commit", lost_connection)
        with pytest.raises(TransactionError) as exc_info:
            await uow.commit_transaction()
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert not uow.in_transaction

        await uow.rollback_transaction()
        assert await committed_numbers(new_uow) == []

    @pytest.mark.asyncio
    async def test_cancellation_leaves_transaction_open(self, uow: UnitOfWork, new_uow):
        """Test a cancelled transaction body is not rolled back automatically."""
        repo = uow.repository(Order)
        saved = asyncio.Event()

        async def body():
            async with uow.transaction():
                repo.create(Order(number="D-1", customer="alice"))
                await uow.save()
                saved.set()
                await asyncio.sleep(3600)

        task = asyncio.create_task(body())
        await saved.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert uow.in_transaction
        assert await repo.exists(Order.number == "D-1")

        await uow.rollback_transaction()
        assert not await repo.exists(Order.number == "D-1")
        assert await committed_numbers(new_uow) == []

    @pytest.mark.asyncio
    async def test_transaction_context_manager(self, uow: UnitOfWork, new_uow):
        """Test transaction() commits on success and rolls back on error."""
        repo = uow.repository(Order)
        async with uow.transaction():
            repo.create(Order(number="D-1", customer="alice"))
            await uow.save()
        assert await committed_numbers(new_uow) == ["D-1"]

        with pytest.raises(ValueError):
            async with uow.transaction():
                repo.create(Order(number="D-2", customer="bob"))
                await uow.save()
                raise ValueError("boom")
        assert not uow.in_transaction
        assert await committed_numbers(new_uow) == ["D-1"]

    @pytest.mark.asyncio
    async def test_begin_twice_is_an_error(self, uow: UnitOfWork):
        """Test transactions do not nest."""
        await uow.begin_transaction()
        with pytest.raises(TransactionError):
            await uow.begin_transaction()

    @pytest.mark.asyncio
    async def test_commit_or_rollback_without_transaction(self, uow: UnitOfWork):
        """Test commit/rollback need an open transaction."""
        with pytest.raises(TransactionError):
            await uow.commit_transaction()
        with pytest.raises(TransactionError):
            await uow.rollback_transaction()


class TestDisposal:
    """Test disposal releases the scope."""

    @pytest.mark.asyncio
    async def test_repository_unusable_after_dispose(self, new_uow, sample_orders):
        """Test every repository operation fails with InvalidOperation after dispose."""
        uow = new_uow()
        repo = uow.repository(Order)
        query = repo.get_query()
        order = await repo.get_by_id(1)

        await uow.dispose()
        assert uow.is_disposed

        with pytest.raises(InvalidOperation):
            await repo.get_all()
        with pytest.raises(InvalidOperation):
            await repo.get_entity()
        with pytest.raises(InvalidOperation):
            repo.get_query()
        with pytest.raises(InvalidOperation):
            await query.all()
        with pytest.raises(InvalidOperation):
            await repo.exists(None)
        with pytest.raises(InvalidOperation):
            repo.update(order)
        with pytest.raises(InvalidOperation):
            uow.repository(Order)
        with pytest.raises(InvalidOperation):
            await uow.save()
        with pytest.raises(InvalidOperation):
            await uow.begin_transaction()

    @pytest.mark.asyncio
    async def test_dispose_is_idempotent(self, new_uow):
        """Test disposing twice is harmless."""
        uow = new_uow()
        await uow.dispose()
        await uow.dispose()
        assert uow.is_disposed

    @pytest.mark.asyncio
    async def test_dispose_rolls_back_open_transaction(self, new_uow):
        """Test an uncommitted transaction does not survive disposal."""
        uow = new_uow()
        await uow.begin_transaction()
        uow.repository(Order).create(Order(number="E-1", customer="alice"))
        await uow.save()
        await uow.dispose()

        assert await committed_numbers(new_uow) == []

    @pytest.mark.asyncio
    async def test_context_manager_disposes_and_drops_staged_work(self, new_uow):
        """Test leaving the async with block disposes without saving."""
        async with new_uow() as uow:
            uow.repository(Order).create(Order(number="E-1", customer="alice"))
        assert uow.is_disposed
        assert await committed_numbers(new_uow) == []
