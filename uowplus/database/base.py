from abc import ABC, abstractmethod

class BaseDatabaseDriver(ABC):
    """A store the application opens at startup and closes at shutdown."""

    @abstractmethod
    async def connect(self):
        """Make sure the store is reachable and ready."""

    @abstractmethod
    async def disconnect(self):
        """Release every pooled connection."""

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
