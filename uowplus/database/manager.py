from .sql_driver import SQLDriver

class DatabaseManager:
    """Process-wide holder of the SQL driver, built lazily from settings."""
    _instance = None

    def __init__(self, settings):
        self.sql = SQLDriver(settings.DATABASE_URL, echo=settings.DB_ECHO)

    @property
    def session_factory(self):
        return self.sql.session_factory

    @classmethod
    def get_instance(cls, settings=None):
        if cls._instance is None:
            if settings is None:
                from uowplus.config import settings as app_settings
                settings = app_settings
            cls._instance = cls(settings)
        return cls._instance
