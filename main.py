from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from uowplus.config import settings
from uowplus.middleware.logging_md import LoggingMiddleware
from uowplus.logging.logger import LogConfig
from uowplus.database.manager import DatabaseManager
from uowplus.exceptions.errors import UnitOfWorkError
from uowplus.exceptions.handler import BusinessException, global_exception_handler
from uowplus.repository.registration import add_unit_of_work
import apps.models  # noqa: F401  (registers table metadata)
from apps.orders.repository import OrderRepository
from apps.orders.api.router import router as order_router

# Initialize logging configuration
LogConfig.setup_logging()

database = DatabaseManager.get_instance()

@asynccontextmanager
async def lifespan(app: FastAPI):
    async with database.sql:
        yield

app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# One UnitOfWork per request; orders get the specialised repository
add_unit_of_work(app, database.session_factory, OrderRepository)

# Register global exception handlers
app.add_exception_handler(BusinessException, global_exception_handler)
app.add_exception_handler(RequestValidationError, global_exception_handler)
app.add_exception_handler(UnitOfWorkError, global_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

app.add_middleware(LoggingMiddleware)

app.include_router(
    order_router,
    prefix=settings.API_V1_ORDERS_PREFIX,
    tags=["Orders"]
)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
