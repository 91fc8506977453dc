from contextlib import asynccontextmanager
from fastapi import FastAPI
from listing_monitor.api.routes import router as api_router
from listing_monitor.config import Settings
from listing_monitor.db import Base, engine
from listing_monitor.runtime import Runtime
from listing_monitor.utils import logger
import listing_monitor.models  # noqa: F401 ensure models are imported so tables are known


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Ensure database tables are created on startup
    Base.metadata.create_all(bind=engine)
    runtime = Runtime(Settings.from_env(), engine=engine)
    runtime.start()
    app.state.runtime = runtime
    logger.info("Listing monitor started")
    try:
        yield
    finally:
        runtime.shutdown()


def create_app(runtime: Runtime = None) -> FastAPI:
    """Build the API; with an explicit runtime the caller owns its lifecycle."""
    if runtime is None:
        api = FastAPI(lifespan=lifespan)
    else:
        api = FastAPI()
        api.state.runtime = runtime
    api.include_router(api_router)
    return api


app = create_app()
