"""Run API Service.
"""

import contextlib
import fastapi
import fastapi.responses
from .errors import MarketplaceError
from .utils.log import setup_logging


@contextlib.asynccontextmanager
async def lifespan(app: fastapi.FastAPI):
    from .engine import init_db
    from .task import scheduler
    from .business.realtime import start_telemetry, stop_telemetry
    setup_logging()
    init_db()
    start_telemetry()
    scheduler.start()
    yield
    scheduler.shutdown(wait=True)
    stop_telemetry()


api_app = fastapi.FastAPI(title="Launcher Marketplace", lifespan=lifespan)


@api_app.get("/heartbeat")
def heartbeat():
    """Check if the API is running."""
    return {"status": "ok"}


@api_app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: fastapi.Request, exc: MarketplaceError):
    return fastapi.responses.JSONResponse(
        status_code=exc.status_code,
        content={"error": type(exc).__name__, "detail": exc.detail},
    )


from .business.extension import EXTENSION_ROUTER, ADMIN_EXTENSION_ROUTER  # noqa: E402
from .business.draft import DRAFT_ROUTER, ADMIN_DRAFT_ROUTER  # noqa: E402
from .business.user import USER_ROUTER, ADMIN_USER_ROUTER  # noqa: E402
from .business.notification import NOTIFICATION_ROUTER  # noqa: E402
from .business.realtime import TELEMETRY_ROUTER  # noqa: E402
api_app.include_router(EXTENSION_ROUTER)
api_app.include_router(DRAFT_ROUTER)
api_app.include_router(TELEMETRY_ROUTER)
api_app.include_router(USER_ROUTER)
api_app.include_router(NOTIFICATION_ROUTER)
api_app.include_router(ADMIN_EXTENSION_ROUTER)
api_app.include_router(ADMIN_DRAFT_ROUTER)
api_app.include_router(ADMIN_USER_ROUTER)
