import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from slowapi import Limiter
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import get_settings
from .database import SessionLocal, init_db
from .error_handlers import register_exception_handlers
from .locks import build_lock_provider
from .notifications import Notifier
from .routers import host_reservations, images, notifications, offices, reservations, tags, users

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    init_db()
    yield


# -----------------------------------------
# Rate limiter, per client IP
# -----------------------------------------
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)

app = FastAPI(
    title="Office Space Booking API",
    version="0.1.0",
    description="Hosts list offices, visitors search and book them.",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.state.notifier = Notifier(SessionLocal)
app.state.lock_provider = build_lock_provider(settings)
app.add_middleware(SlowAPIMiddleware)

register_exception_handlers(app)

# -----------------------------------------
# Routers
# -----------------------------------------
for module in (users, tags, offices, images, reservations, host_reservations, notifications):
    app.include_router(module.router)
    app.include_router(module.router, prefix="/api")


@app.get("/health", tags=["health"])
def health_check():
    return {"status": "ok"}
