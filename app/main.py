from contextlib import asynccontextmanager
from fastapi import FastAPI

# Routers
from app.api.routers.history import router as history_router
from app.services.holiday_service import HolidayService


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the shared holiday calendar; close the session's HTTP client on shutdown."""
    app.state.history_session = None
    app.state.holiday_service = HolidayService()
    try:
        yield
    finally:
        session = getattr(app.state, "history_session", None)
        if session is not None:
            await session.aclose()
        app.state.history_session = None


app = FastAPI(title="Suica History Service", version="0.1", lifespan=lifespan)

app.include_router(history_router)
