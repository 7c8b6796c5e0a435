import logging

from fastapi import FastAPI

from .db import init_db
from .settings import settings
from .routers import health
from .routers import auth
from .routers import calendar

logger = logging.getLogger(__name__)

app = FastAPI(title="Athro Study Scheduler API")
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(calendar.router)


@app.get("/info")
def root():
	return {
		"status": "ok",
		"store": settings.store_backend,
		"timezone": settings.timezone,
		"supabase_configured": bool(settings.supabase_url),
	}


@app.on_event("startup")
async def startup_event():
	logging.basicConfig(
		level=settings.log_level.upper(),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)
	if settings.store_backend == "sql":
		# Local database: create tables and apply lightweight dev migrations
		init_db()
		logger.info("Using local database store")
	else:
		logger.info("Using hosted backend store at %s", settings.supabase_url)
