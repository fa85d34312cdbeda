from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.requests import Request
import logging

from nextup.core.database import init_db
from nextup.services.errors import NextUpError, UpstreamError
from nextup.api import collection, episodes, lists, search, shows, stats, sync
import nextup.utils.logger  # noqa: F401  configures the "nextup" logger

logger = logging.getLogger(__name__)

app = FastAPI(title="NextUp API", version="1.0.0")

# Add GZip compression middleware for better transfer performance
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(episodes.router, prefix="/api", tags=["Episodes"])
app.include_router(collection.router, prefix="/api", tags=["Collection"])
app.include_router(shows.router, prefix="/api", tags=["Shows"])
app.include_router(lists.router, prefix="/api", tags=["Lists"])
app.include_router(sync.router, prefix="/api", tags=["Sync"])
app.include_router(search.router, prefix="/api", tags=["Search"])
app.include_router(stats.router, prefix="/api", tags=["Stats"])


@app.exception_handler(NextUpError)
async def nextup_error_handler(request: Request, exc: NextUpError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    body = {"error": exc.message}
    if isinstance(exc, UpstreamError):
        body["local_state_committed"] = exc.local_state_committed
    return JSONResponse(status_code=exc.status_code, content=body)


@app.on_event("startup")
async def startup_event():
    await init_db()


@app.get("/")
def root():
    return {"status": "NextUp API Running"}


@app.get("/health")
async def health_check():
    """Simple health check endpoint for load balancers/monitoring"""
    try:
        from nextup.core.redis_client import get_redis
        from nextup.core.database import SessionLocal

        await get_redis().ping()

        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()

        from nextup.utils.timezone import utc_now
        return {"status": "healthy", "timestamp": utc_now().isoformat()}
    except Exception as e:
        from fastapi import HTTPException
        raise HTTPException(status_code=503, detail=f"Service unhealthy: {str(e)}")
