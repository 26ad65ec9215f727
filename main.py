from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from config.settings import settings

# ✅ root logger configured once, here
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
# quiet library loggers
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("multipart").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


# ✅ middlewares
from middlewares.timing import TimingMiddleware
from middlewares.error_handler import add_error_handlers

# ✅ routers
from routers import grading, imports, mock_exams, results

from database.db import init_db

app = FastAPI(
    title=settings.APP_TITLE,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
)

# ✅ CORS (front end origins from settings)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ✅ request latency (X-Latency-Ms header, slow requests logged)
app.add_middleware(TimingMiddleware)

# ✅ global error handlers (engine error taxonomy → JSON error body)
add_error_handlers(app)

# ✅ /v1 routers
app.include_router(grading.router,     prefix="/v1")
app.include_router(results.router,     prefix="/v1")
app.include_router(imports.router,     prefix="/v1")
app.include_router(mock_exams.router,  prefix="/v1")


# ✅ health check
@app.get("/health")
def health_check():
    return {"status": "ok", "message": "API is running"}


@app.on_event("startup")
def _create_tables():
    init_db()
    logger.info(f"{settings.APP_TITLE} started ({settings.ENV}), database: {settings.DATABASE_URL.split('@')[-1]}")


# ✅ root
@app.get("/")
def root():
    return {"message": f"{settings.APP_TITLE} {settings.APP_VERSION}"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.ENV == "dev")
