import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.api.router import api_router
from src.core.config import get_settings
from src.core.db import SessionLocal
from src.core.errors import PersistenceError, TaskServiceError
from src.services.task_registry import sync_tasks_to_database
from src.tasks.registry import list_definitions

settings = get_settings()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


def _error(status_code: int, message: str, headers=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message}, headers=headers)


@app.exception_handler(TaskServiceError)
async def task_service_error_handler(request: Request, exc: TaskServiceError):
    return _error(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _error(exc.status_code, detail, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
    msg = first.get("msg", "Invalid request")
    return _error(400, f"{loc}: {msg}" if loc else msg)


@app.exception_handler(SQLAlchemyError)
async def persistence_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("database error path=%s", request.url.path, exc_info=exc)
    return _error(PersistenceError.status_code, "Database error")


@app.on_event("startup")
def sync_registry_on_startup():
    # Local/dev convenience: keep the task table in step with the code registry
    if not settings.TASK_SYNC_ON_STARTUP or settings.ENV not in ("local", "dev"):
        return

    db = SessionLocal()
    try:
        res = sync_tasks_to_database(db, list_definitions(), code_version=settings.CODE_VERSION)
        logger.info("startup sync synced=%s created=%s updated=%s", res.synced, res.created, res.updated)
    except SQLAlchemyError:
        logger.exception("startup sync failed")
    finally:
        db.close()
