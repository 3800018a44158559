from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError
from database import Database
from routes import router
from crud import ChatError
import logging
import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

logging.basicConfig(
    level=LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s - %(message)s"
)
logger = logging.getLogger("chat_service")


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def describe_validation_error(exc: RequestValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        text = error.get("msg", "invalid value")
        messages.append(f"{location}: {text}" if location else text)
    return "; ".join(messages) or "Invalid request"


def setup_error_handlers(app: FastAPI):
    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        response = error_response(exc.status_code, str(exc.detail))
        if getattr(exc, "headers", None):
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return error_response(status.HTTP_400_BAD_REQUEST, describe_validation_error(exc))

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.exception("Database error on %s %s", request.method, request.url.path)
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"{type(exc).__name__}: {exc}"
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"{type(exc).__name__}: {exc}"
        )


def create_app(database: Database = None) -> FastAPI:
    app = FastAPI(
        title="Chat Service API",
        description="Rooms, direct conversations and messages",
        version="1.0.0"
    )
    # a database handed in by the caller is closed by the caller
    owns_database = database is None
    app.state.database = database or Database()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_error_handlers(app)
    app.include_router(router)

    @app.on_event("startup")
    async def startup_event():
        app.state.database.init()
        logger.info("Chat service started")

    @app.on_event("shutdown")
    async def shutdown_event():
        if owns_database:
            app.state.database.dispose()
        logger.info("Chat service stopped")

    @app.get("/health")
    def health_check():
        healthy = app.state.database.ping()
        return {
            "status": "healthy" if healthy else "degraded",
            "service": "chat-service"
        }

    return app


app = create_app()
