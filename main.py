import logging
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from medbill.api import files_router, router as api_router
from medbill.config import Settings, load_settings
from medbill.deps import build_services
from medbill.document import BillRenderer
from medbill.errors import MedbillError
from medbill.gateway import SuggestionGateway
from medbill.icd10 import load_keyword_rules

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("medbill")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def create_app(
    settings: Optional[Settings] = None,
    gateway: Optional[SuggestionGateway] = None,
    renderer: Optional[BillRenderer] = None,
) -> FastAPI:
    settings = settings or load_settings()
    services = build_services(settings, gateway=gateway, renderer=renderer)

    app = FastAPI(
        title="Medbill",
        version="0.1.0"
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MedbillError)
    async def medbill_error_handler(request: Request, exc: MedbillError):
        if exc.status_code >= 500:
            logger.error("request failed path=%s error=%s", request.url.path, exc.message)
        return _error(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return _error(400, f"Invalid request: {detail}")

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled error path=%s", request.url.path)
        return _error(500, "Internal server error")

    @app.get("/ping")
    def ping():
        return {"status": "ok"}

    @app.on_event("startup")
    def startup_event():
        services.bill_store.ensure_dir()
        services.upload_store.ensure_dir()
        rules = load_keyword_rules(settings.keywords_path)
        logger.info(
            "Medbill backend started (model=%s api_key=%s keyword_rules=%s)",
            settings.model,
            "present" if services.gateway.configured else "missing",
            len(rules),
        )

    @app.on_event("shutdown")
    def shutdown_event():
        logger.info("Medbill backend stopped")

    app.include_router(api_router, prefix="/api")
    app.include_router(files_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="127.0.0.1", port=8005, reload=True, log_level="info")
