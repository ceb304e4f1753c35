# backend/app.py

import logging
from typing import Optional

from fastapi import FastAPI, File, Form, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from config.settings import Settings, get_settings
from .auth import PIN_HEADER, check_pin
from .errors import GenerationError, ServiceError, UnauthorizedError
from .generators import ImageGenerator, build_generator
from .model import AuthRequest, AuthResponse, ErrorResponse, HealthResponse
from .prompts import DEFAULT_STYLE, resolve_style
from .uploads import temp_upload

logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(settings: Settings, generator: Optional[ImageGenerator] = None) -> FastAPI:
    configure_logging(settings.log_level)
    generator = generator or build_generator(settings)
    settings.temp_dir.mkdir(parents=True, exist_ok=True)

    app = FastAPI(title="Family Photo Toon")
    app.state.settings = settings
    app.state.generator = generator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    logger.info("Orchestrator on port %s", settings.port)
    logger.info("Image backend: %s at %s", generator.name, generator.base_url)
    logger.info("Family PIN: %s", settings.masked_pin)

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        return error_response(exc.status_code, exc.public_message or generator.failure_message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        # Malformed bodies still get the {"error": ...} shape, never the raw input back
        logger.info("Rejected malformed request to %s: %s", request.url.path, exc.errors())
        if request.url.path == "/auth":
            return error_response(401, "Invalid PIN")
        if request.url.path == "/generate":
            if not check_pin(request.headers.get(PIN_HEADER), settings.family_pin):
                return error_response(401, "Unauthorized")
            if any("image" in err.get("loc", ()) for err in exc.errors()):
                return error_response(400, "No image provided")
        return error_response(400, "Invalid request")

    @app.post("/auth", response_model=AuthResponse, responses={401: {"model": ErrorResponse}})
    async def auth(req: AuthRequest):
        if not check_pin(req.pin, settings.family_pin):
            raise UnauthorizedError("wrong PIN on /auth", public_message="Invalid PIN")
        return AuthResponse(success=True)

    @app.get("/health", response_model=HealthResponse, responses={503: {"model": HealthResponse}})
    async def health():
        try:
            up = await generator.health()
        except Exception as e:
            logger.warning("Health check for %s failed: %s", generator.name, e)
            body = HealthResponse(status="error", backend=generator.name, connection="not connected")
            return JSONResponse(status_code=503, content=body.model_dump())

        if not up:
            body = HealthResponse(status="error", backend=generator.name, connection="not responding")
            return JSONResponse(status_code=503, content=body.model_dump())
        return HealthResponse(status="ok", backend=generator.name, connection="connected")

    @app.post(
        "/generate",
        response_class=Response,
        responses={
            200: {"content": {"image/png": {}}},
            400: {"model": ErrorResponse},
            401: {"model": ErrorResponse},
            500: {"model": ErrorResponse},
            503: {"model": ErrorResponse},
        },
    )
    async def generate(
        image: Optional[UploadFile] = File(None),
        style: str = Form(DEFAULT_STYLE),
        family_pin: Optional[str] = Header(None, alias=PIN_HEADER),
    ):
        if not check_pin(family_pin, settings.family_pin):
            raise UnauthorizedError("wrong PIN on /generate")

        style = resolve_style(style)
        async with temp_upload(image, settings, keep_extension=generator.needs_extension) as path:
            try:
                result = await generator.generate(path, style)
            except GenerationError as e:
                logger.error("Generation via %s failed: %s", generator.name, e)
                raise
            except Exception as e:
                logger.exception("Unexpected error during generation via %s", generator.name)
                raise GenerationError(str(e)) from e

        logger.info("Generated %d bytes, style=%s", len(result), style)
        return Response(content=result, media_type="image/png", headers=NO_STORE_HEADERS)

    return app


app = create_app(get_settings())
