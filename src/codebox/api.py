from __future__ import annotations
import uuid
from contextlib import asynccontextmanager
from typing import Any, Optional

import requests
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from .core.models import ExecutionRequest, ExecutionResult
from .logging import setup_logging
from .services.orchestrator import ExecutionOrchestrator, build_orchestrator
from .settings import Settings, get_settings

log = structlog.get_logger(component="api")

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


# --------- Schemas ---------
class RunReq(BaseModel):
    code: Optional[str] = None
    language: str = "javascript"
    input: Optional[str] = ""


class RunTestsReq(RunReq):
    language: str = "python"


class RunRes(BaseModel):
    output: str
    exit_code: Optional[int] = None
    timed_out: bool = False


class GenerateReq(BaseModel):
    prompt: Any = None
    language: str = "html"


def _respond(res: ExecutionResult) -> JSONResponse:
    body = RunRes(output=res.text, exit_code=res.exit_code, timed_out=res.timed_out)
    return JSONResponse(status_code=res.http_status, content=body.model_dump())


def create_app(settings: Optional[Settings] = None,
               orchestrator: Optional[ExecutionOrchestrator] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level)
        owned = app.state.orchestrator is None
        if owned:
            app.state.orchestrator = build_orchestrator(settings)
        orc: ExecutionOrchestrator = app.state.orchestrator
        if owned:
            if settings.reap_orphans:
                orc.backend.reap_orphans()
            if settings.prepull_images:
                orc.backend.prepull(orc.registry.images())
        log.info("codebox_started", backend=orc.backend.name, timeout_s=orc.timeout_s,
                 languages=orc.registry.languages())
        try:
            yield
        finally:
            if owned:
                if settings.reap_orphans:
                    orc.backend.reap_orphans()
                orc.backend.close()
                app.state.orchestrator = None
            log.info("codebox_stopped")

    app = FastAPI(title="Codebox API", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.settings = settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # body sai kiểu vẫn trả đúng shape {output}
    @app.exception_handler(RequestValidationError)
    async def _bad_body(request: Request, exc: RequestValidationError):
        errors = "; ".join(f"{'.'.join(str(p) for p in e['loc'][1:])}: {e['msg']}" for e in exc.errors())
        return JSONResponse(status_code=400, content={"output": f"Invalid request: {errors}"})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        log.exception("unhandled_error", path=request.url.path)
        return JSONResponse(status_code=500, content={"output": "Error: Something went wrong!"})

    # --------- Endpoints ---------

    @app.get("/")
    def root():
        return PlainTextResponse("Hello from Codebox backend!")

    @app.get("/create-room")
    def create_room():
        return {"roomId": str(uuid.uuid4())}

    @app.post("/run", response_model=RunRes)
    def run(req: RunReq, request: Request):
        orc: ExecutionOrchestrator = request.app.state.orchestrator
        return _respond(orc.execute(ExecutionRequest(code=req.code, language=req.language, input=req.input)))

    @app.post("/run-tests", response_model=RunRes)
    def run_tests(req: RunTestsReq, request: Request):
        orc: ExecutionOrchestrator = request.app.state.orchestrator
        return _respond(orc.execute_tests(ExecutionRequest(code=req.code, language=req.language, input=req.input)))

    @app.post("/generate-code")
    def generate_code(req: GenerateReq):
        if not req.prompt or not isinstance(req.prompt, str):
            return JSONResponse(status_code=400, content={"error": "Prompt is required and must be a string"})
        try:
            resp = requests.post(
                GEMINI_URL.format(model=settings.gemini_model),
                params={"key": settings.gemini_api_key or ""},
                json={"contents": [{"parts": [{"text": f"Generate {req.language} code for: {req.prompt}"}]}]},
                timeout=settings.gemini_timeout_s,
            )
            resp.raise_for_status()
            code = resp.json()["candidates"][0]["content"]["parts"][0]["text"].strip()
        except (requests.RequestException, KeyError, IndexError, ValueError) as e:
            log.error("generate_code_failed", error=str(e))
            return JSONResponse(status_code=500, content={"error": f"Failed to generate code: {e}"})
        return {"code": code}

    return app


app = create_app()
