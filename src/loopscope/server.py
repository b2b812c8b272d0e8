"""HTTP transport — exposes ``analyze_source`` as ``POST /analyze``.

Run: ``loopscope-server`` (or ``uvicorn loopscope.server:app``).

Environment::

    LOOPSCOPE_ALLOWED_ORIGINS   Comma-separated CORS origins
                                (default: local Vite dev server)
    LOOPSCOPE_MAX_SOURCE_CHARS  Longest accepted snippet (default 100000)
    LOOPSCOPE_MAX_NESTING_DEPTH Deepest accepted syntax tree (default 200)
    LOOPSCOPE_PORT              Port for loopscope-server (default 9000)
"""

import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from loopscope.analysis import (
    DEFAULT_MAX_NESTING_DEPTH,
    DEFAULT_MAX_SOURCE_CHARS,
    AnalyzerConfig,
    analyze_source,
)

_DEFAULT_FRONTEND_PORT = "5173"


class AnalyzeRequest(BaseModel):
    """Body of ``POST /analyze``."""
    code: str = Field(..., description="JavaScript source text to analyze")


def _allowed_origins() -> list[str]:
    port = os.environ.get("VITE_PORT", _DEFAULT_FRONTEND_PORT)
    raw = os.environ.get(
        "LOOPSCOPE_ALLOWED_ORIGINS",
        f"http://localhost:{port},http://127.0.0.1:{port}",
    )
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def config_from_env() -> AnalyzerConfig:
    return AnalyzerConfig(
        max_source_chars=int(
            os.environ.get("LOOPSCOPE_MAX_SOURCE_CHARS", DEFAULT_MAX_SOURCE_CHARS)
        ),
        max_nesting_depth=int(
            os.environ.get("LOOPSCOPE_MAX_NESTING_DEPTH", DEFAULT_MAX_NESTING_DEPTH)
        ),
    )


def create_app(config: Optional[AnalyzerConfig] = None) -> FastAPI:
    """Build the FastAPI application around one ``AnalyzerConfig``."""
    config = config or config_from_env()

    app = FastAPI(
        title="loopscope",
        version="0.1.0",
        description="Event-loop execution-flow analysis for JavaScript snippets",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rejected input is not echoed back; it may hold text (lone surrogates)
    # that cannot be encoded as UTF-8.
    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
            for error in exc.errors()
        ]
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.get("/")
    def health():
        return {"status": "ok", "service": "loopscope"}

    @app.post("/analyze")
    def analyze(body: AnalyzeRequest):
        """
        Request: { "code": "setTimeout(() => console.log('A'), 0);" }
        Response: { "success": true, "tree": {...}, "analysis": [...] }
              or  { "success": false, "error": "...", "location": {...} }
        """
        result = analyze_source(body.code, config)
        return result.as_dict(include_tree=config.include_tree)

    return app


app = create_app()


def main() -> None:
    """Console entry point: serve ``app`` with uvicorn."""
    import uvicorn

    port = int(os.environ.get("LOOPSCOPE_PORT", "9000"))
    uvicorn.run("loopscope.server:app", host="0.0.0.0", port=port, log_level="info")
