"""
FastAPI application for cinematic video script generation.

This service exposes three operations plus a health check:

* **POST /api/extract-options** – reads a free‑text video idea and returns the
  structured parameters the model could find in it (duration, language,
  platform, size and category). Missing values come back as empty strings.
* **POST /api/enhance-prompt** – rewrites the idea into a detailed,
  production‑ready prompt, optionally guided by previously extracted (and
  possibly user‑edited) parameters.
* **POST /api/generate-script** – turns a prompt into a multi‑scene script.
  The raw text is returned alongside a best‑effort structured breakdown.
* **GET /api/health** – liveness probe.

``GET /`` serves the single‑page form that drives these endpoints.

The service is stateless: every request builds a prompt, makes one call to
the completion endpoint through ``ScriptGenerator`` (see
``script_generator.py``) and reshapes the reply. Errors are returned as
``{"error": "<message>"}`` with the status chosen by ``ScriptGenerator``.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, Field

from script_generator import CompletionError, ScriptGenerator, VideoOptions, parse_script

# Load environment variables from .env file
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# The form page sits next to this module in a source checkout; an installed
# copy finds it under the data-files prefix declared in pyproject.toml.
STATIC_DIRS = [
    Path(__file__).parent / "static",
    Path(sys.prefix) / "share" / "cinematic-script-generator" / "static",
]

DEFAULT_ALLOWED_ORIGINS = "http://localhost:3000,http://localhost:5173"
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS).split(",")
    if origin.strip()
]


app = FastAPI(title="Cinematic Script Generator", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# A single generator is shared across requests; it holds configuration only.
script_generator = ScriptGenerator()


class GatewayError(Exception):
    """Raised for requests rejected before the model is called."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class PromptRequest(BaseModel):
    """Request payload for ``/api/extract-options`` and ``/api/generate-script``."""

    prompt: Optional[str] = Field(None, description="The video idea, or an enhanced prompt.")


class EnhanceRequest(BaseModel):
    """Request payload for ``POST /api/enhance-prompt``.

    * ``prompt`` – the original video idea.
    * ``options`` – parameters to fold into the enhanced prompt. Any key may
      be missing or empty.
    """

    prompt: Optional[str] = Field(None, description="The video idea to enhance.")
    options: Optional[Dict[str, Any]] = Field(None, description="Duration, language, platform, size and category.")


class HealthResponse(BaseModel):
    status: str


class OptionsResponse(BaseModel):
    """Extracted video parameters. Every field is a string, possibly empty."""

    duration: str = ""
    language: str = ""
    platform: str = ""
    size: str = ""
    category: str = ""


class EnhanceResponse(BaseModel):
    enhanced_prompt: str


class Scene(BaseModel):
    scene_number: int
    heading: str = ""
    visual: str = ""
    narration: str = ""
    mood: str = ""
    duration: str = ""


class ScriptResponse(BaseModel):
    """Response model for script generation.

    ``script`` is the model's text verbatim; ``title`` and ``scenes`` are
    parsed from it and may be empty when the model ignored the format.
    """

    script: str
    title: str = ""
    scenes: List[Scene] = Field(default_factory=list)


def _require_prompt(prompt: Optional[str]) -> str:
    if not prompt or not prompt.strip():
        raise GatewayError(400, "Prompt is required")
    return prompt


def find_static_file(name: str) -> Path:
    """Return the first existing ``name`` under ``STATIC_DIRS``."""
    for directory in STATIC_DIRS:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    logger.error("[STATIC] %s not found in %s", name, [str(d) for d in STATIC_DIRS])
    raise GatewayError(404, "Form client not found")


def _error_response(exc: Exception) -> JSONResponse:
    if isinstance(exc, CompletionError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})
    logger.exception("[ERROR] Unexpected failure: %s", exc)
    return JSONResponse(status_code=500, content={"error": str(exc) or "Internal server error"})


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    logger.warning("[REJECTED] %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.get("/api/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="healthy")


@app.post("/api/extract-options", response_model=OptionsResponse)
async def extract_options(req: PromptRequest):
    """Extract video parameters from a free‑text prompt.

    The model is asked for a JSON object; whatever it returns is scanned for
    the first ``{...}`` span. Fields it omits, or a reply with no parseable
    JSON at all, yield empty strings rather than an error.
    """
    prompt = _require_prompt(req.prompt)
    try:
        logger.info("[EXTRACT] Extracting options for prompt: %s...", prompt[:100])
        options = await script_generator.extract_options(prompt)
        return OptionsResponse(**options.to_dict())
    except Exception as exc:
        return _error_response(exc)


@app.post("/api/enhance-prompt", response_model=EnhanceResponse)
async def enhance_prompt(req: EnhanceRequest):
    """Rewrite a prompt to be cinematic and production‑ready."""
    prompt = _require_prompt(req.prompt)
    try:
        logger.info("[ENHANCE] Enhancing prompt: %s...", prompt[:100])
        enhanced = await script_generator.enhance_prompt(prompt, VideoOptions.from_mapping(req.options))
        return EnhanceResponse(enhanced_prompt=enhanced)
    except Exception as exc:
        return _error_response(exc)


@app.post("/api/generate-script", response_model=ScriptResponse)
async def generate_script(req: PromptRequest):
    """Generate a 5‑8 scene cinematic script for the given prompt."""
    prompt = _require_prompt(req.prompt)
    try:
        logger.info("[SCRIPT GENERATION] Starting for prompt: %s...", prompt[:100])
        script = await script_generator.generate_script(prompt)
        parsed = parse_script(script)
        logger.info("[SCRIPT GENERATION] Parsed %d scenes", len(parsed["scenes"]))
        return ScriptResponse(script=script, title=parsed["title"], scenes=parsed["scenes"])
    except Exception as exc:
        return _error_response(exc)


@app.get("/", include_in_schema=False)
async def index() -> FileResponse:
    """Serve the single‑page form client."""
    return FileResponse(find_static_file("index.html"), media_type="text/html")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
