"""
Prompt building and LLM completion logic for cinematic script generation.

This module defines the ``ScriptGenerator`` class which talks to Groq's
OpenAI‑compatible chat completions endpoint on behalf of the API layer. Three
operations are supported:

1. **Option extraction** – asks the model for a JSON object describing the
   video (duration, language, platform, size, category) and pulls it out of
   the reply with ``extract_json_from_text``. Any field the model leaves out
   comes back as an empty string.
2. **Prompt enhancement** – rewrites the user's idea into a detailed,
   production‑ready prompt, taking the (possibly user‑edited) parameters into
   account. Missing parameters are rendered as ``Not specified``.
3. **Script generation** – produces a plain‑text script with a title and
   5‑8 scenes, each carrying VISUAL / NARRATION / MOOD / DURATION lines.
   ``parse_script`` reshapes that text into a structured scene list.

Every call goes through ``ScriptGenerator.complete``. Upstream failures are
translated into a ``CompletionError`` carrying the HTTP status the API layer
should answer with.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llama-3.1-8b-instant"
DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"

OPTION_FIELDS = ("duration", "language", "platform", "size", "category")

EXTRACT_SYSTEM_PROMPT = (
    "Extract video parameters from the prompt.\n"
    "Return ONLY JSON with:\n"
    "duration, language, platform, size (Landscape/Vertical/Square), category.\n"
    "If not mentioned, use empty string."
)

ENHANCE_SYSTEM_PROMPT = (
    "You are an expert cinematic prompt engineer.\n"
    "Enhance the prompt to be highly detailed and production-ready.\n"
    "Return ONLY the enhanced prompt."
)

SCRIPT_SYSTEM_PROMPT = (
    "You are a professional cinematic script writer.\n\n"
    "Generate a detailed video script in this format:\n\n"
    "TITLE: [Title]\n\n"
    "SCENE 1:\n"
    "VISUAL:\n"
    "NARRATION:\n"
    "MOOD:\n"
    "DURATION:\n\n"
    "Include 5-8 scenes.\n"
    "Make it cinematic and dramatic."
)

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

# Labels may be wrapped in markdown emphasis, e.g. "**SCENE 1:**".
_LABEL_RE = re.compile(
    r"^[ \t>#*_-]*(TITLE|SCENE\s+(\d+)|VISUAL|NARRATION|MOOD|DURATION)[*_ \t]*:[*_ \t]*(.*)$",
    re.IGNORECASE | re.MULTILINE,
)


class CompletionError(Exception):
    """Raised when the completion endpoint cannot produce a reply."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass
class VideoOptions:
    """Video parameters shared by the extract and enhance operations."""

    duration: str = ""
    language: str = ""
    platform: str = ""
    size: str = ""
    category: str = ""

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]]) -> "VideoOptions":
        """Build options from a loosely typed mapping.

        Falsy values become empty strings and anything else is converted with
        ``str`` so a reply like ``{"duration": 30}`` still yields ``"30"``.
        """
        data = data or {}
        values = {}
        for field in OPTION_FIELDS:
            value = data.get(field)
            values[field] = str(value) if value else ""
        return cls(**values)

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def extract_json_from_text(text: Optional[str]) -> Dict[str, Any]:
    """Pull the first ``{...}`` span out of ``text`` and parse it.

    The match is greedy, running from the first opening brace to the last
    closing one, so code fences or leading prose around the object are
    ignored. Returns an empty dict when nothing parses.
    """
    if not text:
        return {}
    match = _JSON_OBJECT_RE.search(text)
    if not match:
        return {}
    try:
        data = json.loads(match.group(0))
    except ValueError:
        logger.debug("[EXTRACT] Could not parse JSON span: %s", match.group(0)[:200])
        return {}
    return data if isinstance(data, dict) else {}


def format_options(options: Optional[VideoOptions]) -> str:
    options = options or VideoOptions()
    return (
        f"Duration: {options.duration or 'Not specified'}\n"
        f"Language: {options.language or 'Not specified'}\n"
        f"Platform: {options.platform or 'Not specified'}\n"
        f"Size: {options.size or 'Not specified'}\n"
        f"Category: {options.category or 'Not specified'}\n"
    )


def build_extract_messages(prompt: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": EXTRACT_SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


def build_enhance_messages(prompt: str, options: Optional[VideoOptions] = None) -> List[Dict[str, str]]:
    user_content = (
        "Original Prompt:\n"
        f"{prompt}\n\n"
        "Parameters:\n"
        f"{format_options(options)}\n"
        "Enhance it."
    )
    return [
        {"role": "system", "content": ENHANCE_SYSTEM_PROMPT},
        {"role": "user", "content": user_content},
    ]


def build_script_messages(prompt: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": SCRIPT_SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


def parse_script(script: Optional[str]) -> Dict[str, Any]:
    """Reshape a plain‑text script into a title and a list of scenes.

    The model is asked for ``TITLE:`` followed by ``SCENE n:`` blocks with
    ``VISUAL``, ``NARRATION``, ``MOOD`` and ``DURATION`` lines. Each field's
    value runs until the next recognised label, so multi‑line narration is
    kept intact. Labels that appear before the first scene (other than the
    title) are ignored. Unrecognised text yields an empty result rather than
    an error.
    """
    title = ""
    scenes: List[Dict[str, Any]] = []
    if not script:
        return {"title": title, "scenes": scenes}

    matches = list(_LABEL_RE.finditer(script))
    for pos, match in enumerate(matches):
        end = matches[pos + 1].start() if pos + 1 < len(matches) else len(script)
        value = (match.group(3) + script[match.end():end]).strip().strip("*_").strip()
        label = match.group(1).upper()

        if label == "TITLE":
            if not title:
                title = value
        elif label.startswith("SCENE"):
            scenes.append(
                {
                    "scene_number": int(match.group(2)),
                    # e.g. "SCENE 1: The Storm Arrives"
                    "heading": value,
                    "visual": "",
                    "narration": "",
                    "mood": "",
                    "duration": "",
                }
            )
        elif scenes:
            scenes[-1][label.lower()] = value

    return {"title": title, "scenes": scenes}


class ScriptGenerator:
    """Builds prompts and forwards them to the Groq completion endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        # Values fall back to environment variables; only the API key is
        # required for real calls.
        self.api_key: str | None = api_key if api_key is not None else os.getenv("GROQ_API_KEY")
        self.model: str = model or os.getenv("GROQ_MODEL") or DEFAULT_MODEL
        self.base_url: str = (base_url or os.getenv("GROQ_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.timeout: float = timeout if timeout is not None else float(os.getenv("GROQ_TIMEOUT", "60"))
        self._transport = transport

        if not self.api_key:
            logger.warning("[CONFIG] GROQ_API_KEY not found; completion calls will fail")

    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        """Send ``messages`` to the chat completions endpoint and return the text.

        Raises ``CompletionError`` with 401 for authentication failures, 429
        for rate limiting and 500 for everything else, including a
        decommissioned model.
        """
        if not self.api_key:
            raise CompletionError(500, "GROQ_API_KEY not found")

        url = f"{self.base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        logger.info("[GROQ] Requesting completion from %s (max_tokens=%s)", self.model, max_tokens)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, headers=headers, json=payload)
                resp.raise_for_status()
                data = resp.json()
            text = data["choices"][0]["message"]["content"]
        except httpx.HTTPStatusError as exc:
            message = self._upstream_message(exc.response)
            logger.error("[ERROR] Groq API returned %s: %s", exc.response.status_code, message)
            raise self._map_error(message, exc.response.status_code) from exc
        except Exception as exc:
            logger.error("[ERROR] Groq API failed: %s", exc)
            raise self._map_error(str(exc)) from exc

        logger.info("[GROQ] Received %d characters", len(text or ""))
        return text or ""

    async def extract_options(self, prompt: str) -> VideoOptions:
        response_text = await self.complete(build_extract_messages(prompt), temperature=0.1, max_tokens=500)
        extracted = extract_json_from_text(response_text)
        if not extracted:
            logger.warning("[EXTRACT] No JSON object found in reply: %s", response_text[:200])
        return VideoOptions.from_mapping(extracted)

    async def enhance_prompt(self, prompt: str, options: Optional[VideoOptions] = None) -> str:
        return await self.complete(build_enhance_messages(prompt, options), temperature=0.7, max_tokens=1000)

    async def generate_script(self, prompt: str) -> str:
        return await self.complete(build_script_messages(prompt), temperature=0.8, max_tokens=1500)

    @staticmethod
    def _upstream_message(response: httpx.Response) -> str:
        # OpenAI-compatible errors look like {"error": {"message": "..."}}
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        return response.text or f"HTTP {response.status_code}"

    @staticmethod
    def _map_error(message: str, status_code: Optional[int] = None) -> CompletionError:
        lowered = (message or "").lower()
        if status_code == 401 or "authentication" in lowered:
            return CompletionError(401, "Invalid Groq API Key")
        if status_code == 429 or "rate limit" in lowered:
            return CompletionError(429, "Rate limit exceeded")
        if "decommissioned" in lowered:
            return CompletionError(500, "Model deprecated. Update GROQ_MODEL in .env")
        return CompletionError(500, message or "Groq API failed")
