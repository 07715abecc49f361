# backend/services/ai_service.py
import asyncio
import logging
from typing import List, Optional
import google.generativeai as genai
from google.api_core import exceptions as google_api_exceptions

import config

logger = logging.getLogger(__name__)

TUTOR_SYSTEM_PROMPT = """You are an educational AI tutor for high school students. Your role is to:
- Help students understand concepts through clear explanations and examples
- Break down complex topics into simple, digestible parts
- Encourage learning through questions and interactive engagement
- Provide accurate, curriculum-relevant information
- Be patient, supportive, and encouraging

Keep responses concise, clear, and age-appropriate for high school students."""

MAX_HISTORY_TURNS = 20
RETRY_BASE_DELAY = 0.5
TRANSIENT_ERRORS = (
    google_api_exceptions.ServiceUnavailable,
    google_api_exceptions.InternalServerError,
    google_api_exceptions.DeadlineExceeded,
    google_api_exceptions.TooManyRequests,
    google_api_exceptions.ResourceExhausted,
)


class AIConfigurationError(Exception):
    """The AI backend cannot be used with the current configuration."""


class AIServiceError(Exception):
    """The AI backend failed or returned nothing usable."""


api_configured = False
try:
    if not config.GOOGLE_GEMINI_API_KEY: raise ValueError("GOOGLE_GEMINI_API_KEY is not set!")
    genai.configure(api_key=config.GOOGLE_GEMINI_API_KEY) # type: ignore
    api_configured = True
    logger.info("Google AI configured for model '%s'.", config.GEMINI_MODEL)
except ValueError as e:
    logger.warning("Google AI is not configured: %s", e)


def _build_model():
    return genai.GenerativeModel(config.GEMINI_MODEL, system_instruction=TUTOR_SYSTEM_PROMPT) # type: ignore


def build_contents(prompt: str, history: Optional[List[dict]] = None) -> list:
    """Map chat turns to Gemini contents; the SPA's "assistant" role is Gemini's "model"."""
    contents = []
    for turn in (history or [])[-MAX_HISTORY_TURNS:]:
        text = (turn.get("content") or "").strip()
        if not text:
            continue
        role = "model" if turn.get("role") == "assistant" else "user"
        contents.append({"role": role, "parts": [text]})
    contents.append({"role": "user", "parts": [f"Student Question: {prompt.strip()}"]})
    return contents


async def generate_tutor_reply(prompt: str, history: Optional[List[dict]] = None) -> str:
    if not api_configured:
        raise AIConfigurationError("GOOGLE_GEMINI_API_KEY not configured")

    model = _build_model()
    contents = build_contents(prompt, history)
    attempt = 0
    while True:
        try:
            response = await model.generate_content_async(contents)
            break
        except TRANSIENT_ERRORS as e:
            if attempt >= config.AI_MAX_RETRIES:
                logger.error("Gemini still failing after %d attempts: %r", attempt + 1, e)
                raise AIServiceError(str(e)) from e
            delay = RETRY_BASE_DELAY * (2 ** attempt)
            attempt += 1
            logger.warning("Transient Gemini error (%r), retry %d in %.1fs", e, attempt, delay)
            await asyncio.sleep(delay)
        except google_api_exceptions.GoogleAPIError as e:
            if "API key" in str(e):
                logger.error("Gemini rejected the API key: %r", e)
                raise AIConfigurationError("API key not configured properly") from e
            logger.error("Gemini API error: %r", e)
            raise AIServiceError(str(e)) from e

    try:
        text = response.text
    except ValueError as e:
        # No candidate text, e.g. the reply was blocked
        raise AIServiceError("Empty response from AI") from e
    if not text or not text.strip():
        raise AIServiceError("Empty response from AI")
    return text.strip()
