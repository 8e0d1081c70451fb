"""
LLM client using Groq (primary) and Gemini (fallback).

Callers get raw completion text or None; deciding what a missing answer
means is left to them.
"""
import os
import logging
from typing import Optional

from groq import Groq

from datastory.core.config import get_settings

logger = logging.getLogger(__name__)

# Provider clients (singletons)
_groq_client: Optional[Groq] = None
_gemini_model = None  # Lazy loaded to avoid import if not needed


def get_groq_client() -> Optional[Groq]:
    """Get or create Groq client singleton."""
    global _groq_client
    if _groq_client is None:
        api_key = os.getenv("GROQ_API_KEY")
        if api_key:
            _groq_client = Groq(api_key=api_key)
            logger.info("Groq AI client initialized")
    return _groq_client


def get_gemini_model():
    """Get or create Gemini model singleton."""
    global _gemini_model
    if _gemini_model is None:
        api_key = os.getenv("GEMINI_API_KEY")
        if api_key:
            try:
                import google.generativeai as genai
                genai.configure(api_key=api_key)
                settings = get_settings()
                _gemini_model = genai.GenerativeModel(settings.gemini_model)
                logger.info(f"Gemini AI fallback initialized with model: {settings.gemini_model}")
            except Exception as e:
                logger.warning(f"Gemini initialization failed: {e}")
    return _gemini_model


def reset_clients():
    """Forget provider clients (for testing and key rotation)."""
    global _groq_client, _gemini_model
    _groq_client = None
    _gemini_model = None


def _call_groq(prompt: str, system_prompt: str, max_tokens: int, json_mode: bool) -> Optional[str]:
    client = get_groq_client()
    if not client:
        return None

    settings = get_settings()
    kwargs = {"response_format": {"type": "json_object"}} if json_mode else {}
    response = client.chat.completions.create(
        model=settings.groq_model,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt}
        ],
        max_tokens=max_tokens,
        temperature=0.3,
        timeout=settings.ai_timeout_seconds,
        **kwargs
    )
    return response.choices[0].message.content


def _call_gemini(prompt: str, system_prompt: str, json_mode: bool) -> Optional[str]:
    model = get_gemini_model()
    if not model:
        return None

    settings = get_settings()
    full_prompt = f"{system_prompt}\n\n{prompt}"
    generation_config = {"response_mime_type": "application/json"} if json_mode else None
    response = model.generate_content(
        full_prompt,
        generation_config=generation_config,
        request_options={"timeout": settings.ai_timeout_seconds}
    )
    return response.text


def call_ai_with_fallback(
    prompt: str,
    system_prompt: str,
    max_tokens: int = 4000,
    json_mode: bool = True,
) -> Optional[str]:
    """
    Call AI with automatic fallback.

    Order: Groq -> Gemini -> None
    """
    try:
        result = _call_groq(prompt, system_prompt, max_tokens, json_mode)
        if result:
            logger.debug("AI response from Groq")
            return result
    except Exception as e:
        error_str = str(e).lower()
        if "rate" in error_str or "limit" in error_str or "429" in error_str:
            logger.warning(f"Groq rate limited, trying Gemini fallback: {e}")
        else:
            logger.warning(f"Groq error, trying fallback: {e}")

    try:
        result = _call_gemini(prompt, system_prompt, json_mode)
        if result:
            logger.info("AI response from Gemini (fallback)")
            return result
    except Exception as e:
        logger.error(f"Gemini fallback also failed: {e}")

    return None
