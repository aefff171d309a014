# calmora/services/mood_ai.py
"""
Detección de ánimo vía OpenAI (chat completions).

El modelo debe devolver JSON estricto; si no hay key, falla el HTTP o la
respuesta no parsea, se devuelve FALLBACK_MOOD (fallback=True). El endpoint
nunca falla por culpa del proveedor.
"""
import logging

import httpx
from pydantic import ValidationError

from calmora.core.config import settings
from calmora.schemas.mood import MoodAnalysisOut
from calmora.services.ai_json import extract_json

logger = logging.getLogger(__name__)

MOOD_CATEGORIES = (
    "happy", "sad", "angry", "calm", "anxious", "excited", "frustrated",
    "peaceful", "overwhelmed", "grateful", "lonely", "confident", "stressed",
    "content", "hopeful", "disappointed", "energetic", "tired", "worried", "joyful",
)

SYSTEM_PROMPT = f"""You are an expert mood detection system for a mindfulness app called Calmora. Analyze the user's text and return STRICT JSON only.

Categories: {", ".join(MOOD_CATEGORIES)}

Return only valid JSON with this exact shape and keys in this order:
{{
  "mood": "one_of_categories",
  "confidence": 0,
  "descriptors": ["word1", "word2", "word3"],
  "supportive_message": "1-2 sentences",
  "secondary_emotions": ["emotion1", "emotion2"]
}}

Rules:
- Output JSON only, no markdown, no extra text
- confidence is an integer 0-100
- descriptors are concise emotional adjectives
- supportive_message is warm, concise, and practical"""

FALLBACK_MOOD = {
    "mood": "calm",
    "confidence": 50,
    "descriptors": ["neutral", "unclear"],
    "supportive_message": "I'm here with you. Share more if you'd like.",
    "secondary_emotions": ["thoughtful"],
    "fallback": True,
}

def fallback_mood() -> MoodAnalysisOut:
    return MoodAnalysisOut(**FALLBACK_MOOD)

def build_user_prompt(text: str, context: str | None = None) -> str:
    return f'Text: "{text}"\nContext: {context or "General mood check"}'

def parse_mood(content: str | None) -> MoodAnalysisOut:
    data = extract_json(content)
    if data is None:
        logger.warning("mood reply without JSON, using fallback")
        return fallback_mood()
    try:
        out = MoodAnalysisOut(**{**data, "fallback": False})
    except (ValidationError, TypeError):
        logger.warning("mood reply did not match schema, using fallback")
        return fallback_mood()
    if out.mood not in MOOD_CATEGORIES:
        logger.warning("unknown mood %r from model, using fallback", out.mood)
        return fallback_mood()
    return out

async def analyze_mood(
    text: str,
    context: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> MoodAnalysisOut:
    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not configured, using fallback mood")
        return fallback_mood()

    payload = {
        "model": settings.OPENAI_MODEL,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_user_prompt(text, context)},
        ],
        "max_completion_tokens": 300,
    }
    headers = {
        "Authorization": f"Bearer {settings.OPENAI_API_KEY}",
        "Content-Type": "application/json",
    }
    try:
        async with httpx.AsyncClient(transport=transport, timeout=settings.AI_TIMEOUT_SECONDS) as cx:
            r = await cx.post(settings.OPENAI_URL, json=payload, headers=headers)
        r.raise_for_status()
        data = r.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("OpenAI mood request failed: %r", exc)
        return fallback_mood()

    choices = data.get("choices") or [{}]
    content = (choices[0].get("message") or {}).get("content") or ""
    return parse_mood(content)
