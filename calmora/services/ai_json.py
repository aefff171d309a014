# calmora/services/ai_json.py
import json
import re

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")

def extract_json(text: str | None) -> dict | None:
    """Primer bloque {...} del texto del modelo, o None si no parsea."""
    if not text:
        return None
    match = _JSON_BLOCK.search(text)
    try:
        data = json.loads(match.group(0) if match else text)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
