from typing import Any, Mapping, Optional, Tuple
import json
import structlog

logger = structlog.get_logger(__name__)


# Field names schemas conventionally use for in-character speech
PRIORITY_FIELDS: Tuple[str, ...] = ("talk", "Talk", "dialogue", "Dialogue")

# Generic chat-API field names
FALLBACK_FIELDS: Tuple[str, ...] = ("response", "message", "content", "text", "speech", "say")


def _compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return _compact_json(value)


def _probe(result: Mapping[str, Any], fields: Tuple[str, ...]) -> Optional[Tuple[str, str]]:
    for field in fields:
        if field not in result or result[field] is None:
            continue
        text = _stringify(result[field])
        if text.strip():
            return field, text
    return None


def extract_utterance(result: Optional[Mapping[str, Any]], schema_name: str) -> str:
    """Pick the speakable text out of a structured model response.

    Exact, case-sensitive key lookup: priority fields first, then the
    generic fallbacks. When nothing matches the whole payload is kept as a
    compact diagnostic string so the history never loses information.
    Never raises and never returns an empty string.
    """

    if result is None:
        return f"[Structured Response: {schema_name}]"

    match = _probe(result, PRIORITY_FIELDS)
    if match:
        logger.debug("Using structured field as conversation content",
                     field=match[0], schema=schema_name)
        return match[1]

    match = _probe(result, FALLBACK_FIELDS)
    if match:
        logger.debug("Using fallback structured field as conversation content",
                     field=match[0], schema=schema_name)
        return match[1]

    logger.debug("No talk/dialogue field found, keeping raw payload", schema=schema_name)
    try:
        payload = _compact_json(dict(result))
    except (TypeError, ValueError):
        payload = repr(result)
    return f"[Structured Response: {schema_name}] {payload}"
