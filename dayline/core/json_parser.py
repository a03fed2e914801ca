"""
JSON parsing utility functions
Multi-strategy parsing of model replies, plus schema validation into pydantic models
"""

import json
import re
from typing import Any, List, Optional, Type, TypeVar

from json_repair import repair_json
from pydantic import BaseModel, TypeAdapter, ValidationError

from dayline.core.errors import SchemaParseError
from dayline.core.logger import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_QUOTE_MAP = {
    "“": '"',
    "”": '"',
    "‘": "'",
    "’": "'",
    "«": '"',
    "»": '"',
    "„": '"',
    "＂": '"',
    "＇": "'",
}


def parse_json_from_response(response: str) -> Optional[Any]:
    """
    Parse JSON from a model text reply

    Handles plain JSON, ```json fenced blocks, JSON embedded in prose and
    truncated output.

    Args:
        response (str): Model text reply

    Returns:
        Optional[Any]: Parsed JSON value, None if every strategy fails
    """
    if not isinstance(response, str):
        logger.warning(f"Response is not string type: {type(response)}")
        return None

    response = response.strip()
    if not response:
        logger.warning("Response is empty string")
        return None

    response = _normalize_quotes(response)

    # Strategy 1: Direct parsing
    try:
        return json.loads(response)
    except json.JSONDecodeError as e:
        logger.debug(f"Strategy 1 failed: {e}")

    # Strategy 2: Extract JSON from code blocks
    match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", response)
    if match:
        result = _loads_or_repair(match.group(1).strip())
        if result is not None:
            logger.debug("Strategy 2 success: JSON from code block")
            return result

    # Strategy 3: Outermost object or array in surrounding prose
    match = re.search(r"(\{[\s\S]*\}|\[[\s\S]*\])", response)
    if match:
        result = _loads_or_repair(match.group(0))
        if result is not None:
            logger.debug("Strategy 3 success: regex matched JSON structure")
            return result

    # Strategy 4: json-repair on the full reply (truncation, trailing commas, quotes)
    result = _loads_or_repair(response)
    if result is not None:
        logger.warning("Strategy 4 success: repaired malformed JSON (may be incomplete)")
        return result

    logger.error(f"All strategies failed, unable to parse JSON: {response[:500]}")
    return None


def _normalize_quotes(text: str) -> str:
    """Replace typographic quotes that some models emit instead of ASCII quotes"""
    for unicode_quote, ascii_quote in _QUOTE_MAP.items():
        text = text.replace(unicode_quote, ascii_quote)
    return text


def _loads_or_repair(json_str: str) -> Optional[Any]:
    try:
        return json.loads(json_str)
    except json.JSONDecodeError:
        pass
    repaired = repair_json(json_str, return_objects=True)
    # repair_json returns "" when nothing JSON-like was found
    if repaired in ("", None):
        return None
    return repaired


def parse_model(response: str, model: Type[ModelT]) -> ModelT:
    """Parse a reply into a single pydantic model, raising SchemaParseError"""
    parsed = parse_json_from_response(response)
    if parsed is None:
        raise SchemaParseError(f"Reply is not valid JSON: {response[:200]}")
    try:
        return model.model_validate(parsed)
    except ValidationError as e:
        raise SchemaParseError(
            f"Reply does not match {model.__name__} schema: {e.error_count()} errors"
        ) from e


def parse_model_list(
    response: str, model: Type[ModelT], key: Optional[str] = None
) -> List[ModelT]:
    """
    Parse a reply into a list of pydantic models

    Args:
        response: Model text reply
        model: Element model
        key: Optional wrapper key when the list is nested in an object

    Raises:
        SchemaParseError: Reply is not JSON or does not match the element schema
    """
    parsed = parse_json_from_response(response)
    if parsed is None:
        raise SchemaParseError(f"Reply is not valid JSON: {response[:200]}")
    if key is not None:
        if not isinstance(parsed, dict) or key not in parsed:
            raise SchemaParseError(f"Reply is missing the '{key}' array")
        parsed = parsed[key]
    try:
        return TypeAdapter(List[model]).validate_python(parsed)
    except ValidationError as e:
        raise SchemaParseError(
            f"Reply does not match {model.__name__} list schema: {e.error_count()} errors"
        ) from e
