"""Turn raw LLM text into validated pydantic models."""

from __future__ import annotations

import json
import logging
import re
from typing import Iterator, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_RE = re.compile(r"^```[\w-]*\s*\n?(?P<body>.*?)\n?```$", re.DOTALL)
_decoder = json.JSONDecoder()


def strip_code_fences(text: str) -> str:
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    return match.group("body").strip() if match else stripped


def iter_json_objects(text: str) -> Iterator[dict]:
    """Yield every well-formed JSON object embedded in text, left to right."""
    start = text.find("{")
    while start != -1:
        try:
            obj, end = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            yield obj
        start = text.find("{", end)


def parse_json_object(text: str) -> dict | None:
    """Whole text as a JSON object, else the first object found inside it."""
    body = strip_code_fences(text)
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        parsed = next(iter_json_objects(body), None)
        if parsed is None:
            logger.warning("No JSON object found in model output (%d chars)", len(body))
    return parsed if isinstance(parsed, dict) else None


def validate_model(model_cls: type[ModelT], data: dict | None) -> ModelT | None:
    if data is None:
        return None
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        logger.warning("%s rejected candidate: %d errors", model_cls.__name__, exc.error_count())
        return None


def parse_model_response(model_cls: type[ModelT], text: str) -> ModelT | None:
    """
    Validate an LLM response against ``model_cls``.

    The fence-stripped text is first validated as a whole. If that fails,
    each embedded JSON object is tried in order and the first one that
    validates wins. Returns None when nothing validates.
    """
    body = strip_code_fences(text)
    try:
        return model_cls.model_validate_json(body)
    except ValidationError as exc:
        logger.info("Whole-response validation failed (%d errors), scanning", exc.error_count())

    return next(
        (m for m in (validate_model(model_cls, c) for c in iter_json_objects(body)) if m is not None),
        None,
    )
