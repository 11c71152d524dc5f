from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any, Optional

import yaml

from tails.tails_datatypes import (
    ErrorValue, TailsCallable, TailsRuntimeError, ENCODING_ERROR, normalize,
)


# --------------------------
# Helpers
# --------------------------

def _norm_text(data: bytes | bytearray | str, *, encoding: Optional[str] = None) -> str:
    if isinstance(data, (bytes, bytearray)):
        enc = encoding or 'utf-8'
        try:
            return data.decode(enc, errors='replace')
        except LookupError:
            return data.decode('utf-8', errors='replace')
    return data


def _encoding_from_content_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    m = re.search(r'charset\s*=\s*([^\s;]+)', content_type, re.IGNORECASE)
    if m:
        return m.group(1).strip('"').strip("'")
    return None


def to_builtin(obj: Any) -> Any:
    # Whole floats go out as integers so `to-json [1, 2]` reads "[1, 2]"
    if isinstance(obj, bool) or obj is None or isinstance(obj, str):
        return obj
    if isinstance(obj, float):
        if obj.is_integer() and abs(obj) < 1e16:
            return int(obj)
        return obj
    if isinstance(obj, int):
        return obj
    if isinstance(obj, list):
        return [to_builtin(x) for x in obj]
    if isinstance(obj, dict):
        return {str(k): to_builtin(v) for k, v in obj.items()}
    if isinstance(obj, ErrorValue):
        return {"error": obj.message}
    if isinstance(obj, datetime):
        return obj.strftime("%Y-%m-%dT%H:%M:%SZ")
    if isinstance(obj, TailsCallable):
        raise TailsRuntimeError(f"Cannot serialize {obj!r}", ENCODING_ERROR)
    return str(obj)


def detect_format(content_type: Optional[str] = None, data_hint: Optional[str] = None) -> Optional[str]:
    """
    Returns a canonical format name among: 'json', 'yaml'.
    Uses Content-Type first; falls back to simple data sniffing if provided.
    """
    ct = (content_type or "").lower()
    if 'json' in ct:
        return 'json'
    if 'yaml' in ct or 'x-yaml' in ct:
        return 'yaml'

    if data_hint is not None:
        s = data_hint.lstrip()
        if s.startswith('{') or s.startswith('['):
            return 'json'
    return None


# --------------------------
# Public API
# --------------------------

def deserialize(data: bytes | bytearray | str,
                *,
                content_type: Optional[str] = None,
                fmt: Optional[str] = None,
                strict: bool = False) -> Any:
    """
    Convert wire data (bytes/string) to Tails values.
    Supported fmt: 'json', 'yaml'. If fmt is None, uses content_type, then sniffing.
    Unknown formats come back as text. With strict=True a malformed document
    raises an encoding error instead of falling back to the raw text.
    """
    enc = _encoding_from_content_type(content_type)
    text = _norm_text(data, encoding=enc)
    f = (fmt or detect_format(content_type, text))
    if f == 'json':
        try:
            return normalize(json.loads(text))
        except json.JSONDecodeError as e:
            if strict:
                raise TailsRuntimeError(f"Invalid JSON: {e.msg} at line {e.lineno} column {e.colno}", ENCODING_ERROR)
            return text
    if f == 'yaml':
        try:
            return normalize(yaml.safe_load(text))
        except yaml.YAMLError as e:
            if strict:
                raise TailsRuntimeError(f"Invalid YAML: {e}", ENCODING_ERROR)
            return text
    return text


def serialize(value: Any,
              *,
              fmt: str,
              pretty: bool = False) -> str:
    """
    Convert a Tails value into text.
    - fmt: 'json' | 'yaml'
    """
    f = (fmt or '').lower()
    built = to_builtin(value)
    if f == 'json':
        if pretty:
            return json.dumps(built, ensure_ascii=False, indent=2)
        return json.dumps(built, ensure_ascii=False)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False, allow_unicode=True)
    raise ValueError(f"Unsupported serialization format: {fmt!r}")


__all__ = [
    "deserialize",
    "serialize",
    "detect_format",
    "to_builtin",
]
