"""
Field access for decoded App Store payloads.

Decoded payloads arrive either as app-store-server-library model objects or
as plain mappings. The readers here treat both the same way and prefer the
library's raw* string fields, which keep values the library enums don't know.
"""

import base64
import binascii
import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from appstore_notifier.models.domain import UNKNOWN_ENVIRONMENT


@dataclass(frozen=True)
class UnverifiedBundleId:
    """
    Bundle id read from an envelope whose signature has NOT been checked.

    Only used to choose which verifier to try. Never an authenticity claim.
    """

    value: str


def read_field(source: Any, name: str) -> Any:
    """Read an attribute or mapping key, None when absent."""
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def _as_text(value: Any) -> str | None:
    if isinstance(value, Enum):
        value = value.value
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def read_string(source: Any, name: str) -> str | None:
    """Read a non-blank string, preferring the library's raw<Name> field."""
    raw_name = "raw" + name[0].upper() + name[1:]
    return _as_text(read_field(source, raw_name)) or _as_text(read_field(source, name))


def read_number(source: Any, name: str) -> int | float | None:
    """Read a finite number from a number or numeric string."""
    value = read_field(source, name)
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
        if value.is_integer():
            value = int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value == value and value not in (float("inf"), float("-inf")):
        return value
    return None


def read_int(source: Any, name: str) -> int | None:
    """Read an integral number (epoch millis, enum codes)."""
    raw_name = "raw" + name[0].upper() + name[1:]
    for candidate in (raw_name, name):
        value = read_field(source, candidate)
        if isinstance(value, Enum):
            value = value.value
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        number = read_number(source, candidate)
        if isinstance(number, int):
            return number
    return None


def read_bundle_id(payload: Any) -> str | None:
    """bundleId at the top level, falling back to data.bundleId."""
    return read_string(payload, "bundleId") or read_string(read_field(payload, "data"), "bundleId")


def read_environment(payload: Any) -> str:
    """environment at the top level or under data, else the UNKNOWN sentinel."""
    return (
        read_string(payload, "environment")
        or read_string(read_field(payload, "data"), "environment")
        or UNKNOWN_ENVIRONMENT
    )


def extract_candidate_bundle_id(signed_payload: str) -> UnverifiedBundleId | None:
    """
    Peek at the unverified JWS payload segment for a bundle id.

    Returns None for anything that does not decode to a JSON object carrying
    a non-blank bundleId (top level or under data).
    """
    parts = signed_payload.split(".")
    if len(parts) < 2:
        return None

    segment = parts[1]
    try:
        decoded = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
        payload = json.loads(decoded.decode("utf-8"))
    except (binascii.Error, ValueError, RecursionError):
        return None

    if not isinstance(payload, dict):
        return None

    bundle_id = _as_text(payload.get("bundleId"))
    if bundle_id is None and isinstance(payload.get("data"), dict):
        bundle_id = _as_text(payload["data"].get("bundleId"))

    return UnverifiedBundleId(bundle_id) if bundle_id else None
