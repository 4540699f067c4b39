"""
Inline-image extraction for search API responses.

Turns an arbitrary upstream payload (decoded JSON, or a raw CSV/text body)
into MCP content blocks:

  1. one text block holding the whole response, always first
  2. one image block per embedded base64 image found in the payload,
     in depth-first order, skipping anything over the size ceiling

Embedded images are recognised syntactically only:
  - tagged:  data:image/<fmt>;base64,<payload>
  - generic: a bare base64-alphabet string longer than the policy threshold

The generic branch flags any long base64-looking token (hashes, encoded ids)
as an image.  ImagePolicy exposes the threshold and lets callers turn the
branch off entirely.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

MAX_IMAGE_BYTES = 1024 * 1024
DEFAULT_MIN_GENERIC_LENGTH = 80
DEFAULT_MIME_TYPE = "image/png"
CIRCULAR_PLACEHOLDER = "[Complex object with circular references]"

_DATA_URL_RE = re.compile(r"^data:image/(png|jpeg|jpg|gif|webp|svg\+xml);base64,", re.IGNORECASE)
_MIME_RE = re.compile(r"^data:image/([^;]+);base64,", re.IGNORECASE)
_BASE64_RE = re.compile(r"[A-Za-z0-9+/]+=*")
_DATA_URL_PREFIX = "data:image/"


@dataclass(frozen=True)
class ImagePolicy:
    min_generic_length: int = DEFAULT_MIN_GENERIC_LENGTH
    generic_detection: bool = True
    max_image_bytes: int = MAX_IMAGE_BYTES


DEFAULT_POLICY = ImagePolicy()


@dataclass(slots=True)
class FormattedResponse:
    blocks: list[dict[str, Any]]
    warnings: list[str] = field(default_factory=list)

    @property
    def image_count(self) -> int:
        return sum(1 for block in self.blocks if block.get("type") == "image")


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

def is_embedded_image(value: str, policy: ImagePolicy = DEFAULT_POLICY) -> bool:
    """Return True if *value* looks like an inline image (tagged or bare base64)."""
    if not isinstance(value, str):
        return False
    if _DATA_URL_RE.match(value):
        return True
    if not policy.generic_detection:
        return False
    return len(value) > policy.min_generic_length and _BASE64_RE.fullmatch(value) is not None


def extract_format_tag(value: str) -> str:
    match = _MIME_RE.match(value)
    if match:
        return f"image/{match.group(1)}"
    return DEFAULT_MIME_TYPE


def extract_payload(value: str) -> str:
    """Strip a data-URL prefix, leaving the raw base64 text."""
    if value.startswith(_DATA_URL_PREFIX):
        return value.partition(",")[2]
    return value


# ---------------------------------------------------------------------------
# Size estimate
# ---------------------------------------------------------------------------

def estimated_decoded_size(payload: str) -> int:
    # 4 base64 chars -> 3 bytes; padding carries no data.
    return len(payload.replace("=", "")) * 3 // 4


def within_size_limit(payload: str, limit: int = MAX_IMAGE_BYTES) -> bool:
    return estimated_decoded_size(payload) <= limit


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------

def find_embedded_images(value: Any, policy: ImagePolicy = DEFAULT_POLICY) -> list[str]:
    """Collect every string in *value* that looks like an inline image.

    Walks dicts (in insertion order) and lists/tuples depth-first.  Each
    container is entered at most once per call, so self-referencing
    structures terminate; a container shared between two branches is also
    only scanned the first time it is reached.
    """
    found: list[str] = []
    visited: set[int] = set()
    # Explicit stack: deeply nested payloads must not hit the recursion limit.
    stack: list[Any] = [value]
    while stack:
        item = stack.pop()
        if item is None:
            continue
        if isinstance(item, str):
            if is_embedded_image(item, policy):
                found.append(item)
            continue
        if not isinstance(item, (dict, list, tuple)):
            continue
        if id(item) in visited:
            continue
        visited.add(id(item))
        children = list(item.values()) if isinstance(item, dict) else list(item)
        stack.extend(reversed(children))
    return found


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def render_text(response: Any) -> str:
    if isinstance(response, str):
        return response
    try:
        return json.dumps(response, indent=2, sort_keys=True, ensure_ascii=False)
    except (ValueError, TypeError, RecursionError):
        return CIRCULAR_PLACEHOLDER


def image_block(candidate: str) -> dict[str, Any]:
    return {
        "type": "image",
        "data": extract_payload(candidate),
        "mimeType": extract_format_tag(candidate),
    }


def format_response(
    response: Any,
    include_images: bool = True,
    policy: ImagePolicy = DEFAULT_POLICY,
) -> FormattedResponse:
    """Build the content blocks for one upstream response.

    The text block always comes first.  With *include_images* off the payload
    is not traversed at all.  Oversized images are dropped and reported in
    ``warnings`` rather than raised.
    """
    result = FormattedResponse(blocks=[{"type": "text", "text": render_text(response)}])
    if not include_images:
        return result

    for candidate in find_embedded_images(response, policy):
        payload = extract_payload(candidate)
        if within_size_limit(payload, policy.max_image_bytes):
            result.blocks.append(image_block(candidate))
        else:
            result.warnings.append(
                f"Skipped inline image of ~{estimated_decoded_size(payload)} bytes "
                f"(limit {policy.max_image_bytes})"
            )
    return result


def format_blocks(
    response: Any,
    include_images: bool = True,
    policy: ImagePolicy = DEFAULT_POLICY,
) -> list[dict[str, Any]]:
    return format_response(response, include_images, policy).blocks
