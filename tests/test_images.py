from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from serpmcp.images import (
    CIRCULAR_PLACEHOLDER,
    MAX_IMAGE_BYTES,
    ImagePolicy,
    estimated_decoded_size,
    extract_format_tag,
    extract_payload,
    find_embedded_images,
    format_blocks,
    format_response,
    is_embedded_image,
    within_size_limit,
)

PNG_1PX = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8/5+hHgAHggJ/PchI7wAAAABJRU5ErkJggg=="
)
GIF_1PX = "R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7"
WEBP_1PX = "UklGRh4AAABXRUJQVlA4TBEAAAAvAAAAAAfQ//73v/+BiOh/AAA="


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "value",
    [
        f"data:image/png;base64,{PNG_1PX}",
        f"data:image/gif;base64,{GIF_1PX}",
        f"data:image/webp;base64,{WEBP_1PX}",
        "data:image/jpeg;base64,/9j/4AAQSkZJ",
        "data:image/jpg;base64,/9j/4AAQSkZJ",
        "data:image/svg+xml;base64,PHN2ZyB3aWR0aD0iMSIvPg==",
        "DATA:IMAGE/PNG;BASE64,iVBORw0KGgo",
    ],
)
def test_tagged_data_urls_are_images(value: str) -> None:
    assert is_embedded_image(value) is True


def test_long_bare_base64_is_image() -> None:
    assert len(PNG_1PX) > 80
    assert is_embedded_image(PNG_1PX) is True


@pytest.mark.parametrize(
    "value",
    [
        "hello world",
        "https://example.com/image.jpg",
        "not-base64-at-all",
        "",
        "123",
        GIF_1PX,  # valid image bytes, but too short for the bare heuristic
        "data:text/plain;base64,SGVsbG8gd29ybGQ=",
        "data:application/json;base64,eyJrZXkiOiJ2YWx1ZSJ9",
        "data:image/bmp;base64,Qk0=",
    ],
)
def test_non_images(value: str) -> None:
    assert is_embedded_image(value) is False


def test_bare_length_threshold_is_strict() -> None:
    assert is_embedded_image("A" * 80) is False
    assert is_embedded_image("A" * 81) is True
    assert is_embedded_image("A" * 81 + "==") is True
    assert is_embedded_image("A" * 81 + "=A") is False


def test_non_string_is_never_an_image() -> None:
    assert is_embedded_image(12345) is False  # type: ignore[arg-type]
    assert is_embedded_image(None) is False  # type: ignore[arg-type]


def test_known_false_positive_long_hex_token() -> None:
    # Hex digests sit inside the base64 alphabet; long ones are reported as
    # images. This is accepted behaviour of the bare heuristic.
    digest = "0123456789abcdef" * 6
    assert is_embedded_image(digest) is True
    assert is_embedded_image(digest, ImagePolicy(generic_detection=False)) is False
    assert is_embedded_image(digest, ImagePolicy(min_generic_length=200)) is False


def test_disabling_generic_detection_keeps_tagged_detection() -> None:
    policy = ImagePolicy(generic_detection=False)
    assert is_embedded_image(f"data:image/png;base64,{PNG_1PX}", policy) is True
    assert is_embedded_image(PNG_1PX, policy) is False


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("data:image/png;base64,iVBOR...", "image/png"),
        ("data:image/jpeg;base64,/9j/4AAQ...", "image/jpeg"),
        ("data:image/gif;base64,R0lGOD...", "image/gif"),
        ("data:image/webp;base64,UklGR...", "image/webp"),
        ("data:image/svg+xml;base64,PHN2Z...", "image/svg+xml"),
        ("iVBORw0KGgoAAAANSUhEUgAAAAE...", "image/png"),
        ("not-a-data-url", "image/png"),
    ],
)
def test_extract_format_tag(value: str, expected: str) -> None:
    assert extract_format_tag(value) == expected


def test_extract_payload() -> None:
    assert extract_payload("data:image/png;base64,iVBORw0KGgo") == "iVBORw0KGgo"
    assert extract_payload("data:image/jpeg;base64,/9j/4AAQSkZJ") == "/9j/4AAQSkZJ"
    assert extract_payload("iVBORw0KGgo") == "iVBORw0KGgo"
    assert extract_payload("standalone-base64") == "standalone-base64"
    assert extract_payload("data:image/png;base64") == ""


@pytest.mark.parametrize(
    "value",
    [
        "data:image/png;base64,iVBORw0KGgo",
        f"data:image/gif;base64,{GIF_1PX}",
        PNG_1PX,
        "plain text, with a comma",
        "",
    ],
)
def test_extract_payload_is_idempotent(value: str) -> None:
    once = extract_payload(value)
    assert extract_payload(once) == once


# ---------------------------------------------------------------------------
# Size estimate
# ---------------------------------------------------------------------------

def test_estimated_decoded_size() -> None:
    assert estimated_decoded_size("AAAA") == 3
    assert estimated_decoded_size("AAAAA") == 3
    assert estimated_decoded_size("AAAA=") == 3
    assert estimated_decoded_size("AAAA==") == 3
    assert estimated_decoded_size("") == 0


def test_size_limit_boundary() -> None:
    at_limit = "A" * 1_398_102
    over_limit = "A" * 1_398_103
    assert estimated_decoded_size(at_limit) == MAX_IMAGE_BYTES
    assert estimated_decoded_size(over_limit) == MAX_IMAGE_BYTES + 1
    assert within_size_limit(at_limit) is True
    assert within_size_limit(over_limit) is False


def test_size_limit_small_and_large() -> None:
    assert within_size_limit("iVBORw0KGgoAAAANSUhEUgAAAAE") is True
    assert within_size_limit("A" * 1_500_000) is False
    assert within_size_limit("A" * 8, limit=5) is False


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------

def test_find_returns_empty_for_none_and_scalars() -> None:
    assert find_embedded_images(None) == []
    assert find_embedded_images(42) == []
    assert find_embedded_images(True) == []
    assert find_embedded_images("short") == []


def test_find_depth_first_order() -> None:
    one = "data:image/png;base64,AAAA"
    two = "data:image/jpeg;base64,BBBB"
    three = "data:image/gif;base64,CCCC"
    payload = {
        "first": {"nested": one, "title": "x"},
        "second": two,
        "third": [{"thumb": three}, None, 7],
    }
    assert find_embedded_images(payload) == [one, two, three]


def test_find_descends_into_tuples() -> None:
    img = "data:image/png;base64,AAAA"
    assert find_embedded_images(({"a": img},)) == [img]


def test_find_survives_self_reference() -> None:
    img = "data:image/png;base64,AAAA"
    payload: dict = {"img": img}
    payload["self"] = payload
    assert find_embedded_images(payload) == [img]

    items: list = [img]
    items.append(items)
    assert find_embedded_images(items) == [img]


def test_find_survives_indirect_cycle() -> None:
    img = "data:image/png;base64,AAAA"
    a: dict = {"img": img}
    b: dict = {"back": a}
    a["child"] = [b]
    assert find_embedded_images(a) == [img]


def test_shared_acyclic_reference_is_scanned_once() -> None:
    img = "data:image/png;base64,AAAA"
    shared = {"img": img}
    assert find_embedded_images({"a": shared, "b": shared}) == [img]
    # Equal but distinct objects are both scanned.
    assert find_embedded_images({"a": {"img": img}, "b": {"img": img}}) == [img, img]


def test_find_handles_very_deep_nesting() -> None:
    img = "data:image/gif;base64,R0lGOD"
    value: object = img
    for _ in range(5000):
        value = [value]
    assert find_embedded_images(value) == [img]


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def test_plain_string_response() -> None:
    assert format_blocks("hello", True) == [{"type": "text", "text": "hello"}]


def test_null_response() -> None:
    assert format_blocks(None, True) == [{"type": "text", "text": "null"}]


def test_csv_string_is_verbatim() -> None:
    csv = "title,link\nFoo,https://example.com\n"
    assert format_blocks(csv) == [{"type": "text", "text": csv}]


def test_single_data_url_image() -> None:
    response = {"img": "data:image/png;base64,iVBORw0KGgo"}
    blocks = format_blocks(response, True)
    assert blocks == [
        {"type": "text", "text": json.dumps(response, indent=2, sort_keys=True)},
        {"type": "image", "data": "iVBORw0KGgo", "mimeType": "image/png"},
    ]


def test_oversized_image_is_skipped_with_warning() -> None:
    response = {"img": "data:image/png;base64," + "A" * 2_000_000}
    result = format_response(response, True)
    assert len(result.blocks) == 1
    assert result.blocks[0]["type"] == "text"
    assert len(result.warnings) == 1
    assert "1500000" in result.warnings[0]


def test_multiple_images_keep_order() -> None:
    response = {"a": ["data:image/jpeg;base64,/9j/AAAA", "data:image/gif;base64,R0lGOD"]}
    blocks = format_blocks(response, True)
    assert [b["type"] for b in blocks] == ["text", "image", "image"]
    assert blocks[1] == {"type": "image", "data": "/9j/AAAA", "mimeType": "image/jpeg"}
    assert blocks[2] == {"type": "image", "data": "R0lGOD", "mimeType": "image/gif"}


def test_bare_base64_defaults_to_png() -> None:
    blocks = format_blocks({"thumbnail": PNG_1PX})
    assert blocks[1] == {"type": "image", "data": PNG_1PX, "mimeType": "image/png"}


def test_oversized_skipped_but_others_kept() -> None:
    big = "data:image/png;base64," + "A" * 1_500_000
    small = "data:image/gif;base64,R0lGOD"
    result = format_response({"results": [big, small]})
    assert [b["type"] for b in result.blocks] == ["text", "image"]
    assert result.blocks[1]["data"] == "R0lGOD"
    assert result.image_count == 1


def test_images_disabled_returns_text_only() -> None:
    response = {"img": "data:image/png;base64,iVBORw0KGgo", "n": 1}
    result = format_response(response, False)
    assert result.blocks == [{"type": "text", "text": json.dumps(response, indent=2, sort_keys=True)}]
    assert result.warnings == []


def test_custom_policy_limit() -> None:
    policy = ImagePolicy(max_image_bytes=2)
    result = format_response({"img": "data:image/png;base64,AAAA"}, True, policy)
    assert len(result.blocks) == 1
    assert result.warnings


def test_format_blocks_honours_policy() -> None:
    policy = ImagePolicy(generic_detection=False)
    assert format_blocks({"t": PNG_1PX}, True, policy) == [
        {"type": "text", "text": json.dumps({"t": PNG_1PX}, indent=2)}
    ]
    blocks = format_blocks({"img": "data:image/png;base64,AAAA"}, True, ImagePolicy(max_image_bytes=2))
    assert [b["type"] for b in blocks] == ["text"]


def test_circular_response_uses_placeholder() -> None:
    response: dict = {"a": 1}
    response["self"] = response
    blocks = format_blocks(response, True)
    assert blocks == [{"type": "text", "text": CIRCULAR_PLACEHOLDER}]


def test_circular_response_still_yields_images() -> None:
    response: dict = {"img": "data:image/png;base64,AAAA"}
    response["self"] = response
    blocks = format_blocks(response, True)
    assert blocks[0] == {"type": "text", "text": CIRCULAR_PLACEHOLDER}
    assert blocks[1]["data"] == "AAAA"


def test_unserialisable_response_uses_placeholder() -> None:
    assert format_blocks({"x": object()}) == [{"type": "text", "text": CIRCULAR_PLACEHOLDER}]


def test_deep_nesting_still_finds_image() -> None:
    value: object = "data:image/gif;base64,R0lGOD"
    for _ in range(5000):
        value = [value]
    blocks = format_blocks(value)
    assert [b["type"] for b in blocks] == ["text", "image"]
    assert blocks[1]["data"] == "R0lGOD"


def test_non_ascii_text_is_kept() -> None:
    blocks = format_blocks({"title": "Café"}, False)
    assert "Café" in blocks[0]["text"]


def test_response_is_not_mutated() -> None:
    response = {"img": "data:image/png;base64,AAAA", "list": [1, 2]}
    snapshot = json.dumps(response, sort_keys=True)
    format_response(response)
    assert json.dumps(response, sort_keys=True) == snapshot


_PAYLOADS = [
    None,
    "hello",
    0,
    3.5,
    False,
    [],
    {},
    {"organic_results": [{"title": "t", "thumbnail": f"data:image/png;base64,{PNG_1PX}"}]},
    [PNG_1PX, {"x": [GIF_1PX]}],
]


@pytest.mark.parametrize("payload", _PAYLOADS)
def test_text_only_mode_is_single_canonical_block(payload: object) -> None:
    blocks = format_blocks(payload, False)
    expected = payload if isinstance(payload, str) else json.dumps(payload, indent=2, sort_keys=True)
    assert blocks == [{"type": "text", "text": expected}]


@pytest.mark.parametrize("payload", _PAYLOADS)
def test_images_never_remove_text_block(payload: object) -> None:
    with_images = format_blocks(payload, True)
    without = format_blocks(payload, False)
    assert len(with_images) >= len(without)
    assert with_images[0] == without[0]


@pytest.mark.parametrize("payload", _PAYLOADS)
def test_every_detected_image_is_emitted(payload: object) -> None:
    blocks = format_blocks(payload, True)
    emitted = [b["data"] for b in blocks if b["type"] == "image"]
    expected = [extract_payload(s) for s in find_embedded_images(payload)]
    assert emitted == expected
