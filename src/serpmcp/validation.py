from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from .tools.errors import ValidationError

TIME_PERIODS = ("last_hour", "last_day", "last_week", "last_month", "last_year", "custom")
SAFE_VALUES = ("active", "off")
BINARY_FLAGS = ("0", "1")
OUTPUT_FORMATS = ("csv", "json")
SORT_BY_VALUES = ("relevance", "date")
IMAGE_COLORS = (
    "any", "black_and_white", "transparent", "red", "orange", "yellow", "green",
    "teal", "blue", "purple", "pink", "white", "gray", "black", "brown",
)
IMAGE_SIZES = ("large", "medium", "icon")
IMAGE_TYPES = ("clipart", "line_drawing", "gif")
IMAGE_USAGES = ("non_commercial_reuse_with_modification", "non_commercial_reuse")
PLACE_ID_KEYS = ("data_id", "data_cid", "place_id")

MAX_NUM = 100
MAX_PLACES_NUM = 20

_DATE_RE = re.compile(r"^(0[1-9]|1[0-2])/(0[1-9]|[12][0-9]|3[01])/\d{4}$")

# Parameters every search type accepts.
BASE_KEYS = frozenset({
    "q", "output", "csv_fields",
    "location", "location_auto", "uule", "google_domain", "gl", "hl", "lr", "cr",
    "time_period", "time_period_min", "time_period_max",
    "nfpr", "filter", "safe", "page", "max_page", "num", "tbs", "fields",
})
SEARCH_KEYS = BASE_KEYS | {
    "include_ai_overview", "web_filter", "knowledge_graph_id", "order_online",
    "flatten_results", "include_answer_box", "ads_optimized",
}
NEWS_KEYS = BASE_KEYS | {"sort_by", "show_duplicates", "exclude_if_modified"}
IMAGE_KEYS = (BASE_KEYS - {"num", "page", "max_page"}) | {
    "images_page", "images_color", "images_size", "images_type", "images_usage",
}
VIDEO_KEYS = BASE_KEYS
PLACES_KEYS = BASE_KEYS | {"order_online"}
PLACE_DETAILS_KEYS = frozenset({
    "output", "csv_fields", "google_domain", "gl", "hl", *PLACE_ID_KEYS,
})


def is_valid_date(value: str) -> bool:
    """True for a real calendar date written as MM/DD/YYYY."""
    if not isinstance(value, str) or not _DATE_RE.match(value):
        return False
    try:
        datetime.strptime(value, "%m/%d/%Y")
    except ValueError:
        return False
    return True


def _positive_int(params: dict[str, Any], key: str, maximum: int | None = None) -> None:
    if key not in params or params[key] is None:
        return
    raw = params[key]
    if isinstance(raw, bool):
        raise ValidationError(f'Parameter "{key}" must be a positive number')
    try:
        value = int(raw) if isinstance(raw, str) else raw
    except ValueError:
        value = None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or value < 1:
        if maximum is not None:
            raise ValidationError(f'Parameter "{key}" must be a number between 1 and {maximum}')
        raise ValidationError(f'Parameter "{key}" must be a positive number')
    if maximum is not None and value > maximum:
        raise ValidationError(f'Parameter "{key}" must be a number between 1 and {maximum}')
    params[key] = value


def _one_of(params: dict[str, Any], key: str, choices: tuple[str, ...]) -> None:
    value = params.get(key)
    if value is None:
        return
    if value not in choices:
        if len(choices) == 2:
            allowed = f'either "{choices[0]}" or "{choices[1]}"'
        else:
            allowed = "one of: " + ", ".join(choices)
        raise ValidationError(f'Parameter "{key}" must be {allowed}')


def _binary_flag(params: dict[str, Any], key: str) -> None:
    if params.get(key) is None:
        return
    value = params[key]
    if isinstance(value, bool):
        value = int(value)
    params[key] = str(value)
    _one_of(params, key, BINARY_FLAGS)


def _reject_unknown(params: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = sorted(set(params) - allowed)
    if unknown:
        raise ValidationError(f"Unknown parameter(s): {', '.join(unknown)}")


def _require_query(params: dict[str, Any]) -> None:
    q = params.get("q")
    if not isinstance(q, str) or not q.strip():
        raise ValidationError('Query parameter "q" is required and must be a non-empty string')


def _check_time_period(params: dict[str, Any]) -> None:
    _one_of(params, "time_period", TIME_PERIODS)
    if params.get("time_period") == "custom" and not (
        params.get("time_period_min") or params.get("time_period_max")
    ):
        raise ValidationError(
            'When time_period is "custom", either time_period_min or time_period_max must be provided'
        )
    for key in ("time_period_min", "time_period_max"):
        if params.get(key) is not None and not is_valid_date(params[key]):
            raise ValidationError(f"{key} must be in MM/DD/YYYY format")


def _check_common(params: dict[str, Any], *, max_num: int = MAX_NUM) -> None:
    _one_of(params, "output", OUTPUT_FORMATS)
    _positive_int(params, "num", maximum=max_num)
    _positive_int(params, "page")
    _positive_int(params, "max_page")
    _check_time_period(params)
    _one_of(params, "safe", SAFE_VALUES)
    _binary_flag(params, "nfpr")
    _binary_flag(params, "filter")
    fields = params.get("fields")
    if isinstance(fields, str):
        params["fields"] = [part.strip() for part in fields.split(",") if part.strip()]
    elif fields is not None and not (
        isinstance(fields, list) and all(isinstance(item, str) for item in fields)
    ):
        raise ValidationError('Parameter "fields" must be a list of strings')


def _prepare(
    params: dict[str, Any],
    allowed: frozenset[str],
    *,
    max_num: int = MAX_NUM,
) -> dict[str, Any]:
    cleaned = {key: value for key, value in params.items() if value is not None}
    _reject_unknown(cleaned, allowed)
    _require_query(cleaned)
    _check_common(cleaned, max_num=max_num)
    return cleaned


def validate_search_params(params: dict[str, Any]) -> dict[str, Any]:
    return _prepare(params, SEARCH_KEYS)


def validate_news_search_params(params: dict[str, Any]) -> dict[str, Any]:
    cleaned = _prepare(params, NEWS_KEYS)
    _one_of(cleaned, "sort_by", SORT_BY_VALUES)
    if cleaned.get("show_duplicates") is not None and cleaned.get("sort_by") != "date":
        raise ValidationError(
            'Parameter "show_duplicates" can only be used when sort_by is set to "date"'
        )
    return cleaned


def validate_image_search_params(params: dict[str, Any]) -> dict[str, Any]:
    cleaned = _prepare(params, IMAGE_KEYS)
    _positive_int(cleaned, "images_page")
    _one_of(cleaned, "images_color", IMAGE_COLORS)
    _one_of(cleaned, "images_size", IMAGE_SIZES)
    _one_of(cleaned, "images_type", IMAGE_TYPES)
    _one_of(cleaned, "images_usage", IMAGE_USAGES)
    return cleaned


def validate_video_search_params(params: dict[str, Any]) -> dict[str, Any]:
    return _prepare(params, VIDEO_KEYS)


def validate_places_search_params(params: dict[str, Any]) -> dict[str, Any]:
    return _prepare(params, PLACES_KEYS, max_num=MAX_PLACES_NUM)


def validate_place_details_params(params: dict[str, Any]) -> dict[str, Any]:
    cleaned = {key: value for key, value in params.items() if value is not None}
    _reject_unknown(cleaned, PLACE_DETAILS_KEYS)
    _one_of(cleaned, "output", OUTPUT_FORMATS)
    provided = [key for key in PLACE_ID_KEYS if str(cleaned.get(key, "")).strip()]
    if not provided:
        raise ValidationError(
            "One of " + ", ".join(f'"{key}"' for key in PLACE_ID_KEYS) + " is required"
        )
    return cleaned
