"""Normalization and schema validation of extracted product fields."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from ..errors import ProductValidationError
from ..models import ProductRecord

SENTINEL_VALUES = frozenset({"nan", "None", "", "string", "null"})

# Fields accepting either a string or a number.
_UNION_FIELDS = frozenset({"id_product", "price"})

_TYPE_MESSAGES = {
    "string_type": "must be a string",
    "bool_type": "must be a boolean",
    "bool_parsing": "must be a boolean",
    "int_type": "must be a number",
    "int_parsing": "must be a number",
    "greater_than": "must be a positive number",
}


def normalize_sentinels(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Replace placeholder strings the extraction service emits with None."""
    return {
        key: None if isinstance(value, str) and value in SENTINEL_VALUES else value
        for key, value in data.items()
    }


def coerce_availability(data: Dict[str, Any], direct_offer_id: Optional[int] = None) -> Dict[str, Any]:
    """Turn ``"true"``/``"false"`` into booleans, except for the direct offer."""
    if direct_offer_id is not None and data.get("offer_id") == direct_offer_id:
        return data
    availability = data.get("availability")
    if availability == "true":
        data["availability"] = True
    elif availability == "false":
        data["availability"] = False
    return data


def _describe(error: Dict[str, Any]) -> str:
    field = ".".join(str(part) for part in error["loc"][:1])
    if error["type"] == "missing":
        return f'"{field}" is required'
    if field in _UNION_FIELDS:
        return f'"{field}" must be one of [string, number]'
    if error["type"] in _TYPE_MESSAGES:
        return f'"{field}" {_TYPE_MESSAGES[error["type"]]}'
    return f'"{field}" {error["msg"]}'


def format_validation_error(exc: ValidationError) -> str:
    """Message for the first offending field, in field declaration order."""
    return _describe(exc.errors()[0])


def validate_product(data: Mapping[str, Any], direct_offer_id: Optional[int] = None) -> ProductRecord:
    """Normalize and validate one product.

    Parameters
    ----------
    data : mapping
        Extracted fields merged with ``url``, ``id_product_smi`` and ``offer_id``
    direct_offer_id : int, optional
        Offer whose availability is passed through unchanged

    Raises
    ------
    ProductValidationError
        With a message naming the first offending field
    """
    normalized = coerce_availability(normalize_sentinels(data), direct_offer_id)
    try:
        return ProductRecord.model_validate(normalized)
    except ValidationError as exc:
        raise ProductValidationError(format_validation_error(exc)) from exc
