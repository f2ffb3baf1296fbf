import pytest

from acquisition.errors import ProductValidationError
from acquisition.extraction.validator import coerce_availability, normalize_sentinels, validate_product
from acquisition.ledger import IGNORED_ERROR_MESSAGES


def _product(**overrides):
    data = {
        "id_product": "P1",
        "product_name": "Robe longue",
        "available_color": "Noir",
        "category": "Robes",
        "subcategory": "Robes longues",
        "description": "Robe en lin",
        "price": "49.9",
        "currency": "EUR",
        "availability": "true",
        "keys": "robe,lin",
        "url": "https://shop.example/p/1",
        "id_product_smi": "k1",
        "offer_id": 42,
    }
    data.update(overrides)
    return data


def test_sentinels_become_absent():
    normalized = normalize_sentinels({"a": "nan", "b": "None", "c": "", "d": "string", "e": "null", "f": "Noir", "g": 0})
    assert normalized == {"a": None, "b": None, "c": None, "d": None, "e": None, "f": "Noir", "g": 0}


def test_valid_product():
    record = validate_product(_product(category="nan", price=49.9))

    assert record.id_product_smi == "k1"
    assert record.category is None
    assert record.price == 49.9
    assert record.availability is True


def test_numeric_id_product_accepted():
    assert validate_product(_product(id_product=123456)).id_product == 123456


def test_availability_false_string():
    assert validate_product(_product(availability="false")).availability is False


def test_direct_offer_availability_passes_through():
    data = coerce_availability({"offer_id": 7, "availability": "true"}, direct_offer_id=7)
    assert data["availability"] == "true"

    data = coerce_availability({"offer_id": 8, "availability": "true"}, direct_offer_id=7)
    assert data["availability"] is True


def test_missing_name_is_reported():
    data = _product()
    del data["product_name"]

    with pytest.raises(ProductValidationError) as excinfo:
        validate_product(data)

    assert str(excinfo.value) == '"product_name" is required'


def test_sentinel_id_product_matches_ignore_list():
    with pytest.raises(ProductValidationError) as excinfo:
        validate_product(_product(id_product="null"))

    assert str(excinfo.value) == '"id_product" must be one of [string, number]'
    assert str(excinfo.value) in IGNORED_ERROR_MESSAGES


def test_offer_id_must_be_positive():
    with pytest.raises(ProductValidationError, match='^"offer_id"'):
        validate_product(_product(offer_id=0))


def test_price_rejects_lists():
    with pytest.raises(ProductValidationError, match='"price" must be one of'):
        validate_product(_product(price=["49.9"]))


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"product_name": 123}, '"product_name" must be a string'),
        ({"category": 5}, '"category" must be a string'),
        ({"availability": "maybe"}, '"availability" must be a boolean'),
        ({"offer_id": 0}, '"offer_id" must be a positive number'),
    ],
)
def test_type_errors_use_uniform_wording(overrides, message):
    with pytest.raises(ProductValidationError) as excinfo:
        validate_product(_product(**overrides))

    assert str(excinfo.value) == message
