from datetime import datetime

from orderhub.utils.payload import (
    epoch_to_datetime, first_of, get_path, get_str, ml_permalink, normalize_order_numbers, parse_datetime,
    sanitize_url, to_num, try_parse_json,
)


def test_get_path_walks_dicts_and_lists():
    payload = {"a": [{"b": 1}, {"b": 2}]}
    assert get_path(payload, "a.1.b") == 2
    assert get_path(payload, "a.5.b") is None
    assert get_path(payload, "a.x") is None
    assert get_path(None, "a") is None


def test_get_str_trims_and_ignores_containers():
    assert get_str({"a": "  texto  "}, "a") == "texto"
    assert get_str({"a": "   "}, "a") is None
    assert get_str({"a": {"b": 1}}, "a") is None
    assert get_str({"a": 123}, "a") == "123"


def test_to_num_accepts_brazilian_strings():
    assert to_num("R$ 12,50") == 12.5
    assert to_num(7) == 7.0
    assert to_num(True) is None
    assert to_num("abc") is None


def test_first_of_skips_none_and_blank_strings():
    assert first_of(None, "  ", 0, 5) == 0
    assert first_of(None, "") is None


def test_ml_permalink_builds_public_url():
    assert ml_permalink("MLB123", "Camiseta Azul Básica") == \
        "https://produto.mercadolivre.com.br/MLB-123-camiseta-azul-basica_JM"
    assert ml_permalink("MLB123", None) == "https://produto.mercadolivre.com.br/MLB-123_JM"
    assert ml_permalink("abc", "x") is None
    assert ml_permalink(None, "x") is None


def test_epoch_and_iso_parsing_return_naive_utc():
    assert epoch_to_datetime(0) is None
    assert epoch_to_datetime(1700000000) == datetime(2023, 11, 14, 22, 13, 20)
    assert parse_datetime("2024-01-10T10:00:00.000-03:00") == datetime(2024, 1, 10, 13, 0)
    assert parse_datetime("2024-01-10T10:00:00Z") == datetime(2024, 1, 10, 10, 0)
    assert parse_datetime("ontem") is None


def test_normalize_order_numbers_drops_non_numeric_ids():
    order = normalize_order_numbers({"buyer": {"id": "123", "nickname": "X"}, "pack_id": "abc"})
    assert order["buyer"] == {"id": 123, "nickname": "X"}
    assert "pack_id" not in order

    order = normalize_order_numbers({"buyer": {"id": "x1"}, "pack_id": "2000000123"})
    assert "id" not in order["buyer"]
    assert order["pack_id"] == 2000000123


def test_sanitize_url_and_try_parse_json():
    assert sanitize_url(" https://img.com/a `b` ") == "https://img.com/ab"
    assert sanitize_url(None) is None
    assert try_parse_json('{"a": 1}') == {"a": 1}
    assert try_parse_json("texto") == "texto"
    assert try_parse_json("{quebrado") == "{quebrado"
