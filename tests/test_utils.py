from __future__ import annotations

import pytest

from conftest import run
from smartpredict.errors import StoreError
from smartpredict.mood import detect_mood
from smartpredict.prompt_loader import load_prompt, render_prompt
from smartpredict.record_store import RecordStore
from smartpredict.utils import extract_json_array, normalize_message, safe_json_array


def test_normalize_message() -> None:
    assert normalize_message("  What\u2019s   in my CART ") == "what's in my cart"
    assert normalize_message("") == ""


def test_json_array_extraction_from_noise() -> None:
    assert extract_json_array('prefix [{"a": 1}] suffix') == '[{"a": 1}]'
    assert extract_json_array("no array") is None
    assert safe_json_array('```json\n[{"a": 1}, {"b": 2}]\n```') == [{"a": 1}, {"b": 2}]
    assert safe_json_array('[{"a": 1},') is None
    assert safe_json_array("[1, 2]") is None


@pytest.mark.parametrize(
    "message, mood",
    [
        ("so tired and hungry", "tired"),
        ("I'm starving", "hungry"),
        ("feeling stressed about a deadline", "stressed"),
        ("just a lazy sunday", "relaxed"),
        ("hello there", None),
        ("", None),
    ],
)
def test_detect_mood_first_category_wins(message, mood) -> None:
    assert detect_mood(message) == mood


def test_prompt_loader_strips_bom_and_fills_placeholders(tmp_path) -> None:
    path = tmp_path / "prompt.txt"
    path.write_text("\ufeffHello <<NAME>>, you bought <<ITEMS>>.", encoding="utf-8")

    assert load_prompt(path).startswith("Hello")
    assert render_prompt(path, {"NAME": "Sam", "ITEMS": "milk"}) == "Hello Sam, you bought milk."


def test_record_store_persists_between_instances(tmp_path) -> None:
    path = tmp_path / "store.json"
    first = RecordStore(path)
    rows = run(first.insert("favorites", [{"user_id": "u1", "product_name": "Milk"}, {"user_id": "u1", "product_name": "Eggs"}]))

    second = RecordStore(path)

    assert rows[0]["id"] != rows[1]["id"]
    assert [row["product_name"] for row in run(second.select("favorites", order_by="created_at"))] == ["Milk", "Eggs"]


def test_record_store_filters_and_orders() -> None:
    store = RecordStore()
    run(
        store.insert(
            "purchase_history",
            [
                {"user_id": "u1", "product_name": "Whole Milk", "purchase_date": "2024-01-02"},
                {"user_id": "u1", "product_name": "Bread", "purchase_date": "2024-01-03"},
                {"user_id": "u2", "product_name": "Oat Milk", "purchase_date": "2024-01-04"},
            ],
        )
    )

    rows = run(store.select("purchase_history", eq={"user_id": "u1"}, ilike={"product_name": "MILK"}))
    latest = run(store.select("purchase_history", order_by="purchase_date", descending=True, limit=1))

    assert [row["product_name"] for row in rows] == ["Whole Milk"]
    assert latest[0]["product_name"] == "Oat Milk"
    assert run(store.delete("purchase_history", {"user_id": "u1"})) == 2


def test_record_store_starts_empty_on_corrupt_file(tmp_path) -> None:
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")

    assert run(RecordStore(path).select("orders")) == []


def test_unknown_collection_raises_store_error() -> None:
    with pytest.raises(StoreError):
        run(RecordStore().select("nope"))


def test_record_store_starts_empty_when_file_is_not_an_object(tmp_path) -> None:
    path = tmp_path / "store.json"
    path.write_text("[]", encoding="utf-8")

    store = RecordStore(path)

    assert run(store.select("cart_items")) == []
    assert run(store.insert("orders", {"user_id": "u1"}))[0]["user_id"] == "u1"


def test_render_prompt_logs_unfilled_placeholders(tmp_path, caplog) -> None:
    path = tmp_path / "deals.txt"
    path.write_text("Profile: <<PROFILE>>\n<<MOOD>>", encoding="utf-8")

    with caplog.at_level("WARNING", logger="smartpredict.prompts"):
        text = render_prompt(path, {"PROFILE": "{}"})

    assert text == "Profile: {}\n<<MOOD>>"
    assert "unfilled=MOOD" in caplog.text
