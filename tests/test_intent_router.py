from __future__ import annotations

import json

import pytest

from conftest import FakeGenerator, collect, run
from smartpredict.intent_router import APOLOGY_REPLY, clean_product_name


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("milk to the cart please", "milk"),
        ("some eggs", "eggs"),
        ("the bread for me", "bread"),
        ("an apple.", "apple"),
        ("to cart", ""),
    ],
)
def test_clean_product_name_strips_fillers(raw, expected) -> None:
    assert clean_product_name(raw) == expected


def test_rule_order_is_fixed(router) -> None:
    assert router.rule_names == [
        "add_to_cart",
        "remove_from_cart",
        "checkout",
        "add_favorite",
        "remove_favorite",
        "show_favorites",
        "cart_contents",
        "set_preference",
        "product_search",
        "weekly_deals",
        "order_history",
    ]


def test_add_to_cart_resolves_through_catalog(router) -> None:
    outcome = run(router.route("Add milk to cart", "u1"))

    assert outcome.type == "add_to_cart"
    assert outcome.product.name == "Whole Milk"


def test_add_wins_over_cart_contents(router) -> None:
    outcome = run(router.route("add bread to my cart", "u1"))

    assert outcome.type == "add_to_cart"
    assert outcome.product.name == "Bread"


def test_unknown_product_is_not_available(router) -> None:
    outcome = run(router.route("add unicorn dust", "u1"))

    assert outcome.type == "product_not_available"
    assert outcome.product_name == "unicorn dust"


def test_remove_from_cart(router) -> None:
    outcome = run(router.route("remove the bread from the cart", "u1"))

    assert outcome.type == "remove_from_cart"
    assert outcome.product.name == "Bread"


@pytest.mark.parametrize("message", ["checkout", "Place my order!", "place order."])
def test_checkout_phrases(router, message) -> None:
    assert run(router.route(message, "u1")).type == "checkout"


def test_checkout_must_match_whole_message(router, generator) -> None:
    outcome = run(router.route("how do i checkout", "u1"))

    assert outcome.type == "plain_text"


def test_favorites_are_added_once_and_removed(router, store) -> None:
    first = run(router.route("add milk to my favorites", "u1"))
    run(router.route("Add milk to favourites", "u1"))

    assert first.type == "add_favorite"
    assert first.product_name == "Whole Milk"
    rows = run(store.select("favorites", eq={"user_id": "u1"}))
    assert [row["product_name"] for row in rows] == ["Whole Milk"]

    shown = run(router.route("show my favorites", "u1"))
    assert [row["product_name"] for row in shown.favorites] == ["Whole Milk"]

    removed = run(router.route("remove milk from my favorites", "u1"))
    again = run(router.route("remove milk from my favorites", "u1"))

    assert removed.type == "remove_favorite" and removed.removed is True
    assert again.removed is False
    assert run(store.select("favorites")) == []


def test_favorite_for_unknown_product(router) -> None:
    outcome = run(router.route("add moon cheese to my favorites", "u1"))

    assert outcome.type == "product_not_available"


def test_cart_contents_reads_remote_cart(router, repository) -> None:
    run(repository.add_item("u1", {"name": "Bread", "price": 1.98}))

    outcome = run(router.route("What\u2019s in my cart?", "u1"))

    assert outcome.type == "cart_contents"
    assert [item["name"] for item in outcome.items] == ["Bread"]


def test_set_preference_has_set_semantics(router, store) -> None:
    run(router.route("set my preference to organic", "u1"))
    run(router.route("set my preference to organic", "u1"))
    outcome = run(router.route("Set my preferences to vegan.", "u1"))

    assert outcome.type == "set_preference"
    assert outcome.value == "vegan"
    assert outcome.preferences == ["organic", "vegan"]
    profile = run(store.select("user_profiles", eq={"id": "u1"}))[0]
    assert profile["shopping_preferences"] == ["organic", "vegan"]


def test_find_returns_result_or_none(router) -> None:
    found = run(router.route("find chips for me", "u1"))
    missing = run(router.route("find dragon fruit please", "u1"))

    assert found.type == "product_search"
    assert found.result.name == "Lay's Potato Chips"
    assert missing.query == "dragon fruit"
    assert missing.result is None


def test_weekly_deals_carry_detected_mood(router, generator, store) -> None:
    deals = [{"id": 1, "name": "Coffee", "originalPrice": 9.98, "salePrice": 7.98, "savings": 2.0}]
    generator.reply = "Here you go:\n" + json.dumps(deals)

    outcome = run(router.route("I'm so tired, any weekly deals?", "u1"))

    assert outcome.type == "weekly_deals"
    assert outcome.mood == "tired"
    assert outcome.deals == deals
    assert "tired" in generator.prompts[-1]
    assert len(run(store.select("ai_insights", eq={"insight_type": "deal"}))) == 1


def test_order_history_is_recent_first_and_limited(router, store) -> None:
    run(
        store.insert(
            "purchase_history",
            [
                {"user_id": "u1", "product_name": f"Item {day:02d}", "price": 1.0, "purchase_date": f"2024-01-{day:02d}"}
                for day in range(1, 13)
            ],
        )
    )

    outcome = run(router.route("show my order history", "u1"))

    assert outcome.type == "order_history"
    assert len(outcome.orders) == 10
    assert outcome.orders[0]["product_name"] == "Item 12"
    assert outcome.orders[-1]["product_name"] == "Item 03"


def test_history_match_beats_catalog(router, store) -> None:
    run(
        store.insert(
            "purchase_history",
            {"user_id": "u1", "product_name": "Organic Milk", "price": 4.5, "purchase_date": "2024-02-01"},
        )
    )

    outcome = run(router.route("add milk", "u1"))

    assert outcome.product.name == "Organic Milk"
    assert run(router.route("add milk", "u2")).product.name == "Whole Milk"


def test_empty_message_falls_back_to_stream(router, generator) -> None:
    outcome = run(router.route("", "u1"))

    assert outcome.type == "plain_text"
    assert run(collect(outcome.fragments)) == ["Hello", " there"]


def test_fallback_sends_history_and_context(router, generator, store) -> None:
    run(store.insert("user_profiles", {"id": "u1", "shopping_preferences": ["organic"]}))
    history = [{"role": "assistant", "content": "Hi!"}, {"role": "system", "content": "ignored"}]

    outcome = run(router.route("Any recipe ideas?", "u1", history))
    run(collect(outcome.fragments))

    assert generator.streamed[-1] == [
        {"role": "assistant", "content": "Hi!"},
        {"role": "user", "content": "Any recipe ideas?"},
    ]
    assert "organic" in generator.prompts[-1]


def test_stream_failure_appends_apology(router, generator) -> None:
    generator.fail_stream_after = 1

    outcome = run(router.route("tell me a joke", "u1"))
    fragments = run(collect(outcome.fragments))

    assert fragments[0] == "Hello"
    assert fragments[-1].endswith(APOLOGY_REPLY)


def test_stream_failure_before_first_fragment(store, lookup, repository, insights) -> None:
    from smartpredict.intent_router import IntentRouter
    from conftest import PROMPTS_DIR

    router = IntentRouter(store, lookup, repository, insights, FakeGenerator(fail_stream_after=0), PROMPTS_DIR)

    outcome = run(router.route("hello", "u1"))

    assert run(collect(outcome.fragments)) == [APOLOGY_REPLY]


def test_store_failure_becomes_error_outcome(router, store) -> None:
    store.fail_on.add(("select", "favorites"))

    outcome = run(router.route("show my favorites", "u1"))

    assert outcome.type == "error"


def test_remove_favorite_deletes_only_the_resolved_product(router, store) -> None:
    run(
        store.insert(
            "favorites",
            [
                {"user_id": "u1", "product_name": "Whole Milk"},
                {"user_id": "u1", "product_name": "Oat Milk"},
            ],
        )
    )
    run(
        store.insert(
            "purchase_history",
            {"user_id": "u1", "product_name": "Oat Milk", "price": 4.0, "purchase_date": "2024-03-01"},
        )
    )

    outcome = run(router.route("remove milk from my favorites", "u1"))

    assert outcome.product_name == "Oat Milk" and outcome.removed is True
    left = run(store.select("favorites", eq={"user_id": "u1"}))
    assert [row["product_name"] for row in left] == ["Whole Milk"]


def test_remove_favorite_of_unlisted_product_needs_exact_name(router, store) -> None:
    run(
        store.insert(
            "favorites",
            [
                {"user_id": "u1", "product_name": "Moon Cheese"},
                {"user_id": "u1", "product_name": "Moon Cheese Crackers"},
            ],
        )
    )

    outcome = run(router.route("remove moon cheese from my favorites", "u1"))

    assert outcome.removed is True
    left = run(store.select("favorites", eq={"user_id": "u1"}))
    assert [row["product_name"] for row in left] == ["Moon Cheese Crackers"]
