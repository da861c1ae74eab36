"""Tests for working memory fold-back and the PRODUCT_MEMORY block."""

import json

from shopagent.schemas.product import ProductCard, VariantSummary
from shopagent.schemas.session import (
    MAX_SHORTLIST,
    AvailabilityStatus,
    LastResultItem,
    SearchCandidate,
    ShortlistItem,
    WorkingMemory,
)
from shopagent.services.agent.memory import (
    build_product_memory_context,
    card_to_last_result,
    update_working_memory,
)


def _card(product_id: str, title: str, **kwargs: object) -> ProductCard:
    return ProductCard(product_id=product_id, title=title, **kwargs)


def _candidate(product_id: str, title: str) -> SearchCandidate:
    return SearchCandidate(product_id=product_id, title=title, price="149.5", currency="SEK")


def _memory_payload(memory: WorkingMemory) -> dict:
    context = build_product_memory_context(memory)
    assert context is not None
    label, body = context.split("\n", 1)
    assert label == "PRODUCT_MEMORY:"
    return json.loads(body)


class TestUpdateWorkingMemory:
    """Folding a turn's products into memory."""

    def test_cards_become_last_results(self) -> None:
        memory = WorkingMemory()
        cards = [
            _card("1", "Bear Slippers", price="199.0", currency="SEK", attributes={"brand": "Acme", "color": "Brown"}),
            _card("2", "Fox Slippers"),
        ]

        update_working_memory(
            memory, cards=cards, search_candidates=[], selected_product_ids=[], variant_summaries={}
        )

        assert [(r.index, r.product_id) for r in memory.last_results] == [(1, "1"), (2, "2")]
        first = memory.last_results[0]
        assert first.price == 199.0
        assert first.brand == "Acme"
        assert first.color == "Brown"

    def test_candidates_used_when_no_cards(self) -> None:
        memory = WorkingMemory()

        update_working_memory(
            memory,
            cards=[],
            search_candidates=[_candidate("7", "Owl Slippers")],
            selected_product_ids=[],
            variant_summaries={},
        )

        assert memory.last_results[0].product_id == "7"
        assert memory.last_results[0].price == 149.5
        assert memory.search_candidates[0].product_id == "7"

    def test_empty_turn_keeps_previous_results(self) -> None:
        memory = WorkingMemory(last_results=[LastResultItem(index=1, product_id="1", name="Bear Slippers")])

        update_working_memory(memory, cards=[], search_candidates=[], selected_product_ids=[], variant_summaries={})

        assert memory.last_results[0].product_id == "1"

    def test_last_results_capped_at_ten(self) -> None:
        memory = WorkingMemory()
        cards = [_card(str(n), f"Product {n}") for n in range(15)]

        update_working_memory(memory, cards=cards, search_candidates=[], selected_product_ids=[], variant_summaries={})

        assert len(memory.last_results) == 10
        assert memory.last_results[-1].index == 10

    def test_variant_summary_merged(self) -> None:
        memory = WorkingMemory()
        summary = VariantSummary(
            buyable_variant_count=3,
            in_stock_buyable_variant_count=1,
            available_dimension_values={"Size": ["38", "39", "40"]},
        )

        update_working_memory(
            memory,
            cards=[_card("1", "Bear Slippers")],
            search_candidates=[],
            selected_product_ids=["1"],
            variant_summaries={"1": summary},
        )

        item = memory.last_results[0]
        assert item.buyable_variant_count == 3
        assert item.in_stock_buyable_variant_count == 1
        assert item.available_dimension_values == {"Size": ["38", "39", "40"]}

    def test_shortlist_deduplicates_and_names(self) -> None:
        memory = WorkingMemory(shortlist=[ShortlistItem(product_id="1", name="Bear Slippers")])

        update_working_memory(
            memory,
            cards=[_card("2", "Fox Slippers")],
            search_candidates=[],
            selected_product_ids=["1", "2", "3"],
            variant_summaries={},
        )

        assert [(s.product_id, s.name) for s in memory.shortlist] == [
            ("1", "Bear Slippers"),
            ("2", "Fox Slippers"),
            ("3", None),
        ]

    def test_shortlist_evicts_oldest(self) -> None:
        memory = WorkingMemory(shortlist=[ShortlistItem(product_id=str(n)) for n in range(MAX_SHORTLIST)])

        update_working_memory(
            memory, cards=[], search_candidates=[], selected_product_ids=["new"], variant_summaries={}
        )

        assert len(memory.shortlist) == MAX_SHORTLIST
        assert memory.shortlist[0].product_id == "1"
        assert memory.shortlist[-1].product_id == "new"

    def test_card_url_falls_back_to_image(self) -> None:
        item = card_to_last_result(_card("1", "Bear", image_url="https://cdn.example.com/1.jpg"), 1)
        assert item.url == "https://cdn.example.com/1.jpg"

    def test_unparseable_price_is_dropped(self) -> None:
        item = card_to_last_result(_card("1", "Bear", price="call us"), 1)
        assert item.price is None


class TestProductMemoryContext:
    """Rendering memory for the model."""

    def test_empty_memory_renders_nothing(self) -> None:
        assert build_product_memory_context(None) is None
        assert build_product_memory_context(WorkingMemory()) is None

    def test_compact_entries(self) -> None:
        memory = WorkingMemory(
            last_results=[
                LastResultItem(
                    index=1,
                    product_id="1",
                    name="A very long product name that keeps going well past the fifty character cap",
                    variant_name="Brown",
                    brand="Acme",
                    color="Brown",
                    price=199.0,
                    currency="SEK",
                    availability_status=AvailabilityStatus.IN_STOCK,
                    on_hand_value=5,
                    buyable_variant_count=2,
                    in_stock_buyable_variant_count=1,
                    available_dimension_values={
                        "Size": ["36", "37", "38", "39", "40", "41"],
                        "Color": ["Brown"],
                        "Width": ["Normal"],
                        "Heel": ["Flat"],
                        "Sole": ["Rubber"],
                    },
                )
            ],
            shortlist=[ShortlistItem(product_id="1", name="Bear Slippers"), ShortlistItem(product_id="9")],
        )

        payload = _memory_payload(memory)

        entry = payload["lastResults"][0]
        assert entry["i"] == 1
        assert len(entry["name"]) == 50
        assert entry["vn"] == "Brown"
        assert entry["brand"] == "Acme"
        assert entry["price"] == "199 SEK"
        assert entry["avail"] == {"st": "in_stock", "oh": 5, "b": 2, "s": 1}
        assert list(entry["dims"]) == ["Size", "Color", "Width", "Heel"]
        assert entry["dims"]["Size"] == ["36", "37", "38", "39", "40"]
        assert payload["shortlist"] == [{"id": "1", "name": "Bear Slippers"}, {"id": "9"}]

    def test_minimal_entry_has_no_optional_keys(self) -> None:
        memory = WorkingMemory(last_results=[LastResultItem(index=1, product_id="1", name="Bear")])

        payload = _memory_payload(memory)

        assert payload == {"lastResults": [{"i": 1, "id": "1", "name": "Bear"}]}

    def test_block_is_compact_json(self) -> None:
        memory = WorkingMemory(shortlist=[ShortlistItem(product_id="1", name="Björn")])
        context = build_product_memory_context(memory)
        assert context == 'PRODUCT_MEMORY:\n{"shortlist":[{"id":"1","name":"Björn"}]}'
