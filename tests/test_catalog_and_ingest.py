"""
Tests for the product catalog, the console front end, ingestion and the
small numeric / text helpers.

Scenarios:
- products.json (PascalCase) parsing and lookup
- choose_product re-prompts until a known id is typed
- Chatbot loop: greeting, blank lines skipped, stops at end of input
- IngestionPipeline: cleaning, blank skipping, batching, record shape
- cosine_similarity / restaurant ranking / text utilities

Run:
  pytest -q tests/test_catalog_and_ingest.py
"""

import asyncio
import json
import random
from typing import List, Optional

import pytest

from manualbot.src.core.chatbot import Chatbot, choose_product, format_citation
from manualbot.src.core.chatbot_thread import Citation, ThreadAnswer
from manualbot.src.core.embeddings import cosine_similarity
from manualbot.src.core.ingestor import IngestionPipeline, ManualChunk, load_chunks
from manualbot.src.database.products import Product, find_product, load_products
from manualbot.src.utils.text_utils import clean_text, truncate_words

_CATALOG = [
    {"ProductId": 1, "CategoryId": 3, "Brand": "Aerolux", "Model": "BreezeMax 300", "Description": "Fan.", "Price": 79.99},
    {"ProductId": 2, "CategoryId": 1, "Brand": "Culina", "Model": "ProBlend X2", "Description": "Blender.", "Price": 129},
    {"ProductId": 3, "CategoryId": 2, "Brand": "Vigor", "Model": "TrailRunner", "Description": "Watch.", "Price": 199.5},
    {"ProductId": 4, "CategoryId": 1, "Brand": "Culina", "Model": "BrewMaster 12", "Description": "Coffee.", "Price": 89.9},
]


@pytest.fixture()
def products(tmp_path) -> List[Product]:
    path = tmp_path / "products.json"
    path.write_text(json.dumps(_CATALOG), encoding="utf-8")
    return load_products(path)


# ── Catalog ────────────────────────────────────────────────────────────

def test_load_products_reads_pascal_case(products: List[Product]) -> None:
    assert len(products) == 4
    first = products[0]
    assert (first.product_id, first.brand, first.model, first.price) == (1, "Aerolux", "BreezeMax 300", 79.99)


def test_find_product(products: List[Product]) -> None:
    assert find_product(products, 3).model == "TrailRunner"
    assert find_product(products, 99) is None


def test_load_products_missing_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_products(tmp_path / "missing.json")


def test_choose_product_reprompts(products: List[Product]) -> None:
    typed = iter(["abc", "99", " 2 "])
    written: List[str] = []

    chosen = choose_product(products, read=lambda prompt: next(typed), write=written.append, rng=random.Random(0))

    assert chosen.product_id == 2
    assert "'abc' is not a known product id." in written
    assert "'99' is not a known product id." in written
    suggestions = [line for line in written if line.startswith("   ")]
    assert len(suggestions) == 9


def test_choose_product_empty_catalog() -> None:
    with pytest.raises(ValueError):
        choose_product([], read=lambda prompt: "1", write=lambda line: None)


# ── Chatbot loop ───────────────────────────────────────────────────────

class _DummyThread:
    def __init__(self, product: Product) -> None:
        self.product = product
        self.questions: List[str] = []

    async def answer(self, user_message: str) -> ThreadAnswer:
        self.questions.append(user_message)
        return ThreadAnswer(f"echo: {user_message}", None, [])


class _ScriptedFrontEnd:
    def __init__(self, utterances: List[Optional[str]]) -> None:
        self.utterances = list(utterances)
        self.greetings: List[str] = []
        self.answers: List[ThreadAnswer] = []

    async def read_utterance(self) -> Optional[str]:
        return self.utterances.pop(0)

    async def emit_greeting(self, text: str) -> None:
        self.greetings.append(text)

    async def emit_answer(self, answer: ThreadAnswer) -> None:
        self.answers.append(answer)


def test_chatbot_loop(products: List[Product]) -> None:
    thread = _DummyThread(products[1])
    front_end = _ScriptedFrontEnd(["", "   ", "How loud is it?", "Is it safe?", None])

    turns = asyncio.run(Chatbot(thread, front_end).run())

    assert turns == 2
    assert front_end.greetings == ["Hi! You're looking at the ProBlend X2. What do you want to know about it?"]
    assert thread.questions == ["How loud is it?", "Is it safe?"]
    assert [a.text for a in front_end.answers] == ["echo: How loud is it?", "echo: Is it safe?"]


def test_format_citation() -> None:
    assert format_citation(Citation(42, 3, "Hold the button")) == "CITATION: 42.pdf page 3: Hold the button"


# ── Ingestion ──────────────────────────────────────────────────────────

class _DummyEmbedder:
    def __init__(self) -> None:
        self.batches: List[List[str]] = []

    async def embed(self, text: str) -> List[float]:
        return [float(len(text)), 1.0]

    async def embed_many(self, texts: List[str]):
        self.batches.append(list(texts))
        return [(t, [float(len(t)), 1.0]) for t in texts]


class _DummyStore:
    def __init__(self) -> None:
        self.added: List[tuple] = []

    def add_extracts(self, collection: str, records: list) -> int:
        self.added.append((collection, records))
        return len(records)


def _chunk(chunk_id: int, text: str) -> ManualChunk:
    return ManualChunk(id=chunk_id, productId=7, pageNumber=chunk_id + 1, text=text)


def test_ingestion_batches_and_skips_blank() -> None:
    chunks = [_chunk(1, "Press  power."), _chunk(2, "  \u200b "), _chunk(3, "Clean weekly."), _chunk(4, "Descale monthly."), _chunk(5, "Store dry.")]
    embedder, store = _DummyEmbedder(), _DummyStore()

    summary = asyncio.run(IngestionPipeline(store, embedder, collection="manuals", batch_size=2).run(chunks))

    assert summary["total_chunks"] == 5
    assert summary["chunks_stored"] == 4
    assert summary["chunks_skipped"] == 1
    assert summary["batches"] == 2
    assert embedder.batches == [["Press power.", "Clean weekly."], ["Descale monthly.", "Store dry."]]

    collection, records = store.added[0]
    assert collection == "manuals"
    assert records[0] == {"id": 1, "vector": [12.0, 1.0], "text": "Press power.", "productId": 7, "pageNumber": 2}


def test_ingestion_nothing_to_do() -> None:
    store = _DummyStore()
    summary = asyncio.run(IngestionPipeline(store, _DummyEmbedder(), batch_size=2).run([]))
    assert summary["chunks_stored"] == 0
    assert store.added == []


def test_load_chunks(tmp_path) -> None:
    path = tmp_path / "chunks.json"
    path.write_text(json.dumps([{"id": 1, "productId": 4, "pageNumber": 2, "text": "Hello"}]), encoding="utf-8")

    chunks = load_chunks(path)

    assert chunks == [ManualChunk(id=1, product_id=4, page_number=2, text="Hello")]


# ── Helpers ────────────────────────────────────────────────────────────

def test_cosine_similarity() -> None:
    assert cosine_similarity([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 3.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0


def test_restaurant_ranking_top_two() -> None:
    from manualbot.scripts.embedding_demo import rank

    candidates = [("sushi", [1.0, 0.0]), ("pizza", [0.0, 1.0]), ("pasta", [0.2, 1.0])]

    ranked = rank([0.2, 1.0], candidates)

    assert [text for _, text in ranked] == ["pasta", "pizza"]
    assert ranked[0][0] == pytest.approx(1.0)


def test_clean_text() -> None:
    assert clean_text("  Hold  the   button\ufeff\n\n\n\nthen release. ") == "Hold the button\n\nthen release."


def test_truncate_words() -> None:
    assert truncate_words("a b c", 5) == "a b c"
    assert truncate_words("a  b c d", 2) == "a b"
