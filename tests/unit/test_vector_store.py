import pytest

from doc_router.ingest.embedder import HashingEmbedder
from doc_router.retrieval.vector_store import FaissVectorStoreAdapter, InMemoryVectorStore


def test_in_memory_store_ranks_by_cosine_similarity() -> None:
    store = InMemoryVectorStore()
    store.add(["east", "north", "diagonal"], [[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])

    hits = store.query([1.0, 0.1], k=3)

    assert [item_id for item_id, _ in hits] == ["east", "diagonal", "north"]
    assert hits[0][1] >= hits[1][1] >= hits[2][1]


def test_equal_scores_keep_insertion_order() -> None:
    store = InMemoryVectorStore()
    store.add(["first", "second", "third"], [[0.5, 0.5]] * 3)

    assert [item_id for item_id, _ in store.query([1.0, 1.0], k=3)] == [
        "first",
        "second",
        "third",
    ]


def test_query_returns_at_most_k_items() -> None:
    store = InMemoryVectorStore()
    store.add(["a", "b", "c"], [[1.0, 0.0], [0.9, 0.1], [0.0, 1.0]])

    assert len(store.query([1.0, 0.0], k=2)) == 2
    assert len(store.query([1.0, 0.0], k=10)) == 3
    assert store.query([1.0, 0.0], k=0) == []


def test_re_adding_an_id_replaces_its_vector() -> None:
    store = InMemoryVectorStore()
    store.add(["a", "b"], [[1.0, 0.0], [0.0, 1.0]])
    store.add(["a"], [[0.0, 1.0]])

    assert len(store) == 2
    assert store.query([0.0, 1.0], k=1)[0][0] == "a"


def test_mismatched_lengths_rejected() -> None:
    with pytest.raises(ValueError):
        InMemoryVectorStore().add(["a", "b"], [[1.0, 0.0]])


def test_hashing_embedder_is_deterministic_and_normalized() -> None:
    embedder = HashingEmbedder(dimension=64)

    first = embedder.embed_query("Canada economics and timber exports")
    second = embedder.embed_documents(["Canada economics and timber exports"])[0]

    assert first == second
    assert len(first) == 64
    assert sum(value * value for value in first) == pytest.approx(1.0)


def test_faiss_adapter_matches_exact_search_order() -> None:
    pytest.importorskip("faiss")
    pytest.importorskip("langchain_community")

    embedder = HashingEmbedder(dimension=128)
    texts = {
        "brazil": "Brazil exports soybeans and coffee",
        "canada": "Canada exports timber and oil",
        "football": "Football is popular in Brazil",
    }
    vectors = embedder.embed_documents(list(texts.values()))
    exact = InMemoryVectorStore()
    approximate = FaissVectorStoreAdapter()
    exact.add(list(texts), vectors)
    approximate.add(list(texts), vectors)

    query = embedder.embed_query("timber exports from Canada")
    exact_hits = exact.query(query, k=2)
    faiss_hits = approximate.query(query, k=2)

    assert faiss_hits[0][0] == exact_hits[0][0] == "canada"
    assert faiss_hits[0][1] == pytest.approx(exact_hits[0][1], abs=1e-4)
