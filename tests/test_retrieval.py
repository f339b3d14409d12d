import pytest
import redis
from langchain_core.documents import Document

from redis_cache.redis_client import RetrievalCache
from room_doc_chat.exception.custom_exception import BackendUnavailable, IndexNotFound, ValidationError
from room_doc_chat.src.document_chat.retrieval import RetrieverWrapper, rank
from room_doc_chat.src.document_ingestion.indexer import Indexer
from room_doc_chat.src.document_ingestion.vector_store import FaissStore
from tests.fakes import FailingEmbeddings, FakeRedis, make_chunks

TEXTS = [
    "The quarterly report covers revenue and churn.",
    "Onboarding checklist for new engineers.",
    "Incident postmortem for the March outage.",
    "Travel policy and expense limits.",
    "Roadmap for the search relevance project.",
    "Security training schedule for the year.",
]


@pytest.fixture
async def indexed_store(tmp_path, embeddings):
    store = FaissStore(tmp_path / "faiss_index", embeddings)
    await Indexer(store, embeddings).index(make_chunks("d1", "a.txt", TEXTS), "documents")
    return store


def _room_a(metadata):
    return "A" in metadata.get("room_ids", [])


class TestRetrieverWrapper:
    async def test_indexed_text_ranks_itself_first(self, indexed_store):
        retriever = RetrieverWrapper(indexed_store, "documents", k=5)

        for text in TEXTS:
            results = await retriever.retrieve(text)
            assert len(results) == 5
            assert results[0].document.page_content == text
            assert results[0].score == pytest.approx(1.0, abs=1e-4)

    async def test_scores_are_non_increasing(self, indexed_store):
        results = await RetrieverWrapper(indexed_store, "documents", k=5).retrieve("expense policy")
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)

    async def test_missing_index_raises(self, tmp_path, embeddings):
        store = FaissStore(tmp_path / "empty", embeddings)
        with pytest.raises(IndexNotFound):
            await RetrieverWrapper(store, "documents").retrieve("anything")

    async def test_embedding_outage_is_backend_unavailable(self, tmp_path):
        embeddings = FailingEmbeddings()
        store = FaissStore(tmp_path / "faiss_index", embeddings)
        await Indexer(store, embeddings).index(make_chunks("d1", "a.txt", TEXTS), "documents")

        with pytest.raises(BackendUnavailable):
            await RetrieverWrapper(store, "documents").retrieve("POISON question")

    async def test_empty_query_rejected(self, indexed_store):
        with pytest.raises(ValidationError):
            await RetrieverWrapper(indexed_store, "documents").retrieve("   ")

    async def test_room_filter_is_not_starved_by_other_rooms(self, tmp_path, embeddings):
        store = FaissStore(tmp_path / "faiss_index", embeddings)
        indexer = Indexer(store, embeddings)
        await indexer.index(
            make_chunks("b", "b.txt", [f"room b text {i}" for i in range(30)], rooms=("B",)),
            "documents",
        )
        await indexer.index(
            make_chunks("a", "a.txt", ["room a first", "room a second"], rooms=("A",)),
            "documents",
        )

        results = await RetrieverWrapper(
            store, "documents", k=5, metadata_filter=_room_a
        ).retrieve("room b text 3")

        assert sorted(r.document.page_content for r in results) == ["room a first", "room a second"]

    async def test_document_ids_narrow_the_search(self, tmp_path, embeddings):
        store = FaissStore(tmp_path / "faiss_index", embeddings)
        indexer = Indexer(store, embeddings)
        await indexer.index(make_chunks("public", "a.txt", ["public notes"]), "documents")
        await indexer.index(make_chunks("secret", "b.txt", ["secret notes"]), "documents")
        retriever = RetrieverWrapper(store, "documents", k=5, metadata_filter=_room_a)

        results = await retriever.retrieve("secret notes", document_ids={"public"})

        assert [r.document.metadata["document_id"] for r in results] == ["public"]
        assert await retriever.retrieve("secret notes", document_ids=set()) == []


class TestRank:
    def test_equal_scores_keep_insertion_order(self):
        late = Document(page_content="late", metadata={"ordinal": 7})
        early = Document(page_content="early", metadata={"ordinal": 2})
        best = Document(page_content="best", metadata={"ordinal": 9})

        ranked = rank([(late, 0.5), (best, 0.1), (early, 0.5)], k=3)

        assert [c.document.page_content for c in ranked] == ["best", "early", "late"]

    def test_truncates_to_k(self):
        docs = [(Document(page_content=str(i), metadata={"ordinal": i}), float(i)) for i in range(8)]
        assert [c.document.page_content for c in rank(docs, k=3)] == ["0", "1", "2"]


class TestRetrievalCache:
    async def test_second_lookup_is_served_from_cache(self, indexed_store, monkeypatch):
        cache = RetrievalCache(FakeRedis(), ttl=60)
        retriever = RetrieverWrapper(indexed_store, "documents", k=3, scope="room:A", cache=cache)

        first = await retriever.retrieve("Travel policy and expense limits.")

        async def no_search(*args, **kwargs):
            raise AssertionError("vector store must not be searched on a cache hit")

        monkeypatch.setattr(indexed_store, "similarity_search", no_search)
        second = await retriever.retrieve("  travel POLICY and expense limits.  ")

        assert [c.document.page_content for c in second] == [c.document.page_content for c in first]
        assert [c.score for c in second] == pytest.approx([c.score for c in first])

    async def test_indexing_invalidates_cached_entries(self, tmp_path, embeddings):
        client = FakeRedis()
        cache = RetrievalCache(client, ttl=60)
        store = FaissStore(tmp_path / "faiss_index", embeddings)
        indexer = Indexer(store, embeddings, retrieval_cache=cache)
        await indexer.index(make_chunks("d1", "a.txt", TEXTS), "documents")

        await RetrieverWrapper(store, "documents", cache=cache).retrieve("roadmap")
        assert cache.get("documents", "*", "roadmap") is not None

        await indexer.index(make_chunks("d2", "b.txt", ["a brand new roadmap"]), "documents")
        assert cache.get("documents", "*", "roadmap") is None

    async def test_cached_hits_are_partitioned_by_document_ids(self, tmp_path, embeddings):
        store = FaissStore(tmp_path / "faiss_index", embeddings)
        indexer = Indexer(store, embeddings)
        await indexer.index(make_chunks("public", "a.txt", ["public notes"]), "documents")
        await indexer.index(make_chunks("secret", "b.txt", ["secret notes"]), "documents")
        cache = RetrievalCache(FakeRedis(), ttl=60)
        retriever = RetrieverWrapper(store, "documents", k=5, scope="room:A", cache=cache)

        wide = await retriever.retrieve("notes", document_ids={"public", "secret"})
        narrow = await retriever.retrieve("notes", document_ids={"public"})

        assert {r.document.metadata["document_id"] for r in wide} == {"public", "secret"}
        assert [r.document.metadata["document_id"] for r in narrow] == ["public"]

    def test_redis_errors_degrade_to_a_miss(self):
        class DownRedis:
            def __getattr__(self, name):
                def _fail(*args, **kwargs):
                    raise redis.ConnectionError("redis is down")

                return _fail

        cache = RetrievalCache(DownRedis(), ttl=60)
        assert cache.get("documents", "*", "q") is None
        cache.store("documents", "*", "q", [("d1__0", 0.9)])
        cache.invalidate_index("documents")
