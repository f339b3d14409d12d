import pytest

from room_doc_chat.exception.custom_exception import BackendUnavailable, IndexingError
from room_doc_chat.src.document_ingestion.indexer import Indexer, fingerprint
from room_doc_chat.src.document_ingestion.vector_store import FaissStore
from tests.fakes import FailingEmbeddings, make_chunks


@pytest.fixture
def store(tmp_path, embeddings):
    return FaissStore(tmp_path / "faiss_index", embeddings)


class TestIndexer:
    async def test_reindexing_same_document_is_a_no_op(self, store, embeddings):
        indexer = Indexer(store, embeddings)
        texts = ["alpha chunk", "beta chunk", "gamma chunk"]

        first = await indexer.index(make_chunks("d1", "a.txt", texts), "documents")
        second = await indexer.index(make_chunks("d1", "a.txt", texts), "documents")

        assert (first.indexed, first.skipped) == (3, 0)
        assert (second.indexed, second.skipped) == (0, 3)

        docs = await store.get_by_ids("documents", ["d1__0", "d1__1", "d1__2"])
        assert sorted(d.page_content for d in docs) == sorted(texts)

    async def test_fingerprints_survive_a_restart(self, tmp_path, store, embeddings):
        chunks = make_chunks("d1", "a.txt", ["one", "two"])
        await Indexer(store, embeddings).index(chunks, "documents")

        reopened = FaissStore(tmp_path / "faiss_index", embeddings)
        assert reopened.known_fingerprints("documents") == {fingerprint(c) for c in chunks}

        report = await Indexer(reopened, embeddings).index(
            make_chunks("d1", "a.txt", ["one", "two"]), "documents"
        )
        assert report.indexed == 0

    async def test_ordinals_follow_insertion_order_across_writes(self, store, embeddings):
        indexer = Indexer(store, embeddings)
        await indexer.index(make_chunks("d1", "a.txt", ["a0", "a1"]), "documents")
        await indexer.index(make_chunks("d2", "b.txt", ["b0", "b1"]), "documents")

        docs = await store.get_by_ids("documents", ["d1__0", "d1__1", "d2__0", "d2__1"])
        assert [d.metadata["ordinal"] for d in docs] == [0, 1, 2, 3]

    async def test_failed_batch_is_reported_and_nothing_is_written(self, tmp_path):
        embeddings = FailingEmbeddings()
        store = FaissStore(tmp_path / "faiss_index", embeddings)
        indexer = Indexer(store, embeddings, batch_size=2)
        chunks = make_chunks("d1", "a.txt", ["ok zero", "ok one", "POISON two", "ok three"])

        with pytest.raises(IndexingError) as exc_info:
            await indexer.index(chunks, "documents")

        assert exc_info.value.failed_chunk_ids == ["d1__2", "d1__3"]
        assert not store.exists("documents")
        assert store.known_fingerprints("documents") == set()

    async def test_store_write_failure_reports_every_pending_chunk(self, store, embeddings, monkeypatch):
        async def broken_upsert(*args, **kwargs):
            raise BackendUnavailable("disk full")

        monkeypatch.setattr(store, "upsert", broken_upsert)

        with pytest.raises(IndexingError) as exc_info:
            await Indexer(store, embeddings).index(make_chunks("d1", "a.txt", ["x", "y"]), "documents")

        assert exc_info.value.failed_chunk_ids == ["d1__0", "d1__1"]

    async def test_same_file_under_a_new_document_id_is_written_again(self, store, embeddings):
        indexer = Indexer(store, embeddings)
        await indexer.index(make_chunks("d1", "a.txt", ["one", "two"]), "documents")

        report = await indexer.index(make_chunks("d2", "a.txt", ["one", "two"]), "documents")

        assert (report.indexed, report.skipped) == (2, 0)
