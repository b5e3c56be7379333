"""Tests for the in-memory and JSON-file document stores."""

import json
from unittest.mock import patch

import pytest

from crm_sync.store import (
    DocumentNotFoundError,
    DuplicateDocumentError,
    JsonFileStore,
    MemoryStore,
    StoreError,
    TransactionError,
)

TRAIT = "crm:mixin:SyncDoc"


# ---------------------------------------------------------------------------
# MemoryStore reads
# ---------------------------------------------------------------------------


class TestQueries:
    """Tests for find_all() and find_one()."""

    async def test_create_and_find(self, store):
        """Created documents are found by class only."""
        doc_id = await store.create_doc("crm:class:Lead", "space", {"title": "A"})

        found = await store.find_all("crm:class:Lead")
        assert [d.id for d in found] == [doc_id]
        assert found[0].data == {"title": "A"}
        assert await store.find_all("crm:class:Deal") == []

    async def test_find_by_data_attribute_and_membership(self, store):
        """Data attributes match by equality; $in matches any listed value."""
        a = await store.create_doc("c", "s", {"kind": "x"})
        b = await store.create_doc("c", "s", {"kind": "y"})
        await store.create_doc("c", "s", {"kind": "z"})

        assert [d.id for d in await store.find_all("c", {"kind": "x"})] == [a]
        found = await store.find_all("c", {"id": {"$in": [a, b]}})
        assert {d.id for d in found} == {a, b}

    async def test_find_by_trait_field(self, store):
        """Dotted keys query fields of a trait."""
        a = await store.create_doc("c", "s", {})
        b = await store.create_doc("c", "s", {})
        await store.create_mixin(a, "c", "s", TRAIT, {"remote_id": "1"})
        await store.create_mixin(b, "c", "s", TRAIT, {"remote_id": "2"})

        found = await store.find_all("c", {f"{TRAIT}.remote_id": {"$in": ["2"]}})
        assert [d.id for d in found] == [b]

    async def test_find_one(self, store):
        """find_one returns None on no match, else the first document."""
        assert await store.find_one("c") is None
        doc_id = await store.create_doc("c", "s", {"n": 1})
        assert (await store.find_one("c", {"n": 1})).id == doc_id

    async def test_find_returns_copies(self, store):
        """Mutating a returned document does not touch the store."""
        doc_id = await store.create_doc("c", "s", {"n": 1})
        doc = (await store.find_all("c"))[0]
        doc.data["n"] = 99

        assert (await store.find_one("c", {"id": doc_id})).data["n"] == 1

    async def test_collection_documents(self, store):
        """Collection members carry their parent id and class."""
        parent = await store.create_doc("p", "s", {})
        child = await store.add_collection("c", "s", parent, "p", "comments", {})

        found = await store.find_all("c", {"attached_to": parent, "collection": "comments"})
        assert [d.id for d in found] == [child]
        assert found[0].attached_to_class == "p"


# ---------------------------------------------------------------------------
# MemoryStore writes and transactions
# ---------------------------------------------------------------------------


class TestWrites:
    """Tests for direct document and trait writes."""

    async def test_update_merges_data(self, store):
        """update() merges into existing data."""
        doc_id = await store.create_doc("c", "s", {"a": 1, "b": 2})
        doc = await store.find_one("c")
        await store.update(doc, {"b": 3})

        assert (await store.find_one("c", {"id": doc_id})).data == {"a": 1, "b": 3}

    async def test_remove_drops_traits(self, store):
        """Removing a document also removes its traits."""
        doc_id = await store.create_doc("c", "s", {})
        await store.create_mixin(doc_id, "c", "s", TRAIT, {"remote_id": "1"})
        await store.remove(await store.find_one("c"))

        assert await store.find_all("c") == []
        assert await store.has_mixin(doc_id, TRAIT) is False

    async def test_update_mixin_merges(self, store):
        """update_mixin() merges into existing trait values."""
        doc_id = await store.create_doc("c", "s", {})
        await store.create_mixin(doc_id, "c", "s", TRAIT, {"remote_id": "1"})
        await store.update_mixin(doc_id, "c", "s", TRAIT, {"sync_time": 5})

        assert await store.get_mixin(doc_id, TRAIT) == {"remote_id": "1", "sync_time": 5}

    async def test_duplicate_id_rejected(self, store):
        """Creating a second document with a taken id fails."""
        await store.create_doc("c", "s", {}, doc_id="fixed")
        with pytest.raises(DuplicateDocumentError):
            await store.create_doc("c", "s", {}, doc_id="fixed")


class TestTransactions:
    """Tests for staged transactions."""

    async def test_transaction_invisible_until_commit(self, store):
        """Staged writes are not visible before commit."""
        tx = store.apply("test")
        await tx.create_doc("c", "s", {"n": 1})

        assert await store.find_all("c") == []
        await tx.commit()
        assert len(await store.find_all("c")) == 1

    async def test_discard_drops_writes(self, store):
        """A discarded transaction writes nothing and cannot commit."""
        tx = store.apply("test")
        await tx.create_doc("c", "s", {})
        tx.discard()

        assert await store.find_all("c") == []
        with pytest.raises(TransactionError):
            await tx.commit()

    async def test_failing_batch_leaves_no_trace(self, store):
        """One failing operation rolls back the whole batch."""
        tx = store.apply("test")
        await tx.create_doc("c", "s", {"n": 1})
        await tx.create_mixin("missing-doc", "c", "s", TRAIT, {"remote_id": "1"})

        with pytest.raises(DocumentNotFoundError):
            await tx.commit()
        assert await store.find_all("c") == []
        assert store.write_count == 0

    async def test_write_count_counts_applied_operations(self, store):
        """write_count grows by the number of committed operations."""
        tx = store.apply("test")
        doc_id = await tx.create_doc("c", "s", {})
        await tx.create_mixin(doc_id, "c", "s", TRAIT, {"remote_id": "1"})
        await tx.commit()

        assert store.write_count == 2


# ---------------------------------------------------------------------------
# JsonFileStore
# ---------------------------------------------------------------------------


class TestJsonFileStore:
    """Tests for the file-backed store."""

    async def test_persists_commits(self, tmp_path):
        """Documents and traits survive reopening the file."""
        path = tmp_path / "nested" / "store.json"
        store = JsonFileStore(path)
        doc_id = await store.create_doc("c", "s", {"title": "A"})
        await store.create_mixin(doc_id, "c", "s", TRAIT, {"remote_id": "7"})

        assert path.exists()
        reopened = JsonFileStore(path)
        doc = await reopened.find_one("c")
        assert doc.id == doc_id
        assert doc.data == {"title": "A"}
        assert await reopened.get_mixin(doc_id, TRAIT) == {"remote_id": "7"}

    async def test_leaves_no_temp_files(self, tmp_path):
        """Atomic writes clean up their temp files."""
        path = tmp_path / "store.json"
        store = JsonFileStore(path)
        await store.create_doc("c", "s", {})
        await store.create_doc("c", "s", {})

        assert [p.name for p in tmp_path.iterdir()] == ["store.json"]

    async def test_failed_save_keeps_memory_and_disk_in_step(self, tmp_path):
        """A commit whose file write fails changes neither memory nor disk."""
        path = tmp_path / "store.json"
        store = JsonFileStore(path)
        kept = await store.create_doc("c", "s", {"n": 1})

        tx = store.apply("test")
        await tx.create_doc("c", "s", {"n": 2})
        with patch(
            "crm_sync.store.json_store.os.replace", side_effect=OSError("disk full")
        ):
            with pytest.raises(OSError, match="disk full"):
                await tx.commit()

        assert [d.id for d in await store.find_all("c")] == [kept]
        assert store.write_count == 1
        assert [d.id for d in await JsonFileStore(path).find_all("c")] == [kept]
        assert [p.name for p in tmp_path.iterdir()] == ["store.json"]

    def test_rejects_unknown_version(self, tmp_path):
        """An unsupported format version is refused on load."""
        path = tmp_path / "store.json"
        path.write_text(json.dumps({"version": 99, "documents": [], "mixins": []}))

        with pytest.raises(StoreError, match="Unsupported store format"):
            JsonFileStore(path)

    def test_missing_file_is_empty(self, tmp_path):
        """A missing file opens as an empty store without creating it."""
        store = JsonFileStore(tmp_path / "absent.json")
        assert isinstance(store, MemoryStore)
        assert not (tmp_path / "absent.json").exists()
