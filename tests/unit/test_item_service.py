"""
Unit tests for the item ordering and mutation service.

Tests cover:
- Line number assignment and gap tolerance
- Key/value length validation and namespace overrides
- Soft delete and batch delete
- Audit emission and rollback on audit failure
- Namespace-triple lookups
"""

import asyncio
import sqlite3
import tempfile
import threading
from pathlib import Path

import pytest

from dbaas.confdb_server.config import LimitsConfig
from dbaas.confdb_server.errors import BadRequestError, NotFoundError
from dbaas.confdb_server.service import ItemService
from dbaas.confdb_server.store import (
    AuditOp,
    AuditStore,
    Database,
    Item,
    ItemStore,
    NamespaceStore,
)


class FailingAuditStore(AuditStore):
    """Audit store whose writes always fail."""

    async def audit(self, conn, entity_name, entity_id, op, operator):
        raise sqlite3.OperationalError("audit log unavailable")


@pytest.fixture
def db():
    """Create an initialized database in a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        database = Database(Path(tmpdir) / "confdb.db", wal_mode=False)
        database.initialize()
        yield database


@pytest.fixture
def audits(db):
    return AuditStore(db)


@pytest.fixture
def namespaces(db, audits):
    return NamespaceStore(db, audits)


@pytest.fixture
def limits():
    return LimitsConfig(key_length_limit=8, value_length_limit=100, value_length_overrides={2: 10})


@pytest.fixture
def service(db, namespaces, audits, limits):
    return ItemService(db, ItemStore(db), namespaces, audits, limits)


class TestLineNumbers:
    """Tests for automatic line number assignment."""

    @pytest.mark.asyncio
    async def test_first_item_gets_line_one(self, service):
        """Empty namespace starts at line 1."""
        item = await service.save(Item(namespace_id=1, key="a", value="1", created_by="alice"))

        assert item.line_num == 1
        assert item.id > 0

    @pytest.mark.asyncio
    async def test_sequential_inserts_are_contiguous(self, service):
        """N inserts with unset line numbers get 1..N in order."""
        items = []
        for i in range(5):
            items.append(
                await service.save(Item(namespace_id=1, key=f"k{i}", value=str(i)))
            )

        assert [item.line_num for item in items] == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_explicit_line_number_is_kept(self, service):
        """A caller-supplied line number is not replaced."""
        item = await service.save(Item(namespace_id=1, key="a", line_num=7))
        assert item.line_num == 7

        following = await service.save(Item(namespace_id=1, key="b"))
        assert following.line_num == 8

    @pytest.mark.asyncio
    async def test_namespaces_are_numbered_independently(self, service):
        """Line numbers are per namespace."""
        await service.save(Item(namespace_id=1, key="a"))
        await service.save(Item(namespace_id=1, key="b"))
        other = await service.save(Item(namespace_id=3, key="a"))

        assert other.line_num == 1

    @pytest.mark.asyncio
    async def test_deleted_line_number_is_not_reused(self, service):
        """Deleting a middle item leaves a gap that is never refilled."""
        a = await service.save(Item(namespace_id=1, key="a"))
        b = await service.save(Item(namespace_id=1, key="b"))
        c = await service.save(Item(namespace_id=1, key="c"))

        await service.delete(b.id, "bob")

        remaining = await service.find_items_with_ordered(1)
        assert [(i.key, i.line_num) for i in remaining] == [("a", 1), ("c", 3)]

        d = await service.save(Item(namespace_id=1, key="d"))
        assert d.line_num == 4
        assert a.line_num == 1 and c.line_num == 3

    def test_concurrent_inserts_get_distinct_line_numbers(self, db, limits):
        """Writers on separate connections never share a line number."""
        workers, per_worker = 4, 15
        start = threading.Barrier(workers)
        results: list[list[Item]] = [[] for _ in range(workers)]
        errors: list[BaseException] = []

        async def insert_batch(index: int) -> None:
            audits = AuditStore(db)
            service = ItemService(
                db, ItemStore(db), NamespaceStore(db, audits), audits, limits
            )
            for i in range(per_worker):
                results[index].append(
                    await service.save(Item(namespace_id=1, key=f"w{index}-{i}"))
                )

        def run(index: int) -> None:
            try:
                start.wait()
                asyncio.run(insert_batch(index))
            except BaseException as e:
                errors.append(e)

        threads = [threading.Thread(target=run, args=(i,)) for i in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        line_nums = sorted(item.line_num for batch in results for item in batch)
        assert line_nums == list(range(1, workers * per_worker + 1))
        for batch in results:
            assert [item.line_num for item in batch] == sorted(
                item.line_num for item in batch
            )


class TestIdProtection:
    """Tests for id sanitization on insert."""

    @pytest.mark.asyncio
    async def test_supplied_id_is_ignored(self, service):
        """Insert never reuses a caller-supplied id."""
        first = await service.save(Item(namespace_id=1, key="a"))

        spoofed = await service.save(Item(namespace_id=1, key="b", id=first.id))

        assert spoofed.id != first.id
        original = await service.find_by_id(first.id)
        assert original.key == "a"

    @pytest.mark.asyncio
    async def test_supplied_id_ignored_for_comment(self, service):
        """Comment inserts also get a fresh id."""
        comment = await service.save_comment(Item(namespace_id=1, id=999, comment="# header"))
        assert comment.id != 999


class TestValidation:
    """Tests for key/value length limits."""

    @pytest.mark.asyncio
    async def test_value_at_limit_is_accepted(self, service):
        item = await service.save(Item(namespace_id=1, key="a", value="x" * 100))
        assert len(item.value) == 100

    @pytest.mark.asyncio
    async def test_value_over_limit_is_rejected(self, service):
        """limit + 1 fails and writes nothing."""
        with pytest.raises(BadRequestError) as exc_info:
            await service.save(Item(namespace_id=1, key="a", value="x" * 101))

        assert exc_info.value.limit == 100
        assert "length limit:100" in str(exc_info.value)
        assert await service.count_items(1) == 0

    @pytest.mark.asyncio
    async def test_key_over_limit_is_rejected(self, service):
        with pytest.raises(BadRequestError) as exc_info:
            await service.save(Item(namespace_id=1, key="k" * 9))

        assert exc_info.value.field_name == "key"
        assert exc_info.value.code == "BAD_REQUEST"

    @pytest.mark.asyncio
    async def test_key_at_limit_is_accepted(self, service):
        item = await service.save(Item(namespace_id=2, key="k" * 8))
        assert item.key == "k" * 8

    @pytest.mark.asyncio
    async def test_namespace_override_takes_precedence(self, service):
        """Override of 10 rejects a value the global limit would accept."""
        with pytest.raises(BadRequestError) as exc_info:
            await service.save(Item(namespace_id=2, key="a", value="x" * 50))
        assert exc_info.value.limit == 10

        item = await service.save(Item(namespace_id=1, key="a", value="x" * 50))
        assert item.id > 0

    @pytest.mark.asyncio
    async def test_update_checks_value_limit(self, service):
        item = await service.save(Item(namespace_id=2, key="a", value="short"))

        item.value = "x" * 11
        with pytest.raises(BadRequestError):
            await service.update(item)

        fetched = await service.find_by_id(item.id)
        assert fetched.value == "short"

    @pytest.mark.asyncio
    async def test_update_uses_stored_namespace_limit(self, service, audits):
        """A mismatched namespace_id cannot dodge the stored namespace's override."""
        item = await service.save(Item(namespace_id=2, key="a", value="short"))

        with pytest.raises(BadRequestError) as exc_info:
            await service.update(Item(namespace_id=1, id=item.id, key="a", value="x" * 50))

        assert exc_info.value.limit == 10
        fetched = await service.find_by_id(item.id)
        assert fetched.namespace_id == 2
        assert fetched.value == "short"
        assert [e.op for e in await audits.find_audits("Item", item.id)] == [AuditOp.INSERT]

    @pytest.mark.asyncio
    async def test_update_checks_key_limit(self, service):
        item = await service.save(Item(namespace_id=1, key="a", value="1"))

        with pytest.raises(BadRequestError) as exc_info:
            await service.update(Item(namespace_id=1, id=item.id, key="k" * 500, value="1"))

        assert exc_info.value.field_name == "key"
        assert (await service.find_by_id(item.id)).key == "a"

    @pytest.mark.asyncio
    async def test_empty_strings_always_accepted(self, db, namespaces, audits):
        """Empty key/value pass even with the smallest limits."""
        tight = LimitsConfig(key_length_limit=1, value_length_limit=1)
        service = ItemService(db, ItemStore(db), namespaces, audits, tight)

        item = await service.save(Item(namespace_id=1, key="", value=""))
        assert item.id > 0


class TestComments:
    """Tests for comment-only items."""

    @pytest.mark.asyncio
    async def test_comment_forces_empty_key_and_value(self, service, audits):
        item = await service.save_comment(
            Item(namespace_id=1, key="ignored", value="y" * 500, comment="# db settings")
        )

        assert item.key == ""
        assert item.value == ""
        assert item.comment == "# db settings"
        assert item.line_num == 1

        entries = await audits.find_audits("Item", item.id)
        assert [e.op for e in entries] == [AuditOp.INSERT]

    @pytest.mark.asyncio
    async def test_comment_takes_next_line_number(self, service):
        await service.save(Item(namespace_id=1, key="a"))
        comment = await service.save_comment(Item(namespace_id=1, comment="# note"))
        assert comment.line_num == 2


class TestUpdate:
    """Tests for ItemService.update."""

    @pytest.mark.asyncio
    async def test_update_changes_content_only(self, service, audits):
        item = await service.save(
            Item(namespace_id=1, key="a", value="1", comment="c", created_by="alice")
        )

        changed = Item(
            namespace_id=1,
            id=item.id,
            key="a",
            value="2",
            comment="updated",
            line_num=99,
            last_modified_by="bob",
        )
        updated = await service.update(changed)

        assert updated.value == "2"
        assert updated.comment == "updated"
        assert updated.line_num == item.line_num
        assert updated.created_by == "alice"
        assert updated.last_modified_by == "bob"

        entries = await audits.find_audits("Item", item.id)
        assert [(e.op, e.operator) for e in entries] == [
            (AuditOp.INSERT, "alice"),
            (AuditOp.UPDATE, "bob"),
        ]

    @pytest.mark.asyncio
    async def test_update_missing_item_raises(self, service, audits):
        with pytest.raises(NotFoundError):
            await service.update(Item(namespace_id=1, id=12345, key="a", value="1"))

        assert await audits.count() == 0

    @pytest.mark.asyncio
    async def test_update_deleted_item_raises(self, service):
        item = await service.save(Item(namespace_id=1, key="a"))
        await service.delete(item.id, "bob")

        with pytest.raises(NotFoundError):
            await service.update(Item(namespace_id=1, id=item.id, key="a", value="x"))


class TestDelete:
    """Tests for soft delete."""

    @pytest.mark.asyncio
    async def test_deleted_item_hidden_but_retrievable_by_id(self, service):
        item = await service.save(Item(namespace_id=1, key="a", value="1"))

        deleted = await service.delete(item.id, "bob")

        assert deleted.deleted is True
        assert deleted.last_modified_by == "bob"
        assert await service.find_one(1, "a") is None

        by_id = await service.find_by_id(item.id)
        assert by_id is not None
        assert by_id.deleted is True

    @pytest.mark.asyncio
    async def test_delete_records_audit(self, service, audits):
        item = await service.save(Item(namespace_id=1, key="a", created_by="alice"))

        await service.delete(item.id, "bob")

        entries = await audits.find_audits("Item", item.id)
        assert entries[-1].op == AuditOp.DELETE
        assert entries[-1].operator == "bob"

    @pytest.mark.asyncio
    async def test_delete_missing_item_raises(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            await service.delete(404, "bob")

        assert "item not exist" in str(exc_info.value)
        assert exc_info.value.code == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_batch_delete(self, service, audits):
        """Bulk delete returns the count and writes no per-item audits."""
        for key in ("a", "b", "c"):
            await service.save(Item(namespace_id=1, key=key))
        await service.save(Item(namespace_id=3, key="a"))
        audits_before = await audits.count()

        count = await service.batch_delete(1, "ops")

        assert count == 3
        assert await service.find_items_with_ordered(1) == []
        assert len(await service.find_items_with_ordered(3)) == 1
        assert await audits.count() == audits_before

    @pytest.mark.asyncio
    async def test_batch_delete_skips_already_deleted(self, service):
        a = await service.save(Item(namespace_id=1, key="a"))
        await service.save(Item(namespace_id=1, key="b"))
        await service.delete(a.id, "bob")

        assert await service.batch_delete(1, "ops") == 1
        assert await service.batch_delete(1, "ops") == 0


class TestAuditAtomicity:
    """Tests that writes and audits commit together."""

    @pytest.fixture
    def failing_service(self, db, namespaces, limits):
        return ItemService(db, ItemStore(db), namespaces, FailingAuditStore(db), limits)

    @pytest.mark.asyncio
    async def test_insert_rolled_back_when_audit_fails(self, failing_service, service):
        with pytest.raises(sqlite3.OperationalError):
            await failing_service.save(Item(namespace_id=1, key="a"))

        assert await service.count_items(1) == 0

    @pytest.mark.asyncio
    async def test_delete_rolled_back_when_audit_fails(self, failing_service, service):
        item = await service.save(Item(namespace_id=1, key="a"))

        with pytest.raises(sqlite3.OperationalError):
            await failing_service.delete(item.id, "bob")

        fetched = await service.find_by_id(item.id)
        assert fetched.deleted is False

    @pytest.mark.asyncio
    async def test_update_rolled_back_when_audit_fails(self, failing_service, service):
        item = await service.save(Item(namespace_id=1, key="a", value="old"))

        with pytest.raises(sqlite3.OperationalError):
            await failing_service.update(
                Item(namespace_id=1, id=item.id, key="a", value="new")
            )

        fetched = await service.find_by_id(item.id)
        assert fetched.value == "old"

    @pytest.mark.asyncio
    async def test_one_audit_per_mutation(self, service, audits):
        item = await service.save(Item(namespace_id=1, key="a", created_by="alice"))
        await service.update(
            Item(namespace_id=1, id=item.id, key="a", value="2", last_modified_by="bob")
        )
        await service.delete(item.id, "carol")

        entries = await audits.find_audits("Item", item.id)
        assert [e.op for e in entries] == [AuditOp.INSERT, AuditOp.UPDATE, AuditOp.DELETE]
        assert all(e.entity_id == item.id for e in entries)


class TestNamespaceLookups:
    """Tests for operations addressed by app/cluster/namespace."""

    @pytest.mark.asyncio
    async def test_find_one_by_triple(self, service, namespaces):
        ns = await namespaces.create_namespace("app1", "default", "application", "alice")
        await service.save(Item(namespace_id=ns.id, key="timeout", value="30"))

        item = await service.find_one_in("app1", "default", "application", "timeout")

        assert item is not None
        assert item.value == "30"

    @pytest.mark.asyncio
    async def test_find_one_unknown_namespace_raises(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            await service.find_one_in("app1", "default", "missing", "timeout")

        assert "namespace not found for app1 default missing" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_find_last_one_by_triple(self, service, namespaces):
        ns = await namespaces.create_namespace("app1", "default", "application", "alice")
        assert await service.find_last_one_in("app1", "default", "application") is None

        await service.save(Item(namespace_id=ns.id, key="a"))
        last = await service.save(Item(namespace_id=ns.id, key="b"))

        found = await service.find_last_one_in("app1", "default", "application")
        assert found.id == last.id

    @pytest.mark.asyncio
    async def test_find_last_one_unknown_namespace_raises(self, service):
        with pytest.raises(NotFoundError):
            await service.find_last_one_in("app1", "default", "missing")

    @pytest.mark.asyncio
    async def test_lists_empty_for_unknown_namespace(self, service):
        assert await service.find_items_with_ordered_in("app1", "default", "missing") == []
        assert await service.find_items_without_ordered_in("app1", "default", "missing") == []

    @pytest.mark.asyncio
    async def test_ordered_and_unordered_lists(self, service, namespaces):
        ns = await namespaces.create_namespace("app1", "default", "application", "alice")
        await service.save(Item(namespace_id=ns.id, key="late", line_num=10))
        await service.save(Item(namespace_id=ns.id, key="early", line_num=2))

        unordered = await service.find_items_without_ordered_in("app1", "default", "application")
        ordered = await service.find_items_with_ordered_in("app1", "default", "application")

        assert [i.key for i in unordered] == ["late", "early"]
        assert [i.key for i in ordered] == ["early", "late"]
