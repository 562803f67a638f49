"""Unit tests for the SQLite knowledge repository."""

from __future__ import annotations

import asyncio
import uuid

import pytest

from lorekeeper.models.knowledge import SourceKind, SourceStatus
from lorekeeper.utils.errors import RepositoryError
from tests.conftest import make_fragment, make_source


class TestSources:
    @pytest.mark.asyncio
    async def test_save_assigns_id_and_round_trips(self, repository) -> None:
        source = make_source(metadata={"pages": 3, "tags": ["hr"]})
        saved = await repository.save_source(source)

        assert saved.id is not None
        uuid.UUID(saved.id)

        loaded = await repository.find_source_by_id(saved.id)
        assert loaded is not None
        assert loaded.title == source.title
        assert loaded.source_kind == SourceKind.TEXT
        assert loaded.metadata == {"pages": 3, "tags": ["hr"]}
        assert loaded.status == SourceStatus.PENDING
        assert loaded.created_at == saved.created_at

    @pytest.mark.asyncio
    async def test_save_existing_updates_in_place(self, repository) -> None:
        saved = await repository.save_source(make_source())
        failed = await repository.save_source(saved.mark_failed("parse error"))

        assert failed.id == saved.id
        loaded = await repository.find_source_by_id(saved.id)
        assert loaded.status == SourceStatus.FAILED
        assert loaded.error_message == "parse error"

    @pytest.mark.asyncio
    async def test_find_missing_source_returns_none(self, repository) -> None:
        assert await repository.find_source_by_id(str(uuid.uuid4())) is None

    @pytest.mark.asyncio
    async def test_find_by_tenant_excludes_deleted_by_default(self, repository) -> None:
        kept = await repository.save_source(make_source(title="kept"))
        gone = await repository.save_source(make_source(title="gone"))
        await repository.save_source(make_source(title="other", tenant_id="tenant-b"))
        assert await repository.soft_delete_source(gone.id)

        visible = await repository.find_sources_by_tenant("tenant-a")
        everything = await repository.find_sources_by_tenant("tenant-a", include_deleted=True)

        assert [s.id for s in visible] == [kept.id]
        assert {s.id for s in everything} == {kept.id, gone.id}
        assert await repository.count_sources_by_tenant("tenant-a") == 1

    @pytest.mark.asyncio
    async def test_find_by_status_and_all(self, repository) -> None:
        done = await repository.save_source(make_source().mark_processing().mark_completed())
        await repository.save_source(make_source().mark_processing())

        completed = await repository.find_sources_by_status(SourceStatus.COMPLETED)
        assert [s.id for s in completed] == [done.id]
        assert len(await repository.find_all_sources()) == 2

    @pytest.mark.asyncio
    async def test_soft_delete_is_conditional(self, repository) -> None:
        saved = await repository.save_source(make_source())

        assert await repository.soft_delete_source(saved.id) is True
        assert await repository.soft_delete_source(saved.id) is False

        loaded = await repository.find_source_by_id(saved.id)
        assert loaded.is_deleted
        assert loaded.status == SourceStatus.DELETED

    @pytest.mark.asyncio
    async def test_soft_delete_unknown_source(self, repository) -> None:
        assert await repository.soft_delete_source(str(uuid.uuid4())) is False

    @pytest.mark.asyncio
    async def test_hard_delete_removes_fragments(self, repository) -> None:
        saved = await repository.save_source(make_source())
        await repository.save_fragments([make_fragment(saved.id, 0), make_fragment(saved.id, 1)])

        assert await repository.delete_source(saved.id) is True
        assert await repository.find_source_by_id(saved.id) is None
        assert await repository.count_fragments_by_source(saved.id) == 0


class TestFragments:
    @pytest.mark.asyncio
    async def test_save_and_find_ordered_by_position(self, repository) -> None:
        source = await repository.save_source(make_source())
        saved = await repository.save_fragments(
            [make_fragment(source.id, p, metadata={"start_index": p * 10}) for p in (2, 0, 1)]
        )

        assert all(f.id for f in saved)
        found = await repository.find_fragments_by_source(source.id)
        assert [f.position for f in found] == [0, 1, 2]
        assert found[2].metadata == {"start_index": 20}

        single = await repository.find_fragment_by_id(saved[0].id)
        assert single is not None
        assert single.position == 2

    @pytest.mark.asyncio
    async def test_save_empty_list(self, repository) -> None:
        assert await repository.save_fragments([]) == []

    @pytest.mark.asyncio
    async def test_duplicate_position_rejected(self, repository) -> None:
        source = await repository.save_source(make_source())
        with pytest.raises(RepositoryError):
            await repository.save_fragments(
                [make_fragment(source.id, 0), make_fragment(source.id, 0)]
            )

    @pytest.mark.asyncio
    async def test_fragment_requires_existing_source(self, repository) -> None:
        with pytest.raises(RepositoryError):
            await repository.save_fragments([make_fragment(str(uuid.uuid4()), 0)])

    @pytest.mark.asyncio
    async def test_delete_and_count(self, repository) -> None:
        source = await repository.save_source(make_source())
        await repository.save_fragments([make_fragment(source.id, p) for p in range(4)])

        assert await repository.count_fragments_by_source(source.id) == 4
        assert await repository.delete_fragments_by_source(source.id) == 4
        assert await repository.count_fragments_by_source(source.id) == 0
        assert await repository.delete_fragments_by_source(source.id) == 0


class TestTransactions:
    @pytest.mark.asyncio
    async def test_commit_persists_all_writes(self, repository) -> None:
        source = await repository.save_source(make_source())
        await repository.save_fragments([make_fragment(source.id, p) for p in range(2)])

        async def work() -> int:
            removed = await repository.delete_fragments_by_source(source.id)
            await repository.soft_delete_source(source.id)
            return removed

        assert await repository.transaction(work) == 2
        assert await repository.count_fragments_by_source(source.id) == 0
        assert (await repository.find_source_by_id(source.id)).is_deleted

    @pytest.mark.asyncio
    async def test_exception_rolls_back_all_writes(self, repository) -> None:
        source = await repository.save_source(make_source())
        await repository.save_fragments([make_fragment(source.id, p) for p in range(2)])

        async def work() -> None:
            await repository.delete_fragments_by_source(source.id)
            await repository.soft_delete_source(source.id)
            raise RuntimeError("crash mid-transaction")

        with pytest.raises(RuntimeError, match="crash"):
            await repository.transaction(work)

        assert await repository.count_fragments_by_source(source.id) == 2
        assert not (await repository.find_source_by_id(source.id)).is_deleted

    @pytest.mark.asyncio
    async def test_nested_transaction_joins_outer(self, repository) -> None:
        source = await repository.save_source(make_source())
        await repository.save_fragments([make_fragment(source.id, 0)])

        async def inner() -> int:
            return await repository.delete_fragments_by_source(source.id)

        async def outer() -> None:
            await repository.transaction(inner)
            raise RuntimeError("outer fails")

        with pytest.raises(RuntimeError):
            await repository.transaction(outer)

        assert await repository.count_fragments_by_source(source.id) == 1

    @pytest.mark.asyncio
    async def test_concurrent_tasks_do_not_share_transaction(self, repository) -> None:
        first = await repository.save_source(make_source(title="first"))
        second = await repository.save_source(make_source(title="second"))

        async def delete_first() -> None:
            await repository.soft_delete_source(first.id)
            raise RuntimeError("first fails")

        async def delete_second() -> bool:
            return await repository.soft_delete_source(second.id)

        results = await asyncio.gather(
            repository.transaction(delete_first),
            repository.transaction(delete_second),
            return_exceptions=True,
        )

        assert isinstance(results[0], RuntimeError)
        assert results[1] is True
        assert not (await repository.find_source_by_id(first.id)).is_deleted
        assert (await repository.find_source_by_id(second.id)).is_deleted

    def test_provider_name(self, tmp_path) -> None:
        from lorekeeper.providers.repository.sqlite_knowledge_repository import (
            SQLiteKnowledgeRepository,
        )

        assert SQLiteKnowledgeRepository(tmp_path / "k.db").get_provider_name() == "sqlite_knowledge"
