"""Unit tests for lorekeeper.models.knowledge -- Source lifecycle, Fragment and value objects."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pydantic
import pytest

from lorekeeper.models.knowledge import (
    MAX_TITLE_LENGTH,
    Fragment,
    IngestionResult,
    SourceDeleted,
    SourceIngested,
    SourceKind,
    SourceStatus,
    TextChunk,
)
from lorekeeper.utils.errors import (
    AlreadyDeletedError,
    InvalidTransitionError,
    ValidationError,
)
from tests.conftest import make_fragment, make_source


# ======================================================================
# Source creation
# ======================================================================


class TestSourceCreate:
    def test_new_source_is_pending_without_id(self) -> None:
        source = make_source()
        assert source.id is None
        assert source.status == SourceStatus.PENDING
        assert source.error_message is None
        assert source.deleted_at is None
        assert source.metadata == {}

    def test_metadata_is_copied(self) -> None:
        meta = {"author": "HR"}
        source = make_source(metadata=meta)
        meta["author"] = "changed"
        assert source.metadata == {"author": "HR"}

    def test_blank_title_rejected(self) -> None:
        with pytest.raises(ValidationError, match="title"):
            make_source(title="   ")

    def test_title_at_limit_accepted(self) -> None:
        source = make_source(title="t" * MAX_TITLE_LENGTH)
        assert len(source.title) == MAX_TITLE_LENGTH

    def test_title_over_limit_rejected(self) -> None:
        with pytest.raises(ValidationError):
            make_source(title="t" * (MAX_TITLE_LENGTH + 1))

    def test_empty_content_rejected(self) -> None:
        with pytest.raises(ValidationError, match="content"):
            make_source(content="")

    def test_blank_tenant_rejected(self) -> None:
        with pytest.raises(ValidationError, match="tenant_id"):
            make_source(tenant_id=" ")

    def test_source_is_frozen(self) -> None:
        source = make_source()
        with pytest.raises(pydantic.ValidationError):
            source.title = "other"  # type: ignore[misc]


# ======================================================================
# Source lifecycle
# ======================================================================


class TestSourceTransitions:
    def test_happy_path_pending_processing_completed(self) -> None:
        source = make_source()
        processing = source.mark_processing()
        completed = processing.mark_completed()

        assert source.status == SourceStatus.PENDING
        assert processing.is_processing
        assert completed.is_completed
        assert completed.error_message is None

    def test_transitions_bump_updated_at(self) -> None:
        source = make_source()
        processing = source.mark_processing()
        assert processing.updated_at >= source.updated_at
        assert processing.created_at == source.created_at

    def test_mark_completed_requires_processing(self) -> None:
        with pytest.raises(InvalidTransitionError, match="PENDING"):
            make_source().mark_completed()

    def test_mark_completed_from_failed_rejected(self) -> None:
        failed = make_source().mark_processing().mark_failed("boom")
        with pytest.raises(InvalidTransitionError):
            failed.mark_completed()

    def test_mark_failed_records_reason(self) -> None:
        failed = make_source().mark_processing().mark_failed("embedder timed out")
        assert failed.is_failed
        assert failed.error_message == "embedder timed out"

    def test_mark_failed_allowed_from_pending(self) -> None:
        failed = make_source().mark_failed("parse error")
        assert failed.status == SourceStatus.FAILED

    def test_retry_clears_error_message(self) -> None:
        failed = make_source().mark_processing().mark_failed("boom")
        retried = failed.mark_processing()
        assert retried.is_processing
        assert retried.error_message is None

    def test_completed_may_be_reprocessed(self) -> None:
        completed = make_source().mark_processing().mark_completed()
        assert completed.mark_processing().is_processing

    def test_soft_delete_sets_deleted_at_and_status(self) -> None:
        deleted = make_source().mark_processing().mark_completed().soft_delete()
        assert deleted.is_deleted
        assert deleted.status == SourceStatus.DELETED
        assert deleted.deleted_at is not None

    def test_soft_delete_twice_raises(self) -> None:
        deleted = make_source().soft_delete()
        with pytest.raises(AlreadyDeletedError):
            deleted.soft_delete()

    @pytest.mark.parametrize(
        "transition",
        [
            lambda s: s.mark_processing(),
            lambda s: s.mark_completed(),
            lambda s: s.mark_failed("x"),
            lambda s: s.update_metadata({"k": "v"}),
        ],
    )
    def test_deleted_source_rejects_every_mutation(self, transition) -> None:
        deleted = make_source().soft_delete()
        with pytest.raises(AlreadyDeletedError):
            transition(deleted)

    def test_update_metadata_merges(self) -> None:
        source = make_source(metadata={"a": 1, "b": 2})
        updated = source.update_metadata({"b": 3, "c": 4})
        assert updated.metadata == {"a": 1, "b": 3, "c": 4}
        assert source.metadata == {"a": 1, "b": 2}


class TestSourceQueries:
    def test_belongs_to_tenant(self) -> None:
        source = make_source(tenant_id="acme")
        assert source.belongs_to_tenant("acme")
        assert not source.belongs_to_tenant("globex")

    def test_is_stale(self) -> None:
        source = make_source()
        later = source.updated_at + timedelta(days=31)
        assert source.is_stale(max_age_days=30, now=later)
        assert not source.is_stale(max_age_days=30, now=source.updated_at + timedelta(days=1))

    def test_is_stale_defaults_to_now(self) -> None:
        source = make_source().model_copy(
            update={"updated_at": datetime.now(timezone.utc) - timedelta(days=90)}
        )
        assert source.is_stale()


# ======================================================================
# Fragment
# ======================================================================


class TestFragment:
    def test_create_defaults_token_count(self) -> None:
        fragment = make_fragment("s1", content="x" * 41)
        assert fragment.token_count == 11  # ceil(41 / 4)

    def test_explicit_token_count_kept(self) -> None:
        fragment = make_fragment("s1", token_count=7)
        assert fragment.token_count == 7

    def test_content_shorter_than_minimum_rejected(self) -> None:
        with pytest.raises(ValidationError, match="position 0"):
            make_fragment("s1", content="too short")

    def test_blank_content_rejected(self) -> None:
        with pytest.raises(ValidationError):
            make_fragment("s1", content=" " * 20)

    def test_negative_position_rejected(self) -> None:
        with pytest.raises(ValidationError):
            make_fragment("s1", position=-1)

    def test_zero_token_count_rejected(self) -> None:
        with pytest.raises(ValidationError):
            make_fragment("s1", token_count=0)

    def test_belongs_to_source(self) -> None:
        fragment = make_fragment("s1")
        assert fragment.belongs_to_source("s1")
        assert not fragment.belongs_to_source("s2")

    def test_update_metadata(self) -> None:
        fragment = make_fragment("s1", metadata={"start_index": 0})
        updated = fragment.update_metadata({"end_index": 40})
        assert updated.metadata == {"start_index": 0, "end_index": 40}

    def test_estimate_token_count_minimum_is_one(self) -> None:
        assert Fragment.estimate_token_count("") == 1
        assert Fragment.estimate_token_count("abcd") == 1
        assert Fragment.estimate_token_count("abcde") == 2


# ======================================================================
# Value objects and events
# ======================================================================


class TestValueObjects:
    def test_text_chunk_rejects_negative_offsets(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            TextChunk(content="abc", position=0, tokens=1, start_index=-1, end_index=3)

    def test_ingestion_result_serializes_status_as_string(self) -> None:
        result = IngestionResult(
            source_id="s1",
            title="T",
            fragment_count=2,
            content_size=10,
            status=SourceStatus.COMPLETED,
        )
        assert result.model_dump(mode="json")["status"] == "COMPLETED"

    def test_events_carry_type_tags(self) -> None:
        ingested = SourceIngested(source_id="s1", tenant_id="t", title="T", fragment_count=1)
        deleted = SourceDeleted(
            source_id="s1", tenant_id="t", fragments_deleted=1, vectors_deleted=True
        )
        assert ingested.event_type == "source.ingested"
        assert deleted.event_type == "source.deleted"
        assert ingested.occurred_at.tzinfo is not None

    def test_source_kind_values(self) -> None:
        assert {k.value for k in SourceKind} == {"PDF", "MARKDOWN", "URL", "TEXT"}
