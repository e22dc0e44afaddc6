"""Tests for inbound message classification."""

import json

import pytest

from changeflow.integration.classifier import (
    FOREIGN_FORMAT,
    MALFORMED_JSON,
    RECOGNIZED_BUT_MALFORMED,
    PayloadKind,
    classify_payload,
)


class TestRecognizedShapes:
    """Tests for the three known shapes."""

    def test_wrapped_preliminary(self, preliminary_json):
        result = classify_payload(preliminary_json("r-1", 3, task_id="task_1"))

        assert result.kind == PayloadKind.PRELIMINARY
        assert result.preliminary.retrieval_id == "r-1"
        assert result.preliminary.number_of_batches == 3
        assert result.preliminary.human_request_id == "task_1"

    def test_bare_preliminary(self):
        raw = json.dumps({"changesetId": "cs", "retrievalGuid": "r-2", "numberOfBatches": 2})
        assert classify_payload(raw).kind == PayloadKind.PRELIMINARY

    def test_preliminary_takes_priority_over_package(self):
        """A message matching several shapes takes the first in priority order."""
        raw = json.dumps({"changesetId": "cs", "retrievalGuid": "r", "numberOfBatches": 2, "fileChanges": []})
        assert classify_payload(raw).kind == PayloadKind.PRELIMINARY

    def test_zero_batches_is_not_preliminary(self):
        raw = json.dumps({"aiPreliminaryResponse": {"retrievalGuid": "r", "numberOfBatches": 0}})
        result = classify_payload(raw)
        assert result.kind == PayloadKind.UNRECOGNIZED
        assert result.diagnosis == RECOGNIZED_BUT_MALFORMED

    def test_batch_chunk_inherits_metadata(self, batch_json, file_change):
        raw = batch_json("r-1", 2, 3, [file_change("a.txt", b"a")])
        result = classify_payload(raw)

        assert result.kind == PayloadKind.BATCH_CHUNK
        assert result.batch.batch_number == 2
        assert result.package.retrieval_id == "r-1"
        assert result.package.batch_number == 2
        assert result.package.total_batches == 3
        assert result.package.changeset_id == "cs_batched"
        assert [c.path for c in result.package.file_changes] == ["a.txt"]

    def test_wrapped_direct_package(self, package_json, file_change):
        result = classify_payload(package_json("task_1", [file_change("a.txt", b"x")]))

        assert result.kind == PayloadKind.DIRECT_PACKAGE
        assert result.package.changeset_id == "cs_1"
        assert result.package.task_updates.new_status == "done"

    @pytest.mark.parametrize("key", ["changesetId", "aiChangesetId"])
    def test_bare_direct_package(self, key):
        raw = json.dumps({key: "cs_2", "fileChanges": []})
        result = classify_payload(raw)
        assert result.kind == PayloadKind.DIRECT_PACKAGE
        assert result.package.changeset_id == "cs_2"

    def test_markdown_fence_tolerated(self):
        raw = '```json\n{"changesetId": "cs_3"}\n```'
        assert classify_payload(raw).kind == PayloadKind.DIRECT_PACKAGE


class TestUnrecognized:
    """Tests for diagnoses of unrecognized messages."""

    def test_malformed_json(self):
        result = classify_payload("{oops")
        assert result.kind == PayloadKind.UNRECOGNIZED
        assert result.diagnosis == MALFORMED_JSON
        assert not result.is_recognized

    def test_foreign_object(self):
        result = classify_payload(json.dumps({"hello": "world"}))
        assert result.diagnosis == FOREIGN_FORMAT

    def test_top_level_array(self):
        result = classify_payload("[1, 2, 3]")
        assert result.diagnosis == FOREIGN_FORMAT

    def test_known_fields_without_shape(self):
        """fileChanges without a changeset id is ours, but malformed."""
        raw = json.dumps({"aiOutputPackage": {"fileChanges": []}})
        result = classify_payload(raw)
        assert result.kind == PayloadKind.UNRECOGNIZED
        assert result.diagnosis == RECOGNIZED_BUT_MALFORMED

    def test_invalid_field_types(self):
        """A changeset id with an unusable fileChanges value does not validate."""
        raw = json.dumps({"changesetId": "cs", "fileChanges": "not a list"})
        result = classify_payload(raw)
        assert result.diagnosis == RECOGNIZED_BUT_MALFORMED
