"""Shared fixtures for changeflow tests."""

import base64
import json
import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from changeflow.project_store import ProjectStore


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def project_root(tmp_path):
    """Empty project root directory."""
    root = tmp_path / "project"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def store(project_root):
    """Store with an initialized project document."""
    project_store = ProjectStore(project_root)
    project_store.initialize(project_name="demo")
    return project_store


@pytest.fixture
def write_file(project_root):
    """Write a file under the project root and return its path."""

    def _write(rel_path: str, content: bytes) -> Path:
        path = project_root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path

    return _write


@pytest.fixture
def file_change():
    """Build a camelCase file-change dict."""

    def _build(path, content=None, action="update", based_on=None):
        change = {"path": path, "action": action}
        if content is not None:
            change["contentBase64"] = b64(content)
        if based_on is not None:
            change["basedOnHash"] = based_on
        return change

    return _build


@pytest.fixture
def package_json():
    """Build a wrapped direct change package message."""

    def _build(task_id, changes, status="done", changeset_id="cs_1", ai_notes=None, roadmap=None):
        package = {
            "changesetId": changeset_id,
            "humanRequestId": task_id,
            "taskUpdates": {"taskId": task_id, "newStatus": status},
            "fileChanges": changes,
        }
        if status is None:
            del package["taskUpdates"]
        elif ai_notes:
            package["taskUpdates"]["aiNotes"] = ai_notes
        if roadmap:
            package["roadmapSuggestions"] = roadmap
        return json.dumps({"aiOutputPackage": package})

    return _build


@pytest.fixture
def preliminary_json():
    """Build a wrapped preliminary announcement."""

    def _build(retrieval_id, batches, task_id=None, changeset_id="cs_batched"):
        return json.dumps(
            {
                "aiPreliminaryResponse": {
                    "changesetId": changeset_id,
                    "humanRequestId": task_id,
                    "status": "processing_batched",
                    "numberOfBatches": batches,
                    "retrievalGuid": retrieval_id,
                }
            }
        )

    return _build


@pytest.fixture
def batch_json():
    """Build a wrapped batch chunk."""

    def _build(retrieval_id, number, total, changes, task_update=None, changeset_id="cs_batched"):
        payload = {"changesetId": changeset_id, "fileChanges": changes}
        if task_update is not None:
            payload["taskUpdates"] = task_update
        return json.dumps(
            {
                "aiBatchResponse": {
                    "retrievalGuid": retrieval_id,
                    "changesetId": changeset_id,
                    "batchNumber": number,
                    "totalBatches": total,
                    "isLastBatch": number == total,
                    "payloadType": "aiOutputPackage",
                    "payload": payload,
                }
            }
        )

    return _build
