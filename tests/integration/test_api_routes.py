"""API tests through the FastAPI app with in-memory collaborators."""

import uuid
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from backend.app.main import app
from backend.app.services.wiring import build_companion

OTHER_USER = {"Authorization": f"Bearer {uuid.uuid4()}"}


@pytest.fixture
def client(monkeypatch, settings, store, storage, embedder, backend) -> Iterator[TestClient]:
    """Test client whose startup wires the in-memory collaborators."""

    async def build(_settings):
        return await build_companion(
            settings, store=store, storage=storage, embedder=embedder, backend=backend
        )

    monkeypatch.setattr("backend.app.main.build_companion", build)
    with TestClient(app) as test_client:
        yield test_client


def _ingest(client: TestClient, storage, pages: list[str]) -> uuid.UUID:
    document_id = uuid.uuid4()
    storage.put("books/book.txt", "\f".join(pages).encode("utf-8"))

    response = client.post(
        f"/documents/{document_id}/ingest", json={"storage_path": "books/book.txt"}
    )
    assert response.status_code == 202

    client.portal.call(client.app.state.companion.scheduler.wait_for, document_id)
    return document_id


@pytest.fixture
def document_id(client, storage) -> uuid.UUID:
    return _ingest(client, storage, ["The sky is blue.", "Water boils at 100C."])


def test_root(client) -> None:
    """Test root endpoint."""
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["message"] == "Reading Companion API"


def test_ingest_then_poll_status(client, storage) -> None:
    """Test that the ingest ack is queued and status converges to complete."""
    document_id = uuid.uuid4()
    storage.put("books/book.txt", b"The sky is blue.\fWater boils at 100C.")

    response = client.post(
        f"/documents/{document_id}/ingest", json={"storage_path": "books/book.txt"}
    )
    assert response.status_code == 202
    assert response.json() == {"document_id": str(document_id), "processing_state": "queued"}

    client.portal.call(client.app.state.companion.scheduler.wait_for, document_id)
    status = client.get(f"/documents/{document_id}/status").json()

    assert status["processing_state"] == "complete"
    assert status["total_pages"] == 2
    assert status["processing_detail"] == "2 pages, 2 chunks stored, 0 chunks skipped"


def test_status_of_failed_ingestion(client) -> None:
    """Test that a missing upload shows the error reason."""
    document_id = uuid.uuid4()

    client.post(f"/documents/{document_id}/ingest", json={"storage_path": "books/missing.pdf"})
    client.portal.call(client.app.state.companion.scheduler.wait_for, document_id)
    status = client.get(f"/documents/{document_id}/status").json()

    assert status["processing_state"] == "error"
    assert status["processing_detail"].startswith("download failed:")


def test_documents_are_private(client, document_id) -> None:
    """Test that other users cannot see or re-ingest a document."""
    assert client.get(f"/documents/{document_id}/status", headers=OTHER_USER).status_code == 404

    response = client.post(
        f"/documents/{document_id}/ingest",
        json={"storage_path": "books/book.txt"},
        headers=OTHER_USER,
    )
    assert response.status_code == 404

    response = client.post(
        f"/documents/{document_id}/ask",
        json={"query": "what color is the sky", "page_number": 1},
        headers=OTHER_USER,
    )
    assert response.status_code == 404


def test_unknown_document_and_bad_auth(client) -> None:
    """Test 404 for unknown ids and 401 for malformed credentials."""
    assert client.get(f"/documents/{uuid.uuid4()}/status").status_code == 404

    response = client.get(
        f"/documents/{uuid.uuid4()}/status", headers={"Authorization": "Token abc"}
    )
    assert response.status_code == 401


def test_ask(client, document_id) -> None:
    """Test a grounded answer with citations."""
    response = client.post(
        f"/documents/{document_id}/ask",
        json={"query": "what color is the sky", "page_number": 1, "scope": "page"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["context_used"] is True
    assert "sky is blue" in body["response"]
    assert [s["page_number"] for s in body["sources"]] == [1]
    assert body["sources"][0]["source"] == "vector"


def test_ask_validation(client, document_id) -> None:
    """Test request validation."""
    response = client.post(f"/documents/{document_id}/ask", json={"query": ""})
    assert response.status_code == 422

    response = client.post(
        f"/documents/{document_id}/ask", json={"query": "x", "scope": "chapter"}
    )
    assert response.status_code == 422


def test_quiz(client, document_id) -> None:
    """Test quiz generation from raw page text."""
    response = client.post(
        f"/documents/{document_id}/quiz", json={"page_number": 2, "n_questions": 3}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["context_used"] is False
    assert len(body["questions"]) == 3
    assert set(body["questions"][0]) == {"question", "options", "correct_index"}

    too_many = client.post(f"/documents/{document_id}/quiz", json={"n_questions": 11})
    assert too_many.status_code == 422


def test_quiz_without_page_uses_whole_document(client, document_id) -> None:
    """Test that a quiz request with no page is built from the document."""
    response = client.post(f"/documents/{document_id}/quiz", json={})

    assert response.status_code == 200
    body = response.json()
    assert body["context_used"] is False
    assert len(body["questions"]) == 3


def test_quiz_without_text_is_conflict(client) -> None:
    """Test 409 when the document has no extracted text."""
    document_id = uuid.uuid4()
    client.post(f"/documents/{document_id}/ingest", json={"storage_path": "books/missing.pdf"})
    client.portal.call(client.app.state.companion.scheduler.wait_for, document_id)

    response = client.post(f"/documents/{document_id}/quiz", json={"page_number": 1})

    assert response.status_code == 409
    assert response.json()["error"] == "no_context"


def test_quiz_parse_failure_is_bad_gateway(client, document_id, backend, monkeypatch) -> None:
    """Test 502 when the model returns no usable quiz."""

    async def prose(*args, **kwargs) -> str:
        return "I would rather not write a quiz."

    monkeypatch.setattr(backend, "complete", prose)

    response = client.post(f"/documents/{document_id}/quiz", json={"page_number": 1})

    assert response.status_code == 502
    assert response.json()["error"] == "quiz_parse_error"


def test_generation_failure_is_service_unavailable(
    client, document_id, backend, monkeypatch
) -> None:
    """Test 503 when the model provider is down."""

    async def down(*args, **kwargs) -> str:
        raise RuntimeError("provider unavailable")

    monkeypatch.setattr(backend, "complete", down)

    response = client.post(
        f"/documents/{document_id}/ask", json={"query": "what color is the sky", "page_number": 1}
    )

    assert response.status_code == 503
    assert response.json()["error"] == "generation_error"


def test_evaluate_accepts_camel_case_index(client, document_id) -> None:
    """Test evaluation with a question as the client stored it."""
    question = {
        "question": "At what temperature does water boil?",
        "options": ["50C", "100C", "150C", "200C"],
        "correctIndex": 1,
    }

    right = client.post(
        f"/documents/{document_id}/quiz/evaluate",
        json={"question": question, "chosen_index": 1, "page_number": 2},
    ).json()
    wrong = client.post(
        f"/documents/{document_id}/quiz/evaluate",
        json={"question": question, "chosen_index": 3, "page_number": 2},
    ).json()

    assert right["is_correct"] is True
    assert wrong["is_correct"] is False
    assert right["feedback"].startswith("Correct.")


def test_evaluate_rejects_out_of_range_choice(client, document_id) -> None:
    """Test chosen_index bounds."""
    question = {"question": "Q?", "options": ["a", "b", "c", "d"], "correct_index": 0}

    response = client.post(
        f"/documents/{document_id}/quiz/evaluate", json={"question": question, "chosen_index": 4}
    )

    assert response.status_code == 422


def test_explain(client, document_id) -> None:
    """Test explanation of a highlighted passage."""
    response = client.post(
        f"/documents/{document_id}/explain",
        json={"page_number": 2, "selected_text": "boils at 100C"},
    )

    assert response.status_code == 200
    assert "Water boils at 100C." in response.json()["response"]
