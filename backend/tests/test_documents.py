import hashlib

from intake.config import settings

USER = {"X-User-Id": "user-1"}
OTHER_USER = {"X-User-Id": "user-2"}

RENTAL_TEXT = (
    "Der Vermieter und der Mieter vereinbaren die Miete für die Wohnung an der Bahnhofstrasse. "
    "Die Kaution ist vor dem Einzug zu bezahlen und die Kündigungsfrist beträgt drei Monate."
)


def _upload(client, name, content, mime="text/plain", headers=USER, **data):
    return client.post(
        "/api/v1/documents",
        files={"file": (name, content, mime)},
        data=data,
        headers=headers,
    )


class TestUpload:
    def test_upload_creates_document_and_first_version(self, client):
        r = _upload(client, "Mietvertrag_Zuerich.txt", RENTAL_TEXT.encode())
        assert r.status_code == 201
        data = r.json()
        doc = data["document"]
        assert data["version_number"] == 1
        assert data["linked"] is False
        assert doc["document_type"] == "rental_contract"
        assert doc["confidence"] >= 0.8
        assert doc["requires_review"] is False
        assert doc["language"] == "de"
        assert doc["tags"] == ["housing", "contract"]
        assert doc["processing_status"] == "completed"
        assert len(doc["file_hash"]) == 64  # SHA-256 hex
        assert doc["text_metadata"]["source"] == "plain_text"
        assert doc["text_metadata"]["classification_source"] == "keywords"

    def test_duplicate_upload_rejected_with_reference(self, client):
        content = RENTAL_TEXT.encode()
        first = _upload(client, "lease.txt", content)
        r = _upload(client, "lease_copy.txt", content)
        assert r.status_code == 409
        detail = r.json()["detail"]
        assert detail["existing_document_id"] == first.json()["document"]["id"]
        assert detail["existing_file_name"] == "lease.txt"

    def test_same_content_allowed_for_other_user(self, client):
        content = RENTAL_TEXT.encode()
        assert _upload(client, "lease.txt", content).status_code == 201
        assert _upload(client, "lease.txt", content, headers=OTHER_USER).status_code == 201

    def test_empty_file_rejected(self, client):
        r = _upload(client, "empty.txt", b"")
        assert r.status_code == 400

    def test_unsupported_type_rejected(self, client):
        r = _upload(client, "archive.zip", b"PK\x03\x04", mime="application/zip")
        assert r.status_code == 415

    def test_oversized_file_rejected(self, client, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 16)
        r = _upload(client, "big.txt", b"x" * 64)
        assert r.status_code == 413

    def test_missing_user_header(self, client):
        r = client.post("/api/v1/documents", files={"file": ("a.txt", b"hello", "text/plain")})
        assert r.status_code == 422

    def test_invalid_document_type(self, client):
        r = _upload(client, "a.txt", b"hello world", document_type="spaceship")
        assert r.status_code == 400

    def test_document_type_override(self, client):
        r = _upload(client, "scan.txt", b"nothing useful in here at all", document_type="residence_permit")
        doc = r.json()["document"]
        assert doc["document_type"] == "residence_permit"
        assert doc["confidence"] == 1.0
        assert doc["requires_review"] is False
        assert set(["legal", "residence", "official"]).issubset(doc["tags"])

    def test_unreadable_upload_is_stored_and_flagged(self, client):
        r = _upload(client, "photo.png", b"\x89PNG not really an image", mime="image/png")
        assert r.status_code == 201
        doc = r.json()["document"]
        assert doc["requires_review"] is True
        assert doc["processing_status"] == "completed"
        assert doc["text_metadata"]["has_text"] is False

    def test_octet_stream_resolved_from_extension(self, client):
        r = _upload(client, "notes.txt", b"plain notes about the apartment", mime="application/octet-stream")
        assert r.status_code == 201
        assert r.json()["document"]["mime_type"] == "text/plain"


class TestProcess:
    def test_dry_run_does_not_store(self, client):
        r = client.post(
            "/api/v1/documents/process",
            files={"file": ("Mietvertrag.txt", RENTAL_TEXT.encode(), "text/plain")},
            headers=USER,
        )
        assert r.status_code == 200
        data = r.json()
        assert data["classification"]["document_type"] == "rental_contract"
        assert data["classification"]["source"] == "keywords"
        assert data["extracted_text"].startswith("Der Vermieter")
        assert data["file_hash"] == hashlib.sha256(RENTAL_TEXT.encode()).hexdigest()

        assert client.get("/api/v1/documents", headers=USER).json() == []


class TestDocumentCrud:
    def test_list_only_own_documents(self, client):
        _upload(client, "a.txt", b"first document text")
        _upload(client, "b.txt", b"second document text")
        _upload(client, "c.txt", b"someone else", headers=OTHER_USER)

        r = client.get("/api/v1/documents", headers=USER)
        assert r.status_code == 200
        assert len(r.json()) == 2

    def test_get_document_detail(self, client):
        doc_id = _upload(client, "a.txt", b"first document text").json()["document"]["id"]
        r = client.get(f"/api/v1/documents/{doc_id}", headers=USER)
        assert r.status_code == 200
        assert r.json()["extracted_text"] == "first document text"
        assert r.json()["current_version"] == 1

    def test_other_user_cannot_read(self, client):
        doc_id = _upload(client, "a.txt", b"first document text").json()["document"]["id"]
        r = client.get(f"/api/v1/documents/{doc_id}", headers=OTHER_USER)
        assert r.status_code == 404

    def test_patch_retags_and_clears_review(self, client):
        doc_id = _upload(client, "scan.txt", b"unclassifiable words").json()["document"]["id"]
        r = client.patch(
            f"/api/v1/documents/{doc_id}",
            json={"document_type": "bank_documents"},
            headers=USER,
        )
        assert r.status_code == 200
        data = r.json()
        assert data["document_type"] == "bank_documents"
        assert data["tags"] == ["financial", "bank"]
        assert data["requires_review"] is False

    def test_patch_rejects_unknown_tag(self, client):
        doc_id = _upload(client, "scan.txt", b"unclassifiable words").json()["document"]["id"]
        r = client.patch(f"/api/v1/documents/{doc_id}", json={"tags": ["secret"]}, headers=USER)
        assert r.status_code == 400

    def test_soft_delete(self, client):
        content = b"soon to be deleted"
        doc_id = _upload(client, "gone.txt", content).json()["document"]["id"]

        r = client.delete(f"/api/v1/documents/{doc_id}", headers=USER)
        assert r.status_code == 200
        assert client.get("/api/v1/documents", headers=USER).json() == []
        assert client.get(f"/api/v1/documents/{doc_id}", headers=USER).status_code == 404

        # Deleted documents no longer count as duplicates
        assert _upload(client, "gone.txt", content).status_code == 201

    def test_download_and_verify(self, client):
        content = b"my lease contract content"
        doc_id = _upload(client, "lease.txt", content).json()["document"]["id"]

        r = client.get(f"/api/v1/documents/{doc_id}/download", headers=USER)
        assert r.status_code == 200
        assert r.content == content

        r = client.get(f"/api/v1/documents/{doc_id}/verify", headers=USER)
        assert r.status_code == 200
        assert r.json()["verified"] is True


class TestExactDuplicateEndpoint:
    def test_check_is_idempotent(self, client):
        content = b"identical content for hashing"
        doc_id = _upload(client, "a.txt", content).json()["document"]["id"]
        file_hash = hashlib.sha256(content).hexdigest()

        for _ in range(2):
            r = client.get(f"/api/v1/documents/duplicates/exact?file_hash={file_hash}", headers=USER)
            assert r.status_code == 200
            assert r.json() == {"duplicate": True, "document_id": doc_id, "file_name": "a.txt"}

    def test_unknown_hash(self, client):
        r = client.get(f"/api/v1/documents/duplicates/exact?file_hash={'0' * 64}", headers=USER)
        assert r.json()["duplicate"] is False


class TestHealth:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"
