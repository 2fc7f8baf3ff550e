USER = {"X-User-Id": "user-1"}
OTHER_USER = {"X-User-Id": "user-2"}


def _upload(client, name, text, headers=USER):
    r = client.post(
        "/api/v1/documents",
        files={"file": (name, text.encode(), "text/plain")},
        headers=headers,
    )
    assert r.status_code == 201
    return r.json()["document"]["id"]


class TestSearch:
    def test_search_extracted_text(self, client):
        doc_id = _upload(client, "permit.txt", "Aufenthaltstitel B fuer Anna Muller, gueltig bis 2030")
        _upload(client, "lease.txt", "Mietvertrag fuer die Wohnung an der Bahnhofstrasse")

        r = client.get("/api/v1/search?q=Aufenthaltstitel", headers=USER)
        assert r.status_code == 200
        data = r.json()
        assert data["total"] == 1
        assert data["results"][0]["document_id"] == doc_id
        assert "<mark>" in data["results"][0]["snippet"]

    def test_search_file_name(self, client):
        _upload(client, "kontoauszug.txt", "Saldo per Ende Januar")
        r = client.get("/api/v1/search?q=kontoauszug", headers=USER)
        assert r.json()["total"] == 1

    def test_search_scoped_to_user(self, client):
        _upload(client, "permit.txt", "Aufenthaltstitel B fuer Anna Muller")
        r = client.get("/api/v1/search?q=Aufenthaltstitel", headers=OTHER_USER)
        assert r.json()["total"] == 0

    def test_deleted_documents_not_found(self, client):
        doc_id = _upload(client, "permit.txt", "Aufenthaltstitel B fuer Anna Muller")
        client.delete(f"/api/v1/documents/{doc_id}", headers=USER)
        r = client.get("/api/v1/search?q=Aufenthaltstitel", headers=USER)
        assert r.json()["total"] == 0

    def test_invalid_query(self, client):
        r = client.get('/api/v1/search?q="unbalanced', headers=USER)
        assert r.status_code == 400

    def test_empty_query_rejected(self, client):
        r = client.get("/api/v1/search?q=", headers=USER)
        assert r.status_code == 422
