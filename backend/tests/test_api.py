"""
HTTP flows through the FastAPI app: import, deck listing, study sessions.
"""
import pytest
from fastapi.testclient import TestClient

from deckflow import create_app
from deckflow.config import Settings


@pytest.fixture
def client(tmp_path, oracle):
    app = create_app(Settings(data_dir=tmp_path / "data", storage_backend="native"))
    with TestClient(app) as c:
        app.state.oracle = oracle
        yield c


@pytest.fixture
def memory_client(tmp_path, oracle):
    app = create_app(
        Settings(
            data_dir=tmp_path / "data", storage_backend="memory", save_debounce_seconds=60.0
        )
    )
    with TestClient(app) as c:
        app.state.oracle = oracle
        yield c


def _upload(client, path, filename=None):
    with open(path, "rb") as fh:
        return client.post(
            "/decks/import",
            files={"file": (filename or path.name, fh, "application/octet-stream")},
        )


class TestHealth:
    def test_reports_backend(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "backend": "native"}


class TestImportAndDecks:
    def test_import_then_list(self, client, make_apkg, spanish):
        resp = _upload(client, make_apkg(**spanish))
        assert resp.status_code == 201
        body = resp.json()
        assert body["inserted_cards"] == 3
        assert body["generation"] == "legacy"

        decks = client.get("/decks/").json()
        assert decks["total"] == 2
        by_name = {d["name"]: d for d in decks["items"]}
        assert by_name["Spanish::Verbs"]["total_cards"] == 2
        assert by_name["Spanish::Verbs"]["due_cards"] == 2

    def test_wrong_extension_rejected(self, client, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("hello")
        assert _upload(client, path).status_code == 400

    def test_invalid_package_reports_stage(self, client, tmp_path):
        path = tmp_path / "broken.apkg"
        path.write_bytes(b"not a zip")
        resp = _upload(client, path)
        assert resp.status_code == 400
        assert resp.json()["detail"]["stage"] == "unpack"

    def test_get_and_delete_deck(self, client, make_apkg, spanish):
        deck_id = _upload(client, make_apkg(**spanish)).json()["decks"][0]["id"]
        assert client.get(f"/decks/{deck_id}").json()["name"] == "Spanish::Verbs"

        assert client.delete(f"/decks/{deck_id}").status_code == 204
        assert client.get(f"/decks/{deck_id}").status_code == 404
        assert client.delete(f"/decks/{deck_id}").status_code == 404


class TestStudyFlow:
    def _start(self, client, make_apkg, spanish):
        deck_id = _upload(client, make_apkg(**spanish)).json()["decks"][0]["id"]
        resp = client.post("/study/sessions", json={"deck_id": deck_id})
        assert resp.status_code == 201
        return resp.json()

    def test_reveal_then_rate(self, client, make_apkg, spanish):
        snap = self._start(client, make_apkg, spanish)
        sid = snap["id"]
        assert snap["queue_length"] == 2
        assert snap["current"]["answer"] is None

        revealed = client.post(f"/study/sessions/{sid}/reveal").json()
        assert revealed["current"]["answer"] == "to speak"

        resp = client.post(f"/study/sessions/{sid}/rate", json={"rating": 1})
        assert resp.status_code == 200
        body = resp.json()
        assert body["outcome"]["requeued"] is True
        assert body["session"]["queue_length"] == 3
        assert body["session"]["position"] == 1
        assert body["session"]["revealed"] is False

    def test_rate_before_reveal_conflicts(self, client, make_apkg, spanish):
        sid = self._start(client, make_apkg, spanish)["id"]
        resp = client.post(f"/study/sessions/{sid}/rate", json={"rating": 3})
        assert resp.status_code == 409

    def test_invalid_rating_rejected(self, client, make_apkg, spanish):
        sid = self._start(client, make_apkg, spanish)["id"]
        client.post(f"/study/sessions/{sid}/reveal")
        resp = client.post(f"/study/sessions/{sid}/rate", json={"rating": 7})
        assert resp.status_code == 422

    def test_negative_offset_rejected(self, client, make_apkg, spanish):
        sid = self._start(client, make_apkg, spanish)["id"]
        client.post(f"/study/sessions/{sid}/reveal")
        resp = client.post(
            f"/study/sessions/{sid}/rate", json={"rating": 3, "requeue_offset": -1}
        )
        assert resp.status_code == 422

    def test_rated_card_no_longer_due(self, client, make_apkg, spanish):
        snap = self._start(client, make_apkg, spanish)
        sid = snap["id"]
        for _ in range(2):
            client.post(f"/study/sessions/{sid}/reveal")
            body = client.post(f"/study/sessions/{sid}/rate", json={"rating": 4}).json()
        assert body["outcome"]["finished"] is True
        assert client.get(f"/study/sessions/{sid}").status_code == 404

        again = client.post("/study/sessions", json={"deck_id": snap["deck_id"]}).json()
        assert again["queue_length"] == 0
        assert again["finished"] is True
        assert client.get(f"/study/sessions/{again['id']}").status_code == 404

    def test_end_session(self, client, make_apkg, spanish):
        sid = self._start(client, make_apkg, spanish)["id"]
        assert client.delete(f"/study/sessions/{sid}").status_code == 204
        assert client.get(f"/study/sessions/{sid}").status_code == 404

    def test_unknown_deck(self, client):
        assert client.post("/study/sessions", json={"deck_id": 12345}).status_code == 404


class TestSnapshotOnWrite:
    def test_import_and_delete_saved_at_once(self, memory_client, make_apkg, spanish):
        db = memory_client.app.state.db
        assert memory_client.get("/health").json()["backend"] == "memory"

        before = db.snapshot_count
        deck_id = _upload(memory_client, make_apkg(**spanish)).json()["decks"][0]["id"]
        assert db.snapshot_count == before + 1
        assert not db.save_pending

        assert memory_client.delete(f"/decks/{deck_id}").status_code == 204
        assert db.snapshot_count == before + 2
        assert not db.save_pending
