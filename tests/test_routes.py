from fastapi.testclient import TestClient

from main import app


def test_session_commands_round_trip(echo_home):
    with TestClient(app) as client:
        response = client.get("/session")
        assert response.status_code == 200
        assert response.json()["state"] == "IDLE"

        response = client.post("/session/commands", json={"id": "1", "name": "startSession"})
        assert response.status_code == 200
        assert response.json() == {"id": "1", "name": "startSession", "result": "OK"}

        response = client.post("/session/commands", json={"name": "createDeck", "deckName": "Spanish"})
        assert response.status_code == 200

        snapshot = client.get("/session").json()
        assert snapshot["state"] == "AWAITING_COMMAND"
        assert snapshot["status_text"] == 'I\'ve created the "Spanish" deck for you.'

        decks = client.get("/decks/").json()
        assert [d["name"] for d in decks] == ["Spanish"]


def test_invalid_command_is_rejected(echo_home):
    with TestClient(app) as client:
        response = client.post("/session/commands", json={"id": "9", "name": "rateCard", "rating": "MEH"})
        assert response.status_code == 400
        body = response.json()
        assert body["id"] == "9"
        assert body["result"].startswith("ERROR")
        assert client.get("/session").json()["state"] == "IDLE"


def test_deck_crud(echo_home):
    with TestClient(app) as client:
        response = client.post("/decks/", json={"name": "French"})
        assert response.status_code == 201
        deck_id = response.json()["id"]

        assert client.post("/decks/", json={"name": "french"}).status_code == 400

        cards = client.get(f"/decks/{deck_id}/cards")
        assert cards.status_code == 200
        assert cards.json() == []

        assert client.delete(f"/decks/{deck_id}").status_code == 200
        assert client.delete(f"/decks/{deck_id}").status_code == 404
        assert client.get(f"/decks/{deck_id}/cards").status_code == 404


def test_import_deck_upload(echo_home):
    content = "Bonjour?,Hello\nMerci?;Thank you;Polite\nbroken line\n".encode("utf-8")
    with TestClient(app) as client:
        response = client.post(
            "/decks/import",
            data={"name": "French"},
            files={"file": ("french.csv", content, "text/csv")},
        )
        assert response.status_code == 201
        body = response.json()
        assert body["imported"] == 2

        cards = client.get(f"/decks/{body['deck']['id']}/cards").json()
        assert [c["question"] for c in cards] == ["Bonjour?", "Merci?"]
        assert cards[0]["state"] == "NEW"


def test_image_upload_selects_image_for_analysis(echo_home):
    with TestClient(app) as client:
        client.post("/session/commands", json={"name": "showImageAnalysisView"})
        response = client.post(
            "/session/image",
            files={"image": ("cat.png", b"\x89PNG fake", "image/png")},
        )
        assert response.status_code == 200
        path = response.json()["image_path"]
        assert path.startswith(str(echo_home))
        assert client.get("/session").json()["image_to_analyze"] == path


def test_image_upload_rejects_other_files(echo_home):
    with TestClient(app) as client:
        response = client.post("/session/image", files={"image": ("notes.txt", b"hi", "text/plain")})
        assert response.status_code == 400


def test_stt_rejects_unsupported_audio(echo_home):
    with TestClient(app) as client:
        response = client.post("/stt", files={"audio": ("notes.txt", b"hi", "text/plain")})
        assert response.status_code == 400
