"""
Tests for the Flask surface, driven through the test client with fake
providers behind the orchestrator.
"""

import io
import json

import pytest

from conftest import make_png
from relive import server
from relive.imaging import StripCapture


@pytest.fixture
def client(orchestrator):
    saved = (server.state.orchestrator, server.state.thread, server.state.capture)
    server.state.orchestrator = orchestrator
    server.state.thread = None
    server.state.capture = StripCapture(panel_width=100)
    server.app.config["TESTING"] = True
    with server.app.test_client() as c:
        yield c
    server.state.orchestrator, server.state.thread, server.state.capture = saved


def upload(client, name="Mina", data=None):
    return client.post("/api/characters", data={
        "name": name,
        "photo": (io.BytesIO(data or make_png(size=(64, 64))), "photo.png"),
    }, content_type="multipart/form-data")


def run_story(client, story="I moved to Busan."):
    resp = client.post("/api/start", json={"story": story, "artStyle": "Ghibli"})
    assert resp.status_code == 200
    server.state.thread.join(timeout=10)
    return resp


class TestCharacters:
    """Character create, update and delete."""

    def test_create(self, client, orchestrator):
        resp = upload(client)
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["name"] == "Mina"
        assert "referenceImage" not in body
        assert orchestrator.session.characters[0].referenceImage.mimeType == "image/jpeg"

    def test_create_requires_photo(self, client):
        resp = client.post("/api/characters", data={"name": "Mina"},
                           content_type="multipart/form-data")
        assert resp.status_code == 400

    def test_create_rejects_non_image(self, client):
        assert upload(client, data=b"not an image").status_code == 400

    def test_create_limit(self, client):
        for name in ("A", "B", "C"):
            assert upload(client, name).status_code == 201
        assert upload(client, "D").status_code == 400

    def test_update_fields(self, client):
        cid = upload(client).get_json()["id"]
        resp = client.patch(f"/api/characters/{cid}", json={
            "outfitOverride": "denim jacket",
            "accessories": ["glasses", "Glasses"],
            "colorPalette": "Soft",
        })
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["id"] == cid
        assert body["outfitOverride"] == "denim jacket"
        assert body["accessories"] == ["glasses"]

    def test_update_rejects_photo_and_unknown_fields(self, client):
        cid = upload(client).get_json()["id"]
        assert client.patch(f"/api/characters/{cid}", json={"referenceImage": "x"}).status_code == 400

    def test_update_rejects_accessories_string(self, client, orchestrator):
        cid = upload(client).get_json()["id"]
        resp = client.patch(f"/api/characters/{cid}", json={"accessories": "glasses"})
        assert resp.status_code == 400
        assert orchestrator.session.characters[0].accessories == []

    def test_update_rejects_blank_name(self, client):
        cid = upload(client).get_json()["id"]
        assert client.patch(f"/api/characters/{cid}", json={"name": "  "}).status_code == 400

    def test_update_unknown_character(self, client):
        assert client.patch("/api/characters/nope", json={"name": "X"}).status_code == 404

    def test_delete(self, client, orchestrator):
        cid = upload(client).get_json()["id"]
        assert client.delete(f"/api/characters/{cid}").status_code == 200
        assert orchestrator.session.characters == []


class TestGeneration:
    """Start, stream and session snapshot."""

    def test_empty_story_refused(self, client, text_client):
        resp = client.post("/api/start", json={"story": "  "})
        assert resp.status_code == 400
        assert text_client.calls == []

    def test_unknown_style_refused(self, client):
        resp = client.post("/api/start", json={"story": "A story.", "artStyle": "Claymation"})
        assert resp.status_code == 400

    def test_unknown_style_keeps_finished_story(self, client):
        run_story(client)
        resp = client.post("/api/start", json={"story": "Another.", "artStyle": "Claymation"})
        assert resp.status_code == 400
        snapshot = client.get("/api/session").get_json()
        assert snapshot["step"] == "complete"
        assert snapshot["story"] == "I moved to Busan."
        assert len(snapshot["panels"]) == 6

    def test_full_run(self, client):
        upload(client)
        run_story(client)
        snapshot = client.get("/api/session").get_json()
        assert snapshot["step"] == "complete"
        assert snapshot["artStyle"] == "Ghibli"
        assert len(snapshot["panels"]) == 6
        assert all(p["hasImage"] for p in snapshot["panels"])
        assert all("imageUrl" not in p for p in snapshot["panels"])

    def test_stream_replays_run(self, client):
        run_story(client)
        body = client.get("/api/stream").get_data(as_text=True)
        events = [json.loads(line[len("data: "):]) for line in body.splitlines()
                  if line.startswith("data: ") and line != "data: {}"]
        types = [e["type"] for e in events]
        assert types[0] == "start"
        assert types[-1] == "done"

    def test_actions_after_run_are_not_queued(self, client, orchestrator):
        run_story(client)
        client.get("/api/stream").get_data()
        client.post("/api/panels/2/regenerate")
        client.post("/api/reset")
        assert orchestrator.events is None
        assert server.state.events.empty()

    def test_second_start_resets_finished_story(self, client):
        run_story(client)
        run_story(client, "Another story.")
        assert client.get("/api/session").get_json()["story"] == "Another story."

    def test_reset(self, client):
        run_story(client)
        assert client.post("/api/reset").status_code == 200
        snapshot = client.get("/api/session").get_json()
        assert snapshot["step"] == "input"
        assert snapshot["panels"] == []


class TestPanels:
    """Panel image, regenerate and downloads."""

    def test_panel_image(self, client):
        run_story(client)
        resp = client.get("/api/panels/1/image")
        assert resp.status_code == 200
        assert resp.mimetype == "image/png"

    def test_missing_panel(self, client):
        assert client.get("/api/panels/9/image").status_code == 404

    def test_regenerate(self, client, image_client):
        run_story(client)
        resp = client.post("/api/panels/2/regenerate")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "complete"
        assert len(image_client.calls) == 7

    def test_regenerate_before_complete(self, client):
        assert client.post("/api/panels/1/regenerate").status_code == 400

    def test_panel_download(self, client):
        run_story(client)
        resp = client.get("/api/panels/1/download")
        assert resp.status_code == 200
        assert resp.mimetype == "image/jpeg"
        assert "attachment" in resp.headers["Content-Disposition"]
        assert "panel-1.jpg" in resp.headers["Content-Disposition"]

    def test_panel_download_falls_back_to_raw(self, client):
        run_story(client)
        server.state.capture = None
        resp = client.get("/api/panels/1/download")
        assert resp.status_code == 200
        assert resp.mimetype == "image/png"

    def test_episode_download(self, client):
        run_story(client)
        resp = client.get("/api/episode/download")
        assert resp.status_code == 200
        assert resp.mimetype == "image/jpeg"

    def test_share(self, client):
        run_story(client)
        body = client.get("/api/share").get_json()
        assert body["title"] == "Harbor Mornings"
        assert "Harbor Mornings" in body["text"]
        assert body["url"].endswith("/api/episode/download")

    def test_share_before_complete(self, client):
        assert client.get("/api/share").status_code == 404

    def test_episode_download_without_capture(self, client):
        run_story(client)
        server.state.capture = None
        assert client.get("/api/episode/download").status_code == 503


class TestStories:
    """Saved stories: list, load, delete and heal."""

    def test_list_and_load(self, client):
        run_story(client)
        stories = client.get("/api/stories").get_json()["stories"]
        assert len(stories) == 1
        assert stories[0]["panelCount"] == 6

        client.post("/api/reset")
        resp = client.post(f"/api/stories/{stories[0]['id']}/load")
        assert resp.status_code == 200
        assert resp.get_json()["step"] == "complete"

    def test_open_memories(self, client):
        resp = client.post("/api/memories")
        assert resp.status_code == 200
        assert resp.get_json()["step"] == "memories"

    def test_load_missing(self, client):
        assert client.post("/api/stories/missing/load").status_code == 404

    def test_delete(self, client):
        run_story(client)
        story_id = client.get("/api/stories").get_json()["stories"][0]["id"]
        assert client.delete(f"/api/stories/{story_id}").status_code == 200
        assert client.get("/api/stories").get_json()["stories"] == []

    def test_heal(self, client, image_client):
        image_client.errors = [None, RuntimeError("blocked")]
        run_story(client)
        story_id = client.get("/api/stories").get_json()["stories"][0]["id"]
        resp = client.post(f"/api/stories/{story_id}/heal")
        assert resp.status_code == 200
        assert resp.get_json()["errorCount"] == 0
