import io
import json
import queue
import threading
from typing import Any, Dict, Generator, Optional

from flask import Flask, Response, jsonify, request, send_file, url_for
from pydantic import ValidationError

from .errors import CaptureError, StorageError, StoryValidationError
from .imaging import StripCapture, export_episode, export_panel, prepare_reference_image
from .models import ART_STYLES, CharacterProfile
from .orchestrator import Orchestrator, build_orchestrator
from .session import InvalidTransition, StorySession
from .utils import slugify

app = Flask(__name__, static_folder=None)

# PATCH field -> profile update operation
CHARACTER_UPDATES = {
    "name": CharacterProfile.renamed,
    "hairOverride": CharacterProfile.with_hair,
    "outfitOverride": CharacterProfile.with_outfit,
    "accessories": CharacterProfile.with_accessories,
    "colorPalette": CharacterProfile.with_palette,
    "notes": CharacterProfile.with_notes,
}


class RunState:
    def __init__(self):
        self.orchestrator: Optional[Orchestrator] = None
        self.events: "queue.Queue[Dict[str, Any]]" = queue.Queue()
        self.thread: Optional[threading.Thread] = None
        self.capture: Optional[StripCapture] = StripCapture()

    def get_orchestrator(self) -> Orchestrator:
        if self.orchestrator is None:
            self.orchestrator = build_orchestrator()
        return self.orchestrator

    def busy(self) -> bool:
        return self.thread is not None and self.thread.is_alive()


state = RunState()


def session_snapshot(session: StorySession) -> Dict[str, Any]:
    """Session as JSON without image payloads; images are served per panel."""
    data = session.model_dump(exclude={"panels", "characters"})
    data["panels"] = [
        {**p.model_dump(exclude={"imageUrl"}), "hasImage": bool(p.imageUrl)}
        for p in session.panels
    ]
    data["characters"] = [character_json(c) for c in session.characters]
    return data


def character_json(c: CharacterProfile) -> Dict[str, Any]:
    return c.model_dump(exclude={"referenceImage"})


def generation_worker(orchestrator: Orchestrator, events: "queue.Queue[Dict[str, Any]]"):
    token = orchestrator.session.token
    try:
        session = orchestrator.generate()
    except Exception as e:
        events.put({"type": "error", "message": str(e)})
        return
    finally:
        # the stream closes with this run; later actions are not streamed
        orchestrator.events = None
    if session.token != token:
        # reset mid-run; close the stream for anyone still listening
        events.put({"type": "done", "abandoned": True})

# ------------------ CHARACTERS -------------------


@app.route("/api/characters", methods=["POST"])
def api_add_character():
    if "photo" not in request.files:
        return jsonify({"error": "No file provided"}), 400
    file = request.files["photo"]
    if file.filename == "":
        return jsonify({"error": "No file selected"}), 400
    name = (request.form.get("name") or "").strip()
    if not name:
        return jsonify({"error": "Character name required"}), 400
    if state.busy():
        return jsonify({"error": "A story is being generated"}), 409

    try:
        reference = prepare_reference_image(file.read())
    except ValueError as e:
        return jsonify({"error": f"Failed to process image: {e}"}), 400

    profile = CharacterProfile(name=name, referenceImage=reference)
    try:
        state.get_orchestrator().add_character(profile)
    except StoryValidationError as e:
        return jsonify({"error": str(e)}), 400
    except InvalidTransition as e:
        return jsonify({"error": str(e)}), 409
    return jsonify(character_json(profile)), 201


@app.route("/api/characters/<character_id>", methods=["PATCH"])
def api_update_character(character_id: str):
    data = request.get_json(force=True) or {}
    unknown = set(data) - set(CHARACTER_UPDATES)
    if unknown:
        return jsonify({"error": f"Fields cannot be edited: {sorted(unknown)}"}), 400
    if "accessories" in data and not isinstance(data["accessories"], list):
        return jsonify({"error": "accessories must be a list"}), 400
    if state.busy():
        return jsonify({"error": "A story is being generated"}), 409

    def update(profile: CharacterProfile) -> CharacterProfile:
        for field, op in CHARACTER_UPDATES.items():
            if field in data:
                profile = op(profile, data[field])
        return profile

    try:
        session = state.get_orchestrator().update_character(character_id, update)
    except StoryValidationError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except InvalidTransition as e:
        return jsonify({"error": str(e)}), 409
    profile = next(c for c in session.characters if c.id == character_id)
    return jsonify(character_json(profile))


@app.route("/api/characters/<character_id>", methods=["DELETE"])
def api_remove_character(character_id: str):
    if state.busy():
        return jsonify({"error": "A story is being generated"}), 409
    try:
        state.get_orchestrator().remove_character(character_id)
    except InvalidTransition as e:
        return jsonify({"error": str(e)}), 409
    return jsonify({"success": True})

# ------------------ GENERATION -------------------


@app.route("/api/start", methods=["POST"])
def api_start():
    data = request.get_json(force=True) or {}
    story_text = (data.get("story") or "").strip()
    art_style = data.get("artStyle")
    if not story_text:
        return jsonify({"error": "Please tell us your story first."}), 400
    if art_style and art_style not in ART_STYLES:
        return jsonify({"error": f"Unknown art style '{art_style}'"}), 400
    if state.busy():
        return jsonify({"error": "A story is already being generated"}), 409

    orchestrator = state.get_orchestrator()
    if orchestrator.session.step != "input":
        orchestrator.reset()
    orchestrator.set_story(story_text)
    if art_style:
        orchestrator.set_art_style(art_style)

    state.events = queue.Queue()
    orchestrator.events = state.events

    # Launch worker
    t = threading.Thread(target=generation_worker, args=(
        orchestrator, state.events), daemon=True)
    t.start()
    state.thread = t
    return jsonify({"token": orchestrator.session.token})


@app.route("/api/stream")
def api_stream() -> Response:
    events = state.events

    def gen() -> Generator[str, None, None]:
        yield "event: ping\n" "data: {}\n\n"
        while True:
            try:
                evt = events.get(timeout=60)
            except queue.Empty:
                yield "event: ping\n" "data: {}\n\n"
                continue
            yield f"data: {json.dumps(evt)}\n\n"
            if evt.get("type") in {"done", "error"}:
                break
    return Response(gen(), mimetype="text/event-stream")


@app.route("/api/session")
def api_session():
    return jsonify(session_snapshot(state.get_orchestrator().session))


@app.route("/api/reset", methods=["POST"])
def api_reset():
    session = state.get_orchestrator().reset()
    return jsonify({"token": session.token})


@app.route("/api/error/dismiss", methods=["POST"])
def api_dismiss_error():
    state.get_orchestrator().dismiss_error()
    return jsonify({"success": True})

# ------------------ PANELS -------------------


@app.route("/api/panels/<int:panel_id>/image")
def api_panel_image(panel_id: int):
    panel = state.get_orchestrator().session.panel(panel_id)
    if panel is None:
        return jsonify({"error": "Panel not found"}), 404
    if not panel.imageUrl:
        return jsonify({"error": "Panel has no image yet"}), 404
    return send_file(io.BytesIO(panel.image_bytes()), mimetype=panel.mimeType)


@app.route("/api/panels/<int:panel_id>/regenerate", methods=["POST"])
def api_regenerate_panel(panel_id: int):
    if state.busy():
        return jsonify({"error": "A story is being generated"}), 409
    try:
        panel = state.get_orchestrator().regenerate_panel(panel_id)
    except StoryValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({**panel.model_dump(exclude={"imageUrl"}), "hasImage": bool(panel.imageUrl)})


@app.route("/api/panels/<int:panel_id>/download")
def api_download_panel(panel_id: int):
    session = state.get_orchestrator().session
    panel = session.panel(panel_id)
    if panel is None:
        return jsonify({"error": "Panel not found"}), 404
    try:
        data, mime, _ = export_panel(panel, state.capture)
    except CaptureError as e:
        return jsonify({"error": str(e)}), 404
    ext = "jpg" if mime == "image/jpeg" else mime.split("/")[-1]
    name = f"{slugify(session.title, 'relive')}-panel-{panel_id}.{ext}"
    return send_file(io.BytesIO(data), mimetype=mime, as_attachment=True, download_name=name)


@app.route("/api/episode/download")
def api_download_episode():
    session = state.get_orchestrator().session
    if not session.panels:
        return jsonify({"error": "No story to download"}), 404
    try:
        data = export_episode(session.title, session.panels, state.capture)
    except CaptureError as e:
        return jsonify({"error": f"Could not capture the episode: {e}"}), 503
    name = f"{slugify(session.title, 'relive')}-episode.jpg"
    return send_file(io.BytesIO(data), mimetype="image/jpeg", as_attachment=True, download_name=name)


@app.route("/api/share")
def api_share():
    session = state.get_orchestrator().session
    if session.step != "complete" or not session.panels:
        return jsonify({"error": "Nothing to share yet"}), 404
    return jsonify({
        "title": session.title,
        "text": f'Check out my memory "{session.title}" created with RE:LIVE!',
        "url": url_for("api_download_episode", _external=True),
    })

# ------------------ MEMORIES -------------------


@app.route("/api/memories", methods=["POST"])
def api_open_memories():
    if state.busy():
        return jsonify({"error": "A story is being generated"}), 409
    try:
        session = state.get_orchestrator().open_memories()
    except InvalidTransition as e:
        return jsonify({"error": str(e)}), 409
    return jsonify({"step": session.step})


@app.route("/api/stories")
def api_list_stories():
    orchestrator = state.get_orchestrator()
    if orchestrator.store is None:
        return jsonify({"stories": []})
    return jsonify({"stories": [s.model_dump() for s in orchestrator.store.list_all()]})


@app.route("/api/stories/<story_id>/load", methods=["POST"])
def api_load_story(story_id: str):
    if state.busy():
        return jsonify({"error": "A story is being generated"}), 409
    try:
        session = state.get_orchestrator().load_story(story_id)
    except StorageError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify(session_snapshot(session))


@app.route("/api/stories/<story_id>", methods=["DELETE"])
def api_delete_story(story_id: str):
    store = state.get_orchestrator().store
    if store is None:
        return jsonify({"error": "No story store configured"}), 404
    try:
        store.delete(story_id)
    except StorageError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"success": True})


@app.route("/api/stories/<story_id>/heal", methods=["POST"])
def api_heal_story(story_id: str):
    if state.busy():
        return jsonify({"error": "A story is being generated"}), 409
    try:
        healed = state.get_orchestrator().heal(story_id)
    except StorageError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({
        "id": healed.id,
        "errorCount": sum(1 for p in healed.panels if p.status == "error"),
    })


def main():
    app.run(host="127.0.0.1", port=5001, debug=True, threaded=True)


if __name__ == "__main__":
    main()
