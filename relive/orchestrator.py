# orchestrator.py
import base64
import queue
import random
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from . import config
from .clients import make_image_client, make_text_client
from .director import ScriptDirector
from .errors import StorageError, StoryValidationError
from .identity import anchor_characters
from .illustrator import PanelIllustrator
from .models import ART_STYLES, ArtStyle, CharacterProfile, GeneratedPanel, SavedStory
from .session import (ArtStyleChosen, CharactersChanged, ErrorDismissed, Event, FinalizingStarted,
                      GenerationFinished, GenerationStarted, MemoriesOpened, PanelCompleted,
                      PanelFailed, PanelStarted, SaveFailed, ScriptFailed, ScriptReady,
                      SessionReset, StoryEdited, StoryLoaded, StorySaved, StorySession, apply, to_wire)
from .resilience import RetryPolicy
from .storage import JsonStoryStore
from .utils import PromptLogger


def pick_main_character(characters: List[CharacterProfile], speaker: Optional[str]) -> Optional[CharacterProfile]:
    """The speaker when they are one of the profiles, otherwise the first profile."""
    if not characters:
        return None
    if speaker:
        wanted = speaker.strip().lower()
        for c in characters:
            if c.name.lower() == wanted:
                return c
    return characters[0]


class Orchestrator:
    """
    Drives one story session at a time: script, then panels one by one,
    then the save. Also the re-entry point for single-panel regeneration.

    At most one image request is in flight per orchestrator and consecutive
    image requests are spaced by at least `pacing_seconds`.
    """

    def __init__(self, director: ScriptDirector, illustrator: PanelIllustrator,
                 store: Optional[JsonStoryStore] = None, pacing_seconds: float = None,
                 sleep: Callable[[float], None] = time.sleep, clock: Callable[[], float] = time.monotonic,
                 rng: random.Random = None, events: "queue.Queue[Dict[str, Any]]" = None):
        self.director = director
        self.illustrator = illustrator
        self.store = store
        self.pacing_seconds = config.PANEL_PACING_SECONDS if pacing_seconds is None else pacing_seconds
        self.sleep = sleep
        self.clock = clock
        self.rng = rng or random.Random()
        self.events = events
        self.session = StorySession()
        self._state_lock = threading.RLock()
        self._request_lock = threading.Lock()
        self._last_request_at: Optional[float] = None

    # ------------------ STATE -------------------

    def dispatch(self, event: Event) -> StorySession:
        with self._state_lock:
            stale = event.token is not None and event.token != self.session.token
            self.session = apply(self.session, event)
            session = self.session
        if self.events is not None and not stale:
            self.events.put(to_wire(event))
        return session

    def set_story(self, story: str) -> StorySession:
        return self.dispatch(StoryEdited(story=story))

    def set_art_style(self, art_style: ArtStyle) -> StorySession:
        if art_style not in ART_STYLES:
            raise StoryValidationError(f"Unknown art style '{art_style}'")
        return self.dispatch(ArtStyleChosen(artStyle=art_style))

    def add_character(self, profile: CharacterProfile) -> StorySession:
        if len(self.session.characters) >= config.MAX_CHARACTERS:
            raise StoryValidationError(
                f"Max {config.MAX_CHARACTERS} people allowed")
        return self.dispatch(CharactersChanged(characters=self.session.characters + [profile]))

    def update_character(self, character_id: str, update: Callable[[CharacterProfile], CharacterProfile]) -> StorySession:
        characters = list(self.session.characters)
        for i, c in enumerate(characters):
            if c.id == character_id:
                characters[i] = update(c)
                return self.dispatch(CharactersChanged(characters=characters))
        raise StoryValidationError(f"Unknown character {character_id}")

    def remove_character(self, character_id: str) -> StorySession:
        characters = [c for c in self.session.characters if c.id != character_id]
        return self.dispatch(CharactersChanged(characters=characters))

    def reset(self) -> StorySession:
        return self.dispatch(SessionReset())

    def dismiss_error(self) -> StorySession:
        return self.dispatch(ErrorDismissed())

    def open_memories(self) -> StorySession:
        return self.dispatch(MemoriesOpened())

    def load_story(self, story_id: str) -> StorySession:
        saved = self.store.get(story_id) if self.store else None
        if saved is None:
            raise StorageError(f"No saved story {story_id}")
        return self.dispatch(StoryLoaded(saved=saved))

    # ------------------ PIPELINE ----------------

    def _pace(self) -> None:
        if self._last_request_at is None or self.pacing_seconds <= 0:
            return
        wait = self._last_request_at + self.pacing_seconds - self.clock()
        if wait > 0:
            self.sleep(wait)

    def _draw_panel(self, token: str, panel: GeneratedPanel, seed: Optional[int]) -> bool:
        session = self.dispatch(PanelStarted(token=token, panelId=panel.panelId))
        if session.token != token:
            return False
        main = pick_main_character(session.characters, panel.speaker)
        try:
            with self._request_lock:
                self._pace()
                try:
                    image, mime = self.illustrator.draw(
                        panel.visualDescription,
                        session.artStyle,
                        character=main,
                        cib=main.identityBlock if main else None,
                        seed=seed,
                        outfit=panel.panelOutfit,
                        scene_category=panel.sceneCategory,
                        label=f"panel {panel.panelId}",
                    )
                finally:
                    self._last_request_at = self.clock()
        except Exception as e:
            print(f"   ! Failed to generate panel {panel.panelId}: {e}")
            self.dispatch(PanelFailed(token=token, panelId=panel.panelId, message=str(e)))
            return False
        self.dispatch(PanelCompleted(
            token=token, panelId=panel.panelId,
            imageUrl=base64.b64encode(image).decode("utf-8"), mimeType=mime))
        print(f"   ✓ Panel {panel.panelId}")
        return True

    def _persist(self, token: str) -> None:
        if self.store is None:
            return
        session = self.session
        if session.token != token:
            return
        try:
            story_id = self.store.save(session.to_saved_story())
        except Exception as e:
            print(f"[WARN] Could not save story '{session.title}': {e}")
            self.dispatch(SaveFailed(token=token, message=str(e)))
            return
        self.dispatch(StorySaved(token=token, storyId=story_id))

    def generate(self, story: str = None, characters: List[CharacterProfile] = None,
                 art_style: ArtStyle = None) -> StorySession:
        """
        Run the whole pipeline for the current session.

        Validation problems raise StoryValidationError before any request is
        made. Script failures return the session to the input step with the
        message in `session.error`; panel failures only mark that panel.
        """
        if story is not None:
            self.set_story(story)
        if characters is not None:
            self.dispatch(CharactersChanged(characters=characters))
        if art_style is not None:
            self.set_art_style(art_style)

        session = self.session
        if session.step != "input":
            raise StoryValidationError(f"Cannot start a new story while {session.step}")
        if not session.story.strip():
            raise StoryValidationError("Please tell us your story first.")
        if len(session.characters) > config.MAX_CHARACTERS:
            raise StoryValidationError(f"Max {config.MAX_CHARACTERS} people allowed")

        token = session.token
        seed = self.rng.randrange(config.MAX_SEED)
        session = self.dispatch(GenerationStarted(token=token, seed=seed))

        print(">> Writing script...")
        try:
            script = self.director.write_script(session.story, session.characters, session.artStyle)
        except Exception as e:
            print(f"[ERROR] Script generation failed: {e}")
            return self.dispatch(ScriptFailed(token=token, message=str(e)))

        characters, _ = anchor_characters(session.characters, script.identityBlocks, self.director.log)
        session = self.dispatch(ScriptReady(
            token=token, title=script.title, characters=characters, panels=script.panels))
        print(f"   Title: {script.title}")
        print(f"   Panels: {len(script.panels)}")

        print(">> Drawing panels...")
        for panel in session.panels:
            if self.session.token != token:
                print("   ! Session was reset, abandoning generation.")
                return self.session
            self._draw_panel(token, panel, seed)

        if self.session.token != token:
            return self.session
        self.dispatch(FinalizingStarted(token=token))
        self._persist(token)
        session = self.dispatch(GenerationFinished(token=token))
        failed = [p.panelId for p in session.panels if p.status == "error"]
        if failed:
            print(f"   ! Panels with errors: {failed}")
        print(">> Done.")
        return session

    def regenerate_panel(self, panel_id: int) -> GeneratedPanel:
        """Redraw one panel of a finished story with the same identity anchors and a nudged seed."""
        session = self.session
        if session.step != "complete":
            raise StoryValidationError("Panels can only be redrawn once the story is complete")
        panel = session.panel(panel_id)
        if panel is None:
            raise StoryValidationError(f"Unknown panel {panel_id}")

        seed = None
        if session.consistencySeed is not None:
            seed = session.consistencySeed + self.rng.randint(1, config.SEED_JITTER - 1)
        token = session.token
        self._draw_panel(token, panel, seed)
        self._persist(token)
        return self.session.panel(panel_id)

    def heal(self, story_id: str) -> SavedStory:
        """Load a saved story and redraw every panel that ended in error."""
        session = self.load_story(story_id)
        for panel in [p for p in session.panels if p.status == "error"]:
            self.regenerate_panel(panel.panelId)
        return self.session.to_saved_story()


def build_orchestrator(events: "queue.Queue[Dict[str, Any]]" = None, log: PromptLogger = None,
                       store: JsonStoryStore = None) -> Orchestrator:
    """Wire the configured providers into a ready-to-use orchestrator."""
    log = log or PromptLogger()
    retry = RetryPolicy()
    director = ScriptDirector(make_text_client(), retry=retry, log=log)
    illustrator = PanelIllustrator(make_image_client(), retry=retry, log=log)
    return Orchestrator(director, illustrator, store=store or JsonStoryStore(), events=events)
