# session.py
"""
Story session state and its transitions.

A session is an immutable value; `apply(session, event)` returns the next
session and never touches anything else. Every event carries the token of
the session it was issued for, so results arriving after a reset are
dropped instead of leaking into the new session.
"""
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .models import (ArtStyle, CharacterProfile, GeneratedPanel, PanelScript,
                     SavedStory, TERMINAL_STATUSES, new_id)

Step = Literal["input", "generating", "complete", "memories"]
Stage = Literal["IDLE", "WRITING_SCRIPT", "DRAWING_PANELS", "FINALIZING"]


class InvalidTransition(ValueError):
    pass


class StorySession(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str = Field(default_factory=new_id)
    step: Step = "input"
    stage: Stage = "IDLE"
    story: str = ""
    characters: List[CharacterProfile] = Field(default_factory=list)
    title: str = ""
    panels: List[GeneratedPanel] = Field(default_factory=list)
    currentGenerationIndex: int = 0
    artStyle: ArtStyle = "Webtoon"
    consistencySeed: Optional[int] = None
    error: Optional[str] = None
    savedId: Optional[str] = None
    isSaved: bool = False

    def panel(self, panel_id: int) -> Optional[GeneratedPanel]:
        return next((p for p in self.panels if p.panelId == panel_id), None)

    def all_panels_terminal(self) -> bool:
        return all(p.status in TERMINAL_STATUSES for p in self.panels)

    def to_saved_story(self, story_id: str = None) -> SavedStory:
        return SavedStory(
            id=story_id or self.savedId or new_id(),
            title=self.title or "Untitled Memory",
            artStyle=self.artStyle,
            panels=[p.model_copy(deep=True) for p in self.panels],
            consistencySeed=self.consistencySeed,
            characters=list(self.characters),
        )

# ------------------ EVENTS ------------------------


class _Event(BaseModel):
    token: Optional[str] = None


class StoryEdited(_Event):
    type: Literal["story_edited"] = "story_edited"
    story: str


class CharactersChanged(_Event):
    type: Literal["characters_changed"] = "characters_changed"
    characters: List[CharacterProfile]


class ArtStyleChosen(_Event):
    type: Literal["art_style_chosen"] = "art_style_chosen"
    artStyle: ArtStyle


class GenerationStarted(_Event):
    type: Literal["start"] = "start"
    seed: int


class ScriptReady(_Event):
    type: Literal["script"] = "script"
    title: str
    characters: List[CharacterProfile]
    panels: List[PanelScript]


class ScriptFailed(_Event):
    type: Literal["error"] = "error"
    message: str


class PanelStarted(_Event):
    type: Literal["panel_started"] = "panel_started"
    panelId: int


class PanelCompleted(_Event):
    type: Literal["panel_complete"] = "panel_complete"
    panelId: int
    imageUrl: str
    mimeType: str = "image/png"


class PanelFailed(_Event):
    type: Literal["panel_error"] = "panel_error"
    panelId: int
    message: str


class FinalizingStarted(_Event):
    type: Literal["finalizing"] = "finalizing"


class StorySaved(_Event):
    type: Literal["saved"] = "saved"
    storyId: str


class SaveFailed(_Event):
    type: Literal["save_failed"] = "save_failed"
    message: str


class GenerationFinished(_Event):
    type: Literal["done"] = "done"


class ErrorDismissed(_Event):
    type: Literal["error_dismissed"] = "error_dismissed"


class SessionReset(_Event):
    type: Literal["reset"] = "reset"
    newToken: str = Field(default_factory=new_id)


class MemoriesOpened(_Event):
    type: Literal["memories"] = "memories"


class StoryLoaded(_Event):
    type: Literal["story_loaded"] = "story_loaded"
    saved: SavedStory
    newToken: str = Field(default_factory=new_id)


Event = Union[StoryEdited, CharactersChanged, ArtStyleChosen, GenerationStarted, ScriptReady,
              ScriptFailed, PanelStarted, PanelCompleted, PanelFailed, FinalizingStarted,
              StorySaved, SaveFailed, GenerationFinished, ErrorDismissed, SessionReset,
              MemoriesOpened, StoryLoaded]

# ------------------ TRANSITIONS -------------------


def _require_step(s: StorySession, event: _Event, *steps: str) -> None:
    if s.step not in steps:
        raise InvalidTransition(
            f"{type(event).__name__} not allowed while {s.step}")


def _with_panel(s: StorySession, panel_id: int, **changes) -> StorySession:
    if s.panel(panel_id) is None:
        raise InvalidTransition(f"Unknown panel {panel_id}")
    panels = [p.model_copy(update=changes) if p.panelId == panel_id else p
              for p in s.panels]
    return s.model_copy(update={"panels": panels})


def apply(s: StorySession, e: Event) -> StorySession:
    if e.token is not None and e.token != s.token:
        # stale result from an abandoned session
        return s

    if isinstance(e, StoryEdited):
        _require_step(s, e, "input")
        return s.model_copy(update={"story": e.story})

    if isinstance(e, CharactersChanged):
        _require_step(s, e, "input")
        return s.model_copy(update={"characters": list(e.characters)})

    if isinstance(e, ArtStyleChosen):
        _require_step(s, e, "input")
        return s.model_copy(update={"artStyle": e.artStyle})

    if isinstance(e, GenerationStarted):
        _require_step(s, e, "input")
        return s.model_copy(update={
            "step": "generating",
            "stage": "WRITING_SCRIPT",
            "title": "",
            "panels": [],
            "currentGenerationIndex": 0,
            "consistencySeed": e.seed,
            # a new story is the only place a new identity block may come from
            "characters": [c.without_identity_block() for c in s.characters],
            "error": None,
            "savedId": None,
            "isSaved": False,
        })

    if isinstance(e, ScriptReady):
        _require_step(s, e, "generating")
        panels = [GeneratedPanel.from_script(p)
                  for p in sorted(e.panels, key=lambda x: x.panelId)]
        return s.model_copy(update={
            "title": e.title,
            "characters": list(e.characters),
            "panels": panels,
            "stage": "DRAWING_PANELS",
        })

    if isinstance(e, ScriptFailed):
        _require_step(s, e, "generating")
        return s.model_copy(update={
            "step": "input",
            "stage": "IDLE",
            "title": "",
            "panels": [],
            "error": e.message or "Something went wrong generating the comic.",
        })

    if isinstance(e, PanelStarted):
        _require_step(s, e, "generating", "complete")
        s = _with_panel(s, e.panelId, status="generating")
        index = next(i for i, p in enumerate(s.panels) if p.panelId == e.panelId)
        return s.model_copy(update={"currentGenerationIndex": index})

    if isinstance(e, PanelCompleted):
        _require_step(s, e, "generating", "complete")
        return _with_panel(s, e.panelId, status="complete", imageUrl=e.imageUrl, mimeType=e.mimeType)

    if isinstance(e, PanelFailed):
        _require_step(s, e, "generating", "complete")
        # keep the last good image so a failed redo does not lose it
        return _with_panel(s, e.panelId, status="error")

    if isinstance(e, FinalizingStarted):
        _require_step(s, e, "generating")
        if not s.all_panels_terminal():
            raise InvalidTransition("Cannot finalize while panels are still pending")
        return s.model_copy(update={"stage": "FINALIZING"})

    if isinstance(e, StorySaved):
        return s.model_copy(update={"savedId": e.storyId, "isSaved": True})

    if isinstance(e, SaveFailed):
        return s.model_copy(update={"isSaved": False})

    if isinstance(e, GenerationFinished):
        _require_step(s, e, "generating")
        return s.model_copy(update={"step": "complete", "stage": "IDLE"})

    if isinstance(e, ErrorDismissed):
        return s.model_copy(update={"error": None})

    if isinstance(e, SessionReset):
        return s.model_copy(update={
            "token": e.newToken,
            "step": "input",
            "stage": "IDLE",
            "title": "",
            "panels": [],
            "currentGenerationIndex": 0,
            "consistencySeed": None,
            "error": None,
            "savedId": None,
            "isSaved": False,
        })

    if isinstance(e, MemoriesOpened):
        _require_step(s, e, "input", "complete", "memories")
        return s.model_copy(update={"step": "memories"})

    if isinstance(e, StoryLoaded):
        saved = e.saved
        return s.model_copy(update={
            "token": e.newToken,
            "step": "complete",
            "stage": "IDLE",
            "title": saved.title,
            "panels": [p.model_copy(deep=True) for p in saved.panels],
            "artStyle": saved.artStyle,
            "consistencySeed": saved.consistencySeed,
            "characters": list(saved.characters),
            "error": None,
            "savedId": saved.id,
            "isSaved": True,
        })

    raise InvalidTransition(f"Unhandled event {type(e).__name__}")


def to_wire(e: Event) -> dict:
    """Small JSON-able summary for progress streams (no image payloads)."""
    data = e.model_dump(exclude={"token", "imageUrl", "characters", "saved", "story"})
    if isinstance(e, ScriptReady):
        data["panels"] = [{"panelId": p.panelId, "narration": p.narration, "dialogue": p.dialogue,
                           "speaker": p.speaker} for p in e.panels]
        data["count"] = len(e.panels)
    if isinstance(e, StoryLoaded):
        data["storyId"] = e.saved.id
    return data
