# models.py
import base64
import time
import uuid
from typing import Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ------------------ DATA MODELS -------------------

ArtStyle = Literal["Anime", "Manga", "Chibi",
                   "Painterly", "Webtoon", "Ghibli", "Cinematic"]
ColorPalette = Literal["Soft", "Bright", "Neutral", "Dark"]
PanelStatus = Literal["pending", "generating", "complete", "error"]

ART_STYLES = get_args(ArtStyle)
TERMINAL_STATUSES = ("complete", "error")


def new_id() -> str:
    return uuid.uuid4().hex


class ReferenceImage(BaseModel):
    """Compressed reference photo, stored base64 so it survives JSON round trips."""
    model_config = ConfigDict(frozen=True)

    data: str
    mimeType: str = "image/jpeg"

    @classmethod
    def from_bytes(cls, raw: bytes, mime_type: str = "image/jpeg") -> "ReferenceImage":
        return cls(data=base64.b64encode(raw).decode("utf-8"), mimeType=mime_type)

    def raw(self) -> bytes:
        return base64.b64decode(self.data)


class CharacterProfile(BaseModel):
    """
    A real person the story is about.

    Profiles are frozen: every field has its own update operation that
    returns a new profile, and the reference photo has none at all.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    name: str
    referenceImage: ReferenceImage
    hairOverride: Optional[str] = None
    outfitOverride: Optional[str] = None
    accessories: List[str] = Field(default_factory=list)
    colorPalette: Optional[ColorPalette] = None
    notes: str = ""
    identityBlock: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("character name must not be empty")
        return v

    @field_validator("hairOverride", "outfitOverride")
    @classmethod
    def _blank_is_absent(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("accessories")
    @classmethod
    def _dedupe_accessories(cls, v: List[str]) -> List[str]:
        seen, out = set(), []
        for item in v:
            item = item.strip()
            if item and item.lower() not in seen:
                seen.add(item.lower())
                out.append(item)
        return out

    # --- explicit per-field updates ---

    def renamed(self, name: str) -> "CharacterProfile":
        return self._updated(name=name)

    def with_hair(self, hair: Optional[str]) -> "CharacterProfile":
        return self._updated(hairOverride=hair)

    def with_outfit(self, outfit: Optional[str]) -> "CharacterProfile":
        return self._updated(outfitOverride=outfit)

    def with_accessories(self, accessories: List[str]) -> "CharacterProfile":
        return self._updated(accessories=list(accessories))

    def with_palette(self, palette: Optional[ColorPalette]) -> "CharacterProfile":
        return self._updated(colorPalette=palette)

    def with_notes(self, notes: str) -> "CharacterProfile":
        return self._updated(notes=notes or "")

    def with_identity_block(self, cib: str) -> "CharacterProfile":
        if self.identityBlock is not None:
            raise ValueError(
                f"identity block for '{self.name}' is already set for this story")
        return self._updated(identityBlock=cib)

    def without_identity_block(self) -> "CharacterProfile":
        return self._updated(identityBlock=None)

    def _updated(self, **changes) -> "CharacterProfile":
        # model_copy skips validation, rebuild so validators still run
        return CharacterProfile.model_validate({**self.model_dump(), **changes})


class PanelScript(BaseModel):
    panelId: int
    visualDescription: str
    panelOutfit: str = ""
    dialogue: Optional[str] = None
    speaker: Optional[str] = None
    narration: Optional[str] = None
    # one of prompting.SCENE_CATEGORIES
    sceneCategory: Optional[str] = None


class GeneratedPanel(PanelScript):
    imageUrl: str = ""  # base64 payload
    mimeType: str = "image/png"
    status: PanelStatus = "pending"

    @classmethod
    def from_script(cls, script: PanelScript) -> "GeneratedPanel":
        return cls(**script.model_dump())

    def image_bytes(self) -> bytes:
        return base64.b64decode(self.imageUrl) if self.imageUrl else b""


class WebtoonScript(BaseModel):
    title: str
    panels: List[PanelScript]
    identityBlocks: Dict[str, str] = Field(default_factory=dict)


class SavedStory(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    date: float = Field(default_factory=time.time)
    artStyle: ArtStyle
    panels: List[GeneratedPanel]
    consistencySeed: Optional[int] = None
    # kept so a reloaded story regenerates with the same identity anchors
    characters: List[CharacterProfile] = Field(default_factory=list)


class StorySummary(BaseModel):
    id: str
    title: str
    date: float
    artStyle: ArtStyle
    panelCount: int
    errorCount: int
    # first finished panel, used as a thumbnail
    coverImage: str = ""
    coverMimeType: str = "image/png"
