# director.py
"""
Script Director: one text-generation request that plans the whole episode,
returning the title, one identity block per character and the panel list.
"""
import json
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from . import config
from .errors import ReliveError, ScriptGenerationError, TransientProviderError
from .models import ArtStyle, CharacterProfile, PanelScript, WebtoonScript
from .prompting import SCENE_CATEGORIES, category_table, outfit_family, panel_category
from .resilience import RetryPolicy
from .utils import PromptLogger, fill, first_json_block, load_prompt

DIRECTOR_TEMPLATE = load_prompt("director")
DESCRIPTOR_TEMPLATE = load_prompt("character_descriptor")
UNTITLED = "Untitled Memory"


class IdentityBlockEntry(BaseModel):
    name: str
    cib: str


class ScriptResponse(BaseModel):
    title: str = ""
    characterIdentityBlocks: List[IdentityBlockEntry] = Field(
        default_factory=list)
    panels: List[PanelScript]


def describe_characters(characters: List[CharacterProfile]) -> str:
    if not characters:
        return "- the protagonist (no reference photo; infer a fitting look from the story)"
    lines = []
    for c in characters:
        lines.append(fill(
            DESCRIPTOR_TEMPLATE,
            name=c.name,
            hair=c.hairOverride or "consistent with photo",
            outfit=c.outfitOverride or "variable based on story context",
            accessories=", ".join(c.accessories) or "None",
            palette=c.colorPalette or "Natural",
            notes=c.notes.strip() or "None",
        ).strip())
    return "\n".join(lines)


def build_director_prompt(story: str, characters: List[CharacterProfile], art_style: ArtStyle,
                          min_panels: int = None, max_panels: int = None) -> str:
    return fill(
        DIRECTOR_TEMPLATE,
        story=story.strip(),
        characters=describe_characters(characters),
        art_style=art_style,
        min_panels=config.MIN_PANELS if min_panels is None else min_panels,
        max_panels=config.MAX_PANELS if max_panels is None else max_panels,
        scene_categories=category_table(),
        category_names=", ".join(SCENE_CATEGORIES),
    )


def parse_script_response(raw) -> ScriptResponse:
    """Accept a parsed model, a dict or free-form JSON text; anything else fails."""
    try:
        if isinstance(raw, ScriptResponse):
            return raw
        if isinstance(raw, BaseModel):
            return ScriptResponse.model_validate(raw.model_dump())
        if isinstance(raw, dict):
            return ScriptResponse.model_validate(raw)
        if isinstance(raw, str) and raw.strip():
            return ScriptResponse.model_validate(json.loads(first_json_block(raw)))
    except (ValueError, ValidationError) as e:
        raise ScriptGenerationError(f"Malformed script response: {e}") from e
    raise ScriptGenerationError("Failed to generate script: empty response")


def outfit_warnings(panels: List[PanelScript]) -> List[str]:
    """Flag outfits reused verbatim across different scene categories or clashing with their scene."""
    warnings = []
    first_seen: Dict[str, PanelScript] = {}
    for p in panels:
        category = panel_category(p.sceneCategory, p.visualDescription)
        key = p.panelOutfit.strip().lower()
        prev = first_seen.get(key)
        if prev is not None:
            prev_category = panel_category(
                prev.sceneCategory, prev.visualDescription)
            if prev_category != category:
                warnings.append(
                    f"Panel {p.panelId} repeats the outfit of panel {prev.panelId} "
                    f"across unrelated scenes ({prev_category} vs {category})")
        else:
            first_seen[key] = p
        family = outfit_family(p.panelOutfit)
        if category == "struggle" and family == "professional":
            warnings.append(
                f"Panel {p.panelId} is a struggle beat but wears business attire")
    return warnings


def validate_script(resp: ScriptResponse, characters: List[CharacterProfile],
                    min_panels: int = None, max_panels: int = None) -> WebtoonScript:
    min_panels = config.MIN_PANELS if min_panels is None else min_panels
    max_panels = config.MAX_PANELS if max_panels is None else max_panels

    panels = sorted(resp.panels, key=lambda x: x.panelId)
    if not min_panels <= len(panels) <= max_panels:
        raise ScriptGenerationError(
            f"Script has {len(panels)} panels, expected {min_panels}-{max_panels}")

    ids = [p.panelId for p in panels]
    if len(set(ids)) != len(ids):
        raise ScriptGenerationError(f"Duplicate panel ids in script: {ids}")

    fixed_outfit = characters[0].outfitOverride if characters else None
    cleaned = []
    for p in panels:
        if not p.visualDescription.strip():
            raise ScriptGenerationError(
                f"Panel {p.panelId} has no visual description")
        outfit = p.panelOutfit.strip() or (fixed_outfit or "")
        if not outfit:
            raise ScriptGenerationError(f"Panel {p.panelId} has no outfit")
        category = p.sceneCategory.strip().lower() if p.sceneCategory else None
        cleaned.append(p.model_copy(update={
            "panelOutfit": outfit,
            "sceneCategory": category if category in SCENE_CATEGORIES else None,
        }))

    blocks = {e.name.strip(): e.cib for e in resp.characterIdentityBlocks if e.name.strip()}
    return WebtoonScript(title=resp.title.strip() or UNTITLED, panels=cleaned, identityBlocks=blocks)


class ScriptDirector:
    def __init__(self, client, retry: RetryPolicy = None, log: PromptLogger = None,
                 min_panels: int = None, max_panels: int = None):
        self.client = client
        self.retry = retry or RetryPolicy()
        self.log = log or PromptLogger()
        self.min_panels = config.MIN_PANELS if min_panels is None else min_panels
        self.max_panels = config.MAX_PANELS if max_panels is None else max_panels

    def write_script(self, story: str, characters: List[CharacterProfile], art_style: ArtStyle) -> WebtoonScript:
        prompt = build_director_prompt(
            story, characters, art_style, self.min_panels, self.max_panels)
        self.log.log("SCRIPT_PROMPT", prompt)
        images = [(c.referenceImage.raw(), c.referenceImage.mimeType)
                  for c in characters]

        try:
            raw = self.retry.call(
                lambda: self.client.generate_structured(
                    prompt, ScriptResponse, images=images),
                label="script generation")
        except TransientProviderError as e:
            raise ScriptGenerationError(
                f"Script generation failed after retries: {e}") from e
        except ReliveError:
            raise
        except Exception as e:
            raise ScriptGenerationError(f"Script generation failed: {e}") from e

        self.log.log("SCRIPT_RESPONSE", str(raw))
        script = validate_script(parse_script_response(
            raw), characters, self.min_panels, self.max_panels)

        warnings = outfit_warnings(script.panels)
        if warnings:
            print("   Validation warnings:")
            for w in warnings:
                print(f"     - {w}")
            self.log.log("SCRIPT_WARNINGS", "\n".join(warnings))
        return script
