# illustrator.py
from typing import Optional

from .errors import PanelGenerationError
from .identity import identity_anchor
from .imaging import sniff_mime
from .models import ArtStyle, CharacterProfile
from .prompting import COMPOSITION_RULE, lighting_for, panel_category, style_recipe
from .resilience import RetryPolicy
from .utils import PromptLogger, fill, load_prompt

PANEL_TEMPLATE = load_prompt("panel")


def build_outfit_block(outfit: Optional[str], character: Optional[CharacterProfile]) -> str:
    outfit = outfit or (character.outfitOverride if character else None)
    if not outfit:
        return "OUTFIT: Choose clothing that fits the scene and time period."
    return (
        "MANDATORY OUTFIT (HIGHEST PRIORITY)\n"
        f"The character wears exactly: {outfit}.\n"
        "This overrides any clothing visible in the reference photo or implied anywhere else."
    )


def build_identity_block(character: Optional[CharacterProfile], cib: Optional[str]) -> str:
    if character is None and not cib:
        return ""
    lines = [
        "CHARACTER IDENTITY BLOCK (CIB) - STRICT ADHERENCE REQUIRED",
        "---------------------------------------------------------",
    ]
    if character is not None:
        lines.append(f"NAME: {character.name}")
    if cib:
        lines.append(f"IDENTITY: {cib}")
    if character is not None:
        if character.hairOverride:
            lines.append(f"FIXED HAIR: {character.hairOverride}")
        lines.append(
            f"ACCESSORIES: {', '.join(character.accessories) or 'None'}")
        if character.colorPalette:
            lines.append(f"COLOR PALETTE: {character.colorPalette}")
        if character.notes.strip():
            lines.append(
                f"NOTES (advisory, never override the photo): {character.notes.strip()}")
    lines.append("---------------------------------------------------------")
    return "\n".join(lines)


def build_reference_block(character: Optional[CharacterProfile]) -> str:
    if character is None:
        return ""
    return (
        "REFERENCE PHOTO (attached):\n"
        "- Use it as GROUND TRUTH for facial structure, eye shape, nose, jawline, skin tone, hair texture and ethnicity.\n"
        "- Do NOT copy the clothing in the photo. Clothing comes only from the MANDATORY OUTFIT."
    )


def build_panel_prompt(visual_description: str, art_style: ArtStyle,
                       character: Optional[CharacterProfile] = None, cib: Optional[str] = None,
                       outfit: Optional[str] = None, scene_category: Optional[str] = None) -> str:
    category = panel_category(scene_category, visual_description)
    prompt = fill(
        PANEL_TEMPLATE,
        outfit_block=build_outfit_block(outfit, character),
        identity_block=build_identity_block(character, cib),
        reference_block=build_reference_block(character),
        style=style_recipe(art_style),
        scene=visual_description.strip(),
        lighting=lighting_for(category),
        composition=COMPOSITION_RULE,
    )
    # collapse the gaps left by empty blocks
    while "\n\n\n" in prompt:
        prompt = prompt.replace("\n\n\n", "\n\n")
    return prompt.strip()


class PanelIllustrator:
    """Draws exactly one panel per call. Never writes identity blocks."""

    def __init__(self, client, retry: RetryPolicy = None, log: PromptLogger = None):
        self.client = client
        self.retry = retry or RetryPolicy()
        self.log = log or PromptLogger()

    def draw(self, visual_description: str, art_style: ArtStyle,
             character: Optional[CharacterProfile] = None, cib: Optional[str] = None,
             seed: Optional[int] = None, outfit: Optional[str] = None,
             scene_category: Optional[str] = None, label: str = "panel"):
        """Returns (image bytes, mime type)."""
        anchor = identity_anchor(character, cib)
        prompt = build_panel_prompt(
            visual_description, art_style, character, anchor, outfit, scene_category)
        self.log.log(f"PANEL_PROMPT [{label}] seed={seed}", prompt)

        reference = None
        if character is not None:
            reference = (character.referenceImage.raw(),
                         character.referenceImage.mimeType)

        image = self.retry.call(
            lambda: self.client.generate_image(
                prompt, reference=reference, seed=seed),
            label=f"{label} image")
        if not image:
            raise PanelGenerationError("No image generated in response")
        return image, sniff_mime(image)
