# prompting.py
"""
Fixed prompt vocabulary shared by the Director and the Illustrator:
art-style recipes, the scene-archetype table, lighting moods and the
composition rule.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel

from .models import ArtStyle

STYLE_RECIPES: Dict[str, str] = {
    "Anime": "High-quality Anime art style, Kyoto Animation aesthetic, detailed eyes, cinematic lighting, beautiful scenery.",
    "Manga": "Modern Manga style, black and white ink with screentones, highly detailed background, dramatic composition.",
    "Chibi": "Chibi style, super deformed, cute, large head ratio, simple shading.",
    "Painterly": "Digital Painterly style, soft brushstrokes, atmospheric lighting, detailed background art.",
    "Webtoon": "Premium Webtoon style, crisp lineart, vibrant cel-shading, manhwa aesthetic, vertical format composition, highly detailed backgrounds.",
    "Ghibli": "Studio Ghibli style, Hayao Miyazaki aesthetic, hand-painted watercolor backgrounds, lush greenery, soft natural lighting, nostalgic atmosphere, clean character lines.",
    "Cinematic": "Cinematic digital illustration, film still framing, anamorphic depth of field, rich color grading, realistic proportions.",
}

LIGHTING_RULES: Dict[str, str] = {
    "cold": "Cold, desaturated palette with blue-grey shadows and low-key light; the mood is heavy and quiet.",
    "warm": "Warm, high-key lighting with golden highlights and lifted shadows; the mood is bright and hopeful.",
    "neutral": "Neutral cinematic lighting with natural contrast and balanced color.",
}

COMPOSITION_RULE = (
    "Place the subject in the lower two-thirds of the frame. Keep the upper third "
    "visually clear (sky, wall, ceiling or soft background) so text can be overlaid later. "
    "Do NOT draw any text, letters, captions or speech bubbles."
)


class SceneCategory(BaseModel):
    name: str
    cues: List[str]
    outfit: str
    # words that identify an outfit as belonging to this category
    outfitFamily: List[str]
    lighting: str


SCENE_CATEGORIES: Dict[str, SceneCategory] = {c.name: c for c in [
    SceneCategory(
        name="struggle",
        cues=["reject", "rejection", "fail", "failure", "lost", "lonely", "grief",
              "cry", "crying", "sad", "struggle", "fired", "breakup", "alone", "tears"],
        outfit="Home clothes: worn hoodie, oversized t-shirt, sweatpants or pajamas. Setting is dim and tidy, a bedroom or couch, no food or takeout clutter.",
        outfitFamily=["hoodie", "sweatpants", "pajama", "t-shirt", "tee",
                      "loungewear", "sweater", "home clothes", "sleepwear"],
        lighting="cold",
    ),
    SceneCategory(
        name="professional",
        cues=["interview", "signing", "contract", "offer", "office", "meeting",
              "presentation", "boss", "job", "work", "hired", "pitch"],
        outfit="Business attire: tailored suit or blazer, dress shirt, neat formal shoes.",
        outfitFamily=["suit", "blazer", "dress shirt",
                      "tie", "business", "pencil skirt", "formal"],
        lighting="neutral",
    ),
    SceneCategory(
        name="graduation",
        cues=["graduat", "commencement", "diploma", "degree", "cap and gown"],
        outfit="Graduation regalia in the institution's actual colors: gown, cap, hood or stole specific to the school named in the story.",
        outfitFamily=["gown", "regalia", "mortarboard", "stole", "cap and"],
        lighting="warm",
    ),
    SceneCategory(
        name="celebration",
        cues=["celebrat", "party", "won", "win", "success", "cheer", "wedding",
              "birthday", "promotion", "accepted", "proud", "joy"],
        outfit="Festive outfit suited to the occasion: party dress, smart shirt, wedding attire or cultural festive wear.",
        outfitFamily=["party", "festive", "wedding",
                      "cocktail", "sequin", "kurta", "saree", "lehenga"],
        lighting="warm",
    ),
    SceneCategory(
        name="romance",
        cues=["date", "love", "kiss", "romantic", "proposal", "crush"],
        outfit="Date outfit: nice casual, a soft knit, a simple dress or a clean jacket.",
        outfitFamily=["knit", "sundress", "date", "dress", "cardigan"],
        lighting="warm",
    ),
    SceneCategory(
        name="childhood",
        cues=["child", "kid", "school", "playground",
              "young", "little", "elementary"],
        outfit="Age-appropriate kids' clothes or the school uniform of that era; the character is drawn as a child.",
        outfitFamily=["uniform", "kids", "child",
                      "overalls", "backpack", "school"],
        lighting="neutral",
    ),
    SceneCategory(
        name="travel",
        cues=["trip", "travel", "hike", "beach", "airport",
              "journey", "lake", "mountain", "road"],
        outfit="Practical travel or outdoor wear: windbreaker, hiking boots, sun hat, light layers.",
        outfitFamily=["windbreaker", "hiking", "boots",
                      "sun hat", "shorts", "travel", "rain jacket"],
        lighting="neutral",
    ),
    SceneCategory(
        name="everyday",
        cues=[],
        outfit="Everyday casual clothes that fit the action and season: jeans, shirt, light jacket.",
        outfitFamily=["jeans", "casual", "shirt", "jacket", "sneakers"],
        lighting="neutral",
    ),
]}

DEFAULT_CATEGORY = "everyday"


def style_recipe(style: ArtStyle) -> str:
    return STYLE_RECIPES.get(style, STYLE_RECIPES["Anime"])


def detect_category(text: str) -> str:
    """Best-effort category for a panel the Director did not tag."""
    lowered = (text or "").lower()
    for name, category in SCENE_CATEGORIES.items():
        if any(cue in lowered for cue in category.cues):
            return name
    return DEFAULT_CATEGORY


def panel_category(category: Optional[str], visual_description: str) -> str:
    if category and category.strip().lower() in SCENE_CATEGORIES:
        return category.strip().lower()
    return detect_category(visual_description)


def outfit_family(outfit: str) -> Optional[str]:
    """Which category an outfit string reads like, if any."""
    lowered = (outfit or "").lower()
    for name, category in SCENE_CATEGORIES.items():
        if any(word in lowered for word in category.outfitFamily):
            return name
    return None


def lighting_for(category: str) -> str:
    mood = SCENE_CATEGORIES.get(category, SCENE_CATEGORIES[DEFAULT_CATEGORY]).lighting
    return LIGHTING_RULES[mood]


def category_table() -> str:
    """The archetype table as embedded in the Director prompt."""
    rows = []
    for name, category in SCENE_CATEGORIES.items():
        cues = ", ".join(category.cues[:6]) or "anything else"
        rows.append(f"- {name} (e.g. {cues}): {category.outfit}")
    return "\n".join(rows)
