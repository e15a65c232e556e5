# identity.py
"""
Character Identity Blocks (CIB).

The Director writes one physical-identity paragraph per character. This
module turns that map into the authoritative anchors stored on each
profile: names are matched case-insensitively, clothing is scrubbed out,
fixed hair is enforced and missing entries fall back to a minimal
synthetic block. Nothing here ever rewrites a CIB that is already set.
"""
import re
from typing import Dict, List, Optional, Tuple

from .models import CharacterProfile
from .utils import PromptLogger

CLOTHING_RE = re.compile(
    r"\b(dressed|outfits?|clothes|clothing|attire|"
    r"t-shirts?|shirts?|blouses?|jackets?|coats?|hoodies?|sweaters?|jeans|pants|"
    r"trousers|skirts?|dress(?:es)?|suits?|uniforms?|shoes|sneakers|boots|scarf|scarves)\b",
    re.IGNORECASE,
)
SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")
# separators are kept by split() so surviving clauses rejoin unchanged
CLAUSE_RE = re.compile(r"(,\s*|;\s*|\s+(?:and|but|while)\s+)", re.IGNORECASE)
LEADING_CONJUNCTION_RE = re.compile(r"^(?:and|but|while)\s+", re.IGNORECASE)


def fallback_identity_block(name: str) -> str:
    return f"A person named {name}"


def _scrub_sentence(sentence: str) -> str:
    end = sentence[-1] if sentence[-1] in ".!?" else ""
    parts = CLAUSE_RE.split(sentence[:-1] if end else sentence)
    clauses, separators = parts[0::2], parts[1::2]
    out = ""
    for i, clause in enumerate(clauses):
        if not clause.strip() or CLOTHING_RE.search(clause):
            continue
        out = f"{out}{separators[i - 1]}{clause}" if out else clause
    out = LEADING_CONJUNCTION_RE.sub("", out.strip())
    if not out:
        return ""
    return out[0].upper() + out[1:] + (end or ".")


def scrub_clothing(text: str) -> str:
    """
    Drop every clause that talks about clothing.

    "Wears" on its own is not clothing: eyewear, earrings and piercings are
    identity markers and stay. Sentences are split on commas, semicolons and
    and/but/while, and only the clauses naming a garment are removed.
    """
    sentences = SENTENCE_RE.split((text or "").strip())
    kept = [_scrub_sentence(s) for s in sentences if s]
    return " ".join(s for s in kept if s).strip()


def enforce_fixed_hair(cib: str, hair: Optional[str]) -> str:
    if not hair or hair.lower() in cib.lower():
        return cib
    return f"{cib} Hair (fixed): {hair}."


def _lookup(blocks: Dict[str, str], name: str) -> Optional[str]:
    if name in blocks:
        return blocks[name]
    wanted = name.strip().lower()
    for key, value in blocks.items():
        if key.strip().lower() == wanted:
            return value
    return None


def resolve_identity_block(profile: CharacterProfile, blocks: Dict[str, str]) -> Tuple[str, bool]:
    """Return (cib, degraded) for one profile."""
    raw = _lookup(blocks, profile.name)
    cib = scrub_clothing(raw) if isinstance(raw, str) else ""
    if not cib:
        return fallback_identity_block(profile.name), True
    return enforce_fixed_hair(cib, profile.hairOverride), False


def anchor_characters(characters: List[CharacterProfile], blocks: Dict[str, str],
                      log: PromptLogger = None) -> Tuple[List[CharacterProfile], List[str]]:
    """
    Attach a CIB to every profile of a fresh story.

    Returns the updated profiles and the names that had to fall back to the
    synthetic block. Profiles must not carry a CIB yet.
    """
    anchored, degraded = [], []
    for c in characters:
        cib, is_fallback = resolve_identity_block(c, blocks)
        if is_fallback:
            degraded.append(c.name)
            print(
                f"[WARN] No usable identity block for '{c.name}', using fallback.")
        anchored.append(c.with_identity_block(cib))
        if log:
            log.log(f"CHARACTER_IDENTITY_BLOCK [{c.name}]", cib)
    return anchored, degraded


def identity_anchor(profile: Optional[CharacterProfile], override: Optional[str] = None) -> Optional[str]:
    """The exact CIB text an image request should carry."""
    if override:
        return override
    if profile is None:
        return None
    return profile.identityBlock
