import argparse
import json
import random
import string
from pathlib import Path
from typing import List, Optional

from . import config
from .errors import CaptureError, ReliveError
from .imaging import StripCapture, image_bytes_to_pil, pil_to_png_bytes, prepare_reference_image
from .models import ART_STYLES, CharacterProfile
from .orchestrator import build_orchestrator
from .session import StorySession
from .storage import JsonStoryStore
from .utils import PromptLogger, ensure_dir, slugify

DEMO_STORY = """\
The summer I turned nine, Grandpa taught me to ride a bike in the alley behind
his bakery in Busan. I fell so many times my knees were purple.

Years later I moved to Seoul for university. I failed my first exams and spent
a whole winter eating cup noodles in a tiny studio, wondering if I should quit.

I didn't. I graduated in the spring, and Grandpa came up on the KTX wearing his
only suit. He cried more than I did.

Now I run a small design studio. Last month I biked past that same alley and
the bakery was still there.
"""


def parse_photo_arg(value: str) -> CharacterProfile:
    """`path/to/photo.jpg` or `path/to/photo.jpg=Name`."""
    path, _, name = value.partition("=")
    p = Path(path)
    if not p.exists():
        raise argparse.ArgumentTypeError(f"Photo not found: {p}")
    name = name.strip() or p.stem.replace("_", " ").replace("-", " ").title()
    try:
        reference = prepare_reference_image(p.read_bytes())
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"{p}: {e}") from e
    return CharacterProfile(name=name, referenceImage=reference)


def write_outputs(session: StorySession, out_root: Path) -> None:
    panels_dir = out_root / "panels"
    ensure_dir(panels_dir)
    manifest = {
        "title": session.title,
        "artStyle": session.artStyle,
        "consistencySeed": session.consistencySeed,
        "savedId": session.savedId,
        "characters": [
            {"name": c.name, "identityBlock": c.identityBlock} for c in session.characters
        ],
        "panels": [],
    }
    for p in session.panels:
        entry = p.model_dump(exclude={"imageUrl", "mimeType"})
        if p.imageUrl:
            fname = f"panel-{p.panelId:03d}.png"
            png = pil_to_png_bytes(image_bytes_to_pil(p.image_bytes()))
            (panels_dir / fname).write_bytes(png)
            entry["file"] = f"panels/{fname}"
        manifest["panels"].append(entry)
    (out_root / "manifest.json").write_text(
        json.dumps(manifest, indent=2), encoding="utf-8")

    print(">> Stitching episode...")
    try:
        episode = StripCapture().capture_episode(session.title, session.panels)
    except CaptureError as e:
        print(f"[WARN] Could not build the episode image: {e}")
        return
    (out_root / "comic_final.jpg").write_bytes(episode)
    print(f"   ✓ {out_root / 'comic_final.jpg'}")


def run_pipeline(story_text: str, out_root: Path, characters: Optional[List[CharacterProfile]] = None,
                 art_style: str = "Webtoon") -> StorySession:
    ensure_dir(out_root)
    logger = PromptLogger(out_root / "prompts_used.txt")
    orchestrator = build_orchestrator(log=logger, store=JsonStoryStore())
    try:
        session = orchestrator.generate(
            story=story_text, characters=characters or [], art_style=art_style)
    finally:
        logger.flush()
    if session.error:
        raise ReliveError(session.error)
    write_outputs(session, out_root)
    return session


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Turn a personal story into an illustrated webtoon.")
    parser.add_argument("story", nargs="?", help="Text file with the story (demo story if omitted)")
    parser.add_argument("--photo", action="append", default=[], type=parse_photo_arg,
                        metavar="PATH[=NAME]", help="Reference photo of a person in the story")
    parser.add_argument("--style", default="Webtoon", choices=ART_STYLES)
    parser.add_argument("--out", type=Path, default=None, help="Output directory")
    args = parser.parse_args(argv)

    if len(args.photo) > config.MAX_CHARACTERS:
        parser.error(f"Max {config.MAX_CHARACTERS} people allowed")

    if args.story and Path(args.story).exists():
        story_text = Path(args.story).read_text(encoding="utf-8")
        slug = slugify(Path(args.story).stem)
    else:
        print("No input file given; using DEMO_STORY.")
        story_text = DEMO_STORY
        slug = "demo-story"

    out_dir = args.out
    if out_dir is None:
        run_id = "".join(random.choices(
            string.ascii_lowercase + string.digits, k=6))
        out_dir = config.OUTPUT_DIR / f"{slug}-{run_id}"

    try:
        run_pipeline(story_text, out_dir, args.photo, args.style)
    except ReliveError as e:
        print(f"[ERROR] {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
