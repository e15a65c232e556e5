# storage.py
import os
import re
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from . import config
from .errors import StorageError
from .models import SavedStory, StorySummary
from .utils import ensure_dir

SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class JsonStoryStore:
    """Saved stories as one JSON document per id, images baked in."""

    def __init__(self, root: Path = None):
        self.root = Path(root or config.STORIES_DIR)

    def _path(self, story_id: str) -> Path:
        if not story_id or not SAFE_ID.match(story_id):
            raise StorageError(f"Invalid story id: {story_id!r}")
        return self.root / f"{story_id}.json"

    def save(self, story: SavedStory) -> str:
        ensure_dir(self.root)
        path = self._path(story.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(story.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, path)
        return story.id

    def get(self, story_id: str) -> Optional[SavedStory]:
        path = self._path(story_id)
        if not path.exists():
            return None
        try:
            return SavedStory.model_validate_json(path.read_text(encoding="utf-8"))
        except (ValidationError, ValueError) as e:
            raise StorageError(f"Saved story {story_id} is corrupt: {e}") from e

    def list_all(self) -> List[StorySummary]:
        if not self.root.exists():
            return []
        summaries = []
        for p in self.root.glob("*.json"):
            try:
                story = SavedStory.model_validate_json(p.read_text(encoding="utf-8"))
            except (ValidationError, ValueError, OSError) as e:
                print(f"[WARN] Skipping unreadable saved story {p.name}: {e}")
                continue
            cover = next((x for x in story.panels if x.imageUrl), None)
            summaries.append(StorySummary(
                id=story.id,
                title=story.title,
                date=story.date,
                artStyle=story.artStyle,
                panelCount=len(story.panels),
                errorCount=sum(1 for x in story.panels if x.status == "error"),
                coverImage=cover.imageUrl if cover else "",
                coverMimeType=cover.mimeType if cover else "image/png",
            ))
        summaries.sort(key=lambda x: x.date, reverse=True)
        return summaries

    def delete(self, story_id: str) -> None:
        path = self._path(story_id)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
