# utils.py
import json
import re
from pathlib import Path
from typing import List

from . import config

# ------------------ PROMPTS -----------------------


def load_prompt(name: str) -> str:
    p = config.PROMPTS_DIR / f"{name}.txt"
    if not p.exists():
        raise FileNotFoundError(f"Prompt file not found: {p}")
    return p.read_text(encoding="utf-8")


def fill(template: str, **kv) -> str:
    """Replace only specific placeholders, leaving JSON braces alone."""
    out = template
    for k, v in kv.items():
        out = out.replace(f"{{{k}}}", str(v))
    return out

# ------------------ UTILITIES ---------------------


def ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


def slugify(text: str, fallback: str = "item") -> str:
    text = text.strip().lower()
    text = re.sub(r"[^a-z0-9]+", "-", text).strip("-")
    return text or fallback


def first_json_block(s: str) -> str:
    """Return the largest JSON object or array embedded in free-form model output."""
    decoder = json.JSONDecoder()
    best_chunk = None
    for m in re.finditer(r"[\{\[]", s):
        try:
            _, end = decoder.raw_decode(s, m.start())
        except ValueError:
            continue
        chunk = s[m.start():end]
        if best_chunk is None or len(chunk) > len(best_chunk):
            best_chunk = chunk
    if best_chunk:
        return best_chunk
    raise ValueError("No valid JSON in model output")

# --- Simple prompt logger (stdout + file) ---


class PromptLogger:
    def __init__(self, out_file: Path = None, echo: bool = None):
        self.out_file = out_file
        self.echo = config.PRINT_PROMPTS if echo is None else echo
        self.lines: List[str] = []

    def log(self, title: str, content: str):
        block = f"\n===== {title} =====\n{str(content).strip()}\n"
        self.lines.append(block)
        if self.echo:
            print(block)

    def flush(self):
        if self.out_file is None:
            return
        self.out_file.write_text("".join(self.lines), encoding="utf-8")
