# imaging.py
import io
import time
from typing import List, Optional

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError
from pydantic import BaseModel

from . import config
from .errors import CaptureError
from .models import GeneratedPanel, ReferenceImage

FONT_PATHS = [
    "/System/Library/Fonts/Helvetica.ttc",  # macOS
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",  # Linux
    "arial.ttf"  # Windows
]


def sniff_mime(data: bytes) -> str:
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/png"


def image_bytes_to_pil(b: bytes) -> Image.Image:
    return Image.open(io.BytesIO(b)).convert("RGBA")


def pil_to_png_bytes(img: Image.Image) -> bytes:
    """Converts a PIL Image object to PNG bytes."""
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def pil_to_jpeg_bytes(img: Image.Image, quality: int = 85) -> bytes:
    buf = io.BytesIO()
    img.convert("RGB").save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def flatten_on_white(img: Image.Image) -> Image.Image:
    if img.mode in ('RGBA', 'LA', 'P'):
        # Convert to RGB for JPEG
        if img.mode == 'P':
            img = img.convert('RGBA')
        background = Image.new('RGB', img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        return background
    return img.convert("RGB")


def prepare_reference_image(raw: bytes, max_size: int = None) -> ReferenceImage:
    """Downscale an uploaded photo and re-encode it as JPEG to keep request bodies small."""
    max_size = max_size or config.REFERENCE_MAX_SIZE
    try:
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Not a readable image: {e}") from e
    if img.size[0] > max_size or img.size[1] > max_size:
        img.thumbnail((max_size, max_size), Image.LANCZOS)
    img = flatten_on_white(img)
    return ReferenceImage.from_bytes(pil_to_jpeg_bytes(img, config.REFERENCE_JPEG_QUALITY), "image/jpeg")


def load_font(size: int):
    for font_path in FONT_PATHS:
        try:
            return ImageFont.truetype(font_path, size)
        except OSError:
            continue
    return ImageFont.load_default()


def draw_centered(draw, center, text: str, font, fill) -> None:
    # anchors are not supported by bitmap fonts, so measure instead
    bbox = draw.textbbox((0, 0), text, font=font)
    x = center[0] - (bbox[2] - bbox[0]) // 2
    y = center[1] - (bbox[3] - bbox[1]) // 2
    draw.text((x, y), text, fill=fill, font=font)


def wrap_text(text: str, font, max_width: int, draw) -> List[str]:
    """
    Wrap text to fit within a maximum width, breaking at word boundaries.
    """
    words = text.split()
    lines = []
    current_line = ""

    for word in words:
        test_line = current_line + (" " if current_line else "") + word
        bbox = draw.textbbox((0, 0), test_line, font=font)
        if bbox[2] - bbox[0] <= max_width:
            current_line = test_line
        else:
            if current_line:
                lines.append(current_line)
            # a single over-long word still gets its own line
            current_line = word

    if current_line:
        lines.append(current_line)

    return lines

# ------------------ CAPTURE ---------------------


class CaptureOptions(BaseModel):
    scale: float = 1.0
    background: str = "#ffffff"
    # seconds allowed for decoding panel assets, 0 waits indefinitely
    image_timeout: float = 0


PANEL_CAPTURE = CaptureOptions(scale=3, background="#ffffff")
EPISODE_CAPTURE = CaptureOptions(scale=2, background="#fafaf9")


class StripCapture:
    """
    Renders what the reader sees: the panel art with its caption and speech
    boxes composited on top, one panel or the whole strip.
    """

    def __init__(self, panel_width: int = None):
        self.panel_width = panel_width or config.PANEL_WIDTH

    def _decode(self, panel: GeneratedPanel, width: int, deadline: Optional[float]) -> Image.Image:
        if deadline is not None and time.monotonic() > deadline:
            raise CaptureError("Timed out waiting for panel images")
        if not panel.imageUrl:
            raise CaptureError(f"Panel {panel.panelId} has no image")
        try:
            img = image_bytes_to_pil(panel.image_bytes())
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise CaptureError(
                f"Panel {panel.panelId} image is unreadable: {e}") from e
        height = int(img.size[1] * width / img.size[0])
        return img.resize((width, height), resample=Image.LANCZOS)

    def _placeholder(self, panel: GeneratedPanel, width: int) -> Image.Image:
        tile = Image.new("RGBA", (width, int(width * 4 / 3)), "#e7e5e4")
        draw = ImageDraw.Draw(tile)
        font = load_font(max(14, width // 30))
        draw_centered(draw, (width // 2, tile.size[1] // 2), f"Panel {panel.panelId} unavailable",
                      font=font, fill="#78716c")
        return tile

    def _overlay_text(self, img: Image.Image, panel: GeneratedPanel, scale: float) -> Image.Image:
        if not panel.dialogue and not panel.narration:
            return img
        img = img.copy()
        draw = ImageDraw.Draw(img)
        width, height = img.size
        font = load_font(int(16 * scale))
        padding = int(8 * scale)
        margin = int(12 * scale)
        line_height = draw.textbbox((0, 0), "Ay", font=font)[3]

        y = margin
        # narration caption sits top-left, in the clear upper third
        if panel.narration:
            lines = wrap_text(panel.narration, font, int(width * 0.6), draw)
            box_w = max(draw.textbbox((0, 0), l, font=font)[2]
                        for l in lines) + 2 * padding
            box_h = line_height * len(lines) + 2 * padding
            draw.rectangle([margin, y, margin + box_w, y + box_h],
                           fill="#f5f5f4", outline="black", width=max(1, int(2 * scale)))
            for i, line in enumerate(lines):
                draw.text((margin + padding, y + padding + i * line_height),
                          line, fill="black", font=font)
            y += box_h + margin

        if panel.dialogue:
            text = f"{panel.speaker}: {panel.dialogue}" if panel.speaker else panel.dialogue
            lines = wrap_text(text, font, int(width * 0.45), draw)
            box_w = max(draw.textbbox((0, 0), l, font=font)[2]
                        for l in lines) + 2 * padding
            box_h = line_height * len(lines) + 2 * padding
            x = width - box_w - margin
            y = min(y, height - box_h - margin)
            draw.rounded_rectangle([x, y, x + box_w, y + box_h], radius=int(12 * scale),
                                   fill="white", outline="black", width=max(1, int(3 * scale)))
            for i, line in enumerate(lines):
                draw.text((x + padding, y + padding + i * line_height),
                          line, fill="black", font=font)
        return img

    def capture_panel(self, panel: GeneratedPanel, options: CaptureOptions = PANEL_CAPTURE) -> bytes:
        deadline = time.monotonic() + options.image_timeout if options.image_timeout else None
        width = int(self.panel_width * options.scale)
        img = self._overlay_text(self._decode(
            panel, width, deadline), panel, options.scale)
        canvas = Image.new("RGB", img.size, options.background)
        canvas.paste(img, (0, 0), img)
        return pil_to_jpeg_bytes(canvas, quality=95)

    def capture_episode(self, title: str, panels: List[GeneratedPanel],
                        options: CaptureOptions = EPISODE_CAPTURE) -> bytes:
        if not panels:
            raise CaptureError("No panels to stitch together")
        deadline = time.monotonic() + options.image_timeout if options.image_timeout else None
        width = int(self.panel_width * options.scale)

        tiles = []
        for p in sorted(panels, key=lambda x: x.panelId):
            if p.status == "complete" and p.imageUrl:
                tiles.append(self._overlay_text(
                    self._decode(p, width, deadline), p, options.scale))
            else:
                tiles.append(self._placeholder(p, width))

        title_font = load_font(int(32 * options.scale))
        small_font = load_font(int(12 * options.scale))
        header_h = int(120 * options.scale)
        footer_h = int(90 * options.scale)
        total_h = header_h + sum(t.size[1] for t in tiles) + footer_h

        canvas = Image.new("RGB", (width, total_h), options.background)
        draw = ImageDraw.Draw(canvas)
        draw_centered(draw, (width // 2, header_h // 2), title,
                      font=title_font, fill="#1c1917")
        y = header_h
        for t in tiles:
            canvas.paste(t, (0, y), t)
            y += t.size[1]
        draw_centered(draw, (width // 2, y + footer_h // 3), "RE:LIVE",
                      font=title_font, fill="#a8a29e")
        draw_centered(draw, (width // 2, y + 2 * footer_h // 3), "MEMORIES REIMAGINED",
                      font=small_font, fill="#a8a29e")
        return pil_to_jpeg_bytes(canvas, quality=85)

# ------------------ EXPORT ----------------------


def export_panel(panel: GeneratedPanel, capture: Optional[StripCapture] = None):
    """
    Returns (bytes, mime type, captured). Falls back to the raw panel image
    when the capture service is missing or fails.
    """
    if capture is not None:
        try:
            return capture.capture_panel(panel), "image/jpeg", True
        except CaptureError as e:
            print(
                f"[WARN] Panel {panel.panelId} capture failed, using raw image: {e}")
    if not panel.imageUrl:
        raise CaptureError(f"Panel {panel.panelId} has no image to download")
    return panel.image_bytes(), panel.mimeType, False


def export_episode(title: str, panels: List[GeneratedPanel], capture: Optional[StripCapture] = None) -> bytes:
    if capture is None:
        raise CaptureError("Download module not ready. Please try again in a moment.")
    return capture.capture_episode(title, panels)
