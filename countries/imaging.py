import datetime
import logging
import os
from pathlib import Path

from django.conf import settings
from django.utils import timezone
from PIL import Image, ImageDraw, ImageFont
from PIL.PngImagePlugin import PngInfo

logger = logging.getLogger(__name__)

WIDTH = 600
HEIGHT = 400

TITLE = "Country API Data Summary"
RANKING_HEADING = "Top 5 Countries by Estimated GDP:"
PLACEHOLDER = "No data available."
FOOTER = "Data powered by restcountries.com and open.er-api.com"

# PNG text chunk holding the rendered lines
SUMMARY_KEY = "Summary"


def _font(size):
    try:
        return ImageFont.truetype("DejaVuSans.ttf", size)
    except OSError:
        return ImageFont.load_default()


def _draw_centered(draw, y, text, fill, font):
    x = (WIDTH - draw.textlength(text, font=font)) / 2
    draw.text((x, y), text, fill=fill, font=font)


def format_timestamp(timestamp):
    """e.g. 'Oct 28, 2025, 12:48:25 PM UTC'"""
    if timezone.is_naive(timestamp):
        timestamp = timestamp.replace(tzinfo=datetime.timezone.utc)
    ts = timestamp.astimezone(datetime.timezone.utc)
    hour = ts.hour % 12 or 12
    return f"{ts:%b} {ts.day}, {ts.year}, {hour}:{ts:%M:%S %p} UTC"


def format_amount(amount):
    if amount is None:
        return "N/A"
    return f"${round(amount):,}"


def summary_lines(total, timestamp, top):
    """The text drawn on the summary image, in drawing order."""
    lines = [
        TITLE,
        f"Total Countries Cached: {total}",
        f"Last Refreshed: {format_timestamp(timestamp)}",
        RANKING_HEADING,
    ]
    if top:
        for rank, country in enumerate(top, start=1):
            lines.append(f"{rank}. {country.name} ({format_amount(country.estimated_gdp)})")
    else:
        lines.append(PLACEHOLDER)
    lines.append(FOOTER)
    return lines


def generate_summary_image(total, timestamp, top):
    """
    Render the summary PNG to settings.SUMMARY_IMAGE_PATH, replacing any
    previous image. Render and write errors propagate.
    """
    lines = summary_lines(total, timestamp, top)
    title, total_line, refreshed_line, heading, *ranking, footer = lines

    img = Image.new("RGB", (WIDTH, HEIGHT), color=(240, 240, 240))
    draw = ImageDraw.Draw(img)

    _draw_centered(draw, 25, title, (0, 85, 170), _font(30))
    body = _font(20)
    draw.text((50, 80), total_line, fill=(51, 51, 51), font=body)
    draw.text((50, 110), refreshed_line, fill=(51, 51, 51), font=body)
    draw.text((50, 170), heading, fill="black", font=_font(18))

    y = 200
    entry = _font(16)
    for line in ranking:
        draw.text((60, y), line, fill="black", font=entry)
        y += 25

    _draw_centered(draw, HEIGHT - 30, footer, (153, 153, 153), _font(14))

    info = PngInfo()
    info.add_text(SUMMARY_KEY, "\n".join(lines))

    path = Path(settings.SUMMARY_IMAGE_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        img.save(tmp_path, format="PNG", pnginfo=info)
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise

    logger.info("Summary image saved to %s", path)
    return path


def ensure_summary_image():
    """Return the summary image path, drawing an empty placeholder first if none exists."""
    path = Path(settings.SUMMARY_IMAGE_PATH)
    if not path.exists():
        logger.info("Summary image not found, generating a placeholder")
        generate_summary_image(0, timezone.now(), [])
    return path
