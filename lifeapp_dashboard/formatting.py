from __future__ import annotations

import json
import re
from datetime import date, datetime

DEFAULT_HEX_COLOR = "#4285f4"
ZODIAC_SYMBOLS = {
    "Aries": "♈",
    "Taurus": "♉",
    "Gemini": "♊",
    "Cancer": "♋",
    "Leo": "♌",
    "Virgo": "♍",
    "Libra": "♎",
    "Scorpio": "♏",
    "Sagittarius": "♐",
    "Capricorn": "♑",
    "Aquarius": "♒",
    "Pisces": "♓",
}
ZODIAC_FALLBACK = "⭐"
_SYMBOL_PREFIX_RE = re.compile("^[\U0001F300-\U0001F9FF\u2600-\u26FF\\s\uFE0F]*")
_FLAG_RE = re.compile("^([\U0001F1E6-\U0001F1FF]{2})\\s*")
_HEX_RE = re.compile(r"^[0-9A-Fa-f]{6}$")


def _parse_date(value) -> date | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        return None


def format_date(value) -> str:
    """``"1990-06-05"`` -> ``"June 5, 1990"``; empty string when unparsable."""
    parsed = _parse_date(value)
    if not parsed:
        return ""
    return f"{parsed.strftime('%B')} {parsed.day}, {parsed.year}"


def calculate_age(birth_date, today: date | None = None) -> int | None:
    born = _parse_date(birth_date)
    if not born:
        return None
    today = today or date.today()
    age = today.year - born.year
    if (today.month, today.day) < (born.month, born.day):
        age -= 1
    return age


def extract_zodiac_sign(star_sign: str | None) -> str:
    if not star_sign:
        return ""
    return _SYMBOL_PREFIX_RE.sub("", star_sign).strip() or star_sign


def zodiac_symbol(sign: str | None) -> str:
    return ZODIAC_SYMBOLS.get(extract_zodiac_sign(sign), ZODIAC_FALLBACK)


def extract_flag(location: str | None) -> tuple[str, str]:
    if not location:
        return "", ""
    match = _FLAG_RE.match(location)
    if not match:
        return "", location
    return match.group(1), location[match.end() :].strip()


def country_code(flag: str) -> str | None:
    if len(flag) != 2 or not all(0x1F1E6 <= ord(ch) <= 0x1F1FF for ch in flag):
        return None
    return "".join(chr(ord(ch) - 0x1F1E6 + ord("A")) for ch in flag)


def tier_name(tier) -> str:
    """Tier label from a string, JSON text, ``{name, color}``, or a list of either."""
    if not tier:
        return ""
    if isinstance(tier, str):
        stripped = tier.strip()
        if stripped[:1] in ("{", "[") and len(stripped) > 1:
            try:
                return tier_name(json.loads(stripped))
            except ValueError:
                return tier
        return tier
    if isinstance(tier, dict):
        name = tier.get("name")
        return name if isinstance(name, str) else ""
    if isinstance(tier, (list, tuple)):
        return tier_name(tier[0]) if tier else ""
    return str(tier)


def normalize_hex_color(color: str | None) -> str:
    if not color:
        return DEFAULT_HEX_COLOR
    value = color.strip().lstrip("#")
    if len(value) == 3:
        value = "".join(ch * 2 for ch in value)
    if not _HEX_RE.match(value):
        return DEFAULT_HEX_COLOR
    return f"#{value.lower()}"


def luminance(color: str | None) -> float:
    value = normalize_hex_color(color)[1:]
    channels = [int(value[i : i + 2], 16) / 255 for i in (0, 2, 4)]
    linear = [c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4 for c in channels]
    return 0.2126 * linear[0] + 0.7152 * linear[1] + 0.0722 * linear[2]


def contrast_ratio(first: str | None, second: str | None) -> float:
    lighter, darker = sorted((luminance(first), luminance(second)), reverse=True)
    return (lighter + 0.05) / (darker + 0.05)


def contrast_text_color(background: str | None) -> str:
    """``"dark"`` text on light backgrounds, ``"light"`` otherwise."""
    return "dark" if luminance(background) > 0.5 else "light"


def contrast_text_color_hex(background: str | None) -> str:
    background = normalize_hex_color(background)
    black = contrast_ratio("#000000", background)
    white = contrast_ratio("#ffffff", background)
    return "#000000" if black > white else "#ffffff"


def format_duration(hours: float | None) -> str:
    if hours is None:
        return ""
    total = round(hours * 60)
    hrs, mins = divmod(total, 60)
    if hrs == 0:
        return f"{mins}m"
    if mins == 0:
        return f"{hrs} hr"
    return f"{hrs} hr {mins} min"


def format_duration_short(minutes: int) -> str:
    hrs, mins = divmod(int(minutes), 60)
    return f"{mins}m" if hrs == 0 else f"{hrs}h {mins}m"


def format_time_for_input(value: datetime) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"
