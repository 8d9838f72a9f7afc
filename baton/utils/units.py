"""Parse the memory and duration strings used in graphs and config files."""

import re

MEMORY_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*\.?\s*([KMGT]?)(?:I?B)?\s*$", re.IGNORECASE)
DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(ms|d|h|m|s)", re.IGNORECASE)

MEMORY_UNITS_MB = {
    "K": 1 / 1024,
    "": 1,
    "M": 1,
    "G": 1024,
    "T": 1024 * 1024,
}

DURATION_UNITS_SECONDS = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}


def parse_memory_mb(value: str | int | float) -> int:
    """Parse a memory amount into megabytes.

    Bare numbers are megabytes. Accepts "4 GB", "4G", "4.GB", "512MB", "2TB".

    @raises ValueError: The value is not a memory amount
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a memory amount: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)

    match = MEMORY_RE.match(value)
    if match is None:
        raise ValueError(f"Not a memory amount: {value!r}")

    amount, unit = match.groups()
    return max(1, int(float(amount) * MEMORY_UNITS_MB[unit.upper()]))


def parse_duration_seconds(value: str | int | float) -> int:
    """Parse a duration into whole seconds.

    Bare numbers are seconds. Accepts scheduler clock formats ("24:00:00",
    "1-12:00:00", "30:00") and unit strings ("2h", "1h 30m", "1d", "45s").

    @raises ValueError: The value is not a duration
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a duration: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)

    text = value.strip()

    if ":" in text:
        return _parse_clock(text)

    parts = DURATION_PART_RE.findall(text)
    if not parts or DURATION_PART_RE.sub("", text).strip():
        raise ValueError(f"Not a duration: {value!r}")

    return int(sum(float(amount) * DURATION_UNITS_SECONDS[unit.lower()] for amount, unit in parts))


def _parse_clock(text: str) -> int:
    days = 0
    if "-" in text:
        day_text, text = text.split("-", 1)
        if not day_text.isdigit():
            raise ValueError(f"Not a duration: {text!r}")
        days = int(day_text)

    fields = text.split(":")
    if len(fields) > 3 or not all(field.isdigit() for field in fields):
        raise ValueError(f"Not a duration: {text!r}")

    # [[hh:]mm:]ss
    seconds = 0
    for field in fields:
        seconds = seconds * 60 + int(field)
    return days * 86400 + seconds


def format_walltime(seconds: int) -> str:
    """Format seconds as a scheduler walltime, D-HH:MM:SS or HH:MM:SS."""

    days, remainder = divmod(int(seconds), 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, secs = divmod(remainder, 60)
    clock = f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{days}-{clock}" if days else clock
