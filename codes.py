# codes.py

import secrets
import string

from config import CODE_LENGTH


# ─── CODE GENERATOR ─────────────────────────────────────────

def generate_code(length: int = CODE_LENGTH) -> str:
    """Uniform random numeric code, zero-padded to a fixed width."""
    return "".join(secrets.choice(string.digits) for _ in range(length))


def is_valid_code(code, length: int = CODE_LENGTH) -> bool:
    if not isinstance(code, str) or len(code) != length:
        return False
    # str.isdigit() accepts non-ASCII digits like "²"
    return all(ch in string.digits for ch in code)


# ─── DISPLAY ───────────────────────────────────────────────

def format_file_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    size = float(num_bytes)
    unit = 0
    while size >= 1024 and unit < len(units) - 1:
        size /= 1024
        unit += 1
    return f"{round(size, 2):g} {units[unit]}"
