"""Security validation gates for framescope."""

import json
import os
import re

# SEC-1: Image size caps (8192x8192 RGBA = 256 MB buffer)
MAX_IMAGE_DIMENSION = 16_384
MAX_IMAGE_PIXELS = 8192 * 8192

# SEC-2: Scopes per multi-scope request
MAX_SCOPES_PER_REQUEST = 8


def validate_image_dimensions(width: int, height: int) -> list[str]:
    """Validate declared image dimensions. Returns list of errors (empty = valid).

    Checks (SEC-1):
    - Each side <= MAX_IMAGE_DIMENSION
    - width * height <= MAX_IMAGE_PIXELS
    """
    errors: list[str] = []
    if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
        errors.append(
            f"Image {width}x{height} exceeds maximum side {MAX_IMAGE_DIMENSION} (SEC-1)"
        )
    if width * height > MAX_IMAGE_PIXELS:
        errors.append(
            f"Image has {width * height} pixels, maximum is {MAX_IMAGE_PIXELS} (SEC-1)"
        )
    return errors


def validate_scope_list(scope_types) -> list[str]:
    """Validate the scope_types list of a multi-scope request (SEC-2)."""
    errors: list[str] = []
    if not isinstance(scope_types, list) or not scope_types:
        errors.append("scope_types must be a non-empty list")
        return errors
    if len(scope_types) > MAX_SCOPES_PER_REQUEST:
        errors.append(
            f"{len(scope_types)} scopes requested, maximum is {MAX_SCOPES_PER_REQUEST} (SEC-2)"
        )
    if not all(isinstance(t, str) for t in scope_types):
        errors.append("scope_types entries must be strings")
    elif len(set(scope_types)) != len(scope_types):
        errors.append("scope_types contains duplicates")
    return errors


# --- PII stripping for Sentry, crash dumps and error stacks ---

_HOME = os.path.expanduser("~")
_USERNAME = os.path.basename(_HOME)
_PATH_PATTERN = re.compile(r"/Users/[^/\s]+|/home/[^/\s]+|C:\\Users\\[^\\\s]+")
_SENSITIVE_KEYS = {"_token", "token", "auth", "key", "secret", "password", "dsn"}


def _scrub_dict(d: dict):
    """Redact values for keys that look sensitive."""
    for key in list(d.keys()):
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            d[key] = "<REDACTED>"


def strip_pii_text(text: str) -> str:
    """Replace home directory, username and user paths in free text."""
    if _HOME and _HOME != "/":
        text = text.replace(_HOME, "<HOME>")
    if _USERNAME:
        text = text.replace(_USERNAME, "<USER>")
    return _PATH_PATTERN.sub("<REDACTED_PATH>", text)


def strip_pii(event: dict, hint: dict) -> dict:
    """Sentry before_send hook. Strips file paths and auth tokens.

    Also usable for crash dump sanitization.
    """
    event = json.loads(strip_pii_text(json.dumps(event)))

    # Strip sensitive keys from extra/context/tags
    _scrub_dict(event.get("extra", {}))
    for ctx in event.get("contexts", {}).values():
        if isinstance(ctx, dict):
            _scrub_dict(ctx)
    return event
