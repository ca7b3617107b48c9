"""Helpers for base64 `data:` URIs, the format results travel in."""
import base64
import binascii

_PREFIX = "data:"
_BASE64_MARKER = ";base64,"


def to_data_uri(data: bytes, mime_type: str) -> str:
    return f"{_PREFIX}{mime_type}{_BASE64_MARKER}{base64.standard_b64encode(data).decode()}"


def parse_data_uri(uri: str) -> tuple[str, bytes]:
    """Split a base64 data URI into (mime_type, raw bytes).

    Raises ValueError for anything that is not a base64 data URI.
    """
    if not uri.startswith(_PREFIX) or _BASE64_MARKER not in uri:
        raise ValueError("not a base64 data URI")
    header, payload = uri[len(_PREFIX):].split(_BASE64_MARKER, 1)
    try:
        data = base64.b64decode(payload, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"invalid base64 payload: {exc}") from exc
    return header or "text/plain", data
