import json
import math
import re
from typing import Any

from ..config import Config


class TextUtils:
    """Utility class for text processing operations."""

    @staticmethod
    def truncate_text(text: Any, limit: int) -> str:
        """Truncate text to specified limit with indicator."""
        try:
            s = text if isinstance(text, str) else json.dumps(text, ensure_ascii=False)
        except (TypeError, ValueError):
            s = str(text)
        if limit <= 0 or len(s) <= limit:
            return s
        tail = len(s) - limit
        return f"{s[:limit]}... [truncated {tail} chars]"

    @staticmethod
    def preview(text: str, limit: int = None) -> str:
        """Single-line preview of a chunk for log output."""
        if limit is None:
            limit = Config.LOG_PREVIEW_MAX
        return TextUtils.truncate_text(re.sub(r"\s+", " ", text or "").strip(), limit)

    @staticmethod
    def count_chunks(byte_length: int, chunk_size: int) -> int:
        return math.ceil(byte_length / chunk_size) if byte_length > 0 else 0

    @staticmethod
    def slice_bytes(data: bytes, order: int, chunk_size: int) -> bytes:
        start = order * chunk_size
        return data[start:start + chunk_size]

    @staticmethod
    def decode_chunk(data: bytes) -> str:
        """Decode a byte chunk; a chunk boundary may split a multi-byte character."""
        return data.decode("utf-8", errors="replace")
