"""Utility modules for text handling and model-output JSON parsing.

All JSON recovery heuristics for model output live in json_utils (orjson
based). Extend that module rather than adding parsing to the client.
"""

from .text_utils import TextUtils
from .json_utils import JSONExtractionError, parse_json_object

__all__ = ["TextUtils", "JSONExtractionError", "parse_json_object"]
