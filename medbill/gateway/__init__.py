from .client import SuggestionGateway, parse_code_reply, parse_medication_reply, strip_code_fences
from .service import SuggestionResult, analyze_upload, suggest_codes, suggest_medications

__all__ = [
    "SuggestionGateway",
    "SuggestionResult",
    "analyze_upload",
    "parse_code_reply",
    "parse_medication_reply",
    "strip_code_fences",
    "suggest_codes",
    "suggest_medications",
]
