"""prompt-guard — reversible PII redaction for chat prompts."""

from .redactor import Redactor, RedactorConfig
from .vault import RedactionMap, assign_or_reuse_token
from .detector import Detector, LayeredDetector, RegexDetector
from .exclusions import ExclusionMatcher, is_excluded
from .restorer import restore, restore_html, restore_text, toggle_chip
from .streaming import StreamingRestorer
from .storage import ConversationStore, MemoryStore, SqliteStore
from .conversation import PENDING, ConversationId, parse_conversation_id
from .session import ProtectionSession, SubmitResult
from .debounce import RestoreDebouncer
from .config import ConfigError, create_session, load_config, load_from_yaml
from .types import Chip, Literal, PIISpan, PIIType, Redaction, RedactionResult

__all__ = [
    "Redactor", "RedactorConfig",
    "RedactionMap", "assign_or_reuse_token",
    "Detector", "LayeredDetector", "RegexDetector",
    "ExclusionMatcher", "is_excluded",
    "restore", "restore_html", "restore_text", "toggle_chip",
    "StreamingRestorer",
    "ConversationStore", "MemoryStore", "SqliteStore",
    "PENDING", "ConversationId", "parse_conversation_id",
    "ProtectionSession", "SubmitResult",
    "RestoreDebouncer",
    "ConfigError", "create_session", "load_config", "load_from_yaml",
    "Chip", "Literal", "PIISpan", "PIIType", "Redaction", "RedactionResult",
]
__version__ = "0.1.0"
