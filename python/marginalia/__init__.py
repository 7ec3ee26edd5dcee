from importlib.metadata import PackageNotFoundError, version

from marginalia.document import Document, from_text, to_text
from marginalia.models import ConflictGroup, Proposal, Suggestion
from marginalia.suggest.engine import SuggestionEngine

try:
    __version__ = version("marginalia")
except PackageNotFoundError:
    # Running from a source checkout without an installed distribution.
    __version__ = "0.0.0-dev"

__all__ = [
    "SuggestionEngine",
    "Document",
    "Proposal",
    "Suggestion",
    "ConflictGroup",
    "from_text",
    "to_text",
    "__version__",
]
