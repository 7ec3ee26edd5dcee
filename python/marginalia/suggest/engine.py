from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import structlog

from marginalia.config import EngineSettings
from marginalia.diagnostics import Diagnostics
from marginalia.document import Document, from_text, to_text
from marginalia.models import Decoration, LiveItem, MatchResult, Proposal, ReconcileResult, Suggestion
from marginalia.suggest.matcher import SuggestionMatcher
from marginalia.suggest.reconciler import SuggestionReconciler
from marginalia.suggest.state import META_KEY, SuggestionAction, SuggestionState, Transaction

logger = structlog.get_logger(__name__)

StateListener = Callable[[SuggestionState], None]


class SuggestionEngine:
    """
    Host for a SuggestionState. Holds the only reference to the current
    state, applies transactions in dispatch order and keeps undo/redo
    snapshots. Listeners are called after every dispatch.
    """

    def __init__(
        self,
        doc: Union[Document, str, None] = None,
        diagnostics: Optional[Diagnostics] = None,
        settings: Optional[EngineSettings] = None,
    ):
        if doc is None or isinstance(doc, str):
            doc = from_text(doc or "")
        elif not isinstance(doc, Document):
            raise TypeError(f"Expected Document or str, got {type(doc).__name__}")

        self.settings = settings or EngineSettings()
        self.diagnostics = diagnostics
        self.state = SuggestionState.create(doc, self.settings)
        self.matcher = SuggestionMatcher(self.settings.matching, diagnostics)
        self.reconciler = SuggestionReconciler(self.settings.matching, diagnostics, matcher=self.matcher)
        self._undo: List[SuggestionState] = []
        self._redo: List[SuggestionState] = []
        self._listeners: List[StateListener] = []

    # --- Plumbing ---

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def transaction(self) -> Transaction:
        return Transaction(self.state.doc)

    def dispatch(self, tr: Transaction) -> SuggestionState:
        if tr.before is not self.state.doc:
            raise ValueError("Transaction was built against a stale document")

        previous = self.state
        self.state = previous.apply(tr, self.diagnostics)

        if self.settings.history_limit:
            self._undo.append(previous)
            del self._undo[: -self.settings.history_limit]
        self._redo.clear()

        self._notify()
        return self.state

    def _notify(self):
        for listener in list(self._listeners):
            listener(self.state)

    # --- Verbs ---

    def set_suggestions(self, proposals: Iterable[Union[Proposal, Dict[str, Any]]]) -> Tuple[int, int]:
        """
        Replaces the live suggestion set. Returns (applied, skipped); skipped
        items are listed in state.issues.
        """
        proposals = list(proposals)
        tr = self.transaction().set_meta(META_KEY, SuggestionAction.set(proposals))
        state = self.dispatch(tr)
        applied = len(state.suggestions)
        return applied, len(proposals) - applied

    def accept_suggestion(self, suggestion_id: str) -> bool:
        tr = self.state.accept_transaction(suggestion_id)
        if tr is None:
            logger.warning(f"Accept ignored: suggestion '{suggestion_id}' is not live.")
            if self.diagnostics is not None:
                self.diagnostics.on_event("engine.accept_unknown", suggestion_id=suggestion_id)
            return False
        self.dispatch(tr)
        return True

    def clear_all(self):
        self.dispatch(self.transaction().set_meta(META_KEY, SuggestionAction.clear()))

    def revise_suggestion(self, suggestion_id: str, replacement: str) -> bool:
        """Changes the replacement text of a live suggestion, keeping its id."""
        if self.state.find(suggestion_id) is None:
            logger.warning(f"Revise ignored: suggestion '{suggestion_id}' is not live.")
            return False
        self.dispatch(self.transaction().set_meta(META_KEY, SuggestionAction.revise(suggestion_id, replacement)))
        return True

    # --- User edits ---

    def replace_text(self, from_pos: int, to_pos: int, text: str) -> SuggestionState:
        return self.dispatch(self.transaction().replace(from_pos, to_pos, text))

    def insert_text(self, pos: int, text: str) -> SuggestionState:
        return self.dispatch(self.transaction().insert_text(pos, text))

    def delete_text(self, from_pos: int, to_pos: int) -> SuggestionState:
        return self.dispatch(self.transaction().delete(from_pos, to_pos))

    # --- Resynchronization ---

    def find_match(self, external: Union[Proposal, Suggestion, Dict[str, Any]]) -> Optional[MatchResult]:
        return self.matcher.find_match(external, self.state.suggestions)

    def reconcile(self, externals: Iterable[Union[Proposal, Suggestion, Dict[str, Any]]]) -> ReconcileResult:
        """
        Matches an external suggestion list against the live set. Items that
        cannot be matched but whose text is still in the document are added
        back as new live suggestions.
        """
        result = self.reconciler.reconcile(self.state, list(externals))
        if result.recreated:
            self.dispatch(self.transaction().set_meta(META_KEY, SuggestionAction.add(result.recreated)))
        return result

    # --- History ---

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    def undo(self) -> bool:
        if not self._undo:
            return False
        self._redo.append(self.state)
        self.state = self._undo.pop()
        self._notify()
        return True

    def redo(self) -> bool:
        if not self._redo:
            return False
        self._undo.append(self.state)
        self.state = self._redo.pop()
        self._notify()
        return True

    # --- Views ---

    @property
    def text(self) -> str:
        return to_text(self.state.doc)

    @property
    def items(self) -> Tuple[LiveItem, ...]:
        return self.state.items

    @property
    def suggestions(self) -> List[Suggestion]:
        return self.state.suggestions

    @property
    def decorations(self) -> Tuple[Decoration, ...]:
        return self.state.decorations
