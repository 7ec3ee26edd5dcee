"""
Optional observation hooks. The engine, matcher and reconciler accept a
Diagnostics object at construction and call on_event() at interesting points;
with none supplied nothing is emitted beyond ordinary logging.
"""

from typing import Any, Dict, List, Protocol, Tuple

import structlog


class Diagnostics(Protocol):
    def on_event(self, event: str, **fields: Any) -> None: ...


class StructlogDiagnostics:
    """Forwards events to a structlog logger at debug level."""

    def __init__(self, name: str = "marginalia.diagnostics"):
        self.logger = structlog.get_logger(name)

    def on_event(self, event: str, **fields: Any) -> None:
        self.logger.debug(event, **fields)


class RecordingDiagnostics:
    """Keeps every event in memory. Handy in tests."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def on_event(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def of(self, event: str) -> List[Dict[str, Any]]:
        return [fields for name, fields in self.events if name == event]
