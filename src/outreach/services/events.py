from __future__ import annotations

import json
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path


@dataclass
class EventLogger:
    """Structured event sink shared by the services.

    Events are appended as NDJSON to ``path`` when enabled. ``counts`` is
    always kept, keyed by ``(component, event_type)``.
    """

    path: Path | None
    workspace: str
    enabled: bool = True
    counts: Counter = field(default_factory=Counter)

    def log(
        self,
        *,
        component: str,
        event_type: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        fields: Iterable[str] | None = None,
        detail: str | None = None,
    ) -> None:
        self.counts[(component, event_type)] += 1
        if not self.enabled or self.path is None:
            return
        payload = {
            "ts": datetime.now(UTC).replace(microsecond=0).isoformat(),
            "workspace": self.workspace,
            "component": component,
            "event_type": event_type,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "fields": list(fields or []),
        }
        if detail:
            payload["detail"] = detail
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload) + "\n")

    def count(self, component: str, event_type: str) -> int:
        return self.counts[(component, event_type)]


def emit(logger: EventLogger | None, **kwargs) -> None:
    if logger is not None:
        logger.log(**kwargs)
