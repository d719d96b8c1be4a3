"""coach/observability.py

Fire-and-forget per-request logging to ``ai_observability_logs``.
"""

from __future__ import annotations

# Standard Library
import logging
from collections.abc import Sequence

# Local Modules
from coach.models import ObservabilityRecord
from coach.store import RecordStore

logger = logging.getLogger(__name__)

SUMMARY_LENGTH = 200


class ObservabilityLogger:
    """Writes one append-only record per request.

    ``record`` never raises: a failing store only produces a warning so the
    user-facing response is never affected.
    """

    table = "ai_observability_logs"

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def record(
        self,
        user_id: str,
        function_name: str,
        tools_called: Sequence[str],
        response_summary: str,
        response_time_ms: int,
        model_used: str,
        intervention_triggered: bool,
        input_summary: str = "",
        intervention_type: str | None = None,
    ) -> bool:
        """Insert one observability row.

        Returns:
            ``True`` if the row was written, ``False`` if logging failed.
        """
        entry = ObservabilityRecord(
            user_id=user_id,
            function_name=function_name,
            tools_called=tuple(tools_called),
            response_summary=(response_summary or "")[:SUMMARY_LENGTH],
            response_time_ms=int(response_time_ms),
            model_used=model_used,
            intervention_triggered=intervention_triggered,
            input_summary=(input_summary or "")[:SUMMARY_LENGTH],
            intervention_type=intervention_type,
        )
        try:
            self.store.insert(self.table, entry.to_row())
        except Exception as exc:
            logger.warning("[observability] failed to log %s for user=%s: %s", function_name, user_id, exc)
            return False
        logger.debug("[observability] logged %s tools=%s", function_name, list(tools_called))
        return True
