import json
import logging
import time
from pathlib import Path
from typing import Dict, Optional, Union


logger = logging.getLogger(__name__)


class DecisionAuditor:
    """Appends every order decision and fill, with the instrument snapshot, to a JSONL file."""

    def __init__(self, log_path: Optional[Union[str, Path]] = None):
        self.log_path = Path(log_path or 'logs/decision_audit.jsonl')
        self.entries_written = 0

    def record(self, event_type: str, snapshot: Dict, details: Dict):
        payload = {
            'timestamp': time.time(),
            'event': event_type,
            'symbol': snapshot.get('symbol'),
            'state': snapshot,
            'details': details,
        }
        self._write_entry(payload)

    def _write_entry(self, payload: Dict):
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with self.log_path.open('a', encoding='utf-8') as handle:
                handle.write(json.dumps(payload, default=str) + '\n')
            self.entries_written += 1
        except OSError as exc:
            logger.error("Failed to persist decision audit log: %s", exc)
