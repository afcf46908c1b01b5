"""
analytics.py - Session event stream

Sinks receive session lifecycle events:
    session.started, move.made, session.completed, identity.disconnected

AnalyticsSink drops everything; EventLogAnalytics appends one JSON object
per line to events.jsonl in the data directory.
"""

import os
import json
import datetime
from typing import Any, Dict, List, Optional

import filelock

from connect4live.debug import debug

EVENTS_FILE = 'events.jsonl'

SESSION_STARTED = "session.started"
MOVE_MADE = "move.made"
SESSION_COMPLETED = "session.completed"
IDENTITY_DISCONNECTED = "identity.disconnected"


class AnalyticsSink:
    """Sink that ignores every event."""

    enabled = False

    def emit(self, event_type: str, session_id: Optional[str],
             identity_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None) -> None:
        pass


class EventLogAnalytics(AnalyticsSink):
    """Append-only JSON lines event log."""

    enabled = True

    def __init__(self, data_dir: str = 'data'):
        os.makedirs(data_dir, exist_ok=True)
        self.events_file = os.path.join(os.path.abspath(data_dir), EVENTS_FILE)
        self._lock = filelock.FileLock(f"{self.events_file}.lock")

    def emit(self, event_type: str, session_id: Optional[str],
             identity_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None) -> None:
        event = {
            "type": event_type,
            "sessionId": session_id,
            "identityId": identity_id,
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "data": data or {},
        }
        with self._lock:
            with open(self.events_file, 'a') as f:
                f.write(json.dumps(event) + "\n")
        debug.trace(f"Event {event_type} for session {session_id}", "analytics")

    def read_events(self, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Read back logged events, optionally of one type.

        Lines that fail to decode are skipped and logged.
        """
        if not os.path.exists(self.events_file):
            return []

        events = []
        with self._lock:
            with open(self.events_file, 'r') as f:
                for line_no, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        event = json.loads(line)
                    except json.JSONDecodeError:
                        debug.warning(f"Skipping corrupt event on line {line_no}", "analytics")
                        continue
                    if event_type is None or event.get("type") == event_type:
                        events.append(event)
        return events
