"""
data_manager.py - Persistence of identities and completed sessions

This module stores display names, completed session results and the win
counts behind the leaderboard, using JSON files in a data directory.
Writes go through a temporary file and a move under a file lock.
"""

import os
import json
import shutil
import datetime
from typing import Dict, List, Any, Optional

import filelock

from connect4live.debug import debug

IDENTITIES_FILE = 'identities.json'
SESSIONS_FILE = 'sessions.json'

DEFAULT_LEADERBOARD_SIZE = 10


# File utility functions
def safe_read_json(file_path: str, lock: Optional[filelock.FileLock] = None, default: Any = None) -> Any:
    """
    Safely read a JSON file with file locking.

    Args:
        file_path: Path to JSON file
        lock: Lock guarding the file (a fresh one is used when omitted)
        default: Value returned when the file is missing or corrupt

    Returns:
        Parsed JSON data
    """
    if default is None:
        default = []
    if not os.path.exists(file_path):
        return default

    with lock or filelock.FileLock(f"{file_path}.lock"):
        try:
            with open(file_path, 'r') as f:
                return json.load(f)
        except json.JSONDecodeError:
            debug.error(f"Error decoding JSON from {file_path}", "data")
            return default


def safe_write_json(file_path: str, data: Any, lock: Optional[filelock.FileLock] = None) -> bool:
    """
    Safely write data to a JSON file with atomic updates.

    Args:
        file_path: Path to JSON file
        data: Data to write
        lock: Lock guarding the file (a fresh one is used when omitted)

    Returns:
        True if successful, False otherwise
    """
    with lock or filelock.FileLock(f"{file_path}.lock"):
        try:
            # Write to a temporary file first
            temp_file = f"{file_path}.tmp"
            with open(temp_file, 'w') as f:
                json.dump(data, f, indent=2)

            # Replace the original file (atomic operation)
            shutil.move(temp_file, file_path)
            return True
        except (OSError, TypeError, ValueError) as e:
            debug.error(f"Error writing to {file_path}: {e}", "data")
            return False


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class DataManager:
    """
    JSON-file store for identities and completed sessions.

    identities.json maps stored identity id to {id, name, kind,
    sessions_played, sessions_won, created_at}. Every live connection gets
    a fresh identity id, so an incoming identity is matched to its stored
    record by display name when the id is unknown; results of a returning
    player accumulate on one record. sessions.json maps session id to the
    final record of that session.
    """

    def __init__(self, data_dir: str = 'data'):
        """
        Initialize the store.

        Args:
            data_dir: Directory holding the JSON files (created if missing)
        """
        self.data_dir = os.path.abspath(data_dir)
        os.makedirs(self.data_dir, exist_ok=True)

        self.identities_file = os.path.join(self.data_dir, IDENTITIES_FILE)
        self.sessions_file = os.path.join(self.data_dir, SESSIONS_FILE)

        # One lock object per file so read-modify-write can nest reads and writes
        self._identities_lock = filelock.FileLock(f"{self.identities_file}.lock")
        self._sessions_lock = filelock.FileLock(f"{self.sessions_file}.lock")

        debug.debug(f"Data directory: {self.data_dir}", "data")

    def _read_identities(self) -> Dict[str, Dict[str, Any]]:
        return safe_read_json(self.identities_file, self._identities_lock, default={})

    def _read_sessions(self) -> Dict[str, Dict[str, Any]]:
        return safe_read_json(self.sessions_file, self._sessions_lock, default={})

    @staticmethod
    def _new_identity(identity_id: str, name: str, kind: str = "human") -> Dict[str, Any]:
        return {
            "id": identity_id,
            "name": name,
            "kind": kind,
            "sessions_played": 0,
            "sessions_won": 0,
            "created_at": _now_iso(),
        }

    @staticmethod
    def _by_name(identities: Dict[str, Dict[str, Any]], name: str,
                 kind: str = "human") -> Optional[Dict[str, Any]]:
        for record in identities.values():
            if record["name"] == name and record.get("kind", "human") == kind:
                return record
        return None

    def _resolve(self, identities: Dict[str, Dict[str, Any]], identity_id: str, name: str,
                 kind: str = "human") -> Dict[str, Any]:
        """Stored record for an identity: by id, then by name, else a new one."""
        record = identities.get(identity_id) or self._by_name(identities, name, kind)
        if record is None:
            record = self._new_identity(identity_id, name, kind)
            identities[identity_id] = record
        return record

    def upsert_identity(self, identity_id: str, name: str, kind: str = "human") -> Optional[str]:
        """
        Insert an identity, or refresh the display name of a known one.

        An unknown id whose name is already stored resolves to the stored
        record instead of creating a second one.

        Args:
            identity_id: Identity id
            name: Current display name
            kind: "human" or "bot"

        Returns:
            The stored identity id, or None if the write failed
        """
        with self._identities_lock:
            identities = self._read_identities()
            known = identities.get(identity_id)
            if known is not None:
                known["name"] = name
                record = known
            else:
                record = self._resolve(identities, identity_id, name, kind)

            if safe_write_json(self.identities_file, identities, self._identities_lock):
                debug.trace(f"Stored identity {name} ({record['id']})", "data")
                return record["id"]

        debug.error(f"Failed to store identity {identity_id}", "data")
        return None

    def record_completed_session(self, session: Dict[str, Any]) -> bool:
        """
        Store the final state of a session and update win counts.

        Participants are credited on their stored records. Recording the
        same session twice does not count the result again.

        Args:
            session: Session payload as produced by Session.to_dict()

        Returns:
            True if successful, False otherwise
        """
        session_id = session["id"]
        first = session["first"]
        second = session["second"]
        winner = session.get("winner")
        winner_id = winner["id"] if winner else None

        with self._sessions_lock:
            sessions = self._read_sessions()
            if session_id in sessions:
                debug.debug(f"Session {session_id} was already recorded, counts unchanged", "data")
                return True

            with self._identities_lock:
                identities = self._read_identities()
                stored = {}
                for participant in (first, second):
                    entry = self._resolve(identities, participant["id"], participant["name"],
                                          participant.get("kind", "human"))
                    entry["sessions_played"] += 1
                    if participant["id"] == winner_id:
                        entry["sessions_won"] += 1
                    stored[participant["id"]] = entry["id"]

                if not safe_write_json(self.identities_file, identities, self._identities_lock):
                    debug.error(f"Failed to update win counts for session {session_id}", "data")
                    return False

            sessions[session_id] = {
                "id": session_id,
                "first_id": stored[first["id"]],
                "first_name": first["name"],
                "second_id": stored[second["id"]],
                "second_name": second["name"],
                "winner_id": stored.get(winner_id),
                "status": session["status"],
                "forfeit": bool(session.get("forfeit", False)),
                "board": session["board"],
                "moves": session.get("moves", []),
                "created_at": session.get("createdAt"),
                "completed_at": session.get("lastMoveAt") or _now_iso(),
            }
            if not safe_write_json(self.sessions_file, sessions, self._sessions_lock):
                debug.error(f"Failed to record session {session_id}", "data")
                return False

        debug.info(f"Recorded session {session_id} ({session['status']}, winner {winner_id})", "data")
        return True

    def get_identity_stats(self, identity_id: str) -> Optional[Dict[str, Any]]:
        """
        Get the stored record of one identity.

        Returns:
            Identity record or None if not found
        """
        return self._read_identities().get(identity_id)

    def find_identity(self, name: str) -> Optional[Dict[str, Any]]:
        """Get the stored record of a human by display name."""
        return self._by_name(self._read_identities(), name)

    def get_leaderboard(self, limit: int = DEFAULT_LEADERBOARD_SIZE) -> List[Dict[str, Any]]:
        """
        Rank human identities by sessions won.

        Ties are broken by name. Each entry carries a 1-based rank.

        Args:
            limit: Maximum number of entries

        Returns:
            List of {rank, id, name, sessions_won, sessions_played}
        """
        humans = [r for r in self._read_identities().values() if r.get("kind", "human") == "human"]
        humans.sort(key=lambda r: (-r.get("sessions_won", 0), r.get("name", "")))

        leaderboard = []
        for rank, record in enumerate(humans[:limit], start=1):
            leaderboard.append({
                "rank": rank,
                "id": record["id"],
                "name": record["name"],
                "sessions_won": record.get("sessions_won", 0),
                "sessions_played": record.get("sessions_played", 0),
            })
        return leaderboard

    def get_completed_sessions(self, identity_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Get completed session records, newest first.

        Args:
            identity_id: Only return sessions this identity took part in

        Returns:
            List of session records
        """
        records = list(self._read_sessions().values())
        if identity_id is not None:
            records = [r for r in records if identity_id in (r["first_id"], r["second_id"])]
        records.sort(key=lambda r: r.get("completed_at") or "", reverse=True)
        return records
