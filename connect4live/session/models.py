"""
models.py - Identities and sessions

This module provides:
1. Identity, an immutable human or bot participant
2. Session, one two-party match bound to a rules engine
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from connect4live.debug import debug
from connect4live.errors import IdentityNotInSession, NotYourTurn, SessionOver
from connect4live.game.rules import MoveResult, RulesEngine
from connect4live.game.win_checker import winning_line
from connect4live.utils import Player, GameStatus, winning_positions_to_list

BOT_NAME = "Bot"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IdentityKind(Enum):
    HUMAN = "human"
    BOT = "bot"


@dataclass(frozen=True)
class Identity:
    """A participant: opaque id, display name and kind."""
    id: str
    name: str
    kind: IdentityKind = IdentityKind.HUMAN

    @classmethod
    def human(cls, name: str) -> 'Identity':
        return cls(str(uuid.uuid4()), name, IdentityKind.HUMAN)

    @classmethod
    def bot(cls, name: str = BOT_NAME) -> 'Identity':
        return cls(str(uuid.uuid4()), name, IdentityKind.BOT)

    @property
    def is_bot(self) -> bool:
        return self.kind == IdentityKind.BOT

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "name": self.name, "kind": self.kind.value}


@dataclass(frozen=True)
class MoveRecord:
    identity_id: str
    column: int
    row: int
    played_at: datetime = field(default_factory=utc_now)


class Session:
    """
    One two-party Connect Four match.

    ``first`` plays player 1 and moves first, ``second`` plays player 2. The
    identity to move is always derived from the engine's turn counter.
    """

    def __init__(self, session_id: str, first: Identity, second: Identity,
                 engine: Optional[RulesEngine] = None):
        """
        Initialize a session.

        Args:
            session_id: Unique session id
            first: Identity playing player 1
            second: Identity playing player 2
            engine: Optional engine to resume from (a fresh one otherwise)
        """
        if first.id == second.id:
            raise ValueError("A session needs two distinct identities")
        self.id = session_id
        self.first = first
        self.second = second
        self.engine = engine or RulesEngine()
        self.created_at = utc_now()
        self.last_move_at = self.created_at
        self.moves: List[MoveRecord] = []
        self.forfeit = False
        self._winner_id: Optional[str] = None
        self._finished = False

        if self.engine.is_over:
            self._resolve_recovered_outcome()

    def _resolve_recovered_outcome(self):
        """Adopt the outcome of a resumed position whose last move is unknown."""
        winner = self.engine.winner()
        if winner is not None:
            self._winner_id = self.identity_for_player(winner).id
        self._finished = True

    @property
    def identities(self) -> Tuple[Identity, Identity]:
        return self.first, self.second

    def identity_for_player(self, player: int) -> Identity:
        return self.first if player == Player.ONE.value else self.second

    def player_for(self, identity_id: str) -> int:
        """
        Player number of a participant.

        Raises:
            IdentityNotInSession: If the identity does not play in this session
        """
        if identity_id == self.first.id:
            return Player.ONE.value
        if identity_id == self.second.id:
            return Player.TWO.value
        raise IdentityNotInSession(identity_id, self.id)

    def has_identity(self, identity_id: str) -> bool:
        return identity_id in (self.first.id, self.second.id)

    def identity_by_name(self, name: str) -> Optional[Identity]:
        for identity in self.identities:
            if identity.name == name:
                return identity
        return None

    def opponent_of(self, identity_id: str) -> Identity:
        return self.second if self.player_for(identity_id) == Player.ONE.value else self.first

    @property
    def current_identity(self) -> Identity:
        return self.identity_for_player(self.engine.current_player)

    def is_turn_of(self, identity_id: str) -> bool:
        return self.current_identity.id == identity_id

    @property
    def is_over(self) -> bool:
        return self._finished

    @property
    def status(self) -> GameStatus:
        if self._winner_id is not None:
            return GameStatus.WON
        if self._finished:
            return GameStatus.DRAWN
        return GameStatus.IN_PROGRESS

    @property
    def winner(self) -> Optional[Identity]:
        if self._winner_id is None:
            return None
        return self.first if self._winner_id == self.first.id else self.second

    def make_move(self, column: int, identity_id: str) -> MoveResult:
        """
        Play a move for a participant.

        Args:
            column: Column to play
            identity_id: The identity attempting the move

        Returns:
            The engine's MoveResult

        Raises:
            IdentityNotInSession: If the identity is not a participant
            SessionOver: If the session already ended
            NotYourTurn: If it is the other participant's turn
            InvalidMove: If the column is full or out of range
        """
        self.player_for(identity_id)
        if self._finished:
            raise SessionOver(self.id)
        if not self.is_turn_of(identity_id):
            raise NotYourTurn(identity_id, self.current_identity.id)

        mover = self.current_identity
        result = self.engine.apply_move(column)
        self.last_move_at = utc_now()
        self.moves.append(MoveRecord(identity_id, column, result.row, self.last_move_at))

        if result.status == GameStatus.WON:
            self._winner_id = mover.id
            self._finished = True
        elif result.status == GameStatus.DRAWN:
            self._finished = True

        debug.trace(f"Session {self.id}: {mover.name} played column {column} -> {result.status.value}", "session")
        return result

    def finish_by_forfeit(self, loser_id: str) -> Identity:
        """
        End the session with the other participant as winner.

        Returns:
            The winning identity

        Raises:
            SessionOver: If the session already ended
        """
        winner = self.opponent_of(loser_id)
        if self._finished:
            raise SessionOver(self.id)
        self._winner_id = winner.id
        self._finished = True
        self.forfeit = True
        self.last_move_at = utc_now()
        return winner

    def _winning_cells(self) -> List[List[int]]:
        if self.forfeit or self._winner_id is None or not self.moves:
            return []
        last = self.moves[-1]
        return winning_positions_to_list(winning_line(self.engine.board, last.row, last.column))

    def to_dict(self) -> Dict[str, Any]:
        """Full session state payload sent to clients."""
        winner = self.winner
        return {
            "id": self.id,
            "first": self.first.to_dict(),
            "second": self.second.to_dict(),
            "currentTurn": self.current_identity.to_dict(),
            "status": self.status.value,
            "board": self.engine.board.to_rows(),
            "winner": winner.to_dict() if winner else None,
            "winningLine": self._winning_cells(),
            "forfeit": self.forfeit,
            "moves": [[m.identity_id, m.column, m.row] for m in self.moves],
            "createdAt": self.created_at.isoformat(),
            "lastMoveAt": self.last_move_at.isoformat(),
        }

    def __repr__(self) -> str:
        return f"Session({self.id!r}, {self.first.name!r} vs {self.second.name!r}, {self.status.value})"
