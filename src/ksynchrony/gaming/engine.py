"""
Gaming Engine

Each game move is anchored to the network as a micro-transaction. Moves are
applied optimistically and flipped to confirmed by the reconciler once the
node reports an accepting block.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ksynchrony.core.event_registry import EventRegistry, TrackedItem
from ksynchrony.core.exceptions import GameError
from ksynchrony.core.validation import validate_entity_id

logger = logging.getLogger(__name__)


@dataclass
class GameMove(TrackedItem):
    player_id: str = ""

    @property
    def game_id(self) -> str:
        return self.entity_id

    @property
    def move(self) -> Any:
        return self.payload

    @property
    def tx_id(self) -> str:
        return self.reference

    def to_dict(self) -> Dict[str, Any]:
        return {
            "game_id": self.entity_id,
            "player_id": self.player_id,
            "move": self.payload,
            "timestamp": self.submitted_at,
            "tx_id": self.reference,
            "confirmed": self.confirmed,
        }


@dataclass
class GameState:
    game_id: str
    game_type: str
    players: List[str]
    scores: Dict[str, int] = field(default_factory=dict)
    ended: bool = False
    created_at: float = field(default_factory=time.time)
    last_update: float = field(default_factory=time.time)
    ordering_score: int = 0


@dataclass
class LeaderboardEntry:
    player_id: str
    score: int = 0
    wins: int = 0
    games: int = 0


@dataclass
class Leaderboard:
    game_type: str
    entries: List[LeaderboardEntry] = field(default_factory=list)
    last_update: float = field(default_factory=time.time)


class GameRegistry(EventRegistry[GameMove]):
    """Move log that also stamps games with the latest tip ordering score."""

    kind = "game_move"

    def __init__(self) -> None:
        super().__init__()
        self.games: Dict[str, GameState] = {}
        self._games_lock = threading.Lock()

    def add_game(self, game: GameState) -> bool:
        """Register a new game; False if the id is already taken."""
        with self._games_lock:
            if game.game_id in self.games:
                return False
            self.games[game.game_id] = game
        self.register(game.game_id)
        return True

    def observe_tip(self, tip_score: int) -> None:
        super().observe_tip(tip_score)
        with self._games_lock:
            games = list(self.games.values())
        for game in games:
            game.ordering_score = tip_score


def default_move_reference(game_id: str, player_id: str, move: Any) -> str:
    data = json.dumps(
        {"gameId": game_id, "playerId": player_id, "move": move, "timestamp": time.time()},
        sort_keys=True,
        default=str,
    )
    return f"tx_{hashlib.sha256(data.encode()).hexdigest()[:16]}"


class GamingEngine:
    """Game sessions with on-chain move tracking and live leaderboards."""

    def __init__(
        self,
        registry: Optional[GameRegistry] = None,
        broadcaster: Optional[Callable[[str, str, Any], str]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry or GameRegistry()
        self.broadcaster = broadcaster or default_move_reference
        self._clock = clock
        self._leaderboards: Dict[str, Leaderboard] = {}
        self._board_lock = threading.Lock()

    def create_game(self, game_id: str, game_type: str, players: List[str]) -> GameState:
        validate_entity_id(game_id, "game")
        if not players:
            raise GameError("A game needs at least one player", details={"game_id": game_id})
        now = self._clock()
        game = GameState(
            game_id=game_id,
            game_type=game_type,
            players=list(players),
            scores={p: 0 for p in players},
            created_at=now,
            last_update=now,
        )
        if not self.registry.add_game(game):
            raise GameError(f"Game already exists: {game_id}", details={"game_id": game_id})
        logger.info(
            "Game created: %s (%s)",
            game_id,
            game_type,
            extra={"event": "game.created", "game_id": game_id, "players": len(players)},
        )
        return game

    def _get(self, game_id: str) -> GameState:
        game = self.registry.games.get(game_id)
        if game is None:
            raise GameError(f"Game not found: {game_id}", details={"game_id": game_id})
        return game

    def submit_move(self, game_id: str, player_id: str, move: Dict[str, Any]) -> GameMove:
        """Anchor a move; applied locally now, confirmed later by the reconciler."""
        game = self._get(game_id)
        if player_id not in game.players:
            raise GameError("Player not in game", details={"game_id": game_id, "player_id": player_id})
        if game.ended:
            raise GameError("Game already ended", details={"game_id": game_id})

        # The game may have ended while the move was broadcast
        reference = self.broadcaster(game_id, player_id, move)
        with self.registry.entity_lock(game_id):
            if game.ended:
                raise GameError("Game already ended", details={"game_id": game_id, "tx_id": reference})
            game_move = GameMove(
                entity_id=game_id,
                payload=move,
                reference=reference,
                submitted_at=self._clock(),
                player_id=player_id,
            )
            self.registry.append(game_id, game_move)
            game.last_update = game_move.submitted_at
            self._update_leaderboard(game.game_type, player_id, move, count_game=False)

        logger.debug(
            "Move submitted",
            extra={"event": "game.move_submitted", "game_id": game_id, "player_id": player_id, "tx_id": game_move.reference},
        )
        return game_move

    def get_game_state(self, game_id: str) -> Optional[GameState]:
        return self.registry.games.get(game_id)

    def get_moves(self, game_id: str) -> List[GameMove]:
        self._get(game_id)
        return self.registry.items(game_id)

    def get_active_games(self) -> List[GameState]:
        return [g for g in self.registry.games.values() if not g.ended]

    def end_game(self, game_id: str) -> GameState:
        game = self._get(game_id)
        with self.registry.entity_lock(game_id):
            if game.ended:
                return game
            game.scores = self._final_scores(game)
            game.ended = True
            game.last_update = self._clock()
            for player_id in game.players:
                self._update_leaderboard(game.game_type, player_id, {}, count_game=True)
        logger.info("Game ended: %s", game_id, extra={"event": "game.ended", "game_id": game_id})
        return game

    def _final_scores(self, game: GameState) -> Dict[str, int]:
        scores = {p: 0 for p in game.players}
        for move in self.registry.items(game.game_id):
            if isinstance(move.payload, dict):
                scores[move.player_id] += int(move.payload.get("score", 0) or 0)
        return scores

    def _update_leaderboard(self, game_type: str, player_id: str, move: Dict[str, Any], count_game: bool) -> None:
        with self._board_lock:
            board = self._leaderboards.setdefault(game_type, Leaderboard(game_type=game_type))
            entry = next((e for e in board.entries if e.player_id == player_id), None)
            if entry is None:
                entry = LeaderboardEntry(player_id=player_id)
                board.entries.append(entry)
            if isinstance(move, dict):
                entry.score += int(move.get("score", 0) or 0)
                if move.get("win"):
                    entry.wins += 1
            if count_game:
                entry.games += 1
            board.last_update = self._clock()

    def get_leaderboard(self, game_type: str, limit: int = 10) -> Leaderboard:
        """Leaderboard for a game type, highest score first."""
        with self._board_lock:
            board = self._leaderboards.get(game_type)
            if board is None:
                return Leaderboard(game_type=game_type, last_update=self._clock())
            ranked = sorted(board.entries, key=lambda e: e.score, reverse=True)[:limit]
            return Leaderboard(
                game_type=game_type,
                entries=[LeaderboardEntry(**vars(e)) for e in ranked],
                last_update=board.last_update,
            )

    def get_game_stats(self, game_id: str) -> Optional[Dict[str, Any]]:
        game = self.registry.games.get(game_id)
        if game is None:
            return None
        moves = self.registry.items(game_id)
        first = moves[0].submitted_at if moves else self._clock()
        return {
            "game_id": game.game_id,
            "game_type": game.game_type,
            "players": len(game.players),
            "total_moves": len(moves),
            "confirmed_moves": sum(1 for m in moves if m.confirmed),
            "duration": self._clock() - first,
            "scores": dict(game.scores),
            "ended": game.ended,
            "ordering_score": game.ordering_score,
        }
