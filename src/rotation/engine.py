import copy
import json
import logging
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from rotation.errors import ErrorKind, RotationError
from rotation.functions import (
    beautify_queue, build_document, calculate_team_statistics, covers_match,
    parse_document, split_winner, strip_live_scores,
)
from rotation.models import (
    Court, HistorySnapshot, LiveScores, Match, MatchResult, ScoreEntry,
    SystemState, Team, TeamStatistics, team_key, teams_equal,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_HISTORY_SIZE = 20


def _describe(team: Team) -> str:
    return f"Team [{team.player1.name}, {team.player2.name}]"


class QueueManager:
    """Rotates doubles teams through a fixed set of courts.

    Winner stays on court and the loser goes to the back of the shared
    queue. After two consecutive wins both teams go to the back and the
    next two queued teams take the court. Structural changes are
    snapshotted so they can be undone and redone.

    Not thread-safe: callers must serialize access per instance.
    """

    def __init__(self, number_of_courts: int = 1, max_history_size: int = DEFAULT_MAX_HISTORY_SIZE):
        if number_of_courts < 1:
            raise ValueError("Number of courts must be at least 1")
        if max_history_size < 0:
            raise ValueError("max_history_size cannot be negative")

        self.max_history_size = max_history_size
        self._state = SystemState(courts=[Court(id=i + 1) for i in range(number_of_courts)])
        self._match_counter = 0
        self._undo: deque = deque(maxlen=max_history_size)
        self._redo: deque = deque(maxlen=max_history_size)

    # -- Setup -----------------------------------------------------------------

    def initialize(self, teams: Sequence[Team]) -> None:
        """Put the first two teams per court on court, queue the rest.

        Clears the match log and both history stacks.
        """
        courts = self._state.courts
        required = len(courts) * 2
        if len(teams) < required:
            raise RotationError(
                ErrorKind.INSUFFICIENT_PARTICIPANTS,
                f"At least {required} teams are required for {len(courts)} court(s)",
            )

        for index, court in enumerate(courts):
            team1, team2 = teams[2 * index], teams[2 * index + 1]
            court.current_match = self._new_match(court, team1, team2)
            court.consecutive_wins = 0
            court.current_court_team = None
            logger.info("Court %s initialized: %s vs %s", court.id, _describe(team1), _describe(team2))

        self._state.queue = list(teams[required:])
        self._state.match_history = []
        self._undo.clear()
        self._redo.clear()

        logger.info("System initialized with %s teams across %s court(s)", len(teams), len(courts))
        logger.info("Queue size: %s", len(self._state.queue))

    def add_teams(self, teams: Iterable[Team]) -> None:
        """Append teams to the queue, silently skipping any already present."""
        self._require_initialized("Cannot add teams")

        existing = {team_key(t) for t in self._state.queue}
        for court in self._state.courts:
            if court.current_match:
                existing.add(team_key(court.current_match.team1))
                existing.add(team_key(court.current_match.team2))

        candidates = list(teams)
        added = []
        for team in candidates:
            key = team_key(team)
            if key in existing:
                continue
            existing.add(key)
            added.append(team)

        self._save_snapshot()
        self._state.queue.extend(added)

        if added:
            logger.info("Added %s team(s) to the queue. Queue size: %s", len(added), len(self._state.queue))
        if len(added) < len(candidates):
            logger.debug("%s duplicate team(s) were ignored", len(candidates) - len(added))

    # -- Results ---------------------------------------------------------------

    def record_result(self, court_id: int, scores: Sequence[ScoreEntry]) -> None:
        """Record a finished match and rotate teams on that court.

        ``scores`` holds two (team, score) pairs for the court's current
        teams. Equal scores are not a valid result; callers must not submit
        them.
        """
        court = self._get_active_court(court_id)
        match = court.current_match

        entries = [ScoreEntry(*entry) for entry in scores]
        if len(entries) != 2:
            raise RotationError(ErrorKind.INVALID_RESULT, "Score map must contain exactly 2 teams")
        if not covers_match(entries, match.team1, match.team2):
            raise RotationError(
                ErrorKind.INVALID_RESULT, "Teams in score map must be part of the current match"
            )

        won, lost = split_winner(entries, match.team1, match.team2)
        winner, loser = won.team, lost.team

        # Work on copies so a failure below leaves the engine untouched.
        queue = list(self._state.queue)
        streak_holder = court.current_court_team
        if streak_holder is not None and teams_equal(winner, streak_holder):
            consecutive_wins = court.consecutive_wins + 1
        else:
            consecutive_wins, streak_holder = 1, winner

        if consecutive_wins >= 2 and len(queue) >= 2:
            next_team1, next_team2 = queue.pop(0), queue.pop(0)
            queue.extend([winner, loser])
            consecutive_wins, streak_holder = 0, None
            rotation = "2 consecutive wins reached, both teams return to queue"
        else:
            queue.append(loser)
            if not queue:
                raise RotationError(
                    ErrorKind.INSUFFICIENT_PARTICIPANTS,
                    f"Not enough teams in queue to continue on court {court_id}",
                )
            next_team1, next_team2 = winner, queue.pop(0)
            rotation = "winner stays on court, loser goes to end of queue"

        self._save_snapshot()
        self._state.match_history.append(MatchResult(
            match=replace(match, current_scores=None),
            winner=winner,
            loser=loser,
            timestamp=datetime.now(timezone.utc),
            court_id=court.id,
            scores=(won, lost),
        ))
        self._state.queue = queue
        court.consecutive_wins = consecutive_wins
        court.current_court_team = streak_holder
        court.current_match = self._new_match(court, next_team1, next_team2)

        logger.info(
            "Court %s - Match %s result: %s won %s-%s; %s",
            court.id, match.match_number, _describe(winner), won.score, lost.score, rotation,
        )
        logger.info(
            "Court %s - Next match: %s vs %s. Queue size: %s",
            court.id, _describe(next_team1), _describe(next_team2), len(queue),
        )

    def update_score(self, court_id: int, team: int, delta: int) -> None:
        """Adjust the live score of team 1 or team 2 on a court. Never below zero."""
        court = self._get_active_court(court_id)
        if team not in (1, 2):
            raise RotationError(ErrorKind.INVALID_RESULT, f"Team must be 1 or 2, got {team}")

        match = court.current_match
        if match.current_scores is None:
            match.current_scores = LiveScores()
        field_name = f"team{team}"
        current = getattr(match.current_scores, field_name)
        setattr(match.current_scores, field_name, max(0, current + delta))

    def edit_match_result(self, match_index: int, scores: Sequence[ScoreEntry]) -> None:
        """Correct the scores of a past result. Queue and courts are untouched."""
        history = self._state.match_history
        if match_index < 0 or match_index >= len(history):
            raise RotationError(
                ErrorKind.INVALID_MATCH_INDEX,
                f"Invalid match index: {match_index}. Match history has {len(history)} entries.",
            )

        result = history[match_index]
        entries = [ScoreEntry(*entry) for entry in scores]
        if not covers_match(entries, result.match.team1, result.match.team2):
            raise RotationError(
                ErrorKind.INVALID_RESULT, "Scores must name exactly the two teams of that match"
            )
        if entries[0].score == entries[1].score:
            raise RotationError(ErrorKind.INVALID_RESULT, "A match result cannot be a tie")

        won, lost = split_winner(entries, result.match.team1, result.match.team2)
        self._save_snapshot()
        result.winner = won.team
        result.loser = lost.team
        result.scores = (won, lost)

        logger.info("Match %s edited: %s won %s-%s",
                    result.match.match_number, _describe(won.team), won.score, lost.score)

    # -- Queue -----------------------------------------------------------------

    def reorder_team_in_queue(self, from_index: int, to_index: int) -> None:
        self._require_initialized("Cannot reorder queue")

        queue = self._state.queue
        for index in (from_index, to_index):
            if index < 0 or index >= len(queue):
                raise RotationError.invalid_queue_index(index, len(queue))

        # Snapshot even when from_index == to_index; undo depth still grows.
        self._save_snapshot()
        if from_index == to_index:
            return

        team = queue.pop(from_index)
        queue.insert(to_index, team)
        logger.info("Moved %s from queue position %s to %s", _describe(team), from_index, to_index)

    # -- Undo / redo -----------------------------------------------------------

    def undo(self) -> bool:
        if not self._undo:
            return False
        self._redo.append(self._snapshot())
        self._restore(self._undo.pop())
        return True

    def redo(self) -> bool:
        if not self._redo:
            return False
        self._undo.append(self._snapshot())
        self._restore(self._redo.pop())
        return True

    def can_undo(self) -> bool:
        return len(self._undo) > 0

    def can_redo(self) -> bool:
        return len(self._redo) > 0

    def get_undo_depth(self) -> int:
        return len(self._undo)

    def get_redo_depth(self) -> int:
        return len(self._redo)

    # -- Queries ---------------------------------------------------------------

    @property
    def match_counter(self) -> int:
        return self._match_counter

    def get_current_state(self) -> SystemState:
        return copy.deepcopy(self._state)

    def get_courts(self) -> List[Court]:
        return copy.deepcopy(self._state.courts)

    def get_court_match(self, court_id: int) -> Optional[Match]:
        court = self._find_court(court_id)
        return copy.deepcopy(court.current_match) if court else None

    def get_match_history(self) -> List[MatchResult]:
        return copy.deepcopy(self._state.match_history)

    def get_team_statistics(self) -> List[TeamStatistics]:
        return calculate_team_statistics(self._state.match_history)

    def get_session_winner(self) -> Optional[TeamStatistics]:
        stats = self.get_team_statistics()
        return stats[0] if stats else None

    def beautify_queue(self) -> str:
        return beautify_queue(self._state.queue)

    # -- Persistence -----------------------------------------------------------

    def to_document(self) -> dict:
        return build_document(self._state, self._match_counter, list(self._undo), list(self._redo))

    def save_state(self) -> str:
        return json.dumps(self.to_document())

    def load_document(self, document: dict) -> None:
        """Replace the whole session with a saved document.

        History stacks are restored when the document carries them and
        cleared otherwise.
        """
        state, match_counter, history = parse_document(document)

        self._state = state
        self._match_counter = match_counter
        self._undo.clear()
        self._redo.clear()
        if history is not None:
            self._undo.extend(history["undo"])
            self._redo.extend(history["redo"])

        logger.info(
            "State loaded: %s court(s), queue size %s, %s match(es) in history",
            len(state.courts), len(state.queue), len(state.match_history),
        )

    def load_state(self, saved_state: str) -> None:
        try:
            document = json.loads(saved_state)
        except (TypeError, ValueError) as exc:
            raise RotationError(ErrorKind.INVALID_SAVED_STATE, f"Failed to load state: {exc}") from exc
        self.load_document(document)

    # -- Helpers ---------------------------------------------------------------

    def _new_match(self, court: Court, team1: Team, team2: Team) -> Match:
        self._match_counter += 1
        return Match(team1=team1, team2=team2, match_number=self._match_counter, court_id=court.id)

    def _find_court(self, court_id: int) -> Optional[Court]:
        return next((c for c in self._state.courts if c.id == court_id), None)

    def _get_active_court(self, court_id: int) -> Court:
        court = self._find_court(court_id)
        if court is None:
            raise RotationError(ErrorKind.COURT_NOT_FOUND, f"Court {court_id} does not exist")
        if court.current_match is None:
            raise RotationError(ErrorKind.NO_ACTIVE_MATCH, f"No active match on court {court_id}")
        return court

    def _require_initialized(self, action: str) -> None:
        if not any(c.current_match is not None for c in self._state.courts):
            raise RotationError(
                ErrorKind.NOT_INITIALIZED,
                f"{action}: System has not been initialized. Call initialize() first.",
            )

    def _snapshot(self) -> HistorySnapshot:
        return HistorySnapshot(
            courts=strip_live_scores(self._state.courts),
            queue=copy.deepcopy(self._state.queue),
            match_history=copy.deepcopy(self._state.match_history),
            match_counter=self._match_counter,
        )

    def _save_snapshot(self) -> None:
        # deque(maxlen=...) drops the oldest entry once the cap is reached
        self._undo.append(self._snapshot())
        self._redo.clear()

    def _restore(self, snapshot: HistorySnapshot) -> None:
        self._state = SystemState(
            courts=snapshot.courts,
            queue=snapshot.queue,
            match_history=snapshot.match_history,
        )
        self._match_counter = snapshot.match_counter
