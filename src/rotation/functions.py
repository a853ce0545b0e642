import copy
from dataclasses import asdict, replace
from datetime import datetime
from typing import List, Optional, Tuple

from rotation.errors import ErrorKind, RotationError
from rotation.models import (
    Court, HistorySnapshot, LiveScores, Match, MatchResult, Player,
    ScoreEntry, SystemState, Team, TeamStatistics, team_key, teams_equal,
)

DOCUMENT_VERSION = 2
EMPTY_QUEUE_TEXT = "Queue is empty"


def calculate_team_statistics(match_history: List[MatchResult]) -> List[TeamStatistics]:
    """Fold the match log into per-team totals, best team first."""
    stats: dict = {}  # team_key -> TeamStatistics

    for result in match_history:
        winner = stats.setdefault(team_key(result.winner), TeamStatistics(team=result.winner))
        loser = stats.setdefault(team_key(result.loser), TeamStatistics(team=result.loser))
        winner.wins += 1
        loser.losses += 1

        winner_score = next((s.score for s in result.scores if teams_equal(s.team, result.winner)), None)
        loser_score = next((s.score for s in result.scores if teams_equal(s.team, result.loser)), None)
        if winner_score is not None and loser_score is not None:
            winner.total_points += winner_score
            winner.points_against += loser_score
            loser.total_points += loser_score
            loser.points_against += winner_score

    # sorted() is stable: exact ties keep the order they first appeared in the log
    return sorted(stats.values(), key=lambda s: (-s.wins, -s.total_points))


def beautify_queue(queue: List[Team]) -> str:
    if not queue:
        return EMPTY_QUEUE_TEXT
    return "\n".join(f"{team.player1.name}, {team.player2.name}" for team in queue)


def split_winner(entries: List[ScoreEntry], team1: Team, team2: Team) -> Tuple[ScoreEntry, ScoreEntry]:
    """Order two score entries as (winner, loser) by score, highest first.

    Teams in the returned entries are the match's own team1/team2 objects,
    so the stored player order follows the match rather than the caller.
    """
    ordered = sorted(entries, key=lambda e: -e.score)
    canonical = [team1 if teams_equal(e.team, team1) else team2 for e in ordered]
    return ScoreEntry(canonical[0], ordered[0].score), ScoreEntry(canonical[1], ordered[1].score)


def covers_match(entries: List[ScoreEntry], team1: Team, team2: Team) -> bool:
    """True when the entries name exactly team1 and team2, in any order."""
    if len(entries) != 2:
        return False
    named = {team_key(e.team) for e in entries}
    return named == {team_key(team1), team_key(team2)}


def strip_live_scores(courts: List[Court]) -> List[Court]:
    stripped = []
    for court in courts:
        court = copy.deepcopy(court)
        if court.current_match is not None:
            court.current_match = replace(court.current_match, current_scores=None)
        stripped.append(court)
    return stripped


# -- Document codec ------------------------------------------------------------

def result_to_dict(result: MatchResult) -> dict:
    return {
        "match": asdict(result.match),
        "winner": asdict(result.winner),
        "loser": asdict(result.loser),
        "timestamp": result.timestamp.isoformat(),
        "court_id": result.court_id,
        "scores": [{"team": asdict(s.team), "score": s.score} for s in result.scores],
    }


def state_to_dict(state: SystemState) -> dict:
    return {
        "courts": [asdict(c) for c in state.courts],
        "queue": [asdict(t) for t in state.queue],
        "match_history": [result_to_dict(r) for r in state.match_history],
    }


def snapshot_to_dict(snapshot: HistorySnapshot) -> dict:
    data = state_to_dict(SystemState(snapshot.courts, snapshot.queue, snapshot.match_history))
    data["match_counter"] = snapshot.match_counter
    return data


def build_document(state: SystemState, match_counter: int,
                   undo: List[HistorySnapshot], redo: List[HistorySnapshot]) -> dict:
    return {
        "version": DOCUMENT_VERSION,
        "state": state_to_dict(state),
        "match_counter": match_counter,
        "history": {
            "undo": [snapshot_to_dict(s) for s in undo],
            "redo": [snapshot_to_dict(s) for s in redo],
        },
    }


def _player(data: dict) -> Player:
    return Player(id=int(data["id"]), name=str(data["name"]))

def _team(data: dict) -> Team:
    return Team(player1=_player(data["player1"]), player2=_player(data["player2"]))

def _optional_team(data: Optional[dict]) -> Optional[Team]:
    return _team(data) if data is not None else None

def _match(data: Optional[dict]) -> Optional[Match]:
    if data is None:
        return None
    scores = data.get("current_scores")
    return Match(
        team1=_team(data["team1"]),
        team2=_team(data["team2"]),
        match_number=int(data["match_number"]),
        court_id=int(data["court_id"]),
        current_scores=LiveScores(int(scores["team1"]), int(scores["team2"])) if scores else None,
    )

def _court(data: dict) -> Court:
    return Court(
        id=int(data["id"]),
        current_match=_match(data.get("current_match")),
        consecutive_wins=int(data.get("consecutive_wins", 0)),
        current_court_team=_optional_team(data.get("current_court_team")),
    )

def _result(data: dict) -> MatchResult:
    first, second = (ScoreEntry(_team(s["team"]), int(s["score"])) for s in data["scores"])
    return MatchResult(
        match=_match(data["match"]),
        winner=_team(data["winner"]),
        loser=_team(data["loser"]),
        timestamp=datetime.fromisoformat(data["timestamp"]),
        court_id=int(data["court_id"]),
        scores=(first, second),
    )

def _state(data: dict) -> SystemState:
    return SystemState(
        courts=[_court(c) for c in data["courts"]],
        queue=[_team(t) for t in data["queue"]],
        match_history=[_result(r) for r in data["match_history"]],
    )

def _snapshot(data: dict) -> HistorySnapshot:
    state = _state(data)
    return HistorySnapshot(
        courts=strip_live_scores(state.courts),
        queue=state.queue,
        match_history=state.match_history,
        match_counter=int(data["match_counter"]),
    )


def parse_document(document) -> Tuple[SystemState, int, Optional[dict]]:
    """Decode a saved document.

    Returns (state, match_counter, history) where history is None for
    documents written before undo/redo was persisted, else a dict with
    "undo" and "redo" snapshot lists. Raises RotationError on any
    malformed content.
    """
    if not isinstance(document, dict) or not isinstance(document.get("state"), dict):
        raise RotationError(ErrorKind.INVALID_SAVED_STATE, "Invalid saved state format: missing state")
    match_counter = document.get("match_counter")
    if not isinstance(match_counter, int) or isinstance(match_counter, bool):
        raise RotationError(ErrorKind.INVALID_SAVED_STATE, "Invalid saved state format: missing match counter")

    try:
        state = _state(document["state"])
        history = None
        if document.get("history") is not None:
            raw = document["history"]
            history = {
                "undo": [_snapshot(s) for s in raw.get("undo", [])],
                "redo": [_snapshot(s) for s in raw.get("redo", [])],
            }
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise RotationError(ErrorKind.INVALID_SAVED_STATE, f"Invalid saved state format: {exc}") from exc

    return state, match_counter, history
