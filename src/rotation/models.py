from dataclasses import dataclass, field
from datetime import datetime
from typing import List, NamedTuple, Optional, Tuple

def generate_id():
    import uuid
    return str(uuid.uuid4())[:8]

@dataclass(frozen=True)
class Player:
    id: int
    name: str

@dataclass(frozen=True)
class Team:
    player1: Player
    player2: Player

class ScoreEntry(NamedTuple):
    team: Team
    score: int

@dataclass
class LiveScores:
    team1: int = 0
    team2: int = 0

@dataclass
class Match:
    team1: Team
    team2: Team
    match_number: int
    court_id: int
    current_scores: Optional[LiveScores] = None  # in-progress only, never part of history

@dataclass
class MatchResult:
    match: Match
    winner: Team
    loser: Team
    timestamp: datetime
    court_id: int
    scores: Tuple[ScoreEntry, ScoreEntry]  # winner first

@dataclass
class Court:
    id: int
    current_match: Optional[Match] = None
    consecutive_wins: int = 0
    current_court_team: Optional[Team] = None  # streak holder

@dataclass
class TeamStatistics:
    team: Team
    wins: int = 0
    losses: int = 0
    total_points: int = 0
    points_against: int = 0

@dataclass
class SystemState:
    courts: List[Court] = field(default_factory=list)
    queue: List[Team] = field(default_factory=list)
    match_history: List[MatchResult] = field(default_factory=list)

@dataclass
class HistorySnapshot:
    """State captured before a tracked mutation. Live scores are stripped."""
    courts: List[Court]
    queue: List[Team]
    match_history: List[MatchResult]
    match_counter: int


def team_key(team: Team) -> Tuple[int, int]:
    """Identity of a team: its two player ids, sorted."""
    low, high = sorted((team.player1.id, team.player2.id))
    return low, high

def teams_equal(team1: Team, team2: Team) -> bool:
    """Teams are equal when they hold the same players, in any order."""
    return team_key(team1) == team_key(team2)

def create_player(id: int, name: str) -> Player:
    return Player(id=id, name=name)

def create_team(player1: Player, player2: Player) -> Team:
    return Team(player1=player1, player2=player2)
