import asyncio
import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Dict, List

from fastapi import APIRouter, Form, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_session, SavedSessionORM
from rotation.engine import QueueManager
from rotation.errors import ErrorKind, RotationError
from rotation.functions import state_to_dict
from rotation.models import Player, ScoreEntry, Team, create_player, create_team, generate_id

router = APIRouter(prefix='/rotation', tags=['Rotation'])
logger = logging.getLogger(__name__)

MAX_HISTORY_SIZE = int(os.getenv("ROTATION_MAX_HISTORY", "20"))

STATUS_BY_KIND = {
    ErrorKind.INSUFFICIENT_PARTICIPANTS: 409,
    ErrorKind.INVALID_RESULT: 400,
    ErrorKind.NO_ACTIVE_MATCH: 409,
    ErrorKind.COURT_NOT_FOUND: 404,
    ErrorKind.INVALID_QUEUE_INDEX: 400,
    ErrorKind.INVALID_MATCH_INDEX: 400,
    ErrorKind.NOT_INITIALIZED: 409,
    ErrorKind.INVALID_SAVED_STATE: 422,
}


@dataclass
class RotationSession:
    id: str
    name: str
    manager: QueueManager
    roster: Dict[str, Player] = field(default_factory=dict)  # casefolded name -> Player
    next_player_id: int = 1  # never decreases, ids are not reused after undo
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


# In-memory storage; save/load persists the engine document
sessions_db: Dict[str, RotationSession] = {}


async def rotation_error_handler(request: Request, exc: RotationError):
    logger.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.kind.value)
    return JSONResponse(
        status_code=STATUS_BY_KIND[exc.kind],
        content={"error": exc.kind.value, "detail": exc.message},
    )

# -- Helpers -------------------------------------------------------------------

def _get_rotation_session(sid: str) -> RotationSession:
    s = sessions_db.get(sid)
    if not s:
        raise HTTPException(status_code=404, detail="Session not found")
    return s


def _player_for(s: RotationSession, name: str) -> Player:
    key = name.casefold()
    if key not in s.roster:
        s.roster[key] = create_player(s.next_player_id, name)
        s.next_player_id += 1
    return s.roster[key]


def _parse_team_lines(s: RotationSession, team_lines: str) -> List[Team]:
    """One team per line: "Name One, Name Two"."""
    pairs = []
    for line in team_lines.split("\n"):
        if not line.strip():
            continue
        names = [n.strip() for n in line.split(",") if n.strip()]
        if len(names) != 2 or names[0].casefold() == names[1].casefold():
            raise HTTPException(status_code=400, detail=f"Expected two different names per line, got: {line.strip()!r}")
        pairs.append(names)
    # roster is only touched once every line is valid
    return [create_team(_player_for(s, first), _player_for(s, second)) for first, second in pairs]


def _document_players(data) -> List[dict]:
    """Every player dict inside a saved document, snapshots included."""
    if isinstance(data, list):
        return [p for item in data for p in _document_players(item)]
    if not isinstance(data, dict):
        return []
    players = []
    if "player1" in data and "player2" in data:
        players += [data["player1"], data["player2"]]
    for value in data.values():
        players += _document_players(value)
    return players


def _rebuild_roster(s: RotationSession) -> None:
    document = s.manager.to_document()
    # history first so names in the current state take precedence
    history = [Player(id=p["id"], name=p["name"]) for p in _document_players(document["history"])]
    current = [Player(id=p["id"], name=p["name"]) for p in _document_players(document["state"])]
    s.roster = {}
    for player in history + current:
        s.roster[player.name.casefold()] = player
    highest = max((p.id for p in history + current), default=0)
    s.next_player_id = max(s.next_player_id, highest + 1)


def _session_view(s: RotationSession) -> dict:
    manager = s.manager
    standings = []
    for rank, stats in enumerate(manager.get_team_statistics(), start=1):
        row = asdict(stats)
        row["rank"] = rank
        standings.append(row)
    winner = manager.get_session_winner()
    return {
        "id": s.id,
        "name": s.name,
        **state_to_dict(manager.get_current_state()),
        "queue_text": manager.beautify_queue(),
        "standings": standings,
        "winner": asdict(winner) if winner else None,
        "match_counter": manager.match_counter,
        "undo_depth": manager.get_undo_depth(),
        "redo_depth": manager.get_redo_depth(),
    }


def _redirect(sid: str) -> RedirectResponse:
    return RedirectResponse(f"/rotation/{sid}", status_code=303)

# Routes

@router.post("/create")
async def create_rotation(
    name: str = Form(""),
    courts: int = Form(...),
    team_lines: str = Form(...),
):
    if courts < 1:
        raise HTTPException(status_code=400, detail="At least one court is required")

    sid = generate_id()
    s = RotationSession(id=sid, name=name, manager=QueueManager(courts, MAX_HISTORY_SIZE))
    teams = _parse_team_lines(s, team_lines)
    s.manager.initialize(teams)

    sessions_db[sid] = s
    logger.info("Created rotation session %s with %s court(s) and %s team(s)", sid, courts, len(teams))
    return _redirect(sid)


@router.get("/{sid}")
async def rotation_view(sid: str):
    s = _get_rotation_session(sid)
    async with s.lock:
        return _session_view(s)


@router.post("/{sid}/score")
async def submit_score(
    sid: str,
    court_id: int = Form(...),
    score1: int = Form(...),
    score2: int = Form(...),
):
    s = _get_rotation_session(sid)
    async with s.lock:
        match = s.manager.get_court_match(court_id)
        if match is None:
            if all(c.id != court_id for c in s.manager.get_courts()):
                raise RotationError(ErrorKind.COURT_NOT_FOUND, f"Court {court_id} does not exist")
            raise RotationError(ErrorKind.NO_ACTIVE_MATCH, f"No active match on court {court_id}")
        s.manager.record_result(court_id, [
            ScoreEntry(match.team1, score1),
            ScoreEntry(match.team2, score2),
        ])
    return _redirect(sid)


@router.post("/{sid}/live-score")
async def live_score(
    sid: str,
    court_id: int = Form(...),
    team: int = Form(...),
    delta: int = Form(...),
):
    s = _get_rotation_session(sid)
    async with s.lock:
        s.manager.update_score(court_id, team, delta)
    return _redirect(sid)


@router.post("/{sid}/add-teams")
async def add_teams(sid: str, team_lines: str = Form(...)):
    s = _get_rotation_session(sid)
    async with s.lock:
        s.manager.add_teams(_parse_team_lines(s, team_lines))
    return _redirect(sid)


@router.post("/{sid}/reorder")
async def reorder_queue(
    sid: str,
    from_index: int = Form(...),
    to_index: int = Form(...),
):
    s = _get_rotation_session(sid)
    async with s.lock:
        s.manager.reorder_team_in_queue(from_index, to_index)
    return _redirect(sid)


@router.post("/{sid}/edit-score")
async def edit_score(
    sid: str,
    match_index: int = Form(...),
    score1: int = Form(...),
    score2: int = Form(...),
):
    s = _get_rotation_session(sid)
    async with s.lock:
        history = s.manager.get_match_history()
        if not 0 <= match_index < len(history):
            raise RotationError(
                ErrorKind.INVALID_MATCH_INDEX,
                f"Invalid match index: {match_index}. Match history has {len(history)} entries.",
            )
        match = history[match_index].match
        s.manager.edit_match_result(match_index, [
            ScoreEntry(match.team1, score1),
            ScoreEntry(match.team2, score2),
        ])
    return _redirect(sid)


@router.post("/{sid}/undo")
async def undo(sid: str):
    s = _get_rotation_session(sid)
    async with s.lock:
        if not s.manager.undo():
            raise HTTPException(status_code=409, detail="Nothing to undo")
    return _redirect(sid)


@router.post("/{sid}/redo")
async def redo(sid: str):
    s = _get_rotation_session(sid)
    async with s.lock:
        if not s.manager.redo():
            raise HTTPException(status_code=409, detail="Nothing to redo")
    return _redirect(sid)


@router.post("/{sid}/save")
async def save_rotation(sid: str, session: AsyncSession = Depends(get_session)):
    s = _get_rotation_session(sid)
    async with s.lock:
        document = s.manager.to_document()
        row = await session.get(SavedSessionORM, sid)
        if row:
            row.document = document
            row.courts = len(document["state"]["courts"])
        else:
            session.add(SavedSessionORM(id=sid, courts=len(document["state"]["courts"]), document=document))
        await session.commit()
    logger.info("Saved rotation session %s", sid)
    return _redirect(sid)


@router.post("/{sid}/load")
async def load_rotation(sid: str, session: AsyncSession = Depends(get_session)):
    row = await session.get(SavedSessionORM, sid)
    if not row:
        raise HTTPException(status_code=404, detail="No saved state for this session")

    s = sessions_db.get(sid)
    if s is None:
        s = RotationSession(id=sid, name="", manager=QueueManager(row.courts, MAX_HISTORY_SIZE))
        s.manager.load_document(row.document)
        sessions_db[sid] = s
    else:
        async with s.lock:
            s.manager.load_document(row.document)
    _rebuild_roster(s)
    return _redirect(sid)


@router.post("/{sid}/delete")
async def delete_rotation(sid: str, session: AsyncSession = Depends(get_session)):
    sessions_db.pop(sid, None)
    row = await session.get(SavedSessionORM, sid)
    if row:
        await session.delete(row)
        await session.commit()
    return JSONResponse({"deleted": sid})
