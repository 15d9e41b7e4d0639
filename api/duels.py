"""
Duel API Endpoints

Thin HTTP surface over DuelManager. Every rule lives in the manager; the
routers only translate domain exceptions into HTTP errors:
    SkateGameException -> HTTPException(e.status_code, detail={code, message})
    anything else      -> logged, 500
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import logging

from database import get_db
from schemas import (
    ChallengeCreate,
    ChallengeRespond,
    DisputeFile,
    DisputeResolve,
    DisputeResult,
    DuelActionResult,
    JudgeSubmit,
    MoveResult,
    MoveSubmit,
    PlayerAction,
)
from core.duel_manager import DuelManager
from core.exceptions import SkateGameException

router = APIRouter(prefix="/api/duels", tags=["duels"])
logger = logging.getLogger(__name__)


@router.post("", response_model=DuelActionResult)
def create_challenge(data: ChallengeCreate, db: Session = Depends(get_db)):
    """
    Challenge another player to a game of SKATE.

    The contest starts WAITING; the challenger sets first once accepted.
    """
    try:
        return DuelManager.create_challenge(
            db,
            data.challenger_id,
            data.opponent_id,
            data.challenger_name,
            data.opponent_name
        )
    except SkateGameException as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to create challenge: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{contest_id}/respond", response_model=DuelActionResult)
def respond_to_challenge(contest_id: str, data: ChallengeRespond, db: Session = Depends(get_db)):
    try:
        return DuelManager.respond_to_challenge(db, contest_id, data.player_id, data.accept, event_id=data.event_id)
    except SkateGameException as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to respond to challenge {contest_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{contest_id}")
def get_contest(contest_id: str, db: Session = Depends(get_db)):
    """
    Contest snapshot plus its turns, oldest first.
    """
    try:
        contest = DuelManager.get_contest(db, contest_id)
        turns = DuelManager.get_turns(db, contest_id)
        return {
            "contest": contest.to_dict(),
            "turns": [turn.to_dict() for turn in turns]
        }
    except SkateGameException as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to get contest {contest_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{contest_id}/moves", response_model=MoveResult)
def submit_move(contest_id: str, data: MoveSubmit, db: Session = Depends(get_db)):
    """
    Submit a set trick or a response.

    Which one is decided by the contest phase, not by the client.
    A late submission is rejected with code `expired`; the contest itself
    is only resolved by the reconciler.
    """
    try:
        logger.info(f"Move from {data.player_id} in contest {contest_id}")
        return DuelManager.submit_move(
            db,
            contest_id,
            data.player_id,
            data.trick_description,
            data.media_ref,
            data.duration_ms,
            thumbnail_ref=data.thumbnail_ref,
            event_id=data.event_id
        )
    except SkateGameException as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to submit move: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{contest_id}/turns/{turn_id}/judge", response_model=DuelActionResult)
def judge_turn(contest_id: str, turn_id: int, data: JudgeSubmit, db: Session = Depends(get_db)):
    """
    Judge the offensive player's trick.

    A second judgement of the same turn returns 409 (`already_processed`).
    """
    try:
        return DuelManager.judge(db, contest_id, turn_id, data.player_id, data.verdict, event_id=data.event_id)
    except SkateGameException as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to judge turn {turn_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{contest_id}/bail", response_model=DuelActionResult)
def setter_bail(contest_id: str, data: PlayerAction, db: Session = Depends(get_db)):
    try:
        return DuelManager.setter_bail(db, contest_id, data.player_id, event_id=data.event_id)
    except SkateGameException as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to bail in contest {contest_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{contest_id}/forfeit", response_model=DuelActionResult)
def forfeit(contest_id: str, data: PlayerAction, db: Session = Depends(get_db)):
    try:
        return DuelManager.forfeit(db, contest_id, data.player_id, event_id=data.event_id)
    except SkateGameException as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to forfeit contest {contest_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{contest_id}/disputes", response_model=DisputeResult)
def file_dispute(contest_id: str, data: DisputeFile, db: Session = Depends(get_db)):
    """
    Dispute a missed verdict on your own trick. One dispute per player per contest.
    """
    try:
        return DuelManager.file_dispute(db, contest_id, data.player_id, data.turn_id, event_id=data.event_id)
    except SkateGameException as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to file dispute in contest {contest_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/disputes/{dispute_id}/resolve", response_model=DisputeResult)
def resolve_dispute(dispute_id: int, data: DisputeResolve, db: Session = Depends(get_db)):
    """
    The judge rules on a dispute. A second ruling returns 409 (`already_processed`).
    """
    try:
        return DuelManager.resolve_dispute(db, dispute_id, data.player_id, data.final_result, event_id=data.event_id)
    except SkateGameException as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to resolve dispute {dispute_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{contest_id}/disconnect", response_model=DuelActionResult)
def disconnect(contest_id: str, data: PlayerAction, db: Session = Depends(get_db)):
    try:
        return DuelManager.handle_disconnect(db, contest_id, data.player_id, event_id=data.event_id)
    except SkateGameException as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to record disconnect: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{contest_id}/reconnect", response_model=DuelActionResult)
def reconnect(contest_id: str, data: PlayerAction, db: Session = Depends(get_db)):
    try:
        return DuelManager.handle_reconnect(db, contest_id, data.player_id, event_id=data.event_id)
    except SkateGameException as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to record reconnect: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
