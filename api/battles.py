"""
Battle API Endpoints

Battle lifecycle and voting, backed by BattleManager.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import logging

from database import get_db
from schemas import BattleCreate, BattleJoin, VoteResult, VoteSubmit, VotingInitialize
from core.battle_manager import BattleManager
from core.exceptions import BattleNotFound, SkateGameException

router = APIRouter(prefix="/api/battles", tags=["battles"])
logger = logging.getLogger(__name__)


def _battle_dict(battle) -> dict:
    return {
        "id": battle.id,
        "creator_id": battle.creator_id,
        "opponent_id": battle.opponent_id,
        "status": battle.status.value,
        "winner_id": battle.winner_id
    }


@router.post("")
def create_battle(data: BattleCreate, db: Session = Depends(get_db)):
    try:
        battle = BattleManager.create_battle(db, data.creator_id)
        return _battle_dict(battle)
    except SkateGameException as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to create battle: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{battle_id}/join")
def join_battle(battle_id: str, data: BattleJoin, db: Session = Depends(get_db)):
    try:
        battle = BattleManager.join_battle(db, battle_id, data.opponent_id)
        return _battle_dict(battle)
    except SkateGameException as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to join battle {battle_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{battle_id}/voting")
def initialize_voting(battle_id: str, data: VotingInitialize, db: Session = Depends(get_db)):
    """
    Open voting for a battle.

    Idempotent: calling again returns the existing voting state with
    already_initialized=true.
    """
    try:
        state, created = BattleManager.initialize_voting(db, data.event_id, battle_id)
        return {
            "already_initialized": not created,
            "state": state.to_dict()
        }
    except SkateGameException as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to initialize voting for {battle_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{battle_id}/voting")
def get_vote_state(battle_id: str, db: Session = Depends(get_db)):
    try:
        state = BattleManager.get_vote_state(db, battle_id)
        if not state:
            raise BattleNotFound(battle_id)
        return state.to_dict()
    except SkateGameException as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to get vote state for {battle_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{battle_id}/votes", response_model=VoteResult)
def cast_vote(battle_id: str, data: VoteSubmit, db: Session = Depends(get_db)):
    """
    Cast a vote on the other participant's clip.

    Replaying the same event_id returns the recorded outcome with
    already_processed=true.
    """
    try:
        logger.info(f"Vote from {data.voter_id} in battle {battle_id}: {data.value.value}")
        return BattleManager.cast_vote(db, data.event_id, battle_id, data.voter_id, data.value)
    except SkateGameException as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    except Exception as e:
        logger.error(f"Failed to cast vote: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
