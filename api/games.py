"""
Game API Endpoints

職責：
1. 建立遊戲、玩家加入、開始遊戲
2. 短輪詢：GET /state 取得 state_version
3. 查詢當前回合
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from schemas import (
    GameCreate,
    GameResponse,
    GameStateResponse,
    PlayerJoin,
    PlayerResponse,
    RoundResponse,
)
from core.game_manager import GameManager
from core.exceptions import (
    GameNotAcceptingPlayers,
    GameNotFound,
    InvalidPlayerCount,
    InvalidStateTransition,
)
from services.state_service import bump_state_version

router = APIRouter(prefix="/api/games", tags=["games"])
logger = logging.getLogger(__name__)


@router.post("", response_model=GameResponse)
def create_game(game_data: GameCreate, db: Session = Depends(get_db)):
    try:
        game = GameManager.create_game(db, max_rounds=game_data.max_rounds)
        return GameResponse(
            game_id=game.id,
            code=game.code,
            status=game.status,
            max_rounds=game.max_rounds
        )
    except Exception as e:
        logger.error(f"Failed to create game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{code}/join", response_model=PlayerResponse)
def join_game(code: str, player_data: PlayerJoin, db: Session = Depends(get_db)):
    """
    加入遊戲（玩家 endpoint）

    前置條件：
    - 遊戲必須存在
    - 遊戲狀態必須是 WAITING
    """
    try:
        player = GameManager.join_game(db, code, player_data.nickname)
        return PlayerResponse(
            player_id=player.id,
            game_id=player.game_id,
            display_name=player.display_name
        )
    except GameNotFound:
        raise HTTPException(status_code=404, detail="Game not found")
    except GameNotAcceptingPlayers as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to join game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{game_id}/start", response_model=RoundResponse)
def start_game(game_id: int, db: Session = Depends(get_db)):
    """開始遊戲（Host endpoint），返回第一回合"""
    try:
        first_round = GameManager.start_game(db, game_id)
        bump_state_version(db, game_id, reason="game_started")
        db.commit()
        return RoundResponse.model_validate(first_round)
    except GameNotFound:
        raise HTTPException(status_code=404, detail="Game not found")
    except (InvalidPlayerCount, InvalidStateTransition) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to start game: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{game_id}/state", response_model=GameStateResponse)
def get_game_state(game_id: int, db: Session = Depends(get_db)):
    """短輪詢用：state_version 改變時前端再重新抓資料"""
    try:
        game = GameManager.get_game_by_id(db, game_id)
        return GameStateResponse(
            game_id=game.id,
            status=game.status,
            current_round=game.current_round,
            state_version=game.state_version
        )
    except GameNotFound:
        raise HTTPException(status_code=404, detail="Game not found")


@router.get("/{game_id}/rounds/current", response_model=RoundResponse)
def get_current_round(game_id: int, db: Session = Depends(get_db)):
    try:
        current_round = GameManager.get_current_round(db, game_id)
        if not current_round:
            raise HTTPException(status_code=404, detail="No active round")
        return RoundResponse.model_validate(current_round)

    except HTTPException:
        raise
    except GameNotFound:
        raise HTTPException(status_code=404, detail="Game not found")
    except Exception as e:
        logger.error(f"Failed to get current round: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
