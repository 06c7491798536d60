"""
Pydantic schemas

- API request / response 模型
- 每種 RoundActionType 的 payload 模型（frozen，拒絕多餘欄位）
"""
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import GameStatus, RoundActionType, RoundStatus


CARD_PATTERN = re.compile(r"^[2-9TJQKA][CDHS]$")


# ============ Action payloads ============

class ActionPayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class BetPayload(ActionPayload):
    amount: int = Field(gt=0)


class PlayCardPayload(ActionPayload):
    card: str

    @field_validator("card")
    @classmethod
    def card_must_be_rank_and_suit(cls, value: str) -> str:
        card = value.strip().upper()
        if not CARD_PATTERN.match(card):
            raise ValueError(f"'{value}' is not a card (expected rank 2-9/T/J/Q/K/A followed by suit C/D/H/S)")
        return card


class VotePayload(ActionPayload):
    target_player_id: int = Field(gt=0)


# ============ Game ============

class GameCreate(BaseModel):
    max_rounds: Optional[int] = Field(default=None, ge=1, le=100)


class GameResponse(BaseModel):
    game_id: int
    code: str
    status: GameStatus
    max_rounds: int


class GameStateResponse(BaseModel):
    game_id: int
    status: GameStatus
    current_round: int
    state_version: int


class PlayerJoin(BaseModel):
    nickname: str = Field(min_length=1, max_length=50)


class PlayerResponse(BaseModel):
    player_id: int
    game_id: int
    display_name: str


# ============ Round ============

class ActionSubmit(BaseModel):
    player_id: int
    action_type: RoundActionType
    payload: Dict[str, Any]


class RoundActionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    player_id: int
    action_type: RoundActionType
    payload: Dict[str, Any]


class RoundResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    game_id: int
    round_number: int
    status: RoundStatus
    last_action_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    actions: List[RoundActionResponse]


class ErrorResponse(BaseModel):
    errors: List[str]
