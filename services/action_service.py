"""
動作服務：依 RoundActionType 建立 RoundAction

純計算邏輯，不做 I/O：
- 每種動作類型恰好對應一個 payload 模型（PAYLOAD_SCHEMAS）
- 類型未知或 payload 不合法一律拋 InvalidRoundAction，沒有預設分支
"""
from typing import Any, Dict, Type

from pydantic import ValidationError

from core.exceptions import InvalidRoundAction
from models import RoundAction, RoundActionType
from schemas import ActionPayload, BetPayload, PlayCardPayload, VotePayload


PAYLOAD_SCHEMAS: Dict[RoundActionType, Type[ActionPayload]] = {
    RoundActionType.BET: BetPayload,
    RoundActionType.PLAY_CARD: PlayCardPayload,
    RoundActionType.VOTE: VotePayload,
}

_missing = set(RoundActionType) - set(PAYLOAD_SCHEMAS)
if _missing:
    raise RuntimeError(f"No payload schema for action types: {sorted(t.value for t in _missing)}")


def resolve_action_type(action_type: Any) -> RoundActionType:
    """
    把輸入轉成 RoundActionType

    接受 enum 本身或其字串值（不分大小寫）

    異常：
        InvalidRoundAction: 不認得的動作類型
    """
    if isinstance(action_type, RoundActionType):
        return action_type
    if isinstance(action_type, str):
        try:
            return RoundActionType(action_type.strip().upper())
        except ValueError:
            pass
    raise InvalidRoundAction([f"Unknown action type \"{action_type}\"."])


def _describe(error: Dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error["loc"]) or "payload"
    return f"{location}: {error['msg']}"


def parse_payload(action_type: Any, raw_payload: Any) -> ActionPayload:
    """
    依動作類型驗證 payload

    返回：
        frozen 的 payload 模型

    異常：
        InvalidRoundAction: 列出所有違反的規則
    """
    resolved = resolve_action_type(action_type)
    schema = PAYLOAD_SCHEMAS[resolved]
    if not isinstance(raw_payload, dict):
        raise InvalidRoundAction([f"Payload for {resolved.value} must be an object."])
    try:
        return schema.model_validate(raw_payload)
    except ValidationError as e:
        raise InvalidRoundAction(
            [f"Invalid {resolved.value} payload, {_describe(error)}" for error in e.errors()]
        )


def create_round_action(action_type: Any, player_id: int, raw_payload: Any) -> RoundAction:
    """
    建立一個尚未加入回合的 RoundAction

    參數：
        action_type: RoundActionType 或其字串值
        player_id: 出手的玩家
        raw_payload: 原始 payload（dict）

    返回：
        RoundAction（payload 已正規化）
    """
    payload = parse_payload(action_type, raw_payload)
    return RoundAction(
        player_id=player_id,
        action_type=resolve_action_type(action_type),
        payload=payload.model_dump(),
    )
