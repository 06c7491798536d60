"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層與 ActInRound 統一處理

每個異常都帶有 FailureKind，ActInRound 在邊界把異常轉成 Result.fail(kind, ...)
"""
from core.results import FailureKind


class RoundGameException(Exception):
    """所有遊戲異常的基類"""
    kind = FailureKind.VALIDATION_ERROR


# ============ Game 相關異常 ============

class GameNotFound(RoundGameException):
    """遊戲不存在"""
    kind = FailureKind.NOT_FOUND

    def __init__(self, game_id):
        self.game_id = game_id
        super().__init__(f"Game {game_id} not found")


class InvalidPlayerCount(RoundGameException):
    """玩家數量不足（至少 2 人）"""
    pass


class GameNotAcceptingPlayers(RoundGameException):
    """遊戲不接受新玩家加入（已經開始）"""
    kind = FailureKind.INELIGIBLE_ACTION


# ============ Round 相關異常 ============

class RoundNotFound(RoundGameException):
    """回合不存在"""
    kind = FailureKind.NOT_FOUND

    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round with Id \"{round_id}\" not found.")


class MaxRoundsReached(RoundGameException):
    """已達最大回合數"""
    kind = FailureKind.FINISHING_FAILURE


class ActionAlreadySubmitted(RoundGameException):
    """玩家已經提交過動作了（DB unique constraint 擋下的情況）"""
    kind = FailureKind.INELIGIBLE_ACTION


class PlayerCannotAct(RoundGameException):
    """玩家現在不能在這個回合出手"""
    kind = FailureKind.INELIGIBLE_ACTION

    def __init__(self, player_id, round_id):
        self.player_id = player_id
        self.round_id = round_id
        super().__init__("Player cannot act in this round.")


class InvalidRoundAction(RoundGameException):
    """動作類型未知，或 payload 不符合該類型的規則"""
    kind = FailureKind.INVALID_ACTION

    def __init__(self, reasons):
        self.reasons = list(reasons)
        super().__init__("; ".join(self.reasons))


# ============ 持久化異常 ============

class RoundPersistenceError(RoundGameException):
    """回合寫入失敗"""
    kind = FailureKind.PERSISTENCE_FAILURE


class ConcurrentRoundModification(RoundPersistenceError):
    """樂觀鎖衝突：其他請求已先寫入同一個回合"""

    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round {round_id} was modified concurrently")


# ============ 狀態轉換異常 ============

class InvalidStateTransition(RoundGameException):
    """非法的狀態轉換"""
    kind = FailureKind.FINISHING_FAILURE


# ============ Player 相關異常 ============

class PlayerNotFound(RoundGameException):
    """玩家不存在"""
    kind = FailureKind.NOT_FOUND

    def __init__(self, player_id):
        self.player_id = player_id
        super().__init__(f"Player with Id \"{player_id}\" not found.")
