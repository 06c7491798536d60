"""
命名服務：生成 Game Code 和 Player Display Name

純計算邏輯，不涉及狀態轉換
"""
import random
import string

from sqlalchemy.orm import Session

from models import Player


ANIMALS = ["狐狸", "老鷹", "熊", "虎", "狼", "鹿", "豹", "獅", "兔", "蛇"]


def generate_game_code() -> str:
    """
    生成隨機的 6 位大寫字母遊戲代碼

    注意：
    - 不檢查唯一性（由呼叫者負責）
    """
    return ''.join(random.choices(string.ascii_uppercase, k=6))


def display_name_for(index: int) -> str:
    """
    第 index 位（從 0 起算）玩家的顯示名稱

    範例：
        0 -> 狐狸 1
        1 -> 老鷹 1
        10 -> 狐狸 2
    """
    animal = ANIMALS[index % len(ANIMALS)]
    number = (index // len(ANIMALS)) + 1
    return f"{animal} {number}"


def generate_display_name(game_id: int, db: Session) -> str:
    """依加入順序為遊戲內的新玩家生成顯示名稱"""
    count = db.query(Player).filter(Player.game_id == game_id).count()
    return display_name_for(count)
