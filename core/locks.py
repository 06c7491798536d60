"""
並發控制工具

兩層鎖定機制，防止競態條件（Race Condition）：

1. RoundLocks：行程內的 per-round asyncio.Lock，序列化同一回合的
   「檢查 -> 追加 -> 寫入」，不同回合互不影響
2. with_round_lock：Database-level 的 SELECT ... FOR UPDATE（悲觀鎖），
   跨行程時搭配 Round.version 樂觀鎖使用
"""
import asyncio
import weakref
from contextlib import asynccontextmanager

from sqlalchemy.orm import Session, Query

from models import Round


class RoundLocks:
    """
    per-round 鎖的註冊表

    鎖以 weak reference 保存：沒有人持有或等待時自動釋放，
    所以閒置的回合不會累積在記憶體中

    範例：
        locks = RoundLocks()
        async with locks.hold(round_id):
            # 同一個 round_id 的其他請求會在這裡排隊
            ...
    """

    def __init__(self):
        self._locks = weakref.WeakValueDictionary()

    def get(self, round_key) -> asyncio.Lock:
        lock = self._locks.get(round_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[round_key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, round_key):
        lock = self.get(round_key)
        async with lock:
            yield

    def __len__(self):
        return len(self._locks)


def with_round_lock(round_id: int, db: Session) -> Query:
    """
    鎖定一個 Round（行級鎖）

    使用場景：
    - 檢查並修改 Round 狀態時
    - 需要確保 Round 在整個 transaction 期間不被其他請求修改

    範例：
        round_obj = with_round_lock(round_id, db).first()
        if round_obj and round_obj.can_player_act_in(player_id):
            round_obj.record_action(action)
            db.commit()

    參數：
        round_id: Round 的 id
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 或 .one() 來取得結果）

    注意：
        - SQLite 不支援 FOR UPDATE，會被忽略（此時靠 version 樂觀鎖）
        - populate_existing 確保拿到的是 DB 最新狀態而不是 session 快取
    """
    return db.query(Round).filter(
        Round.id == round_id
    ).populate_existing().with_for_update(nowait=False)
