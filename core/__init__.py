"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- ActInRound：玩家出手的狀態機（驗證 -> 記錄 -> 完成 -> 結算）
- FinishRound：回合結算與開下一回合
- 狀態機：集中管理所有狀態轉換
- Manager：管理 Game 的生命週期
- Locks：並發控制工具
"""
