"""
服務層

這個 package 包含純計算邏輯與外部協作者的實作，不負責狀態轉換：
- ActionService：依動作類型建立 RoundAction
- Repositories：Round / Player 的存取
- StateService：state_version 通知
- NamingService：名稱生成邏輯
"""
