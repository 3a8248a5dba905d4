"""
ModStoreX 配置模組。

使用 Pydantic 模型描述 Registry 的執行策略，建立時即完成驗證。
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import Literal


class StoreConfig(BaseModel):
    """
    Registry 的配置。

    屬性:
        scheduler: 延遲域的排程方式。"asyncio" 會在執行中的事件迴圈上以
            call_soon 排程排空；"manual" 只在呼叫 flush() 時執行。
        raise_update_errors: reducer 失敗時，是否在整個 dispatch 週期結束後
            將第一個 UpdateFunctionError 拋給呼叫者（錯誤通道仍會收到）。
        max_drain_tasks: 單次排空最多執行的任務數，超過則重新排程剩餘任務；
            None 表示不限制。
        log_errors: 錯誤通道是否以 logging 記錄每一個錯誤。
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    scheduler: Literal["asyncio", "manual"] = Field(default="asyncio", description="延遲域排程方式")
    raise_update_errors: bool = Field(default=False, description="reducer 錯誤是否同步拋出")
    max_drain_tasks: Optional[int] = Field(default=None, ge=1, description="單次排空的任務上限")
    log_errors: bool = Field(default=True, description="錯誤通道是否寫入日誌")


DEFAULT_CONFIG = StoreConfig()
