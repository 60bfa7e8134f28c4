"""
Marketplace Service - 設定

環境変数はプロセス起動時に一度だけ読み込む。
エンジンや Redis クライアントはここでは作らず、main.py の lifespan が
この設定をもとに生成・破棄する。
"""

import os

from pydantic import BaseModel, Field


class Settings(BaseModel):
    database_url: str
    redis_url: str = "redis://localhost:6379"
    # 競合時の再試行を含めた入札トランザクションの最大試行回数
    bid_max_attempts: int = Field(default=5, ge=1)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.environ["DATABASE_URL"],
            redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379"),
            bid_max_attempts=int(os.environ.get("BID_MAX_ATTEMPTS", "5")),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )
