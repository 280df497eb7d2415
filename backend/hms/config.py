"""
应用配置
从环境变量读取配置（支持 .env 文件）
"""
from decimal import Decimal
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用设置"""

    # 应用基础配置
    APP_NAME: str = "HMS Reservation Engine"
    DEBUG: bool = False

    # 数据库配置
    DATABASE_URL: str = "sqlite:///./hms.db"

    # 账务配置（单一物业、单一币种）
    DEFAULT_TAX_RATE: Decimal = Decimal("0.10")   # 房费默认税率
    DEFAULT_CURRENCY: str = "BDT"

    # 库存策略：requested 状态的预订是否占用库存
    REQUESTED_HOLDS_INVENTORY: bool = False

    # 入住策略
    ALLOW_EARLY_CHECKIN: bool = False    # 放开入住日期校验（散客/提前到店）
    EARLY_CHECKIN_DAYS: int = 0          # 允许提前入住的天数

    # 事件总线保留的最近事件数（排查用）
    EVENT_HISTORY_SIZE: int = 100

    # 并发控制
    LOCK_TIMEOUT_SECONDS: float = 10.0

    # 支付网关
    PAYMENT_PROVIDER: str = "stub"
    PAYMENT_STUB_MAX_AMOUNT: Decimal = Decimal("100000")

    model_config = ConfigDict(env_file=".env", case_sensitive=True)


# 全局设置实例
settings = Settings()
