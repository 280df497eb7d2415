"""
支付网关接口：外部支付提供方的抽象

PaymentService 只依赖 IPaymentGateway，具体提供方通过 PaymentGatewayRegistry 注册。
默认注册 stub 网关：不访问外部系统，按金额模拟成功/失败。
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional
import logging
import uuid

from hms.config import settings
from hms.errors import NotFound
from hms.models.ontology import PaymentMethod, TransactionStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayResult:
    """网关处理结果"""
    status: TransactionStatus
    provider_tx_id: Optional[str]
    message: str


class IPaymentGateway(ABC):
    """支付网关接口"""

    @abstractmethod
    def charge(
        self,
        amount: Decimal,
        method: PaymentMethod,
        reference: str,
        provider_tx_id: Optional[str] = None,
    ) -> GatewayResult:
        """发起扣款

        Args:
            amount: 金额（> 0，由调用方校验）
            method: 支付方式
            reference: 业务引用（发票号）
            provider_tx_id: 外部已生成的流水号（线下刷卡等场景）

        Returns:
            网关处理结果，失败不抛异常
        """

    @abstractmethod
    def get_provider(self) -> str:
        """返回提供方标识，如 'stub'"""


class StubPaymentGateway(IPaymentGateway):
    """模拟网关：现金总是成功，其余方式超过上限即拒绝"""

    def __init__(self, max_amount: Optional[Decimal] = None):
        self.max_amount = max_amount

    @staticmethod
    def _generate_tx_id() -> str:
        """流水号：TXN-<毫秒时间戳>-<随机串>"""
        millis = int(datetime.now().timestamp() * 1000)
        return f"TXN-{millis}-{uuid.uuid4().hex[:9].upper()}"

    def charge(self, amount, method, reference, provider_tx_id=None) -> GatewayResult:
        limit = settings.PAYMENT_STUB_MAX_AMOUNT if self.max_amount is None else self.max_amount
        method = PaymentMethod(method)

        if method != PaymentMethod.CASH and Decimal(amount) > Decimal(limit):
            logger.info(f"Stub gateway declined {method.value} payment of {amount} for {reference}")
            return GatewayResult(
                status=TransactionStatus.FAILED,
                provider_tx_id=provider_tx_id,
                message="支付处理失败，请重试",
            )

        return GatewayResult(
            status=TransactionStatus.SUCCEEDED,
            provider_tx_id=provider_tx_id or self._generate_tx_id(),
            message="支付成功",
        )

    def get_provider(self) -> str:
        return "stub"


class PaymentGatewayRegistry:
    """支付网关注册表（单例）"""

    _instance: Optional["PaymentGatewayRegistry"] = None

    def __new__(cls) -> "PaymentGatewayRegistry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._gateways: Dict[str, IPaymentGateway] = {}
        return cls._instance

    def register(self, gateway: IPaymentGateway) -> None:
        """注册网关"""
        self._gateways[gateway.get_provider()] = gateway

    def get_gateway(self, provider: Optional[str] = None) -> IPaymentGateway:
        """获取网关，未指定时取配置的默认提供方；stub 总是可用"""
        provider = provider or settings.PAYMENT_PROVIDER
        gateway = self._gateways.get(provider)
        if gateway is None:
            if provider != "stub":
                raise NotFound("未注册的支付提供方", {"provider": provider})
            gateway = StubPaymentGateway()
            self._gateways[provider] = gateway
        return gateway

    def clear(self) -> None:
        """清除所有网关（用于测试）"""
        self._gateways.clear()


# 全局网关注册表
gateway_registry = PaymentGatewayRegistry()
