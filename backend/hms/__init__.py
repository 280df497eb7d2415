"""
HMS 预订与账务核心
房间库存、预订生命周期、入住/退房、发票与支付对账
"""
__version__ = "0.1.0"
