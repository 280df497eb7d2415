"""
HMS 主应用入口
房间库存、预订、入住/退房、发票与支付
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from hms import __version__
from hms.config import settings
from hms.database import init_db
from hms.errors import ErrorType, HotelError
from hms.routers import availability, bookings, stays, invoices, payments

logger = logging.getLogger(__name__)

# 错误类别 -> HTTP 状态码
ERROR_STATUS_CODES = {
    ErrorType.INVALID_RANGE: 400,
    ErrorType.INVALID_AMOUNT: 400,
    ErrorType.NOT_FOUND: 404,
    ErrorType.NO_AVAILABILITY: 409,
    ErrorType.NO_ROOM_AVAILABLE: 409,
    ErrorType.INVALID_TRANSITION: 409,
    ErrorType.UNAVAILABLE: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 初始化数据库
    init_db()

    # 注册通知处理器
    from hms.notification import register_notification_handlers
    register_notification_handlers()

    yield


# 创建应用
app = FastAPI(
    title=settings.APP_NAME,
    description="房间库存预订与账务生命周期引擎",
    version=__version__,
    lifespan=lifespan
)

# CORS 配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HotelError)
async def hotel_error_handler(request: Request, exc: HotelError):
    """领域错误统一转换为 {"error", "detail"} 响应"""
    status_code = ERROR_STATUS_CODES.get(exc.error_type, 500)
    if status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} unavailable: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# 注册路由
app.include_router(availability.router)
app.include_router(bookings.router)
app.include_router(stays.router)
app.include_router(invoices.router)
app.include_router(payments.router)


@app.get("/")
def root():
    """根路径"""
    return {
        "name": settings.APP_NAME,
        "version": __version__,
    }


@app.get("/health")
def health_check():
    """健康检查"""
    return {"status": "healthy"}
