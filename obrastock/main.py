import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from obrastock.config import settings
from obrastock.db import create_db_and_tables
from obrastock.error import InventoryError
from obrastock.routers import auth, dashboard, loans, movements, tools, users

logger = logging.getLogger("obrastock")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    create_db_and_tables()
    logger.info("database ready: %s", settings.database_url)
    yield
    logger.info("服务已关闭")


app = FastAPI(title="ObraStock - Tool Inventory", lifespan=lifespan)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(dashboard.router)
app.include_router(tools.router)
app.include_router(loans.router)
app.include_router(movements.router)


@app.get("/health")
def health():
    return {"ok": True}


@app.exception_handler(InventoryError)
async def inventory_error_handler(request: Request, exc: InventoryError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"code": "VALIDATION_ERROR", "message": "参数校验失败", "errors": jsonable_encoder(exc.errors())},
    )
