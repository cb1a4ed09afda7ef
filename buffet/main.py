import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from buffet.middleware import RequestIdMiddleware
from buffet.db import Base, engine
from buffet.config import settings
from buffet.errors import BuffetError

from buffet.routers import admin, auth, billing, loyalty, orders, packages, sessions, stock, tables
from buffet.routers import settings as settings_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Buffet POS API", version="0.1.0")

@app.on_event("startup")
def init_db():
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready (%s)", settings.APP_ENV)

@app.exception_handler(BuffetError)
async def buffet_error_handler(request: Request, exc: BuffetError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(sessions.router)
app.include_router(billing.router)
app.include_router(packages.router)
app.include_router(orders.router)
app.include_router(stock.router)
app.include_router(tables.router)
app.include_router(loyalty.router)
app.include_router(settings_router.router)

@app.get("/healthz")
def healthz():
    return {"ok": True}
