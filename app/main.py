from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.database import Base, engine
from app.errors import DispatchError
from app.routers import auth, bookings, messages, orders, providers, realtime
from app.utils.logging import setup_logging
from app import models  # noqa: F401  registers every table on Base.metadata

logger = setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database ready")
    yield
    await engine.dispose()


app = FastAPI(title="Repair Dispatch API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.type, request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(auth.router)
app.include_router(providers.router)
app.include_router(orders.router)
app.include_router(bookings.router)
app.include_router(messages.router)
app.include_router(realtime.router)


@app.get("/")
async def root():
    return {"message": "Repair Dispatch API is running"}
