# app/main.py
import time
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from app.routes import driver_router, vehicle_router, schedule_router, payment_router
from app.database import connect_to_mongo, close_mongo_connection, init_db, insert_sample_data, get_database
from app.dependencies import build_scheduler
from app.exceptions import FleetError, create_error_response
from app.config import get_settings
from app.utils.logger import get_logger

settings = get_settings()
logger = get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await connect_to_mongo()
    await init_db()
    if settings.SEED_SAMPLE_DATA:
        await insert_sample_data()

    app.state.scheduler = None
    if settings.SCHEDULER_ENABLED:
        app.state.scheduler = build_scheduler(await get_database())
        app.state.scheduler.start()
    yield
    # Shutdown
    if app.state.scheduler:
        await app.state.scheduler.stop()
    await close_mongo_connection()

app = FastAPI(title="Fleet Schedule & Payment Service", lifespan=lifespan)

@app.exception_handler(FleetError)
async def fleet_error_handler(request: Request, exc: FleetError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_response()})

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": create_error_response(
            message="Internal server error",
            details="An unexpected error occurred",
            example="Please try again or contact support if the problem persists"
        )}
    )

@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.debug(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)")
    return response

app.include_router(driver_router, prefix=settings.API_PREFIX, tags=["drivers"])
app.include_router(vehicle_router, prefix=settings.API_PREFIX, tags=["vehicles"])
app.include_router(schedule_router, prefix=settings.API_PREFIX, tags=["schedules"])
app.include_router(payment_router, prefix=settings.API_PREFIX, tags=["payments"])

@app.get("/")
async def root():
    return {"message": "Welcome to the Fleet Schedule & Payment Service"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD
    )
