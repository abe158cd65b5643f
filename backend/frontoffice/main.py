from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
from dotenv import load_dotenv
import logging
import time

load_dotenv()
from frontoffice.config import settings
from frontoffice.auth import ensure_first_admin
from frontoffice.database import AsyncSessionLocal, init_db, close_db
from frontoffice.redis_client import close_redis
from frontoffice.mongo_client import close_mongo, create_mongo_indexes, get_mongo_db
from frontoffice.routers import (
    auth,
    users,
    patients,
    appointments,
    lab_orders,
    inventory,
    prescriptions,
    dispensing,
    billing,
    pricing,
    wards,
    admissions,
    staff_schedule,
    reports,
    activity_log
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger("frontoffice")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    async with AsyncSessionLocal() as session:
        await ensure_first_admin(session)
    logger.info("Relational schema ready")

    db = await get_mongo_db()
    await create_mongo_indexes(db)
    logger.info("MongoDB connected")

    yield

    await close_redis()
    await close_mongo()
    await close_db()
    logger.info("Redis, MongoDB and database connections closed")


app = FastAPI(
    title="Hospital Front Office",
    description="Patients, appointments, lab orders, pharmacy, billing, admissions and staff scheduling",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    logger.info(
        f"{request.method} {request.url.path} - Status: {response.status_code} - Time: {process_time:.4f}s"
    )
    return response


app.include_router(auth.router)
app.include_router(users.router)

app.include_router(patients.router)
app.include_router(appointments.router)

app.include_router(lab_orders.router)

app.include_router(inventory.router)
app.include_router(prescriptions.router)
app.include_router(dispensing.router)

app.include_router(billing.router)
app.include_router(pricing.router)

app.include_router(wards.router)
app.include_router(admissions.router)
app.include_router(staff_schedule.router)

app.include_router(reports.router)
app.include_router(activity_log.router)


@app.get("/")
def read_root():
    return {
        "message": "Welcome to the Hospital Front Office API",
        "version": "1.0.0",
        "modules": {
            "authentication": "JWT-based staff authentication",
            "users": "Staff accounts and roles",
            "patients": "Patient registration and history",
            "appointments": "Appointment scheduling and status tracking",
            "lab": "Lab orders from sample collection to verified results",
            "pharmacy": "Medication inventory, prescriptions and dispensing",
            "billing": "Invoices, payments and overdue tracking",
            "pricing": "Fee schedule, lab test and service price catalogs",
            "wards": "Wards, beds and nightly tariffs",
            "admissions": "Inpatient admissions, MAR, vitals and nursing notes",
            "staff_schedule": "Shifts and attendance",
            "reports": "Date-range analytics and daily snapshots",
            "activity_log": "Who did what, and when"
        },
        "documentation": {
            "interactive": "/docs",
            "alternative": "/redoc"
        }
    }


@app.get("/health")
def health_check():
    return {"status": "healthy"}
