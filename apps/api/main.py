from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
import os
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Load environment variables from .env file FIRST
load_dotenv()

from database import create_db_and_tables
import models  # Import models to register them with SQLModel
from errors import SchedulingError
from routers import schedule, slots, queue, public
from middleware.request_logger import RequestLoggingMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    yield

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)

app = FastAPI(
    title="ClinicQ API",
    description="Doctor scheduling, slot booking and patient queue API for multi-clinic deployments",
    version="0.1.0",
    lifespan=lifespan
)

# Set up rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


async def scheduling_error_handler(request: Request, exc: SchedulingError):
    """Map domain errors to HTTP responses with an actionable body"""
    if exc.retryable:
        logger.warning(f"{request.method} {request.url.path} rejected as retryable: {exc.message}")
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(exc.to_dict()),
        headers=headers,
    )

app.add_exception_handler(SchedulingError, scheduling_error_handler)

# CORS configuration
origins = [
    "http://localhost:3000",  # Development frontend
    "http://localhost:8000",  # Development API
    os.getenv("FRONTEND_URL", "http://localhost:3000"),  # Production frontend from env
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Requested-With", "Accept", "Origin"],
    expose_headers=["Retry-After"],
)

app.add_middleware(RequestLoggingMiddleware)

# Include routers
app.include_router(schedule.router)
app.include_router(slots.router)
app.include_router(queue.router)
app.include_router(public.router)

@app.get("/")
def read_root():
    return {"message": "Welcome to ClinicQ API"}

@app.get("/health")
def health_check():
    return {"status": "healthy"}
