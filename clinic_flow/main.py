from contextlib import asynccontextmanager

from fastapi import FastAPI

from .database import engine
from .logger import get_logger
from .models import Base
from .routers import appointments, queue, visits

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Patient flow engine starting")
    Base.metadata.create_all(bind=engine)
    yield
    logger.info("Patient flow engine shutting down")


app = FastAPI(
    title="Patient Flow Prioritization Engine",
    description="Triage scoring, live queue coordination and appointment scheduling",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(visits.router)
app.include_router(queue.router)
app.include_router(appointments.router)


@app.get("/", tags=["Health"])
def root():
    return {"status": "ok", "service": "clinic-flow"}
