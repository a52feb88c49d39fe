# negotiation_service/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from negotiation_service.api.v1.api import api_router
from negotiation_service.core.config import settings
from negotiation_service.db.base_class import Base
from negotiation_service.db.session import engine
from negotiation_service.middleware.error_handler import register_error_handlers
from negotiation_service import models  # noqa: F401  registers tables on Base

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Negotiation service starting up...")
    if settings.ENV == "local":
        # Production schemas are managed by alembic
        Base.metadata.create_all(bind=engine)
        logger.info("Local database tables checked and created if necessary.")
    yield
    logger.info("Negotiation service shutting down...")


app = FastAPI(
    title="RFQ Negotiation Service",
    version="1.0.0",
    description="""
        Buyer/supplier negotiation after a bid: messages, counter-offers,
        acceptance and the purchase order that follows.

        ## Authentication

        Every endpoint requires a JWT via the `Authorization: Bearer <token>` header.
        """,
    lifespan=lifespan,
)

origins = [
    "http://localhost:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
def read_root():
    return {"status": "Negotiation Service is running"}
