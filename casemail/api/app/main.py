import logging
from fastapi import FastAPI

from .config import settings
from .classification.routes import router as classification_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(title="casemail Classification API", version="0.1.0")

app.include_router(classification_router)  # Reclassification triggers + preview


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring"""
    return {"status": "healthy", "version": app.version}
