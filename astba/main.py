import logging
import uvicorn
from fastapi import FastAPI, APIRouter
from fastapi.middleware.cors import CORSMiddleware
from astba.util.db.database import init_db, close_db
from astba.api.router import (
    etudiants, formations, inscriptions, seances, presences, progression, certificats, tableau_de_bord
)
from astba.util.db.setting import settings

# -----------------------
# Configure logging
# -----------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# -----------------------
# Initialize FastAPI app
# -----------------------
app = FastAPI(
    title="ASTBA API",
    description="API de suivi des formations ASTBA : présences, progression par niveau et certificats.",
    version="1.0.0"
)

# -----------------------
# Configure CORS middleware
# -----------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Ajuster en production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Create main API router
# -----------------------
api_router = APIRouter()

api_router.include_router(etudiants)
api_router.include_router(formations)
api_router.include_router(inscriptions)
api_router.include_router(seances)
api_router.include_router(presences)
api_router.include_router(progression)
api_router.include_router(certificats)
api_router.include_router(tableau_de_bord)

# Include the main router with a global prefix
app.include_router(api_router, prefix="/api/v1")

# -----------------------
# Event handlers
# -----------------------
@app.on_event("startup")
async def startup_event():
    logger.info("Starting up the application...")
    settings.log_config()
    await init_db()
    logger.info("Application startup complete.")

@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down the application...")
    await close_db()
    logger.info("Application shutdown complete.")

# -----------------------
# Root endpoint
# -----------------------
@app.get("/")
async def root():
    return {"message": "Welcome to the ASTBA API. Refer to /docs for API documentation."}

# -----------------------
# Run the application with Uvicorn if executed directly
# -----------------------
if __name__ == "__main__":
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
