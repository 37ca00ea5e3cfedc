import logging
import uvicorn
from fastapi import FastAPI, APIRouter
from fastapi.middleware.cors import CORSMiddleware
from temis.util.db.database import close_db, init_db
from temis.util.db.realtime import RealtimeHub
from temis.api.router import (
    auth, notifications, formateurs, participants, lieux, formations,
    parametres, emails, factures, assistant, recherche, temps_reel
)
from temis.util.db.setting import settings
from temis.util.notification.bus import NotificationBus

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="TEMIS API",
    description="Administration TEMIS : formations, formateurs, lieux, participants, paramètres, factures et emails, "
                "avec notifications éphémères et suivi des changements en temps réel.",
    version="1.0.0"
)

# Un bus de notifications et un flux de changements pour tout le processus,
# injectés dans les routes par dépendance
app.state.notifications = NotificationBus(ttl=settings.NOTIFICATION_TTL_SECONDS)
app.state.realtime = RealtimeHub()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

api_router = APIRouter()
for router in (
    auth, notifications, formateurs, participants, lieux, formations,
    parametres, emails, factures, assistant, recherche, temps_reel,
):
    api_router.include_router(router)

app.include_router(api_router, prefix="/api/v1")


@app.on_event("startup")
async def startup_event():
    logger.info("Démarrage de l'API TEMIS...")
    settings.log_config()
    await init_db()
    logger.info("API TEMIS prête.")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Arrêt de l'API TEMIS...")
    app.state.realtime.close()
    app.state.notifications.close()
    await close_db()
    logger.info("API TEMIS arrêtée.")


@app.get("/")
async def root():
    return {"message": "Bienvenue sur l'API TEMIS. Documentation disponible sur /docs."}


if __name__ == "__main__":
    uvicorn.run("temis.main:app", host="0.0.0.0", port=8000, log_level="info")
