# api/main.py

import os
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import daily_tasks, profile, tasks
from engine.templates import get_template_library

# .env en local, variables injectées en prod
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s [%(levelname)s] %(name)s : %(message)s",
)
logger = logging.getLogger("pacecoach.api")

SERVICE = "pacecoach-api"
DEFAULT_ORIGINS = ("http://localhost:3000", "http://localhost:5173")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Bibliothèque invalide → l'API ne démarre pas
    library = get_template_library()
    logger.info(f"[api] démarrage, bibliothèque v{library.version} ({len(library)} modèles)")
    yield
    logger.info("[api] arrêt")


def _allowed_origins() -> list[str]:
    """Origines par défaut + FRONTEND_ORIGINS (liste séparée par des virgules)."""
    extra = os.getenv("FRONTEND_ORIGINS", "").split(",")
    return sorted({*DEFAULT_ORIGINS, *(o.strip() for o in extra if o.strip())})


app = FastAPI(
    title="PaceCoach API",
    version="1.0.0",
    description="Plans quotidiens, séries et scores pour agents immobiliers",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type", "X-API-KEY"],
)

app.include_router(daily_tasks.router, prefix="/daily-tasks", tags=["daily-tasks"])
app.include_router(tasks.router, prefix="/tasks", tags=["tasks"])
app.include_router(profile.router, prefix="/profile", tags=["profile"])


@app.get("/")
def root() -> dict:
    library = get_template_library()
    return {"service": SERVICE, "version": app.version, "task_library": library.version}


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "service": SERVICE}


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    # Pas de détail interne dans la réponse, tout part dans les logs
    logger.exception(f"[api] erreur non gérée {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})
