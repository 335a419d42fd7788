from __future__ import annotations

from datetime import UTC, datetime
from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .routers.chat import router as chat_router
from .routers.ai_settings import router as ai_settings_router
from ..observability.metrics import metrics_middleware_factory
from ..services.model_router import ModelRouter

load_dotenv()  # Provider keys and JWT settings may come from a local .env

app = FastAPI(title="Projectline API", version="0.1.0")

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

app.include_router(chat_router)
app.include_router(ai_settings_router)

# Same routers under /api for the web client
app.include_router(chat_router, prefix="/api")
app.include_router(ai_settings_router, prefix="/api")

# CORS (for the web dev server on localhost:3000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {"name": "Projectline API", "version": "0.1.0"}


@app.get("/health")
def health():
    selection = ModelRouter().maybe_select_provider()
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "store": "in-memory",
            "llm": selection.name if selection else "unconfigured",
        },
    }


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.get("/api/health")
def api_health():
    return health()
