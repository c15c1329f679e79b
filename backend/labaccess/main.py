from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Response, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from . import config
from .database import Base, engine
from .permissions import get_permission_matrix
from .routes import access, objects, projects, audit
from .workers.audit_writer import shutdown_audit_dispatcher

logger = logging.getLogger(__name__)

if config.SENTRY_DSN:
    sentry_sdk.init(dsn=config.SENTRY_DSN, integrations=[FastApiIntegration()])

REQUEST_COUNT = Counter("request_count", "Total requests", ["method", "endpoint"])
REQUEST_LATENCY = Histogram(
    "request_latency_seconds", "Request latency", ["endpoint"]
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    matrix = get_permission_matrix()
    logger.info("Access control ready", extra={"permission_rows": len(matrix)})
    yield
    shutdown_audit_dispatcher()


app = FastAPI(title="Lab Access Control API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    endpoint = request.url.path
    REQUEST_COUNT.labels(request.method, endpoint).inc()
    REQUEST_LATENCY.labels(endpoint).observe(time.time() - start)
    return response


@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(access.router)
app.include_router(objects.router)
app.include_router(projects.router)
app.include_router(audit.router)


def _requires(dependant, target) -> bool:
    for dep in dependant.dependencies:
        if dep.call is target or _requires(dep, target):
            return True
    return False


def audit_routes():
    from fastapi.routing import APIRoute
    from .auth import get_current_principal

    public_paths = {"/metrics"}
    for route in app.routes:
        if isinstance(route, APIRoute) and route.path.startswith("/api") and route.path not in public_paths:
            if not _requires(route.dependant, get_current_principal):
                raise RuntimeError(f"Route {route.path} missing authentication")


audit_routes()
