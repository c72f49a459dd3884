import asyncio
import logging
import os
import re
import time
from typing import Optional

from quart import Quart, jsonify, request

from .common.config import settings
from .common.database import init_db, make_engine, make_session_factory
from .common.http import register_error_handlers
from .common.kafka_client import close_producer
from .customers.controller import bp as customers_bp
from .inventory.controller import bp as inventory_bp
from .orders.controller import bp as orders_bp
from .services import Services, build_services
from .sync.controller import bp as sync_bp
from .sync.worker import sync_worker
from .webhooks.controller import bp as webhooks_bp

# Prometheus metrics
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


log = logging.getLogger(__name__)

# Get instance ID from environment
INSTANCE_ID = os.getenv("INSTANCE_ID", "unknown")

# Basic metrics with proper buckets for latency
REQUEST_COUNT = Counter("http_requests_total", "Total HTTP requests", ["method", "endpoint", "status"])
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, float("inf"))
)

_NUMERIC_SEGMENT = re.compile(r"/\d+(?=/|$)")


def normalize_endpoint(path: str) -> str:
    """Collapse ids so metric labels stay bounded."""
    if path.startswith("/webhooks/"):
        return "/webhooks/*"
    return _NUMERIC_SEGMENT.sub("/<id>", path)


def create_app(services: Optional[Services] = None) -> Quart:
    app = Quart(__name__)
    app.services = services

    # Blueprints
    app.register_blueprint(orders_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(webhooks_bp)
    register_error_handlers(app)

    @app.before_request
    async def before_request():
        request._start_time = time.time()
        log.debug("[Instance %s] %s %s", INSTANCE_ID, request.method, request.path)

    @app.after_request
    async def after_request(response):
        try:
            if hasattr(request, "_start_time"):
                duration = time.time() - request._start_time
                endpoint = normalize_endpoint(request.path)
                REQUEST_LATENCY.labels(endpoint=endpoint).observe(duration)
                REQUEST_COUNT.labels(
                    method=request.method,
                    endpoint=endpoint,
                    status=str(response.status_code)
                ).inc()
                response.headers['X-Instance-ID'] = INSTANCE_ID
        except Exception as e:
            log.error("Error recording metrics: %s", e)
        return response

    @app.get("/metrics")
    async def metrics():
        data = generate_latest()
        return app.response_class(data, mimetype=CONTENT_TYPE_LATEST)

    @app.get("/health")
    async def health():
        return jsonify({"status": "ok"})

    @app.before_serving
    async def startup():
        logging.basicConfig(level=settings.LOG_LEVEL)
        if app.services is None:
            log.info("Initializing database...")
            engine = make_engine()
            await init_db(engine)
            app._engine = engine
            app.services = build_services(make_session_factory(engine))
            log.info("Database ready.")
        app.services.dispatcher.start()

        app.background_tasks = getattr(app, "background_tasks", set())
        if settings.SYNC_TRANSPORT == "kafka":
            stop_event = asyncio.Event()
            app._sync_stop = stop_event
            task = asyncio.create_task(sync_worker(app.services.coordinator.push, stop_event))
            app.background_tasks.add(task)
            log.info("Kafka sync worker started.")

    @app.after_serving
    async def shutdown():
        stop_event = getattr(app, "_sync_stop", None)
        if stop_event:
            stop_event.set()
        for t in getattr(app, "background_tasks", set()):
            try:
                await asyncio.wait_for(t, timeout=2.0)
            except Exception:
                t.cancel()
        if app.services is not None:
            await app.services.close()
        await close_producer()
        engine = getattr(app, "_engine", None)
        if engine is not None:
            await engine.dispose()
        log.info("Shutdown complete.")

    return app
