from fastapi import FastAPI
from dotenv import load_dotenv
load_dotenv(dotenv_path="backend/.env", override=False)
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from .routers import events
from .core.config import Settings, get_settings
from .core.logging import init_logging
from .core.pubsub import PubSub
import logging, time, uuid
from fastapi import Request
from fastapi.responses import JSONResponse
from asyncio import create_task, sleep


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    pubsub = PubSub(strict_unsubscribe=settings.strict_unsubscribe, max_buffer=settings.feed_max_buffer)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        init_logging(settings.log_level)
        ka_task = None
        if settings.keepalive_interval > 0:
            async def _keepalive():
                while True:
                    try:
                        pubsub.publish(settings.keepalive_topic, {"ts": time.time()})
                    except Exception:
                        logging.getLogger(__name__).exception("keepalive_failed")
                    await sleep(settings.keepalive_interval)
            ka_task = create_task(_keepalive())
        yield
        # Shutdown
        if ka_task is not None:
            ka_task.cancel()

    app = FastAPI(title="Live Feed Relay", lifespan=lifespan)
    app.state.settings = settings
    app.state.pubsub = pubsub

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(events.router, prefix="/api/events", tags=["events"])

    @app.get("/health")
    async def health():
        return {"status": "ok", "topics": len(pubsub.topics()), "listeners": len(pubsub)}

    @app.middleware("http")
    async def timing_logger(request: Request, call_next):
        trace_id = request.headers.get("X-Trace-Id", str(uuid.uuid4())[:8])
        start = time.perf_counter()
        try:
            response = await call_next(request)
            duration = (time.perf_counter()-start)*1000
            logging.getLogger().info(
                f"{request.method} {request.url.path} {response.status_code} {duration:.1f}ms",
                extra={"trace_id": trace_id, "method": request.method, "path": request.url.path, "status": response.status_code, "duration_ms": round(duration,1)}
            )
            response.headers['X-Trace-Id'] = trace_id
            return response
        except Exception as exc:  # pragma: no cover
            duration = (time.perf_counter()-start)*1000
            logging.getLogger().error(
                f"ERR {request.method} {request.url.path} {type(exc).__name__}",
                exc_info=exc,
                extra={"trace_id": trace_id, "method": request.method, "path": request.url.path, "status": 500, "duration_ms": round(duration,1)}
            )
            return JSONResponse(status_code=500, content={"detail": "Internal Server Error", "trace_id": trace_id})

    return app


app = create_app()
