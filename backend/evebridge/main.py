# evebridge/main.py
import logging
import time

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from .config import Settings, settings
from .errors import PublishError
from .messaging.broker import Broker, NatsBroker
from .messaging.consumer import DurableConsumer
from .messaging.publisher import Publisher
from .schemas import TenantContext
from .stream.broadcaster import Broadcaster
from .stream.sse import SSE_HEADERS, viewer_frames
from .utils.geoip import validate_ip

logger = logging.getLogger(__name__)


class BanRequest(BaseModel):
    ip: str
    reason: str = ""


def tenant_from_header(x_tenant_id: str | None = Header(default=None)) -> TenantContext:
    """Identità esplicita dal boundary HTTP: nessun tenant di default."""
    if not x_tenant_id:
        raise HTTPException(status_code=400, detail="X-Tenant-ID header is required")
    try:
        return TenantContext(tenant_id=int(x_tenant_id))
    except ValueError:
        raise HTTPException(status_code=400, detail="X-Tenant-ID must be a positive integer")


def build_app(cfg: Settings = settings, broker: Broker | None = None) -> FastAPI:
    app = FastAPI(title="evebridge", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    broadcaster = Broadcaster(queue_size=cfg.VIEWER_QUEUE_SIZE)
    app.state.cfg = cfg
    app.state.broadcaster = broadcaster
    app.state.broker = broker
    app.state.owns_broker = broker is None
    app.state.consumer = None
    app.state.publisher = None
    app.state.started = time.time()

    # ------------------------- Lifecycle -------------------------

    @app.on_event("startup")
    async def on_start():
        # broker irraggiungibile → StartupError, uvicorn non parte
        if app.state.broker is None:
            app.state.broker = await NatsBroker.connect(cfg)
        app.state.publisher = Publisher(
            app.state.broker,
            prefix=cfg.EVENTS_SUBJECT_PREFIX,
            default_type=cfg.DEFAULT_EVENT_TYPE,
            max_pending=cfg.PUBLISH_MAX_PENDING,
        )
        consumer = DurableConsumer(
            app.state.broker,
            broadcaster,
            durable_name=cfg.CONSUMER_DURABLE_NAME,
            subject_pattern=f"{cfg.EVENTS_SUBJECT_PREFIX}.>",
            max_deliver=cfg.CONSUMER_MAX_DELIVER,
        )
        await consumer.start()
        app.state.consumer = consumer

    @app.on_event("shutdown")
    async def on_stop():
        # viewer chiusi subito (niente drain), poi la subscription entro il grace period
        broadcaster.close_all()
        if app.state.consumer is not None:
            await app.state.consumer.stop(cfg.SHUTDOWN_GRACE_SEC)
        if app.state.owns_broker and app.state.broker is not None:
            await app.state.broker.close()

    # ------------------------- API -------------------------

    @app.get("/api/health")
    def health():
        consumer = app.state.consumer
        return {
            "status": "ok",
            "viewers": broadcaster.viewer_count(),
            "consumer": "running" if consumer is not None and consumer.running else "stopped",
            "uptime_sec": int(time.time() - app.state.started),
        }

    @app.get("/api/events/stream")
    async def stream_events(request: Request, tenant: TenantContext = Depends(tenant_from_header)):
        frames = viewer_frames(broadcaster, tenant, request.is_disconnected, keepalive=cfg.SSE_KEEPALIVE_SEC)
        return StreamingResponse(frames, media_type="text/event-stream", headers=SSE_HEADERS)

    async def _ban_action(action: str, req: BanRequest, tenant: TenantContext):
        if not validate_ip(req.ip):
            raise HTTPException(status_code=400, detail="a valid IP address is required")
        publisher: Publisher = app.state.publisher
        try:
            if action == "ban":
                ack = await publisher.publish_ban_action(req.ip, req.reason)
            else:
                ack = await publisher.publish_unban_action(req.ip, req.reason)
        except PublishError as e:
            raise HTTPException(status_code=502, detail=str(e))
        logger.info("Tenant %d %s %s recorded", tenant.tenant_id, action, req.ip)
        return {
            "success": True,
            "data": {"action": action, "ip": req.ip, "stream": getattr(ack, "stream", None), "seq": getattr(ack, "seq", None)},
        }

    @app.post("/api/ban")
    async def ban_ip(req: BanRequest, tenant: TenantContext = Depends(tenant_from_header)):
        return await _ban_action("ban", req, tenant)

    @app.post("/api/unban")
    async def unban_ip(req: BanRequest, tenant: TenantContext = Depends(tenant_from_header)):
        return await _ban_action("unban", req, tenant)

    return app
