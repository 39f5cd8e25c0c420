from __future__ import annotations
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from yunhu_bridge.bus import SessionBus
from yunhu_bridge.channels.yunhu import YunhuChannel
from yunhu_bridge.config import Settings
from yunhu_bridge.core.errors import MalformedInput
from yunhu_bridge.observability.logging import configure_logging, get_logger

log = get_logger("app")

VERSION = "0.1.0"
ACK = {"code": 0, "message": "success"}

def create_app(settings: Settings, channel: Optional[YunhuChannel] = None, bus: Optional[SessionBus] = None) -> FastAPI:
    configure_logging(settings.log_level, settings.json_logs)
    app = FastAPI(title="Yunhu Bridge", version=VERSION)

    bus = bus or SessionBus()
    channel = channel or YunhuChannel(settings)
    app.state.bus = bus
    app.state.channel = channel

    @app.on_event("startup")
    async def _startup():
        await channel.start(bus.emit)
        log.info("bridge_started", host=settings.host, port=settings.port, webhook_path=settings.webhook_path,
                 status=channel.channel.status.value)

    @app.on_event("shutdown")
    async def _shutdown():
        await channel.stop()

    @app.post(settings.webhook_path)
    async def webhook(request: Request):
        try:
            payload = await request.json()
        except ValueError:
            return JSONResponse({"code": -1, "message": "invalid json"}, status_code=400)
        if not isinstance(payload, dict):
            return JSONResponse({"code": -1, "message": "invalid event"}, status_code=400)
        try:
            await channel.handle_webhook(payload)
        except MalformedInput as e:
            log.warning("webhook_malformed", error=str(e))
            return JSONResponse({"code": -1, "message": str(e)}, status_code=400)
        except Exception as e:
            log.error("webhook_failed", error=str(e), error_type=type(e).__name__)
            return JSONResponse({"code": -1, "message": "internal error"}, status_code=500)
        return ACK

    # health/metrics
    @app.get(settings.health_path)
    async def healthz():
        return {
            "ok": True,
            "service": "yunhu-bridge",
            "version": VERSION,
            "channel": channel.channel.model_dump(mode="json", include={"id", "status", "self_id", "name"}),
        }

    @app.get(settings.metrics_path)
    async def metrics_endpoint():
        return PlainTextResponse(generate_latest().decode("utf-8"), media_type=CONTENT_TYPE_LATEST)

    return app
