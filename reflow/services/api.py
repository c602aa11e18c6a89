import asyncio
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from ..config import Config
from ..events import EventBus
from ..models import (
    ClaimRequest,
    LoginRequest,
    MaterialCreate,
    MaterialStatus,
    NotificationCreate,
    ProfileRequest,
    Severity,
)
from .notifications import NotificationChannel
from .registry import MaterialRegistry
from .session import SessionService
from .simulator import ActorSimulator

log = structlog.get_logger()


def _api_error(status_code: int, code: str, message: str, details=None) -> HTTPException:
    payload = {"code": code, "message": message}
    if details is not None:
        payload["details"] = details
    return HTTPException(status_code=status_code, detail=payload)


class ApiService:
    """HTTP and WebSocket surface used by presentation clients.

    Carries no domain rules of its own: every route forwards to the registry,
    simulator, notification channel or session service.
    """

    def __init__(
        self,
        config: Config,
        registry: MaterialRegistry,
        simulator: ActorSimulator,
        notifications: NotificationChannel,
        sessions: SessionService,
        bus: Optional[EventBus] = None,
    ):
        self.config = config
        self.registry = registry
        self.simulator = simulator
        self.notifications = notifications
        self.sessions = sessions
        self.bus = bus or registry.bus
        self.start_time = datetime.now(timezone.utc)
        self.app = self._build_app()

    def _identity(self, session_id):
        return self.sessions.get(session_id)

    def _simulation_status(self):
        return {"enabled": self.simulator.enabled, "stats": self.simulator.get_stats()}

    def _snapshot(self):
        return {
            "materials": [m.to_record() for m in self.registry.list()],
            "trucks": [t.model_dump(mode="json") for t in self.simulator.trucks()],
            "notifications": [
                n.model_dump(mode="json", by_alias=True) for n in self.notifications.list()
            ],
            "simulation": {"enabled": self.simulator.enabled},
        }

    def _build_app(self):
        app = FastAPI(title="Reflow")

        @app.exception_handler(HTTPException)
        async def http_exception_handler(request: Request, exc: HTTPException):
            if isinstance(exc.detail, dict) and "code" in exc.detail and "message" in exc.detail:
                payload = dict(exc.detail)
            else:
                payload = {"code": "HTTP_ERROR", "message": str(exc.detail)}
            return JSONResponse(status_code=exc.status_code, content=payload)

        @app.exception_handler(Exception)
        async def unhandled_exception_handler(request: Request, exc: Exception):
            log.error("api_unhandled_exception", error=str(exc), path=str(request.url.path))
            return JSONResponse(
                status_code=500,
                content={"code": "INTERNAL_SERVER_ERROR", "message": "Unexpected server error"},
            )

        @app.get("/")
        async def root():
            return {"service": "reflow", "materials": len(self.registry)}

        @app.get("/health")
        async def health():
            uptime = (datetime.now(timezone.utc) - self.start_time).total_seconds()
            return {"status": "ok", "uptime_seconds": uptime}

        # --- materials ---

        @app.get("/materials")
        async def list_materials(
            type: Optional[str] = None,
            status: Optional[MaterialStatus] = None,
            order: str = "inserted",
        ):
            if order not in ("inserted", "newest"):
                raise _api_error(400, "INVALID_ORDER", "order must be 'inserted' or 'newest'")
            materials = self.registry.filter(type=type, status=status)
            if order == "newest":
                materials = list(reversed(materials))
            return [m.to_record() for m in materials]

        @app.get("/materials/summary")
        async def materials_summary():
            return self.registry.summary()

        @app.get("/materials/by-collector")
        async def materials_by_collector():
            return self.registry.collections_by_actor()

        @app.get("/materials/{material_id}")
        async def get_material(material_id: str):
            material = self.registry.get(material_id)
            if material is None:
                raise _api_error(404, "MATERIAL_NOT_FOUND", f"No material with id {material_id}")
            return material.to_record()

        @app.post("/materials")
        async def create_material(
            body: MaterialCreate,
            x_session_id: Optional[str] = Header(default=None),
        ):
            """Report a disposal. Without a position the city center is used."""
            identity = self._identity(x_session_id)
            generator_id = body.generator_id or (identity.id if identity else None)

            position = body.position
            if position is None:
                position = self.config.city_center
                self.notifications.post(
                    "Localização indisponível, usando a posição padrão.", Severity.WARNING
                )
                log.warning("location_fallback", generator=generator_id)

            material = self.registry.create(body.type, body.weight, position, generator_id=generator_id)
            return material.to_record()

        @app.post("/materials/reset")
        async def reset_materials():
            self.registry.reset()
            return {"status": "reset", "count": len(self.registry)}

        @app.post("/materials/{material_id}/claim")
        async def claim_material(
            material_id: str,
            body: Optional[ClaimRequest] = None,
            x_session_id: Optional[str] = Header(default=None),
        ):
            identity = self._identity(x_session_id)
            collector_id = (body.collector_id if body else None) or (identity.id if identity else None)
            if not collector_id:
                raise _api_error(
                    400,
                    "MISSING_COLLECTOR",
                    "Provide collectorId or an X-Session-Id header for a logged-in session",
                )

            applied = self.registry.claim(material_id, collector_id)
            material = self.registry.get(material_id)
            return {
                "status": "accepted" if applied else "ignored",
                "material": material.to_record() if material else None,
            }

        @app.post("/materials/{material_id}/complete")
        async def complete_material(material_id: str):
            applied = self.registry.complete(material_id)
            material = self.registry.get(material_id)
            return {
                "status": "completed" if applied else "ignored",
                "material": material.to_record() if material else None,
            }

        # --- simulation ---

        @app.get("/trucks")
        async def list_trucks():
            return [t.model_dump(mode="json") for t in self.simulator.trucks()]

        @app.get("/simulation")
        async def simulation_status():
            return self._simulation_status()

        @app.post("/simulation/enable")
        async def enable_simulation():
            self.simulator.enable()
            return self._simulation_status()

        @app.post("/simulation/disable")
        async def disable_simulation():
            self.simulator.disable()
            return self._simulation_status()

        @app.post("/simulation/toggle")
        async def toggle_simulation():
            self.simulator.toggle()
            return self._simulation_status()

        # --- notifications ---

        @app.get("/notifications")
        async def list_notifications():
            return [n.model_dump(mode="json", by_alias=True) for n in self.notifications.list()]

        @app.post("/notifications")
        async def post_notification(body: NotificationCreate):
            notification_id = self.notifications.post(body.message, body.severity)
            return {"id": notification_id}

        @app.delete("/notifications/{notification_id}")
        async def dismiss_notification(notification_id: str):
            removed = self.notifications.dismiss(notification_id)
            return {"id": notification_id, "status": "dismissed" if removed else "absent"}

        # --- session ---

        @app.post("/session/login")
        async def login(body: Optional[LoginRequest] = None):
            session_id, identity = self.sessions.login((body or LoginRequest()).name)
            return {"session_id": session_id, "identity": identity.model_dump(mode="json")}

        @app.post("/session/profile")
        async def complete_profile(
            body: ProfileRequest,
            x_session_id: Optional[str] = Header(default=None),
        ):
            identity = self.sessions.complete_profile(x_session_id, body.role, body.details)
            if identity is None:
                raise _api_error(401, "NO_SESSION", "Unknown or missing session")
            return identity.model_dump(mode="json")

        @app.post("/session/logout")
        async def logout(x_session_id: Optional[str] = Header(default=None)):
            self.sessions.logout(x_session_id)
            return {"status": "logged_out"}

        @app.get("/session")
        async def current_session(x_session_id: Optional[str] = Header(default=None)):
            identity = self._identity(x_session_id)
            if identity is None:
                raise _api_error(401, "NO_SESSION", "Unknown or missing session")
            return identity.model_dump(mode="json")

        # --- change stream ---

        @app.websocket("/ws/events")
        async def event_stream(websocket: WebSocket):
            """Send a snapshot on connect, then every change event as it happens.

            Incoming client messages are read and ignored; reading is what
            surfaces the disconnect.
            """
            await websocket.accept()
            queue: asyncio.Queue = asyncio.Queue()
            unsubscribe = self.bus.subscribe(queue.put_nowait)
            log.info("stream_connected", subscribers=self.bus.subscriber_count)

            async def forward():
                while True:
                    event = await queue.get()
                    await websocket.send_json(event.model_dump(mode="json"))

            async def drain():
                while True:
                    await websocket.receive_text()

            tasks = []
            try:
                await websocket.send_json({"topic": "snapshot", "payload": self._snapshot()})
                tasks = [asyncio.create_task(forward()), asyncio.create_task(drain())]
                # whichever side stops first ends the stream
                done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    task.result()
            except WebSocketDisconnect:
                pass
            except Exception as e:
                log.error("stream_failed", error=str(e))
            finally:
                for task in tasks:
                    task.cancel()
                if tasks:
                    await asyncio.gather(*tasks, return_exceptions=True)
                unsubscribe()
                log.info("stream_disconnected", subscribers=self.bus.subscriber_count)

        return app
