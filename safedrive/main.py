from fastapi import FastAPI, WebSocket, WebSocketDisconnect, BackgroundTasks
from .config import config
from .db import init_db, SessionLocal
from .api.endpoints import router as api_router
from .engine import TelemetryEngine
from .persistence import SqlTripStore
from .schemas import ReplayRequest
from .wsmanager import ConnectionManager
from .simulator import start_replay, stop_replay, is_running

def create_app(engine: TelemetryEngine = None) -> FastAPI:
    """Build the API around ``engine`` (default: the configured database)."""
    app = FastAPI(
        title="SafeDrive Trip Telemetry",
        description="Trip aggregation, safety scoring and insurance export",
        version="1.0.0"
    )

    manager = ConnectionManager()
    if engine is None:
        engine = TelemetryEngine(SqlTripStore(SessionLocal), config)

        @app.on_event("startup")
        async def startup():
            """Initialize database on startup."""
            init_db()

    engine.emitter.add_sink(manager.broadcast_alert)
    app.state.engine = engine
    app.state.manager = manager

    # Include API routes
    app.include_router(api_router, prefix="/api")

    @app.get("/")
    async def root():
        return {"message": "SafeDrive Trip Telemetry", "docs": "/docs"}

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.websocket("/ws/trips")
    async def websocket_endpoint(websocket: WebSocket):
        """WebSocket endpoint streaming alerts and aggregate updates."""
        if not await manager.connect(websocket):
            return
        try:
            while True:
                # Keep connection alive - wait for messages
                await websocket.receive_text()
        except WebSocketDisconnect:
            manager.disconnect(websocket)

    @app.post("/api/replay/start")
    async def api_start_replay(request: ReplayRequest, background_tasks: BackgroundTasks):
        """Replay a CSV of samples as a live trip."""
        if is_running():
            return {"message": "Replay already running"}

        background_tasks.add_task(
            start_replay, engine, manager, request.csv_path, request.interval, request.user_id
        )
        return {"message": "replay started"}

    @app.post("/api/replay/stop")
    async def api_stop_replay():
        return stop_replay()

    @app.get("/api/replay/status")
    async def api_replay_status():
        return {"is_running": is_running()}

    return app

app = create_app()
