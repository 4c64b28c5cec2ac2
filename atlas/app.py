from contextlib import asynccontextmanager
import asyncio
import logging

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from atlas import __version__, config
from atlas.ingest import fetch_and_normalize, flights_to_json
from atlas.scheduler import AnimationScheduler

# Logger
logger = logging.getLogger("atlas.app")
if not logging.getLogger().handlers:
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")
logging.getLogger("atlas").setLevel(config.LOG_LEVEL)


def create_app(scheduler: AnimationScheduler = None, autostart: bool = None) -> FastAPI:
    sched = scheduler or AnimationScheduler()
    start = config.AUTOSTART if autostart is None else autostart

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start:
            await sched.start()
        try:
            yield
        finally:
            await sched.stop()

    app = FastAPI(title="Atlas – Live Constellation", version=__version__, lifespan=lifespan)
    app.state.scheduler = sched

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.get("/api/flights")
    async def api_flights():
        # best effort: upstream failures only ever shrink the mapping
        flights = await fetch_and_normalize()
        return JSONResponse(flights_to_json(flights))

    @app.get("/api/animation")
    def api_animation(request: Request):
        return request.app.state.scheduler.snapshot().model_dump(mode="json")

    @app.websocket("/ws/animation")
    async def ws_animation(websocket: WebSocket):
        await websocket.accept()
        st: AnimationScheduler = websocket.app.state.scheduler
        client_addr = getattr(websocket, "client", None)
        logger.info("[ws] connect from=%s", client_addr)
        last_rev = None
        try:
            while True:
                if st.revision != last_rev:
                    frame = st.snapshot()
                    last_rev = frame.revision
                    await websocket.send_json({"type": "frame", "payload": frame.model_dump(mode="json")})
                # viewers send nothing we act on (text or bytes); receiving only surfaces the disconnect
                try:
                    msg = await asyncio.wait_for(websocket.receive(), timeout=st.tick_interval)
                except asyncio.TimeoutError:
                    continue
                if msg.get("type") == "websocket.disconnect":
                    logger.info("[ws] disconnect from=%s code=%s", client_addr, msg.get("code", ""))
                    return
        except WebSocketDisconnect as e:
            logger.info("[ws] disconnect from=%s code=%s", client_addr, getattr(e, "code", ""))

    return app


app = create_app()
