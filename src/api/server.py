import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router as spatial_router
from engine.session import SpatialEngine

logger = logging.getLogger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.engine = SpatialEngine()
    app.state.engine.start_performance_monitoring()
    try:
        yield
    finally:
        app.state.engine.destroy()
        app.state.engine = None


app = FastAPI(title="Spatial Optimization Engine API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(spatial_router)


@app.get("/health")
def health_check():
    return {"status": "ok", "version": "1.0"}
