from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from quote_pipeline.api.routes import metrics_router, router
from quote_pipeline.config.settings import get_settings
from quote_pipeline.services.pipeline import QuotePipeline


@asynccontextmanager
async def lifespan(app: FastAPI):
    if app.state.pipeline is None:
        app.state.pipeline = QuotePipeline.from_settings(app.state.get_settings())

    pipeline = app.state.pipeline
    pipeline.start()
    try:
        yield
    finally:
        pipeline.stop()


app = FastAPI(title="Stock Quote Pipeline", version="0.1.0", lifespan=lifespan)
app.include_router(router, prefix="/api/stocks")
app.include_router(metrics_router)

# NOTE: built lazily in lifespan so app import does not require env during tests.
app.state.get_settings = get_settings
app.state.pipeline = None
