from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lpbook.api.routers.health import router as health_router
from lpbook.api.routers.lifecycle_records import router as lifecycle_records_router
from lpbook.api.routers.portfolio import router as portfolio_router
from lpbook.api.routers.range_recommendation import router as range_recommendation_router

app = FastAPI(title="LP Position Book API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(portfolio_router)
app.include_router(lifecycle_records_router)
app.include_router(range_recommendation_router)
