"""
News Card Autopilot API

Thin FastAPI wrapper over the autopilot and publishing services. Sync
endpoints run in FastAPI's threadpool, and each request opens its own
database connection.

Run with: uvicorn api.app:app
"""

from fastapi import FastAPI

from api.deps import shutdown_autopilot_loop
from api.routers import autopilot, cron

app = FastAPI(title="News Card Autopilot API", version="1.0.0")


@app.on_event("shutdown")
def _shutdown():
    shutdown_autopilot_loop()


@app.get("/")
def root():
    return {"message": "News Card Autopilot API is running!"}


# Mount routes
app.include_router(autopilot.router)   # /api/autopilot/*
app.include_router(cron.router)        # /api/cron/*
