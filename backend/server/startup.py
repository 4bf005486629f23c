# Copyright (c) 2024 Efstratios Goudelis
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.


from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from common.arguments import arguments
from common.logger import logger
from server import shutdown
from server.notifications import forward_notifications
from server.station import Station


@asynccontextmanager
async def lifespan(fastapiapp: FastAPI):
    """Custom lifespan for FastAPI."""
    logger.info("FastAPI lifespan startup...")

    station = Station(arguments)
    shutdown.station = station
    forward_notifications(station.bus, sio)
    await station.start()

    try:
        yield
    finally:
        logger.info("FastAPI lifespan cleanup...")
        await shutdown.cleanup_everything()


sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins="*",
    logger=True,
    engineio_logger=True,
)
app = FastAPI(
    lifespan=lifespan,
    title="Sensor Station API",
    description="API for supervising the station's SDR receivers",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/devices")
async def get_devices():
    """Return the current device sessions."""
    if shutdown.station is None:
        raise HTTPException(status_code=503, detail="Station is not running")
    return shutdown.station.manager.list_sessions()
