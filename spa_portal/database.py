"""
Access to the hosted data store.

One BaasClient (pooled httpx connections) and one RealtimeClient are created
in the application lifespan and handed to endpoints through these
dependencies.
"""

import logging

from fastapi import HTTPException, Request, WebSocket

from .baas import BaasClient
from .realtime import RealtimeClient

logger = logging.getLogger(__name__)


def create_clients() -> tuple[BaasClient, RealtimeClient]:
    baas = BaasClient()
    realtime = RealtimeClient(url=baas.url, api_key=baas.api_key)
    logger.info(f"✅ Data store client created for {baas.url}")
    return baas, realtime


def _state(connection: Request | WebSocket):
    return connection.app.state


def get_db(request: Request) -> BaasClient:
    baas = getattr(_state(request), "baas", None)
    if baas is None:
        logger.error("❌ Data store client not initialised")
        raise HTTPException(status_code=503, detail="Service temporarily unavailable")
    return baas


def get_db_ws(websocket: WebSocket) -> BaasClient:
    return _state(websocket).baas


def get_realtime(websocket: WebSocket) -> RealtimeClient:
    return _state(websocket).realtime
