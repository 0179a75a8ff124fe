"""Push stock snapshots to connected dashboards over WebSocket.

Delivery is best effort: no queueing for absent clients and no replay. A
failing send only drops that connection, and a failing publish never reaches
the request that changed the stock.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
from typing import Any

from fastapi import WebSocket, status

from . import models

logger = logging.getLogger(__name__)

STOCK_UPDATE_EVENT = "stockUpdate"
MAX_CONNECTIONS = int(os.getenv("FG_STOCK_WS_MAX_CONNECTIONS", "500"))


class ConnectionManager:
    def __init__(self, max_connections: int = MAX_CONNECTIONS) -> None:
        self.max_connections = max_connections
        self.active_connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket) -> bool:
        if len(self.active_connections) >= self.max_connections:
            logger.warning("Stock websocket rejected: %s connections open", len(self.active_connections))
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return False
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.debug("Stock websocket connected (%s open)", len(self.active_connections))
        return True

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        logger.debug("Stock websocket disconnected (%s open)", len(self.active_connections))

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Send ``message`` to every open connection and return how many received it."""

        delivered = 0
        disconnected = []
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception as exc:
                logger.debug("Stock websocket send failed: %s", exc)
                disconnected.append(connection)
        for connection in disconnected:
            self.disconnect(connection)
        return delivered


def stock_payload(stock: models.ProductStock) -> dict[str, Any]:
    last_updated = stock.last_updated or dt.datetime.utcnow()
    return {
        "product_name": stock.product_name,
        "available_cartons": stock.available_cartons,
        "available_pieces": stock.available_pieces,
        "broken_carton_pieces": stock.broken_carton_pieces,
        "units_per_carton": stock.units_per_carton,
        "totalAvailable": stock.total_available,
        "lastUpdated": last_updated.isoformat(),
    }


class StockNotifier:
    def __init__(self, manager: ConnectionManager) -> None:
        self.manager = manager

    async def publish_stock(self, stock: models.ProductStock) -> None:
        try:
            message = {"event": STOCK_UPDATE_EVENT, "data": stock_payload(stock)}
            delivered = await self.manager.broadcast(message)
        except Exception:
            logger.warning("Could not publish stock update for %s", getattr(stock, "product_name", "?"), exc_info=True)
            return
        logger.debug("Published stock update for %s to %s clients", stock.product_name, delivered)


connection_manager = ConnectionManager()
stock_notifier = StockNotifier(connection_manager)
