"""
Realtime WebSocket API keeping portal views in sync.

WebSocket endpoints:
- /ws/{portal}/claims             - Join the claim list room of a portal
- /ws/{portal}/claims/{claim_id}  - Join the detail room of one claim

Each room owns one ViewSync. The first viewer starts it, the last one to
leave stops it, so no subscription or poller outlives its view.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Set

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, WebSocketException, status
from fastapi.encoders import jsonable_encoder

from claims_portal.api.deps import PORTALS, CurrentUser, Portal, get_websocket_user
from claims_portal.core.database import AsyncSessionLocal
from claims_portal.repositories import ClaimRepository
from claims_portal.services.claim_service import PortalClaimService
from claims_portal.services.sync import ChangeFeed, ViewSync

logger = logging.getLogger(__name__)

router = APIRouter()


def list_room(portal_slug: str) -> str:
    return f"claims:{portal_slug}"


def detail_room(portal_slug: str, claim_id: str) -> str:
    return f"claim:{portal_slug}:{claim_id}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# WebSocket Connection Manager
# =============================================================================

class ConnectionManager:
    """
    Manages WebSocket connections for portal views.

    Features:
    - Several reviewers can watch the same list or claim
    - One ViewSync per room, started and stopped with the room
    - Broadcast snapshots to every viewer in a room
    """

    def __init__(self, sync_factory: Optional[Callable[[str], ViewSync]] = None):
        # room -> Set of WebSocket connections
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        # websocket -> viewer info
        self.viewer_info: Dict[WebSocket, dict] = {}
        # room -> sync driving its reloads
        self.syncs: Dict[str, ViewSync] = {}
        self.sync_factory = sync_factory or build_view_sync
        self.feed: Optional[ChangeFeed] = None

    async def connect(self, websocket: WebSocket, room: str, user: CurrentUser):
        """Add a viewer to a room, starting the room's sync if it is the first."""
        await websocket.accept()

        if room not in self.active_connections:
            self.active_connections[room] = set()
            sync = self.sync_factory(room)
            sync.start()
            self.syncs[room] = sync

        self.active_connections[room].add(websocket)
        self.viewer_info[websocket] = {
            "user_id": user.id,
            "email": user.email,
            "room": room,
            "joined_at": _now(),
        }

        logger.info(f"Viewer {user.id} joined {room}")

    def disconnect(self, websocket: WebSocket):
        """Remove a viewer; the last one out stops the room's sync."""
        if websocket not in self.viewer_info:
            return

        info = self.viewer_info.pop(websocket)
        room = info["room"]

        if room in self.active_connections:
            self.active_connections[room].discard(websocket)

            # Clean up empty rooms
            if len(self.active_connections[room]) == 0:
                del self.active_connections[room]
                sync = self.syncs.pop(room, None)
                if sync is not None:
                    sync.stop()

        logger.info(f"Viewer {info['user_id']} left {room}")

    async def broadcast(self, room: str, message: dict):
        """Send a message to all viewers in a room."""
        if room not in self.active_connections:
            return

        message_json = json.dumps(jsonable_encoder(message))

        dead_connections = set()
        for connection in list(self.active_connections.get(room, ())):
            try:
                await connection.send_text(message_json)
            except Exception as e:
                logger.error(f"Failed to send message to viewer: {e}")
                dead_connections.add(connection)

        # Clean up dead connections
        for connection in dead_connections:
            self.disconnect(connection)

    async def send_personal(self, websocket: WebSocket, message: dict):
        """Send a message to one viewer."""
        try:
            await websocket.send_text(json.dumps(jsonable_encoder(message)))
        except Exception as e:
            logger.error(f"Failed to send personal message: {e}")
            self.disconnect(websocket)

    def request_reload(self, room: str) -> None:
        sync = self.syncs.get(room)
        if sync is not None:
            sync.scheduler.trigger()

    def viewer_count(self, room: str) -> int:
        return len(self.active_connections.get(room, ()))

    def shutdown(self) -> None:
        """Stop every room's sync."""
        for sync in self.syncs.values():
            sync.stop()
        self.syncs.clear()


# =============================================================================
# Room reloads
# =============================================================================

async def reload_claim_list(portal: Portal, room: str) -> None:
    async with AsyncSessionLocal() as session:
        service = PortalClaimService(portal.track, ClaimRepository(session))
        claims = await service.load_claims()

    await manager.broadcast(room, {
        "type": "claims_snapshot",
        "portal": portal.slug,
        "claims": claims,
        "total": len(claims),
        "timestamp": _now(),
    })


async def reload_claim_detail(portal: Portal, claim_id: str, room: str) -> None:
    async with AsyncSessionLocal() as session:
        service = PortalClaimService(portal.track, ClaimRepository(session))
        detail = await service.load_claim_detail(claim_id)

    await manager.broadcast(room, {
        "type": "documents_snapshot",
        "portal": portal.slug,
        "claim_id": claim_id,
        "detail": detail,
        "timestamp": _now(),
    })


def build_view_sync(room: str) -> ViewSync:
    """Create the sync for a room name built by ``list_room``/``detail_room``."""
    kind, portal_slug, *rest = room.split(":")
    portal = PORTALS[portal_slug]

    if kind == "claims":
        async def reload():
            await reload_claim_list(portal, room)
        return ViewSync(reload, feed=manager.feed, name=room)

    claim_id = rest[0]

    async def reload():
        await reload_claim_detail(portal, claim_id, room)
    return ViewSync(reload, feed=manager.feed, claim_id=claim_id, name=room)


# Global connection manager
manager = ConnectionManager()


# =============================================================================
# WebSocket Endpoints
# =============================================================================

def _portal_for(portal_slug: str, user: CurrentUser) -> Portal:
    portal = PORTALS.get(portal_slug)
    if portal is None or user.role != portal.role:
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason="You do not have access to this portal.")
    return portal


async def _serve(websocket: WebSocket, room: str, user: CurrentUser):
    """
    Message types sent by client:
    - ping: Keepalive
    - refresh: Ask for a fresh snapshot

    Message types sent by server:
    - connected, pong, error
    - claims_snapshot / documents_snapshot after every reload
    """
    await manager.connect(websocket, room, user)

    try:
        await manager.send_personal(websocket, {
            "type": "connected",
            "room": room,
            "viewers": manager.viewer_count(room),
            "timestamp": _now(),
        })
        # Initial snapshot
        manager.request_reload(room)

        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)
                message_type = message.get("type") if isinstance(message, dict) else None

                if message_type == "ping":
                    await manager.send_personal(websocket, {"type": "pong", "timestamp": _now()})

                elif message_type == "refresh":
                    manager.request_reload(room)

                else:
                    logger.warning(f"Unknown message type: {message_type}")

            except json.JSONDecodeError:
                logger.error(f"Invalid JSON received: {data}")
                await manager.send_personal(websocket, {
                    "type": "error",
                    "message": "Invalid JSON format",
                })

    except WebSocketDisconnect:
        manager.disconnect(websocket)

    except Exception as e:
        logger.error(f"WebSocket error: {e}", exc_info=True)
        manager.disconnect(websocket)


@router.websocket("/ws/{portal_slug}/claims")
async def claims_list_endpoint(
    websocket: WebSocket,
    portal_slug: str,
    user: CurrentUser = Depends(get_websocket_user),
):
    """Live claim list for a portal."""
    portal = _portal_for(portal_slug, user)
    await _serve(websocket, list_room(portal.slug), user)


@router.websocket("/ws/{portal_slug}/claims/{claim_id}")
async def claim_detail_endpoint(
    websocket: WebSocket,
    portal_slug: str,
    claim_id: str,
    user: CurrentUser = Depends(get_websocket_user),
):
    """Live document list for one claim."""
    portal = _portal_for(portal_slug, user)
    await _serve(websocket, detail_room(portal.slug, claim_id), user)
