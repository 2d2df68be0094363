# Real-time broadcaster: WebSocket rooms keyed by user, role and complaint

import asyncio
import json
import logging
from collections import defaultdict
from typing import Dict, Set, List, Tuple, Any, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from redis.asyncio import Redis
from redis.exceptions import RedisError

from complaint_portal.config import REALTIME_REDIS_URL
from complaint_portal.db import get_db, run_db
from complaint_portal.errors import AuthenticationFailed
from complaint_portal.security import authenticate_token, can_view_complaint

logger = logging.getLogger(__name__)

Event = Tuple[str, str, Dict[str, Any]]

RECONNECT_DELAY = 1.0


def user_room(user_id: str) -> str:
    return f"user:{user_id}"

def role_room(role: str) -> str:
    return f"role:{role}"

def complaint_room(complaint_id: str) -> str:
    return f"complaint:{complaint_id}"


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------
class InProcessTransport:
    """Single-instance transport: published messages go straight to local rooms."""

    def __init__(self):
        self._deliver = None

    async def start(self, deliver):
        self._deliver = deliver

    async def stop(self):
        self._deliver = None

    async def publish(self, message: Dict[str, Any]):
        if self._deliver is None:
            raise RuntimeError("Transport not started")
        await self._deliver(message)


class RedisTransport:
    """Multi-instance transport over a Redis pub/sub channel.

    Every process publishes to the same channel and delivers whatever it
    receives to its own local rooms, including its own messages.
    """

    def __init__(self, url: Optional[str] = None, client: Optional[Redis] = None,
                 channel: str = "complaint_portal:events"):
        self.url = url
        self.client = client
        self.channel = channel
        self._owns_client = client is None
        self._pubsub = None
        self._task = None
        self._deliver = None

    async def start(self, deliver):
        self._deliver = deliver
        if self.client is None:
            self.client = Redis.from_url(self.url, decode_responses=True)
        self._pubsub = self.client.pubsub()
        await self._pubsub.subscribe(self.channel)
        self._task = asyncio.create_task(self._listen())
        logger.info("Real-time transport: redis channel %s", self.channel)

    async def _listen(self):
        while True:
            try:
                message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except (RedisError, RuntimeError) as e:
                logger.warning("Real-time channel read failed, resubscribing in %ss: %s", RECONNECT_DELAY, e)
                await asyncio.sleep(RECONNECT_DELAY)
                await self._resubscribe()
                continue
            if message is None:
                continue
            try:
                data = json.loads(message["data"])
            except (TypeError, ValueError) as e:
                logger.warning("Dropping malformed real-time message: %s", e)
                continue
            try:
                await self._deliver(data)
            except Exception as e:
                logger.error("Real-time delivery failed: %s", e)

    async def _resubscribe(self):
        try:
            await self._pubsub.aclose()
            self._pubsub = self.client.pubsub()
            await self._pubsub.subscribe(self.channel)
        except RedisError as e:
            logger.warning("Resubscribe to %s failed: %s", self.channel, e)

    async def stop(self):
        if self._task:
            if self._task.done():
                if not self._task.cancelled() and self._task.exception():
                    logger.error("Real-time listener had stopped: %s", self._task.exception())
            else:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
            self._pubsub = None
        if self._owns_client and self.client is not None:
            await self.client.aclose()
            self.client = None

    async def publish(self, message: Dict[str, Any]):
        await self.client.publish(self.channel, json.dumps(message))


def build_transport():
    if REALTIME_REDIS_URL:
        return RedisTransport(url=REALTIME_REDIS_URL)
    return InProcessTransport()


# ---------------------------------------------------------------------------
# Broadcaster
# ---------------------------------------------------------------------------
class Broadcaster:
    def __init__(self, transport=None):
        self.transport = transport or InProcessTransport()
        self.rooms: Dict[str, Set[Any]] = defaultdict(set)

    async def start(self):
        await self.transport.start(self._deliver_local)

    async def stop(self):
        await self.transport.stop()
        self.rooms.clear()

    def subscribe(self, topic: str, connection):
        self.rooms[topic].add(connection)

    def unsubscribe(self, topic: str, connection):
        members = self.rooms.get(topic)
        if members is None:
            return
        members.discard(connection)
        if not members:
            del self.rooms[topic]

    def disconnect(self, connection):
        for topic in [t for t, members in self.rooms.items() if connection in members]:
            self.unsubscribe(topic, connection)

    def topics_for(self, connection) -> List[str]:
        return sorted(t for t, members in self.rooms.items() if connection in members)

    async def publish(self, topic: str, event: str, payload: Dict[str, Any]):
        """Best-effort emit. Transport failures are logged, never raised."""
        message = {"topic": topic, "event": event, "data": jsonable_encoder(payload)}
        try:
            await self.transport.publish(message)
        except Exception as e:
            logger.error("Broadcast of %s to %s failed: %s", event, topic, e)

    async def emit_all(self, events: List[Event]):
        for topic, event, payload in events:
            await self.publish(topic, event, payload)

    async def _deliver_local(self, message: Dict[str, Any]):
        if not isinstance(message, dict) or "topic" not in message or "event" not in message:
            logger.warning("Ignoring real-time message without topic or event: %r", message)
            return
        frame = {"event": message["event"], "data": message.get("data")}
        for connection in list(self.rooms.get(message["topic"], ())):
            try:
                await connection.send_json(frame)
            except Exception as e:
                logger.warning("Dropping dead connection from %s: %s", message["topic"], e)
                self.disconnect(connection)


broadcaster = Broadcaster()


def get_broadcaster() -> Broadcaster:
    return broadcaster


# ---------------------------------------------------------------------------
# Event catalog
# ---------------------------------------------------------------------------
def complaint_created_events(complaint: Dict[str, Any]) -> List[Event]:
    return [
        (role_room("admin"), "new_complaint", {
            "id": complaint["_id"], "title": complaint["title"],
            "category": complaint["category"], "priority": complaint["priority"]}),
        (user_room(complaint["user_id"]), "complaint_filed", {
            "id": complaint["_id"], "title": complaint["title"], "status": complaint["status"]}),
    ]


def status_updated_events(complaint: Dict[str, Any], actor_id: str) -> List[Event]:
    payload = {"id": complaint["_id"], "status": complaint["status"], "updated_by": actor_id,
               "user_id": complaint["user_id"], "assigned_staff": complaint.get("assigned_staff")}
    events = [
        (complaint_room(complaint["_id"]), "status_update", payload),
        (user_room(complaint["user_id"]), "complaint_status_updated", payload),
    ]
    if complaint.get("assigned_staff"):
        events.append((user_room(complaint["assigned_staff"]), "assigned_complaint_updated", payload))
    return events


def complaint_assigned_events(complaint: Dict[str, Any]) -> List[Event]:
    events = []
    if complaint.get("assigned_staff"):
        events.append((user_room(complaint["assigned_staff"]), "new_assignment", {
            "id": complaint["_id"], "title": complaint["title"],
            "category": complaint["category"], "priority": complaint["priority"]}))
    events.append((user_room(complaint["user_id"]), "complaint_assigned", {
        "id": complaint["_id"], "title": complaint["title"],
        "message": "Your complaint has been assigned"}))
    events.append((role_room("admin"), "complaint_assigned", {
        "id": complaint["_id"], "title": complaint["title"],
        "assigned_staff": complaint.get("assigned_staff"),
        "assigned_department": complaint.get("assigned_department")}))
    return events


def complaint_resolved_events(complaint: Dict[str, Any], actor_id: str) -> List[Event]:
    summary = {"id": complaint["_id"], "title": complaint["title"],
               "resolution_summary": complaint.get("resolution_summary")}
    return [
        (user_room(complaint["user_id"]), "complaint_resolved", summary),
        (complaint_room(complaint["_id"]), "status_update", {
            "id": complaint["_id"], "status": complaint["status"], "updated_by": actor_id,
            "user_id": complaint["user_id"], "assigned_staff": complaint.get("assigned_staff")}),
        (role_room("admin"), "complaint_resolved", summary),
    ]


def chat_message_events(complaint_id: str, message: Dict[str, Any]) -> List[Event]:
    return [(complaint_room(complaint_id), "new_message",
             {"complaint_id": complaint_id, "message": message})]


# ---------------------------------------------------------------------------
# WebSocket endpoint
# ---------------------------------------------------------------------------
router = APIRouter()


async def handle_client_event(websocket: WebSocket, user: Dict[str, Any], message: Dict[str, Any], db):
    event = message.get("event")
    complaint_id = message.get("data")
    if event not in ("join_complaint", "leave_complaint") or not isinstance(complaint_id, str):
        await websocket.send_json({"event": "error", "data": {"message": "Unknown event"}})
        return
    room = complaint_room(complaint_id)
    if event == "leave_complaint":
        broadcaster.unsubscribe(room, websocket)
        await websocket.send_json({"event": "left_complaint", "data": {"complaint_id": complaint_id}})
        return
    complaint = await run_db(db.complaints.find_one, {"_id": complaint_id})
    if complaint is None or not can_view_complaint(user, complaint):
        await websocket.send_json({"event": "error", "data": {
            "message": "Complaint not found or access denied", "complaint_id": complaint_id}})
        return
    broadcaster.subscribe(room, websocket)
    logger.info("User %s joined %s", user["_id"], room)
    await websocket.send_json({"event": "joined_complaint", "data": {"complaint_id": complaint_id}})


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: Optional[str] = None):
    db = await get_db()
    try:
        user = await authenticate_token(token, db)
    except AuthenticationFailed as e:
        logger.info("Rejected real-time connection: %s", e.detail)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    user_id = str(user["_id"])
    for room in (user_room(user_id), role_room(user["role"])):
        broadcaster.subscribe(room, websocket)
    logger.info("User connected: %s (%s)", user_id, user["role"])
    await websocket.send_json({"event": "connected", "data": {
        "user_id": user_id, "rooms": broadcaster.topics_for(websocket)}})

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", status.WS_1000_NORMAL_CLOSURE))
            raw = frame.get("text")
            if raw is None:
                await websocket.send_json({"event": "error", "data": {"message": "Only text frames are supported"}})
                continue
            try:
                message = json.loads(raw)
            except ValueError:
                await websocket.send_json({"event": "error", "data": {"message": "Invalid JSON"}})
                continue
            if not isinstance(message, dict):
                await websocket.send_json({"event": "error", "data": {"message": "Unknown event"}})
                continue
            await handle_client_event(websocket, user, message, db)
    except WebSocketDisconnect:
        logger.info("User disconnected: %s", user_id)
    finally:
        broadcaster.disconnect(websocket)
