"""Session coordinator: per-connection protocol state, matchmaking and in-room relay.

All shared state (registry, queue, room table, session states) is mutated
while holding ``self._lock``. Handlers compute their outbound payloads under
the lock and deliver them after releasing it.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from stranger_chat.core import protocol
from stranger_chat.core.config import Settings, get_settings
from stranger_chat.core.matchmaking import MatchmakingQueue, Participant
from stranger_chat.core.protocol import EventType, parse_event
from stranger_chat.core.registry import ParticipantRegistry
from stranger_chat.core.rooms import Room, RoomTable
from stranger_chat.core.state_machine import SessionState, StateMachine
from stranger_chat.security.rate_limiter import RateLimiter
from stranger_chat.utils.error_codes import ErrorCodes, RelayError
from stranger_chat.utils.validators import validate_display_name, validate_message

logger = logging.getLogger(__name__)


@dataclass
class Session:
    connection: object
    state_machine: StateMachine
    participant: Optional[Participant] = None

    @property
    def identity(self) -> str:
        return self.connection.identity

    @property
    def state(self) -> SessionState:
        return self.state_machine.current_state


class SessionCoordinator:
    def __init__(self, settings: Settings | None = None, rate_limiter: RateLimiter | None = None) -> None:
        self.settings = settings or get_settings()
        self.registry = ParticipantRegistry()
        self.queue = MatchmakingQueue()
        self.rooms = RoomTable()
        self.rate_limiter = rate_limiter or RateLimiter(
            max_messages=self.settings.message_rate_limit,
            max_connections=self.settings.connection_rate_limit,
            period=self.settings.rate_window_seconds,
        )
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

        self._handlers = {
            EventType.LOGIN: self._on_login,
            EventType.CANCEL_SEARCH: self._on_cancel_search,
            EventType.MESSAGE: self._on_message,
            EventType.TYPING: self._on_typing,
            EventType.SKIP_NOTIFICATION: self._on_skip_notification,
            EventType.SKIP: self._on_skip,
            EventType.REPORT: self._on_report,
        }
        missing = set(EventType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for event types: {sorted(t.value for t in missing)}")

    # Lifecycle

    def start(self) -> None:
        """Start the periodic sweeps. Requires a running event loop."""

        self._spawn(self._every(self.settings.pairing_sweep_interval, self._pairing_sweep))
        self._spawn(self._every(self.settings.stale_sweep_interval, self.sweep_stale))
        self._spawn(self._every(self.settings.online_broadcast_interval, self.broadcast_online_count))
        self._spawn(self._every(self.settings.reap_interval, self._reap_rate_windows))

    async def shutdown(self) -> None:
        """Cancel timers, drop every connection and clear all tables."""

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        async with self._lock:
            connections = self.registry.all_connections()
            for session in self._sessions.values():
                session.state_machine.transition_to(SessionState.TERMINATED)
            self._sessions.clear()
            self.registry.clear()
            self.queue.clear()
            self.rooms.clear()
            self.rate_limiter.clear()

        await asyncio.gather(
            *(connection.close(1001, "Server shutting down") for connection in connections),
            return_exceptions=True,
        )
        logger.info(f"Coordinator stopped, dropped {len(connections)} connections")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _every(self, interval: float, job) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await job()
            except Exception:
                logger.exception(f"Periodic job {job.__name__} failed")

    # Connection boundary

    async def connect(self, connection) -> bool:
        """Admit a freshly accepted connection; False if its origin is rate limited."""

        if self.rate_limiter.check_and_record_connection(connection.origin):
            logger.info(f"Rejected connection from {connection.origin}: too many connections")
            await connection.close(1008, "Too many connections")
            return False

        async with self._lock:
            self.registry.register(connection.identity, connection)
            self._sessions[connection.identity] = Session(connection, StateMachine())

        logger.info(f"New client connected from {connection.origin} ({connection.identity})")
        await self.broadcast_online_count()
        return True

    async def handle_frame(self, connection, frame) -> None:
        """Process one inbound frame. Never raises."""

        size = len(frame) if isinstance(frame, (bytes, bytearray)) else len(frame.encode("utf-8"))
        if size > self.settings.max_frame_bytes:
            logger.info(f"Oversized frame ({size} bytes) from {connection.identity} rejected")
            await connection.send(protocol.error(f"Message too large (limit {self.settings.max_frame_bytes} bytes)"))
            return

        try:
            event = parse_event(frame)
        except RelayError as exc:
            logger.debug(f"Dropping frame from {connection.identity}: {exc.message}")
            return

        session = self._sessions.get(connection.identity)
        if session is None:
            logger.debug(f"Frame from terminated connection {connection.identity} ignored")
            return

        try:
            await self._handlers[event.event_type](session, event)
        except RelayError as exc:
            logger.info(f"{event.type} from {connection.identity} refused: {exc.message}")
            await connection.send(protocol.error(exc.message))
        except Exception:
            logger.exception(f"Error processing {event.type} from {connection.identity}")

    async def disconnect(self, connection) -> None:
        """Clean up after a closed connection. Safe to call more than once."""

        async with self._lock:
            session = self._sessions.pop(connection.identity, None)
            if session is None:
                return
            outbound = self._release(session)

        logger.info(f"Client disconnected: {connection.identity}")
        await self._deliver(outbound)
        await self.broadcast_online_count()
        if outbound:
            await self.attempt_pairing()

    # Matchmaking

    def schedule_pairing(self, delay: float) -> None:
        # Deferred so a connection that just logged in can settle before receiving `matched`
        self._spawn(self._deferred_pairing(delay))

    async def _deferred_pairing(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.attempt_pairing()

    async def _pairing_sweep(self) -> None:
        if len(self.queue) >= 2:
            logger.debug("Running periodic matchmaking check")
            await self.attempt_pairing()

    async def attempt_pairing(self) -> list[Room]:
        """Single entry point for pairing; safe to call from any trigger."""

        outbound = []
        created = []
        async with self._lock:
            waiting = {participant.identity for participant in self.queue.snapshot()}
            pairs = self.queue.attempt_pairing(self.registry.is_reachable)

            kept = {participant.identity for participant in self.queue.snapshot()}
            kept.update(participant.identity for pair in pairs for participant in pair)
            for identity in waiting - kept:
                session = self._sessions.get(identity)
                if session is not None and session.state is SessionState.QUEUED:
                    session.state_machine.transition_to(SessionState.CONNECTED)

            for first, second in pairs:
                room = self.rooms.create(first, second)
                created.append(room)
                for participant, partner in ((first, second), (second, first)):
                    self._sessions[participant.identity].state_machine.transition_to(SessionState.IN_ROOM)
                    outbound.append(
                        (self.registry.lookup(participant.identity), protocol.matched(room.room_id, partner.display_name))
                    )
                logger.info(f"Matched {first.display_name} with {second.display_name} in room {room.room_id}")

        await self._deliver(outbound)
        return created

    # Inbound events

    async def _on_login(self, session: Session, event: protocol.LoginEvent) -> None:
        connection = session.connection
        result = validate_display_name(event.username, self.settings.name_min_length, self.settings.name_max_length)
        if not result.ok:
            await connection.send(protocol.login_error(result.error))
            return

        async with self._lock:
            if session.state is SessionState.IN_ROOM:
                raise RelayError(ErrorCodes.ERR_INVALID_STATE, "Already in a chat. Skip before searching again.")
            session.state_machine.transition_to(SessionState.QUEUED)
            # A re-login replaces any stale entry and goes to the back of the queue
            self.queue.remove(session.identity)
            session.participant = Participant(session.identity, result.normalized)
            self.queue.enqueue(session.participant)

        logger.info(f"User {result.normalized} ({session.identity}) logged in and added to queue")
        await connection.send(protocol.login_success(session.identity))
        await self.broadcast_online_count()
        self.schedule_pairing(self.settings.login_pairing_delay)

    async def _on_cancel_search(self, session: Session, event: protocol.CancelSearchEvent) -> None:
        async with self._lock:
            removed = self.queue.remove(session.identity)
            if session.state is SessionState.QUEUED:
                session.state_machine.transition_to(SessionState.CONNECTED)
        if removed:
            logger.info(f"User {session.identity} removed from waiting queue")

    async def _on_message(self, session: Session, event: protocol.MessageEvent) -> None:
        async with self._lock:
            target = self._partner_connection(session, event.room_id)
        if target is None:
            logger.debug(f"No partner for message from {session.identity}; dropped")
            return

        if self.rate_limiter.record_and_check_message(session.identity):
            raise RelayError(ErrorCodes.ERR_RATE_LIMITED, "Rate limit exceeded. Slow down.")

        result = validate_message(event.content, self.settings.message_max_length)
        if not result.ok:
            raise RelayError(ErrorCodes.ERR_INVALID_MESSAGE, result.error)

        await target.send(protocol.chat_message(result.normalized, session.participant.display_name))

    async def _on_typing(self, session: Session, event: protocol.TypingEvent) -> None:
        async with self._lock:
            target = self._partner_connection(session, event.room_id)
        if target is None:
            logger.debug(f"No partner for typing event from {session.identity}; dropped")
            return
        await target.send(protocol.typing_indicator(event.is_typing, session.participant.display_name))

    async def _on_skip_notification(self, session: Session, event: protocol.SkipNotificationEvent) -> None:
        async with self._lock:
            target = self._partner_connection(session, event.room_id)
        if target is None:
            logger.debug(f"No partner for skip notification from {session.identity}; dropped")
            return
        await target.send(protocol.partner_skipped(session.participant.display_name))

    async def _on_skip(self, session: Session, event: protocol.SkipEvent) -> None:
        async with self._lock:
            room = self._resolve_room(session.identity, event.room_id)
            if room is None:
                logger.debug(f"Skip request from {session.identity} but no active room found")
                return
            session.state_machine.transition_to(SessionState.CONNECTED)
            self.rooms.dissolve(room.room_id)
            outbound = self._requeue_partner(
                room.partner_of(session.identity), protocol.partner_skipped(session.participant.display_name)
            )

        logger.info(f"User {session.identity} skipped chat in room {room.room_id}")
        await self._deliver(outbound)
        self.schedule_pairing(self.settings.skip_pairing_delay)

    async def _on_report(self, session: Session, event: protocol.ReportEvent) -> None:
        logger.info(f"User reported: {event.reported_user!r} by {event.reporting_user!r} ({session.identity})")
        await session.connection.send(protocol.report_acknowledged())

    # Helpers; callers hold self._lock

    def _resolve_room(self, identity: str, room_id: Optional[str] = None) -> Optional[Room]:
        room = self.rooms.get(room_id) if room_id else None
        if room is None or not room.has(identity):
            room = self.rooms.find_by_participant(identity)
        return room

    def _partner_connection(self, session: Session, room_id: Optional[str] = None):
        room = self._resolve_room(session.identity, room_id)
        if room is None:
            return None
        return self.registry.lookup(room.partner_of(session.identity).identity)

    def _requeue_partner(self, partner: Participant, notice: dict) -> list:
        partner_session = self._sessions.get(partner.identity)
        connection = self.registry.lookup(partner.identity)
        if partner_session is None:
            return []
        if connection is None:
            # Closed but not yet released; its close path will terminate it
            if partner_session.state is SessionState.IN_ROOM:
                partner_session.state_machine.transition_to(SessionState.CONNECTED)
            return []
        partner_session.state_machine.transition_to(SessionState.QUEUED)
        self.queue.remove(partner.identity)
        self.queue.enqueue(partner)
        logger.info(f"Added user {partner.identity} back to waiting queue")
        return [(connection, notice)]

    def _release(self, session: Session) -> list:
        identity = session.identity
        session.state_machine.transition_to(SessionState.TERMINATED)
        self.queue.remove(identity)
        self.registry.unregister(identity)
        room = self.rooms.find_by_participant(identity)
        if room is None:
            return []
        self.rooms.dissolve(room.room_id)
        return self._requeue_partner(room.partner_of(identity), protocol.partner_disconnected())

    # Sweeps and broadcasts

    async def sweep_stale(self) -> int:
        """Release identities whose connection closed without a close event reaching us."""

        outbound = []
        async with self._lock:
            stale = self.registry.stale()
            for identity in stale:
                logger.info(f"Cleaning up inactive connection for user {identity}")
                session = self._sessions.pop(identity, None)
                if session is None:
                    self.registry.unregister(identity)
                    self.queue.remove(identity)
                    continue
                outbound.extend(self._release(session))

        await self._deliver(outbound)
        if outbound:
            await self.attempt_pairing()
        return len(stale)

    async def broadcast_online_count(self) -> int:
        async with self._lock:
            connections = self.registry.open_connections()
        payload = protocol.online_count(len(connections))
        if connections:
            await asyncio.gather(*(connection.send(payload) for connection in connections), return_exceptions=True)
        logger.debug(f"Broadcasting online count: {len(connections)} visitors")
        return len(connections)

    async def _reap_rate_windows(self) -> None:
        reaped = self.rate_limiter.reap()
        if reaped:
            logger.debug(f"Reaped {reaped} idle rate-limit windows")

    async def _deliver(self, outbound: list) -> None:
        for connection, payload in outbound:
            if connection is not None:
                await connection.send(payload)

    # Introspection

    def session_state(self, identity: str) -> Optional[SessionState]:
        session = self._sessions.get(identity)
        return session.state if session else None

    def status(self) -> dict:
        return {
            "status": "online",
            "waitingUsers": len(self.queue),
            "activeRooms": len(self.rooms),
            "connections": len(self.registry),
        }
