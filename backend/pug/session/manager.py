from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any

import structlog

from pug.chat.protocol import ChatDeliveryError
from pug.logic.enums import QUEUE_STATES, DeadlineType, GameMode, SessionState
from pug.logic.exceptions import RefusalCode, SessionRefusal
from pug.logic.tally import count_votes, tally_votes
from pug.session import transitions
from pug.session.models import SavedChannel
from pug.session.notices import (
    ChannelNotice,
    ChoiceNotice,
    DirectNotice,
    Notice,
    connect_link,
    format_status,
    format_tally,
    mention,
    mention_all,
)
from pug.session.reconciler import CrossSessionReconciler
from pug.session.session_store import SessionStore
from pug.session.timer_manager import TimerRegistry
from pug.session.types import ActionResult, ManagerStatus

if TYPE_CHECKING:
    import random

    from pug.chat.protocol import ChatPlatform
    from pug.logic.settings import SessionSettings
    from pug.registry.maps import MapCatalog
    from pug.servers.locator import ServerLocator
    from pug.servers.rcon import RemoteCommandClient
    from pug.session.models import ChannelConfig, Session
    from pug.session.recorder import SessionRecorder
    from shared.storage import ChannelStorage

logger = structlog.get_logger()

GOOD_TO_GO = ":fireworks: **Good to go. Join the server now. Check your DMs for a link to join.**"
FINDING_SERVER = "Attempting to find an available server (no players connected)..."
MAP_VOTE_PROMPT = "Map vote starting now. Please click the map you want to play."
NO_SERVER_FOUND = "Could not find an available server (all servers busy or unreachable). Game cancelled."
HAND_OFF_CRASHED = "Something went wrong while setting up the server. Game cancelled."


class _Outbox:
    """Side effects produced by one action, released after the lock."""

    def __init__(self) -> None:
        self.notices: list[Notice] = []
        self.hand_offs: list[str] = []

    def channel(self, channel_id: str, text: str, mentions: list[str] | None = None) -> None:
        self.notices.append(ChannelNotice(channel_id=channel_id, text=text, mentions=mentions or []))

    def choices(self, channel_id: str, text: str, options: list[str]) -> None:
        self.notices.append(ChoiceNotice(channel_id=channel_id, text=text, options=options))


class SessionManager:
    """
    Per-channel PUG lifecycle: queue, ready-check, map vote and server hand-off.

    Every action, timer callback and hand-off state update runs its critical
    section under one lock and never awaits I/O while holding it. Chat notices
    produced by a critical section are queued and delivered in order by a
    single background worker; hand-offs run as tracked background tasks.
    """

    def __init__(
        self,
        settings: SessionSettings,
        maps: MapCatalog,
        chat: ChatPlatform,
        locator: ServerLocator,
        commands: RemoteCommandClient,
        recorder: SessionRecorder | None = None,
        channel_storage: ChannelStorage | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings
        self._maps = maps
        self._chat = chat
        self._locator = locator
        self._commands = commands
        self._recorder = recorder
        self._channel_storage = channel_storage
        self._clock = clock
        self._rng = rng
        self._store = SessionStore()
        self._timers = TimerRegistry(on_timeout=self._handle_timeout)
        self._reconciler = CrossSessionReconciler(self._store, self._timers)
        self._lock = asyncio.Lock()
        self._deliveries: asyncio.Queue[Notice] = asyncio.Queue()
        self._delivery_worker: asyncio.Task[None] | None = None
        self._background_tasks: set[asyncio.Task[None]] = set()

    # --- read-only views ---

    def get_session(self, channel_id: str) -> Session | None:
        return self._store.get_session(channel_id)

    def get_channel(self, channel_id: str) -> ChannelConfig | None:
        return self._store.get_channel(channel_id)

    @property
    def session_count(self) -> int:
        return self._store.session_count

    def status_summary(self) -> ManagerStatus:
        by_state: dict[str, int] = {}
        for session in self._store.sessions():
            by_state[session.state] = by_state.get(session.state, 0) + 1
        return ManagerStatus(
            channel_count=self._store.channel_count,
            session_count=self._store.session_count,
            active_timers=self._timers.active_count,
            sessions_by_state=by_state,
        )

    # --- channel configuration ---

    async def setup_channel(self, channel_id: str, mode: GameMode) -> ActionResult:
        """Bind a channel to a game mode. A live session keeps its original mode."""
        if mode not in self._maps.modes():
            logger.error("no map pool for mode", channel_id=channel_id, mode=mode)
            return ActionResult(ok=False, messages=[f"No maps are configured for {mode}. Ignoring."])
        async with self._lock:
            self._store.set_channel_mode(channel_id, mode)
        logger.info("channel configured", channel_id=channel_id, mode=mode)
        await self._save_channel(channel_id, mode)
        return ActionResult(ok=True, messages=[f"Game mode set to {mode}."])

    async def load_channels(self) -> int:
        """Restore saved channel configuration. Return the number loaded."""
        if self._channel_storage is None:
            return 0
        contents = await asyncio.to_thread(self._channel_storage.load_channels)
        loaded = 0
        async with self._lock:
            for content in contents:
                try:
                    saved = SavedChannel.model_validate_json(content)
                except ValueError:
                    logger.exception("skipping invalid channel file")
                    continue
                self._store.set_channel_mode(saved.channel_id, saved.mode)
                loaded += 1
        logger.info("channels loaded", count=loaded)
        return loaded

    async def _save_channel(self, channel_id: str, mode: GameMode) -> None:
        if self._channel_storage is None:
            return
        content = SavedChannel(channel_id=channel_id, mode=mode, saved_at=self._clock()).model_dump_json()
        try:
            await asyncio.to_thread(self._channel_storage.save_channel, channel_id, content)
        except (OSError, ValueError):  # fmt: skip
            logger.exception("failed to save channel", channel_id=channel_id)

    # --- session actions ---

    async def start(self, channel_id: str) -> ActionResult:
        return await self._run(channel_id, lambda outbox: self._start(channel_id))

    async def stop(self, channel_id: str) -> ActionResult:
        return await self._run(channel_id, lambda outbox: self._stop(channel_id))

    async def status(self, channel_id: str) -> ActionResult:
        return await self._run(channel_id, lambda outbox: self._status(channel_id))

    async def add_player(self, channel_id: str, player_id: str) -> ActionResult:
        return await self._run(channel_id, lambda outbox: self._add_player(channel_id, player_id, outbox))

    async def remove_player(self, channel_id: str, player_id: str) -> ActionResult:
        return await self._run(channel_id, lambda outbox: self._remove_player(channel_id, player_id))

    async def ready_player(self, channel_id: str, player_id: str, seconds: float | None = None) -> ActionResult:
        """Mark a player ready for `seconds` (clamped; default window when None)."""
        return await self._run(channel_id, lambda outbox: self._ready_player(channel_id, player_id, seconds, outbox))

    async def vote_map(self, channel_id: str, player_id: str, map_name: str) -> ActionResult:
        return await self._run(channel_id, lambda outbox: self._vote_map(channel_id, player_id, map_name, outbox))

    async def vacate(self, address: str) -> ActionResult:
        """Kick everyone from a game server."""
        result = await self._commands.kick_all(address)
        logger.info("vacate finished", address=address, ok=result.ok)
        return ActionResult(ok=result.ok, messages=[result.message])

    async def _run(self, channel_id: str, action: Callable[[_Outbox], list[str]]) -> ActionResult:
        outbox = _Outbox()
        async with self._lock:
            try:
                messages = action(outbox)
            except SessionRefusal as refusal:
                if refusal.code == RefusalCode.CAPACITY_EXCEEDED:
                    logger.error("capacity exceeded", channel_id=channel_id)
                else:
                    logger.info("action refused", channel_id=channel_id, code=refusal.code)
                return ActionResult(ok=False, messages=[refusal.message])
        self._release(outbox)
        return ActionResult(ok=True, messages=messages)

    def _require_channel(self, channel_id: str) -> ChannelConfig:
        channel = self._store.get_channel(channel_id)
        if channel is None:
            raise SessionRefusal(RefusalCode.CHANNEL_NOT_CONFIGURED, "This channel has not been set up.")
        return channel

    def _require_session(self, channel_id: str, message: str) -> Session:
        self._require_channel(channel_id)
        session = self._store.get_session(channel_id)
        if session is None:
            raise SessionRefusal(RefusalCode.NO_SESSION, message)
        return session

    def _start(self, channel_id: str) -> list[str]:
        channel = self._require_channel(channel_id)
        if self._store.get_session(channel_id) is not None:
            raise SessionRefusal(RefusalCode.SESSION_EXISTS, "A game has already been started.")
        self._store.create_session(channel_id, channel.mode, self._clock())
        logger.info("session started", channel_id=channel_id, mode=channel.mode)
        return ["New game started."]

    def _stop(self, channel_id: str) -> list[str]:
        session = self._require_session(channel_id, "No game started so nothing to stop.")
        if session.state != SessionState.ADD_REMOVE:
            raise SessionRefusal(RefusalCode.WRONG_STATE, "Can't stop the game now.")
        self._store.remove_session(channel_id)
        logger.info("session stopped", channel_id=channel_id)
        return ["Stopped game."]

    def _status(self, channel_id: str) -> list[str]:
        session = self._require_session(channel_id, "No game started. Can't get status.")
        capacity = self._settings.capacity(session.mode)
        return [format_status(session, capacity, self._clock()), f"State: {session.state}"]

    def _add_player(self, channel_id: str, player_id: str, outbox: _Outbox) -> list[str]:
        channel = self._require_channel(channel_id)
        self._check_not_committed(channel_id, player_id)

        messages: list[str] = []
        now = self._clock()
        session = self._store.get_session(channel_id)
        if session is None:
            session = self._store.create_session(channel_id, channel.mode, now)
            logger.info("session started", channel_id=channel_id, mode=channel.mode)
            messages += ["No game started. Starting one now.", "New game started."]

        capacity = self._settings.capacity(session.mode)
        transitions.add_player(
            session, player_id, now=now, ready_seconds=self._settings.default_ready_seconds, capacity=capacity
        )
        logger.info("player added", channel_id=channel_id, player_id=player_id, count=session.player_count)
        messages += [f"Added {mention(player_id)}.", format_status(session, capacity, now)]

        if session.player_count == capacity:
            self._on_full(session, now, outbox)
        return messages

    def _check_not_committed(self, channel_id: str, player_id: str) -> None:
        for other in self._store.other_sessions(channel_id):
            if other.state not in QUEUE_STATES and other.has_player(player_id):
                raise SessionRefusal(
                    RefusalCode.COMMITTED_ELSEWHERE,
                    f"{mention(player_id)} is already in a game in another channel. Ignoring.",
                )

    def _remove_player(self, channel_id: str, player_id: str) -> list[str]:
        session = self._require_session(channel_id, f"No game started. Can't remove {mention(player_id)}.")
        ready_handle = transitions.remove_player(session, player_id)
        logger.info("player removed", channel_id=channel_id, player_id=player_id)

        messages: list[str] = []
        if ready_handle is not None:
            self._timers.cancel(ready_handle)
            messages.append("Cancelling ready check.")
        capacity = self._settings.capacity(session.mode)
        messages += [f"Removed {mention(player_id)}.", format_status(session, capacity, self._clock())]
        return messages

    def _ready_player(self, channel_id: str, player_id: str, seconds: float | None, outbox: _Outbox) -> list[str]:
        session = self._require_session(channel_id, f"No game started. Can't ready {mention(player_id)}.")
        duration = self._settings.clamp_ready_seconds(seconds)
        transitions.ready_player(session, player_id, self._clock() + duration)
        logger.info("player ready", channel_id=channel_id, player_id=player_id, seconds=duration)

        if (
            session.state == SessionState.READY_CHECK
            and session.ready_check_started_at is not None
            and not session.unready_player_ids(session.ready_check_started_at)
        ):
            self._all_ready(session, outbox)
        return [f"{mention(player_id)} is ready."]

    def _vote_map(self, channel_id: str, player_id: str, map_name: str, outbox: _Outbox) -> list[str]:
        session = self._require_session(channel_id, "No game started. Ignoring vote.")
        transitions.record_vote(session, player_id, map_name, self._maps.get_maps(session.mode))
        logger.info("map vote recorded", channel_id=channel_id, player_id=player_id, map=map_name)

        if session.state == SessionState.MAP_VOTE and session.vote_count == self._settings.capacity(session.mode):
            outbox.channel(channel_id, "All players have voted.")
            self._complete_vote(session, outbox)
        return [f"{mention(player_id)} voted for {map_name}."]

    # --- lifecycle steps (called under the lock) ---

    def _on_full(self, session: Session, now: float, outbox: _Outbox) -> None:
        channel_id = session.channel_id
        outbox.channel(channel_id, "The game is full.")
        unready = transitions.begin_ready_check(session, now)
        if not unready:
            self._all_ready(session, outbox)
            return

        timeout = self._settings.ready_check_timeout_seconds
        handle = self._timers.schedule(channel_id, DeadlineType.READY_CHECK, timeout)
        transitions.start_ready_check(session, handle)
        logger.info("ready check started", channel_id=channel_id, unready=unready)
        outbox.channel(
            channel_id,
            f"Some players are not ready: {mention_all(unready)}. Waiting {timeout:g} seconds for them to ready.",
            mentions=unready,
        )

    def _all_ready(self, session: Session, outbox: _Outbox) -> None:
        channel_id = session.channel_id
        if session.ready_timer_handle is not None:
            self._timers.cancel(session.ready_timer_handle)
            session.ready_timer_handle = None
        outbox.channel(channel_id, "All players are ready.")
        logger.info("all players ready", channel_id=channel_id)

        for eviction in self._reconciler.evict(channel_id, session.player_ids):
            self._notify_eviction(eviction.channel_id, eviction.player_ids, eviction.ready_check_cancelled, outbox)

        pool = self._maps.get_maps(session.mode)
        if len(pool) == 1:
            outbox.channel(channel_id, f"Only one map available: **{pool[0]}**. Skipping the map vote.")
            self._complete_vote(session, outbox, announce_tally=False)
        elif session.vote_count == session.player_count:
            outbox.channel(channel_id, "All players have voted.")
            self._complete_vote(session, outbox)
        else:
            handle = self._timers.schedule(
                channel_id, DeadlineType.MAP_VOTE, self._settings.map_vote_timeout_seconds
            )
            transitions.start_map_vote(session, self._clock(), handle)
            logger.info("map vote started", channel_id=channel_id)
            outbox.choices(channel_id, MAP_VOTE_PROMPT, pool)

    def _notify_eviction(
        self, channel_id: str, player_ids: list[str], ready_check_cancelled: bool, outbox: _Outbox
    ) -> None:
        lines = []
        if ready_check_cancelled:
            lines.append("Cancelling ready check.")
        lines.append(f"Removed (joined a game in another channel): {mention_all(player_ids)}")
        other = self._store.get_session(channel_id)
        if other is not None:
            lines.append(format_status(other, self._settings.capacity(other.mode), self._clock()))
        outbox.channel(channel_id, "\n".join(lines), mentions=player_ids)

    def _complete_vote(self, session: Session, outbox: _Outbox, *, announce_tally: bool = True) -> None:
        self._timers.cancel(session.map_vote_timer_handle)
        pool = self._maps.get_maps(session.mode)
        counts = count_votes(pool, (player.map_vote for player in session.players.values()))
        tally = tally_votes(counts, self._rng)
        transitions.complete_vote(session, tally, self._clock())
        logger.info(
            "map chosen",
            channel_id=session.channel_id,
            map=tally.chosen_map,
            votes=tally.max_vote_count,
            tie=tally.is_tie,
        )

        lines = format_tally(tally) if announce_tally else []
        lines.append(FINDING_SERVER)
        outbox.channel(session.channel_id, "\n".join(lines))
        outbox.hand_offs.append(session.channel_id)

    # --- deadlines ---

    async def _handle_timeout(self, channel_id: str, deadline_type: DeadlineType, handle: str) -> None:
        outbox = _Outbox()
        async with self._lock:
            session = self._store.get_session(channel_id)
            if deadline_type == DeadlineType.READY_CHECK:
                if session is None or session.state != SessionState.READY_CHECK or session.ready_timer_handle != handle:
                    logger.debug("stale deadline ignored", channel_id=channel_id, deadline=deadline_type)
                    return
                self._ready_check_expired(session, outbox)
            else:
                if session is None or session.state != SessionState.MAP_VOTE or session.map_vote_timer_handle != handle:
                    logger.debug("stale deadline ignored", channel_id=channel_id, deadline=deadline_type)
                    return
                session.map_vote_timer_handle = None
                outbox.channel(channel_id, f"{session.vote_count}/{session.player_count} players voted.")
                self._complete_vote(session, outbox)
        self._release(outbox)

    def _ready_check_expired(self, session: Session, outbox: _Outbox) -> None:
        session.ready_timer_handle = None
        removed = transitions.evict_unready(session)
        if not removed:
            self._all_ready(session, outbox)
            return
        logger.info("unready players removed", channel_id=session.channel_id, player_ids=removed)
        capacity = self._settings.capacity(session.mode)
        outbox.channel(
            session.channel_id,
            f"Removed (not ready): {mention_all(removed)}\n{format_status(session, capacity, self._clock())}",
        )

    # --- hand-off (background, lock taken only for state updates) ---

    async def _hand_off(self, channel_id: str) -> None:
        try:
            outcome = await self._locate_and_configure(channel_id)
        except Exception:
            logger.exception("hand-off failed", channel_id=channel_id)
            outcome = HAND_OFF_CRASHED
            self._publish([ChannelNotice(channel_id=channel_id, text=outcome)])
        await self._finish(channel_id, outcome)

    async def _locate_and_configure(self, channel_id: str) -> str:
        address = await self._locator.find_free_server()
        if address is None:
            self._publish([ChannelNotice(channel_id=channel_id, text=NO_SERVER_FOUND)])
            return NO_SERVER_FOUND

        async with self._lock:
            session = self._live_session(channel_id)
            transitions.start_setting_map(session, address, self._clock())
            map_name = session.chosen_map or ""
        self._publish(
            [
                ChannelNotice(
                    channel_id=channel_id,
                    text=f"Found a server: {address}. Attempting to set the map to {map_name}...",
                )
            ]
        )

        result = await self._commands.set_map(address, map_name)
        if not result.ok:
            outcome = f"Failed to set the map on {address}: {result.message} Game cancelled."
            self._publish([ChannelNotice(channel_id=channel_id, text=outcome)])
            return outcome

        async with self._lock:
            session = self._live_session(channel_id)
            transitions.start_players_connect(session, self._clock())
            player_ids = session.player_ids

        link = connect_link(address)
        notices: list[Notice] = [ChannelNotice(channel_id=channel_id, text=GOOD_TO_GO, mentions=player_ids)]
        notices += [
            DirectNotice(player_id=pid, text=f"Your game on {map_name} is ready. Join the server: {link}")
            for pid in player_ids
        ]
        self._publish(notices)
        return f"Players connecting to {address} on {map_name}."

    def _live_session(self, channel_id: str) -> Session:
        session = self._store.get_session(channel_id)
        if session is None:
            raise RuntimeError(f"Session for channel {channel_id} disappeared during hand-off")
        return session

    async def _finish(self, channel_id: str, outcome: str) -> None:
        """Record the outcome, persist the session, then destroy it."""
        async with self._lock:
            session = self._store.get_session(channel_id)
            if session is None:
                return
            session.outcome = outcome
            snapshot = session.model_copy(deep=True)

        if self._recorder is not None:
            try:
                await self._recorder.save(snapshot)
            except Exception:
                logger.exception("failed to record session", channel_id=channel_id)

        async with self._lock:
            self._store.remove_session(channel_id)
        logger.info("session finished", channel_id=channel_id, state=snapshot.state, outcome=outcome)

    # --- side effects ---

    def _release(self, outbox: _Outbox) -> None:
        self._publish(outbox.notices)
        for channel_id in outbox.hand_offs:
            self._spawn(self._hand_off(channel_id))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _publish(self, notices: list[Notice]) -> None:
        for notice in notices:
            self._deliveries.put_nowait(notice)
        if notices and (self._delivery_worker is None or self._delivery_worker.done()):
            self._delivery_worker = asyncio.create_task(self._deliver_forever())

    async def _deliver_forever(self) -> None:
        while True:
            notice = await self._deliveries.get()
            try:
                await self._deliver(notice)
            except ChatDeliveryError as e:
                logger.warning("failed to deliver notice", notice=type(notice).__name__, error=str(e))
            except Exception:
                logger.exception("failed to deliver notice", notice=type(notice).__name__)
            finally:
                self._deliveries.task_done()

    async def _deliver(self, notice: Notice) -> None:
        if isinstance(notice, ChannelNotice):
            await self._chat.send_channel_message(notice.channel_id, notice.text, notice.mentions or None)
        elif isinstance(notice, DirectNotice):
            await self._chat.send_direct_message(notice.player_id, notice.text)
        else:
            await self._chat.present_choices(notice.channel_id, notice.text, notice.options)

    async def drain(self) -> None:
        """Wait until hand-offs have finished and queued notices are delivered."""
        while True:
            tasks = list(self._background_tasks)
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            await self._deliveries.join()
            if not self._background_tasks:
                return

    async def shutdown(self) -> None:
        """Cancel deadlines and background work."""
        self._timers.cancel_all()
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._delivery_worker is not None:
            self._delivery_worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._delivery_worker
            self._delivery_worker = None
        logger.info("session manager stopped", sessions=self._store.session_count)
