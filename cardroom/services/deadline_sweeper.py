import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from cardroom.core.errors import GameError
from cardroom.services.game_session import GameSession
from cardroom.services.room_store import RoomStore
from cardroom.services.stages import stage_deadline

logger = logging.getLogger("cardroom.sweeper")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DeadlineSweeper:
    """Optional timer that pushes expired rooms through ``force_advance``.

    Rooms stay reactive (``hurry_up``) unless this loop is started.
    """

    def __init__(
        self,
        session: GameSession,
        session_factory: Callable[[], Session],
        clock: Callable[[], datetime] | None = None,
        interval_seconds: float = 1.0,
    ) -> None:
        self._session = session
        self._session_factory = session_factory
        self._clock = clock or _utc_now
        self._interval = max(0.1, interval_seconds)
        self._task: asyncio.Task | None = None

    def expired_room_ids(self) -> list[str]:
        now = self._clock()
        db = self._session_factory()
        try:
            store = RoomStore(db)
            expired: list[str] = []
            for room_id in store.list_room_ids():
                deadline = stage_deadline(store.read_stage(store.get_room(room_id)))
                if deadline is not None and now >= deadline:
                    expired.append(room_id)
            return expired
        finally:
            db.close()

    async def sweep_once(self) -> list[str]:
        advanced: list[str] = []
        for room_id in self.expired_room_ids():
            try:
                if await self._session.force_advance(room_id):
                    advanced.append(room_id)
            except GameError as exc:
                logger.warning("Could not advance room %s: %s", room_id, exc.message)
        return advanced

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Deadline sweep failed")

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
