# timekeeper/upload.py
# -----------------------------------------------------------------------------
# Upload-model-to-car status poller.
#
# submit() asks the remote API to push a model onto a car and gets back a
# command id; a single recurring task then queries the command status every
# interval until a terminal status shows up (anything but InProgress).
#
# Rules:
#   - one query in flight at a time: a tick that finds one outstanding is
#     skipped, never queued
#   - dismiss()/a new submit() bumps the generation; responses that belong to
#     an older generation are dropped on arrival
#   - refresh() is a one-shot query outside the loop; it never (re)starts it
#     and does not count toward max_polls
#   - once a status is terminal, loop responses still in flight are dropped
#   - no ceiling by default; max_polls / max_consecutive_errors harden it
# -----------------------------------------------------------------------------
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from .clock import Generation
from .errors import StatusQueryError, UploadInitiationError
from .models import UploadStatus, UploadTask

log = logging.getLogger("timekeeper.upload")


class UploadStatusPoller:
    def __init__(self, api: Any, *, interval_ms: int = 1000,
                 max_polls: Optional[int] = None, max_consecutive_errors: int = 1):
        # api must provide:
        #   async submit_upload(car_id, model_key) -> {"command_id": str}
        #   async query_upload_status(car_id, command_id) -> {"status": str}
        self.api = api
        self.interval_s = max(0.0, int(interval_ms) / 1000.0)
        if max_polls is not None and int(max_polls) < 1:
            raise ValueError("max_polls must be at least 1 (or None for no ceiling)")
        self.max_polls = int(max_polls) if max_polls is not None else None
        self.max_consecutive_errors = max(1, int(max_consecutive_errors))

        self.task: Optional[UploadTask] = None
        self.skipped_ticks = 0
        self._gen = Generation()
        self._loop_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None

    @property
    def polling(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    # ---------- operator actions ----------
    async def submit(self, car_id: str, model_key: str) -> str:
        """Start an upload and the poll loop; returns the remote command id."""
        self.cancel()
        task = UploadTask(car_id=str(car_id), model_key=str(model_key))
        self.task = task
        gen = self._gen.value
        log.info("[UPLOAD] %s -> car %s", task.model_key, task.car_id)

        try:
            resp = await self.api.submit_upload(task.car_id, task.model_key)
        except Exception as ex:
            self._fail_initiation(task, gen, f"{type(ex).__name__}: {ex}")
            if isinstance(ex, UploadInitiationError):
                raise
            raise UploadInitiationError(f"upload to car {task.car_id} failed: {ex}") from ex

        command_id = (resp or {}).get("command_id")
        if not command_id:
            self._fail_initiation(task, gen, "remote returned no command id")
            raise UploadInitiationError(f"upload to car {task.car_id} returned no command id")
        command_id = str(command_id)

        if not self._gen.is_current(gen):
            # dismissed or superseded while the submit was in flight
            log.info("[UPLOAD] command %s accepted after cancel; not polling", command_id)
            return command_id

        task.command_id = command_id
        task.status = UploadStatus.IN_PROGRESS.value
        self._loop_task = asyncio.get_running_loop().create_task(self._run(gen))
        log.info("[UPLOAD] command %s in progress; polling every %.3fs", command_id, self.interval_s)
        return command_id

    async def refresh(self) -> Optional[str]:
        """One immediate status query; the recurring loop is left as-is."""
        task = self.task
        if task is None or task.command_id is None:
            return None
        task.refresh_count += 1
        return await self._query(self._gen.value)

    def dismiss(self) -> None:
        self.cancel()
        self.task = None

    def cancel(self) -> None:
        """Stop polling now. Late responses from before this call are discarded."""
        self._gen.bump()
        if self._loop_task is not None and not self._loop_task.done():
            self._loop_task.cancel()
        self._loop_task = None
        self._inflight = None

    # ---------- loop ----------
    async def _run(self, gen: int) -> None:
        try:
            while self._gen.is_current(gen):
                await asyncio.sleep(self.interval_s)
                if not self._gen.is_current(gen):
                    return
                task = self.task
                if task is None or task.terminal:
                    return
                if self.max_polls is not None and task.poll_count >= self.max_polls:
                    task.last_error = f"gave up after {task.poll_count} polls"
                    log.warning("[POLL] command %s still %s after %d polls; stopping",
                                task.command_id, task.status, task.poll_count)
                    return
                if self._inflight is not None and not self._inflight.done():
                    self.skipped_ticks += 1
                    log.debug("[POLL] previous query outstanding; tick skipped")
                    continue
                task.poll_count += 1
                self._inflight = asyncio.get_running_loop().create_task(self._query(gen, tick=True))
        except asyncio.CancelledError:
            log.debug("[POLL] loop cancelled")
            raise

    async def _query(self, gen: int, tick: bool = False) -> Optional[str]:
        task = self.task
        if task is None or task.command_id is None:
            return None
        try:
            resp = await self.api.query_upload_status(task.car_id, task.command_id)
            status = (resp or {}).get("status")
            if not status:
                raise StatusQueryError("status response carried no status")
        except Exception as ex:
            if not self._is_live(gen, task, tick):
                return None
            task.consecutive_errors += 1
            task.last_error = f"{type(ex).__name__}: {ex}"
            log.warning("[POLL] status query %d for %s failed (%d in a row): %s",
                        task.poll_count, task.command_id, task.consecutive_errors, ex)
            if task.consecutive_errors >= self.max_consecutive_errors:
                task.status = UploadStatus.FAILED.value
                task.history.append(task.status)
                self._stop_loop()
            return task.status

        if not self._is_live(gen, task, tick):
            log.debug("[POLL] dropped stale status %s for %s", status, task.command_id)
            return None

        task.consecutive_errors = 0
        task.last_error = None
        task.status = str(status)
        task.history.append(task.status)
        if task.terminal:
            log.info("[POLL] command %s finished: %s after %d polls",
                     task.command_id, task.status, task.poll_count)
            self._stop_loop()
        return task.status

    # ---------- internal helpers ----------
    def _is_live(self, gen: int, task: UploadTask, tick: bool = False) -> bool:
        if tick and task.terminal:
            # a terminal status is frozen against loop responses still in flight
            return False
        return self._gen.is_current(gen) and self.task is task

    def _stop_loop(self) -> None:
        if self._loop_task is not None and not self._loop_task.done():
            self._loop_task.cancel()
        self._loop_task = None

    def _fail_initiation(self, task: UploadTask, gen: int, reason: str) -> None:
        log.warning("[UPLOAD] car %s: %s", task.car_id, reason)
        if self._is_live(gen, task):
            task.status = UploadStatus.FAILED.value
            task.last_error = reason

    def snapshot(self) -> Dict[str, Any]:
        return {
            "task": self.task.as_snapshot() if self.task else None,
            "polling": self.polling,
            "skipped_ticks": self.skipped_ticks,
            "interval_ms": int(self.interval_s * 1000),
            "max_polls": self.max_polls,
        }
