"""Durable game records and the writer that keeps them in step with play.

The in-memory session is authoritative while a game is live; once it is
evicted, the ``GameRecord`` row is the only trace of the outcome.
"""

import json
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple

from flask import has_app_context
from sqlalchemy.exc import SQLAlchemyError

from tictactoe import db, socketio
from tictactoe.models import GameRecord
from .errors import PersistenceUnavailable


class PersistenceGateway:
    """Reads and writes ``GameRecord`` rows. Must run inside an app context."""

    def create_record(self) -> str:
        record = GameRecord(status='waiting')
        try:
            db.session.add(record)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceUnavailable('Game creation failed') from exc
        return record.id

    def mark_playing(self, record_id: str) -> None:
        try:
            record = db.session.get(GameRecord, record_id)
            # A finished record is never moved back to in_progress.
            if record is None or record.status != 'waiting':
                return
            record.status = 'in_progress'
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceUnavailable(f'Could not mark {record_id} in progress') from exc

    def finalize(self, record_id: str, participants, moves, result: str) -> None:
        try:
            record = db.session.get(GameRecord, record_id)
            if record is None:
                record = GameRecord(id=record_id)
                db.session.add(record)
            record.status = 'finished'
            record.result = result
            record.players = json.dumps(participants)
            record.moves = json.dumps(moves)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceUnavailable(f'Could not finalize {record_id}') from exc

    def list_recent(self, limit: int = 20):
        try:
            records = (
                GameRecord.query
                .order_by(GameRecord.created_at.desc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceUnavailable('Failed to load history') from exc
        return [r.to_dict() for r in records]


@dataclass
class _WriteJob:
    label: str
    fn: Callable[..., Any]
    args: Tuple[Any, ...]
    on_give_up: Optional[Callable[[], None]] = None
    attempts_used: int = field(default=0)


class RecordWriter:
    """Runs gateway writes with retries, in submission order.

    In background mode deferred writes are drained by a single Socket.IO
    background task; otherwise (tests) they run inline.
    """

    def __init__(self, app=None, logger=None, max_attempts: int = 5,
                 retry_delay: float = 0.5, background: bool = True):
        self._app = app
        self._logger = logger
        self._max_attempts = max(1, int(max_attempts))
        self._retry_delay = float(retry_delay)
        self._background = background
        self._queue: 'queue.Queue[_WriteJob]' = queue.Queue()
        self._worker_started = False
        self._worker_lock = threading.Lock()

    def write(self, label: str, fn, *args, on_give_up=None) -> bool:
        """Attempt ``fn`` now; on failure queue the remaining retries.

        Returns True if the write completed immediately.
        """
        job = _WriteJob(label, fn, args, on_give_up)
        if self._attempt(job):
            return True
        if job.attempts_used >= self._max_attempts:
            self._give_up(job)
        else:
            self._enqueue(job)
        return False

    def defer(self, label: str, fn, *args, on_give_up=None) -> None:
        """Fire-and-forget ``fn`` with retries."""
        self._enqueue(_WriteJob(label, fn, args, on_give_up))

    def _enqueue(self, job: _WriteJob) -> None:
        if not self._background:
            self._run(job)
            return
        self._queue.put(job)
        self._ensure_worker()

    def _ensure_worker(self) -> None:
        with self._worker_lock:
            if self._worker_started:
                return
            self._worker_started = True
        socketio.start_background_task(self._drain)

    def _drain(self) -> None:
        while True:
            job = self._queue.get()
            try:
                self._run(job)
            except Exception:
                # The worker is shared by every queued write; it must keep draining.
                self._log('exception', f'[persist-worker-error] job={job.label}')
            finally:
                self._queue.task_done()

    def _run(self, job: _WriteJob) -> None:
        delay = self._retry_delay
        while job.attempts_used < self._max_attempts:
            if job.attempts_used:
                self._log('info', f'[persist-retry] job={job.label} attempt={job.attempts_used + 1} delay={delay}s')
                if delay:
                    time.sleep(delay)
                delay *= 2
            if self._attempt(job):
                return
        self._give_up(job)

    def _attempt(self, job: _WriteJob) -> bool:
        job.attempts_used += 1
        try:
            self._call(job.fn, *job.args)
        except PersistenceUnavailable as exc:
            self._log('warning', f'[persist-fail] job={job.label} attempt={job.attempts_used} error={exc.__cause__ or exc}')
            return False
        except Exception:
            self._log('exception', f'[persist-fail] job={job.label} attempt={job.attempts_used} unexpected error')
            return False
        return True

    def _call(self, fn, *args):
        if self._app is None or has_app_context():
            return fn(*args)
        with self._app.app_context():
            return fn(*args)

    def _give_up(self, job: _WriteJob) -> None:
        self._log('error', f'[persist-give-up] job={job.label} attempts={job.attempts_used}')
        if job.on_give_up is not None:
            job.on_give_up()

    def _log(self, level: str, message: str) -> None:
        if self._logger is not None:
            getattr(self._logger, level)(message)
