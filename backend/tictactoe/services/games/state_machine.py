"""Session state machine: waiting -> playing -> finished.

Every operation takes the session's lock, decides the transition, and
publishes the resulting broadcasts before releasing it, so two requests for
the same session never interleave. Broadcasts are returned on the
``Outcome`` as plain dicts; the publisher is the only thing that touches the
transport.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from . import board as engine
from .errors import DuplicateConnection, IllegalMove, NotFound, SessionFull, SessionNotPlaying
from .store import FINISHED, PLAYING, WAITING, ChatEntry, Participant, Session, SessionStore

MAX_PARTICIPANTS = 2


@dataclass
class Outcome:
    """Result of one state machine operation."""
    session_id: str
    applied: bool = True
    reply: Optional[dict] = None
    broadcasts: List[dict] = field(default_factory=list)
    evicted: bool = False


class Publisher:
    """Delivery scope for a session's room. The default does nothing."""

    def subscribe(self, session_id: str, connection_id: str) -> None:
        pass

    def unsubscribe(self, session_id: str, connection_id: str) -> None:
        pass

    def broadcast(self, session_id: str, payload: dict) -> None:
        pass

    def close(self, session_id: str) -> None:
        pass


class SessionStateMachine:

    def __init__(self, store: SessionStore, gateway, writer, publisher: Optional[Publisher] = None,
                 logger: Optional[logging.Logger] = None):
        self._store = store
        self._gateway = gateway
        self._writer = writer
        self.publisher = publisher or Publisher()
        self._log = logger or logging.getLogger(__name__)

    @property
    def store(self) -> SessionStore:
        return self._store

    def create(self) -> str:
        for stale_id in self._store.sweep_unjoined():
            self._log.info(f"[evict] session={stale_id} phase={WAITING} reason=unjoined")
        session_id = self._store.create()
        self._log.info(f"[session-create] session={session_id}")
        return session_id

    def _locked_session(self, session_id: str) -> Session:
        session = self._store.get(session_id)
        session.lock.acquire()
        if session.closed:
            # Evicted while this request waited for the lock.
            session.lock.release()
            raise NotFound()
        return session

    def _publish(self, outcome: Outcome) -> Outcome:
        for payload in outcome.broadcasts:
            self.publisher.broadcast(outcome.session_id, payload)
        return outcome

    def admit(self, session_id: str, connection_id: str, display_name: str) -> Outcome:
        session = self._locked_session(session_id)
        try:
            if connection_id in session.participants:
                raise DuplicateConnection()
            if len(session.participants) >= MAX_PARTICIPANTS:
                raise SessionFull()

            taken = {p.role for p in session.participants.values()}
            role = next(r for r in engine.ROLES if r not in taken)
            session.participants[connection_id] = Participant(display_name=display_name, role=role)
            self.publisher.subscribe(session_id, connection_id)
            self._log.info(f"[admit] session={session_id} conn={connection_id} role={role} name={display_name!r}")

            outcome = Outcome(session_id, reply=session.snapshot(role))
            outcome.broadcasts.append({
                'type': 'players',
                'participants': session.participant_list(),
                'turn': session.turn,
            })
            if session.phase == WAITING and len(session.participants) == MAX_PARTICIPANTS:
                session.phase = PLAYING
                outcome.reply['phase'] = PLAYING
                outcome.broadcasts.append({'type': 'phase', 'phase': PLAYING})
                self._log.info(f"[phase] session={session_id} {WAITING} -> {PLAYING}")
                self._writer.defer(f'mark_playing:{session_id}', self._gateway.mark_playing, session_id)
            return self._publish(outcome)
        finally:
            session.lock.release()

    def move(self, session_id: str, connection_id: str, cell_index) -> Outcome:
        session = self._locked_session(session_id)
        try:
            if session.phase != PLAYING:
                raise SessionNotPlaying()
            participant = session.participants.get(connection_id)
            if participant is None or participant.role != session.turn:
                return Outcome(session_id, applied=False)
            try:
                session.board = engine.apply_move(session.board, cell_index, participant.role)
            except IllegalMove:
                return Outcome(session_id, applied=False)

            session.moves.append({'role': participant.role, 'cell': cell_index})
            session.turn = engine.other_role(participant.role)
            result = engine.result_for(engine.evaluate(session.board))
            outcome = Outcome(session_id)
            if result is None:
                outcome.broadcasts.append({'type': 'move', 'board': list(session.board), 'turn': session.turn})
            else:
                session.phase = FINISHED
                session.result = result
                self._log.info(f"[game-over] session={session_id} result={result} moves={len(session.moves)}")
                # Written (or queued for retry) before the room hears about it.
                self._writer.write(
                    f'finalize:{session_id}',
                    self._gateway.finalize,
                    session_id,
                    session.participant_list(),
                    list(session.moves),
                    result,
                    on_give_up=lambda: self.abort(session_id, 'Game result could not be saved'),
                )
                if session.closed:
                    outcome.evicted = True
                    return outcome
                outcome.broadcasts.append({'type': 'game_over', 'result': result, 'board': list(session.board)})
            return self._publish(outcome)
        finally:
            session.lock.release()

    def chat(self, session_id: str, connection_id: str, text) -> Outcome:
        try:
            session = self._locked_session(session_id)
        except NotFound:
            return Outcome(session_id, applied=False)
        try:
            participant = session.participants.get(connection_id)
            text = text.strip() if isinstance(text, str) else ''
            if participant is None or not text:
                return Outcome(session_id, applied=False)
            session.chat_log.append(ChatEntry(author=participant.display_name, text=text))
            outcome = Outcome(session_id)
            outcome.broadcasts.append({'type': 'chat', 'chat_log': session.chat_list()})
            return self._publish(outcome)
        finally:
            session.lock.release()

    def disconnect(self, session_id: str, connection_id: str) -> Outcome:
        try:
            session = self._locked_session(session_id)
        except NotFound:
            return Outcome(session_id, applied=False)
        try:
            participant = session.participants.pop(connection_id, None)
            if participant is None:
                return Outcome(session_id, applied=False)
            self.publisher.unsubscribe(session_id, connection_id)
            self._log.info(f"[disconnect] session={session_id} conn={connection_id} role={participant.role}")
            outcome = Outcome(session_id)
            outcome.broadcasts.append({'type': 'players', 'participants': session.participant_list()})
            self._publish(outcome)
            if not session.participants:
                self._evict(session)
                outcome.evicted = True
            return outcome
        finally:
            session.lock.release()

    def abort(self, session_id: str, message: str) -> Outcome:
        """Close a session after an unrecoverable failure."""
        try:
            session = self._locked_session(session_id)
        except NotFound:
            return Outcome(session_id, applied=False)
        try:
            self._log.error(f"[abort] session={session_id} reason={message!r}")
            outcome = Outcome(session_id, evicted=True)
            outcome.broadcasts.append({'type': 'error', 'message': message})
            self._publish(outcome)
            self._evict(session)
            return outcome
        finally:
            session.lock.release()

    def _evict(self, session: Session) -> None:
        self._store.remove(session.id)
        self.publisher.close(session.id)
        self._log.info(f"[evict] session={session.id} phase={session.phase}")
