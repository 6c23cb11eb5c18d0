"""State store: interns GraphStates and hands out stable integer ids."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from perch.shared.errors import UnknownStateError
from .models import GraphState

log = logging.getLogger(__name__)


class StateStore:
    """Bijection between GraphStates (set equality) and integer ids.

    Ids are allocated from 0 in order of first sight and never reused or
    remapped until ``clear()``.
    """

    def __init__(self) -> None:
        self._ids: Dict[GraphState, int] = {}
        self._states: List[GraphState] = []

    def intern(self, state: GraphState) -> int:
        state_id = self._ids.get(state)
        if state_id is None:
            state_id = len(self._states)
            self._ids[state] = state_id
            self._states.append(state)
        return state_id

    def get_id(self, state: GraphState) -> Optional[int]:
        return self._ids.get(state)

    def resolve(self, state_id: int) -> GraphState:
        if not 0 <= state_id < len(self._states):
            raise UnknownStateError(state_id)
        return self._states[state_id]

    def clear(self) -> None:
        log.debug("Clearing state store (%d states)", len(self._states))
        self._ids.clear()
        self._states.clear()

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, state: object) -> bool:
        return state in self._ids
