"""
app/flow/states.py

Purpose: Defines the delivery states shown by the Mini App

- IDLE, LOADING, SUCCESS, ERROR
- Single source of truth for what the user sees
- State transition validation
"""

from enum import Enum
from typing import Dict, List
from dataclasses import dataclass

from utils.constants import LOADING_MESSAGE, SUCCESS_MESSAGE, DEFAULT_ERROR_MESSAGE


class DeliveryState(str, Enum):
    """
    Stages of one attribution delivery run.
    """
    IDLE = "IDLE"
    LOADING = "LOADING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


@dataclass
class StateMetadata:
    """
    Metadata associated with each delivery state.
    """
    name: DeliveryState
    display_name: str
    message: str = ""  # Text shown to the user
    terminal: bool = False  # No transition leaves this state
    user_can_retry: bool = False  # Retry button visible


STATE_METADATA: Dict[DeliveryState, StateMetadata] = {
    DeliveryState.IDLE: StateMetadata(
        name=DeliveryState.IDLE,
        display_name="Idle",
    ),
    DeliveryState.LOADING: StateMetadata(
        name=DeliveryState.LOADING,
        display_name="Loading",
        message=LOADING_MESSAGE,
    ),
    DeliveryState.SUCCESS: StateMetadata(
        name=DeliveryState.SUCCESS,
        display_name="Success",
        message=SUCCESS_MESSAGE,
        terminal=True,
    ),
    DeliveryState.ERROR: StateMetadata(
        name=DeliveryState.ERROR,
        display_name="Error",
        message=DEFAULT_ERROR_MESSAGE,
        user_can_retry=True,
    ),
}


STATE_TRANSITIONS: Dict[DeliveryState, List[DeliveryState]] = {
    DeliveryState.IDLE: [
        DeliveryState.LOADING,
    ],
    DeliveryState.LOADING: [
        DeliveryState.SUCCESS,
        DeliveryState.ERROR,
        DeliveryState.LOADING,  # Automatic retry
    ],
    DeliveryState.ERROR: [
        DeliveryState.LOADING,  # Manual retry
    ],
    DeliveryState.SUCCESS: [],
}


def is_valid_transition(from_state: DeliveryState, to_state: DeliveryState) -> bool:
    """
    Checks if a state transition is valid.

    Args:
        from_state: Current state
        to_state: Target state

    Returns:
        True if transition is allowed, False otherwise
    """
    return to_state in STATE_TRANSITIONS.get(from_state, [])


def get_state_metadata(state: DeliveryState) -> StateMetadata:
    return STATE_METADATA.get(state, StateMetadata(name=state, display_name=state.value))
