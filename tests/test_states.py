from app.flow.states import DeliveryState, get_state_metadata, is_valid_transition


def test_happy_path_transitions():
    assert is_valid_transition(DeliveryState.IDLE, DeliveryState.LOADING)
    assert is_valid_transition(DeliveryState.LOADING, DeliveryState.SUCCESS)
    assert is_valid_transition(DeliveryState.LOADING, DeliveryState.ERROR)


def test_manual_retry_transition():
    assert is_valid_transition(DeliveryState.ERROR, DeliveryState.LOADING)
    assert not is_valid_transition(DeliveryState.ERROR, DeliveryState.SUCCESS)


def test_success_is_terminal():
    for state in DeliveryState:
        assert not is_valid_transition(DeliveryState.SUCCESS, state)
    assert get_state_metadata(DeliveryState.SUCCESS).terminal


def test_idle_cannot_skip_loading():
    assert not is_valid_transition(DeliveryState.IDLE, DeliveryState.SUCCESS)
    assert not is_valid_transition(DeliveryState.IDLE, DeliveryState.ERROR)


def test_error_state_offers_retry():
    assert get_state_metadata(DeliveryState.ERROR).user_can_retry
