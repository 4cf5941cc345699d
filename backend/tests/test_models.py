"""
Tests for the request lifecycle table.
"""
import pytest

from shared.models import (
    MANUAL_TARGETS,
    REQUEST_TRANSITIONS,
    RequestStatus,
    can_transition,
    parse_request_status,
)

P = RequestStatus.PENDING
O = RequestStatus.OPEN_FOR_BIDS
A = RequestStatus.BID_ACCEPTED
C = RequestStatus.COMPLETED
X = RequestStatus.CANCELLED

ALLOWED = {(P, O), (P, A), (P, X), (O, A), (O, X), (A, C)}


@pytest.mark.parametrize('current', list(RequestStatus))
@pytest.mark.parametrize('target', list(RequestStatus))
def test_transition_table(current, target):
    assert can_transition(current, target) == ((current, target) in ALLOWED)


def test_every_status_has_an_entry():
    assert set(REQUEST_TRANSITIONS) == set(RequestStatus)


def test_terminal_statuses_have_no_exits():
    for status in (C, X):
        assert not REQUEST_TRANSITIONS[status]


def test_manual_targets():
    assert MANUAL_TARGETS == {O, X}


@pytest.mark.parametrize('raw,expected', [
    ('PENDING', P),
    ('open_for_bids', O),
    ('  Cancelled ', X),
    ('ARCHIVED', None),
    ('', None),
    (None, None),
])
def test_parse_request_status(raw, expected):
    assert parse_request_status(raw) == expected
