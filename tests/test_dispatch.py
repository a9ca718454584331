"""Tests for action resolution and the dispatch table."""
import pytest

from app.exceptions import MethodNotAllowed, NotFound
from app.routers.pastes import (
    ACTION_HANDLERS,
    ACTION_METHODS,
    AUTH_REQUIRED,
    PasteAction,
    resolve_action,
)


def test_every_action_has_a_handler_and_method():
    assert set(ACTION_HANDLERS) == set(PasteAction)
    assert set(ACTION_METHODS) == set(PasteAction)


def test_auth_required_actions():
    assert AUTH_REQUIRED == {PasteAction.LIST, PasteAction.DELETE}


@pytest.mark.parametrize(
    "method,segment,has_id,verify,expected",
    [
        ("POST", "create", False, False, PasteAction.CREATE),
        ("POST", "upload", False, False, PasteAction.UPLOAD),
        ("GET", "get", True, False, PasteAction.GET),
        ("POST", "get", True, True, PasteAction.VERIFY_GET),
        ("GET", "raw", True, False, PasteAction.RAW),
        ("GET", "img", True, False, PasteAction.IMG),
        ("GET", "list", False, False, PasteAction.LIST),
        ("DELETE", "delete", True, False, PasteAction.DELETE),
        ("get", "get", True, False, PasteAction.GET),
        # 액션 없는 경로
        ("GET", "", True, False, PasteAction.GET),
        ("GET", "", False, False, PasteAction.LIST),
        ("POST", "", False, False, PasteAction.CREATE),
        ("POST", "", True, True, PasteAction.VERIFY_GET),
        ("DELETE", "", True, False, PasteAction.DELETE),
    ],
)
def test_resolve_action(method, segment, has_id, verify, expected):
    assert resolve_action(method, segment, has_id, verify) == expected


def test_verify_flag_ignored_on_get():
    assert resolve_action("GET", "get", True, True) == PasteAction.GET


@pytest.mark.parametrize("segment", ["bogus", "verify_get", "CREATE"])
def test_unknown_segment(segment):
    with pytest.raises(NotFound):
        resolve_action("GET", segment, True, False)


@pytest.mark.parametrize(
    "method,segment",
    [
        ("GET", "create"),
        ("POST", "list"),
        ("GET", "delete"),
        ("DELETE", "get"),
        ("PUT", ""),
    ],
)
def test_wrong_method(method, segment):
    with pytest.raises(MethodNotAllowed):
        resolve_action(method, segment, True, False)


@pytest.mark.parametrize("segment", ["create", "upload", "raw", "img", "list", "delete"])
def test_verify_rejected_outside_get(segment):
    with pytest.raises(MethodNotAllowed):
        resolve_action("POST", segment, True, True)


def test_verify_on_unknown_segment():
    with pytest.raises(NotFound):
        resolve_action("POST", "bogus", True, True)
