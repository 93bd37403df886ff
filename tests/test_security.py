import pytest

from mediashare.services.security import SessionGate, parse_cookie_token


def test_authorized_code_is_accepted_from_cookie_or_query() -> None:
    gate = SessionGate(secure_mode=True)
    gate.authorize("abc123")

    assert gate.validate({"cookie": "theme=dark; session_code=abc123"})
    assert gate.validate({"Cookie": "session_code=abc123"})
    assert gate.validate({}, {"session_code": "abc123"})
    assert not gate.validate({}, {"session_code": "other"})
    assert not gate.validate({})


def test_cookie_takes_priority_over_query() -> None:
    gate = SessionGate()
    gate.authorize("good")

    assert not gate.validate({"cookie": "session_code=stale"}, {"session_code": "good"})
    assert gate.validate({"cookie": "session_code=good"}, {"session_code": "stale"})


def test_clear_invalidates_every_token() -> None:
    gate = SessionGate()
    gate.authorize("one")
    gate.authorize("two")

    assert gate.clear() == 2
    assert len(gate) == 0
    assert not gate.validate_token("one")


def test_issue_token_authorizes_a_fresh_code() -> None:
    gate = SessionGate()

    first = gate.issue_token()
    second = gate.issue_token()

    assert first != second
    assert gate.validate_token(first)
    assert gate.validate_token(second)


def test_blank_token_is_rejected() -> None:
    with pytest.raises(ValueError):
        SessionGate().authorize("   ")


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        (None, None),
        ("", None),
        ("session_code=", None),
        ("other=1", None),
        ("a=1;session_code=xyz", "xyz"),
        ("session_code=a=b", "a=b"),
    ],
)
def test_parse_cookie_token(header, expected) -> None:
    assert parse_cookie_token(header) == expected
