import time

import pytest

from ogimg.errors import FetchError
from ogimg.services.cancel import CancelToken


def test_fresh_token_is_not_cancelled():
    token = CancelToken()
    assert not token.cancelled
    assert token.remaining() is None
    token.raise_if_cancelled()


def test_explicit_cancel():
    token = CancelToken()
    token.cancel()
    assert token.cancelled
    with pytest.raises(FetchError):
        token.raise_if_cancelled("x")


def test_deadline_expires():
    token = CancelToken.with_timeout(0.01)
    time.sleep(0.03)
    assert token.cancelled
    assert token.remaining() == 0.0


def test_child_observes_parent_but_not_vice_versa():
    parent = CancelToken.with_timeout(60)
    child = parent.child()
    assert 0 < child.remaining() <= 60

    child.cancel()
    assert child.cancelled
    assert not parent.cancelled

    other = parent.child()
    parent.cancel()
    assert other.cancelled
