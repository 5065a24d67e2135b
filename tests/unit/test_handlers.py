"""
Unit tests for the canned response handler.
"""

import threading
import time

import pytest

from tcpacceptor.core.deadline import Deadline
from tcpacceptor.errors import HandlerTimeout
from tcpacceptor.handlers import CannedResponseHandler
from tcpacceptor.http import HTTPStatus, RawRequest


@pytest.fixture
def request_():
    return RawRequest(data=b"GET / HTTP/1.1\r\n\r\n", client_address=("127.0.0.1", 1), header_end=18)


class TestCannedResponseHandler:

    def test_default_body(self, request_):
        response = CannedResponseHandler()(request_, Deadline(1.0))

        assert response.status == HTTPStatus.OK
        assert response.body == b"Hey Client!"

    def test_ignores_request_content(self):
        handler = CannedResponseHandler(body="same")
        weird = RawRequest(data=b"\x00\xffnot http", client_address=("127.0.0.1", 1), eof_terminated=True)

        assert handler(weird, Deadline(1.0)).body == b"same"

    def test_delay(self, request_):
        handler = CannedResponseHandler(delay=0.1)
        start = time.monotonic()

        handler(request_, Deadline(5.0))

        assert time.monotonic() - start >= 0.1

    def test_delay_bounded_by_deadline(self, request_):
        handler = CannedResponseHandler(delay=10.0)

        with pytest.raises(HandlerTimeout):
            handler(request_, Deadline(0.1))

    def test_delay_cancelled(self, request_):
        event = threading.Event()
        handler = CannedResponseHandler(delay=10.0)
        threading.Timer(0.05, event.set).start()

        with pytest.raises(HandlerTimeout):
            handler(request_, Deadline(30.0, event))

    def test_negative_delay(self):
        with pytest.raises(ValueError):
            CannedResponseHandler(delay=-1)
