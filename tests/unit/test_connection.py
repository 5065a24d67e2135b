"""
Unit tests for Connection framing, writing and closing.

A socketpair stands in for an accepted TCP socket.
"""

import socket
import threading
import time

import pytest

from tcpacceptor.core.connection import Connection, ConnectionState
from tcpacceptor.core.deadline import Deadline
from tcpacceptor.errors import (
    HandlerTimeout,
    MalformedRequest,
    PeerClosed,
    RequestTimeout,
    RequestTooLarge,
)
from tcpacceptor.http import HTTPStatus


class TestReadRequest:
    """Framing: header terminator + Content-Length, or end of stream."""

    def test_header_only_request(self, socket_pair, make_connection, sample_get_request):
        _, client = socket_pair
        conn = make_connection()

        client.sendall(sample_get_request)
        request = conn.read_request()

        assert request.data == sample_get_request
        assert request.header_complete
        assert request.content_length == 0
        assert not request.eof_terminated
        assert conn.bytes_received == len(sample_get_request)

    def test_request_with_body(self, socket_pair, make_connection, sample_post_request):
        _, client = socket_pair
        conn = make_connection()

        client.sendall(sample_post_request)
        request = conn.read_request()

        assert request.body == b'{"name": "John"}'
        assert request.content_length == 16

    def test_request_split_across_reads(self, socket_pair, make_connection, sample_post_request):
        """TCP is a stream: the request may arrive in many small pieces."""
        _, client = socket_pair
        conn = make_connection(buffer_size=4)

        def trickle():
            for i in range(0, len(sample_post_request), 7):
                client.sendall(sample_post_request[i:i + 7])
                time.sleep(0.001)

        sender = threading.Thread(target=trickle)
        sender.start()
        request = conn.read_request()
        sender.join()

        assert request.data == sample_post_request

    def test_larger_than_one_buffer(self, socket_pair, make_connection):
        """A request bigger than buffer_size is read whole, not truncated."""
        _, client = socket_pair
        conn = make_connection(buffer_size=16)
        body = b"x" * 500
        data = b"POST / HTTP/1.1\r\nContent-Length: 500\r\n\r\n" + body

        client.sendall(data)
        request = conn.read_request()

        assert request.body == body

    def test_bytes_after_request_ignored(self, socket_pair, make_connection, sample_get_request):
        _, client = socket_pair
        conn = make_connection()

        client.sendall(sample_get_request + b"GET /second HTTP/1.1\r\n\r\n")
        request = conn.read_request()

        assert request.data == sample_get_request

    def test_end_of_stream_framing(self, socket_pair, make_connection):
        """Bytes without a header terminator, ended by a half-close."""
        _, client = socket_pair
        conn = make_connection()

        client.sendall(b"0123456789")
        client.shutdown(socket.SHUT_WR)
        request = conn.read_request()

        assert request.data == b"0123456789"
        assert request.eof_terminated
        assert not request.header_complete

    def test_declared_size_too_large(self, socket_pair, make_connection):
        _, client = socket_pair
        conn = make_connection(max_request_size=1024)

        client.sendall(b"POST / HTTP/1.1\r\nContent-Length: 5000\r\n\r\n")

        with pytest.raises(RequestTooLarge) as exc_info:
            conn.read_request()
        assert exc_info.value.status == HTTPStatus.PAYLOAD_TOO_LARGE

    def test_unterminated_headers_too_large(self, socket_pair, make_connection):
        _, client = socket_pair
        conn = make_connection(max_request_size=1024, buffer_size=256)

        client.sendall(b"x" * 2000)

        with pytest.raises(RequestTooLarge):
            conn.read_request()

    def test_exactly_max_size_accepted(self, socket_pair, make_connection):
        _, client = socket_pair
        head = b"POST / HTTP/1.1\r\nContent-Length: "
        # Pad the body so header + body is exactly 1024 bytes.
        sized = head + b"0000\r\n\r\n"
        body_len = 1024 - len(sized)
        data = head + f"{body_len:04d}".encode() + b"\r\n\r\n" + b"y" * body_len
        conn = make_connection(max_request_size=1024)

        client.sendall(data)
        request = conn.read_request()

        assert request.size == 1024

    def test_invalid_content_length(self, socket_pair, make_connection):
        _, client = socket_pair
        conn = make_connection()

        client.sendall(b"POST / HTTP/1.1\r\nContent-Length: lots\r\n\r\n")

        with pytest.raises(MalformedRequest):
            conn.read_request()

    def test_truncated_body(self, socket_pair, make_connection):
        _, client = socket_pair
        conn = make_connection()

        client.sendall(b"POST / HTTP/1.1\r\nContent-Length: 10\r\n\r\nabc")
        client.shutdown(socket.SHUT_WR)

        with pytest.raises(MalformedRequest):
            conn.read_request()

    def test_peer_closed_without_data(self, socket_pair, make_connection):
        _, client = socket_pair
        conn = make_connection()

        client.shutdown(socket.SHUT_WR)

        with pytest.raises(PeerClosed) as exc_info:
            conn.read_request()
        assert exc_info.value.status is None

    def test_silent_client_times_out(self, socket_pair, make_connection):
        conn = make_connection(read_timeout=0.2)
        start = time.monotonic()

        with pytest.raises(RequestTimeout):
            conn.read_request()

        assert time.monotonic() - start < 1.0

    def test_read_deadline_spans_all_reads(self, socket_pair, make_connection):
        """A client trickling bytes cannot extend the read deadline."""
        _, client = socket_pair
        conn = make_connection(read_timeout=0.3)
        stop = threading.Event()

        def trickle():
            while not stop.is_set():
                try:
                    client.sendall(b"x")
                except OSError:
                    return
                time.sleep(0.05)

        sender = threading.Thread(target=trickle)
        sender.start()
        start = time.monotonic()
        try:
            with pytest.raises(RequestTimeout):
                conn.read_request()
        finally:
            stop.set()
            sender.join()

        assert time.monotonic() - start < 1.0

    def test_handler_deadline_bounds_read(self, socket_pair, make_connection):
        conn = make_connection(read_timeout=5.0)

        with pytest.raises(HandlerTimeout):
            conn.read_request(Deadline(0.1))


class TestSendResponse:

    def test_send(self, socket_pair, make_connection):
        _, client = socket_pair
        conn = make_connection()

        assert conn.send_response(b"hello")
        assert client.recv(16) == b"hello"
        assert conn.bytes_sent == 5
        assert conn.state == ConnectionState.WRITING

    def test_send_after_peer_gone(self, socket_pair, make_connection):
        _, client = socket_pair
        conn = make_connection()
        client.close()

        # The first write may still be buffered; keep writing until it fails.
        results = [conn.send_response(b"x" * 65536) for _ in range(50)]

        assert results[-1] is False
        assert conn.failed

    def test_no_write_after_failure(self, socket_pair, make_connection):
        conn = make_connection()
        conn.failed = True

        assert conn.send_response(b"data") is False
        assert conn.bytes_sent == 0

    def test_send_error_is_json(self, socket_pair, make_connection):
        _, client = socket_pair
        conn = make_connection()

        assert conn.send_error(HTTPStatus.PAYLOAD_TOO_LARGE, "too big", "test/1.0")
        raw = client.recv(4096)

        assert raw.startswith(b"HTTP/1.1 413 Payload Too Large\r\n")
        assert raw.endswith(b'{"error": "too big"}')


class TestClose:

    def test_close_is_idempotent(self, socket_pair, make_connection):
        conn = make_connection()

        conn.close()
        conn.close()

        assert conn.is_closed
        assert conn.socket.fileno() == -1

    def test_close_sends_eof(self, socket_pair, make_connection):
        _, client = socket_pair
        conn = make_connection()

        conn.send_response(b"bye")
        conn.close()

        assert client.recv(16) == b"bye"
        assert client.recv(16) == b""

    def test_context_manager_closes_on_error(self, socket_pair, make_connection):
        conn = make_connection()

        with pytest.raises(ValueError):
            with conn:
                raise ValueError("boom")

        assert conn.is_closed

    def test_send_after_close(self, socket_pair, make_connection):
        conn = make_connection()
        conn.close()

        assert conn.send_response(b"late") is False

    def test_reject(self, socket_pair, make_connection):
        _, client = socket_pair
        conn = make_connection()

        start = time.monotonic()
        conn.reject(b"HTTP/1.1 503 Service Unavailable\r\n\r\n")

        assert time.monotonic() - start < 0.5
        assert conn.is_closed
        assert client.recv(4096).startswith(b"HTTP/1.1 503")

    def test_reject_client_not_reading(self, socket_pair, make_connection):
        """A rejection never blocks on a client whose buffers are full."""
        _, client = socket_pair
        conn = make_connection()

        start = time.monotonic()
        conn.reject(b"x" * (8 * 1024 * 1024))

        assert time.monotonic() - start < 1.0
        assert conn.failed
        assert conn.is_closed

    def test_reject_client_that_keeps_sending(self, socket_pair, make_connection):
        """Closing without linger reads a bounded amount, however fast the client sends."""
        _, client = socket_pair
        conn = make_connection(buffer_size=1024)
        client.settimeout(2.0)
        stop = threading.Event()

        def flood():
            chunk = b"y" * 65536
            while not stop.is_set():
                try:
                    client.sendall(chunk)
                except OSError:
                    return

        sender = threading.Thread(target=flood, daemon=True)
        sender.start()
        time.sleep(0.05)  # Let data pile up in the socket buffer

        start = time.monotonic()
        conn.reject(b"HTTP/1.1 503 Service Unavailable\r\n\r\n")
        elapsed = time.monotonic() - start

        stop.set()
        sender.join(3.0)
        assert elapsed < 0.5
        assert conn.is_closed
