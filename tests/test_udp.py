import queue
import threading
import time

import pytest

from hycore.errors import ClosedError
from hycore.frag import Defragger
from hycore.protocol import UDPMessage
from hycore.udp import DatagramTooLargeError, UDPSessionManager


class FakeIO:
    def __init__(self, max_size=None):
        self.incoming = queue.Queue()
        self.sent = []
        self.max_size = max_size

    def receive_message(self):
        message = self.incoming.get()
        if message is None:
            raise ConnectionError("closed")
        return message

    def send_message(self, message):
        if self.max_size is not None and message.size() > self.max_size:
            raise DatagramTooLargeError(self.max_size)
        self.sent.append(message)


def read_in_thread(conn):
    result = {}

    def run():
        try:
            result["value"] = conn.read_from()
        except Exception as err:  # noqa: BLE001
            result["error"] = err

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread, result


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_udp_session_manager():
    io = FakeIO()
    sm = UDPSessionManager(io)

    conn1 = sm.new_udp()
    conn2 = sm.new_udp()

    msg1 = UDPMessage(1, 0, 0, 1, "random.site.com:9000", b"hello friend")
    assert conn1.write_to(msg1.data, ("random.site.com", 9000)) == len(msg1.data)
    assert io.sent[-1] == msg1

    msg2 = UDPMessage(2, 0, 0, 1, "another.site.org:8000", b"mr robot")
    conn2.write_to(msg2.data, ("another.site.org", 8000))
    assert io.sent[-1] == msg2

    io.incoming.put(UDPMessage(1, 0, 0, 1, msg1.addr, b"goodbye captain price"))
    data, addr = conn1.read_from()
    assert data == b"goodbye captain price"
    assert addr == ("random.site.com", 9000)

    io.incoming.put(UDPMessage(2, 0, 0, 1, msg2.addr, b"white rose"))
    data, addr = conn2.read_from()
    assert data == b"white rose"
    assert addr == ("another.site.org", 8000)

    # Unknown session: silently dropped.
    io.incoming.put(UDPMessage(55, 0, 0, 1, "burgerking.com:27017", b"impossible whopper"))

    # Closing a session unblocks its reader.
    thread, result = read_in_thread(conn1)
    time.sleep(0.1)
    conn1.close()
    thread.join(2)
    assert isinstance(result.get("error"), EOFError)

    # Closing the channel unblocks readers and blocks new sessions.
    thread, result = read_in_thread(conn2)
    io.incoming.put(None)
    thread.join(2)
    assert isinstance(result.get("error"), EOFError)
    with pytest.raises(ClosedError):
        sm.new_udp()
    assert sm.count() == 0


def test_session_ids_increase_and_count():
    sm = UDPSessionManager(FakeIO())
    a = sm.new_udp()
    b = sm.new_udp()
    assert (a.session_id, b.session_id) == (1, 2)
    assert sm.count() == 2
    a.close()
    a.close()
    assert sm.count() == 1


def test_fragmented_send():
    io = FakeIO(max_size=40)
    sm = UDPSessionManager(io)
    conn = sm.new_udp()
    payload = bytes(range(100))
    conn.send(payload, "test:123")
    assert len(io.sent) > 1
    assert all(m.size() <= 40 for m in io.sent)
    assert len({m.packet_id for m in io.sent}) == 1
    assert 1 <= io.sent[0].packet_id <= 0xFFFF
    defragger = Defragger()
    results = [defragger.feed(m) for m in io.sent]
    assert results[-1].data == payload
    assert all(r is None for r in results[:-1])


def test_fragmented_receive_is_reassembled():
    io = FakeIO()
    sm = UDPSessionManager(io)
    conn = sm.new_udp()
    io.incoming.put(UDPMessage(1, 7, 0, 2, "test:123", b"hello "))
    io.incoming.put(UDPMessage(1, 7, 1, 2, "test:123", b"moto"))
    data, addr = conn.receive()
    assert data == b"hello moto"
    assert addr == "test:123"


def test_ipv6_addresses():
    io = FakeIO()
    sm = UDPSessionManager(io)
    conn = sm.new_udp()
    conn.write_to(b"x", ("::1", 53))
    assert io.sent[-1].addr == "[::1]:53"
    io.incoming.put(UDPMessage(1, 0, 0, 1, "[::1]:53", b"y"))
    assert conn.read_from() == (b"y", ("::1", 53))


def test_messages_queued_before_close_are_still_read():
    io = FakeIO()
    sm = UDPSessionManager(io)
    conn = sm.new_udp()
    io.incoming.put(UDPMessage(1, 0, 0, 1, "a:1", b"first"))
    assert wait_until(lambda: len(conn._inbox) == 1)
    io.incoming.put(None)
    assert wait_until(lambda: conn.closed)
    assert conn.receive() == (b"first", "a:1")
    with pytest.raises(EOFError):
        conn.receive()


def test_context_manager_closes_session():
    sm = UDPSessionManager(FakeIO())
    with sm.new_udp() as conn:
        assert sm.count() == 1
    assert conn.closed
    assert sm.count() == 0
    with pytest.raises(EOFError):
        conn.receive()