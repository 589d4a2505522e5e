import pytest

from hycore.frag import Defragger, frag_udp_message
from hycore.protocol import UDPMessage


def _msg(packet_id=123, frag_id=0, frag_count=1, data=b""):
    return UDPMessage(
        session_id=123, packet_id=packet_id, frag_id=frag_id, frag_count=frag_count, addr="test:123", data=data
    )


@pytest.mark.parametrize(
    "message,max_size,expected",
    [
        (_msg(data=b"hello"), 100, [_msg(data=b"hello")]),
        (
            _msg(data=b"hello"),
            20,
            [_msg(frag_id=0, frag_count=2, data=b"hel"), _msg(frag_id=1, frag_count=2, data=b"lo")],
        ),
        (
            _msg(data=b"abcdefgh"),
            19,
            [
                _msg(frag_id=0, frag_count=4, data=b"ab"),
                _msg(frag_id=1, frag_count=4, data=b"cd"),
                _msg(frag_id=2, frag_count=4, data=b"ef"),
                _msg(frag_id=3, frag_count=4, data=b"gh"),
            ],
        ),
    ],
    ids=["no frag", "2 frags", "4 frags"],
)
def test_frag_udp_message(message, max_size, expected):
    assert frag_udp_message(message, max_size) == expected


def test_fragments_fit_and_reassemble():
    message = _msg(packet_id=7, data=bytes(range(256)) * 4)
    frags = frag_udp_message(message, 100)
    assert all(frag.size() <= 100 for frag in frags)
    defragger = Defragger()
    results = [defragger.feed(frag) for frag in frags]
    assert results[:-1] == [None] * (len(frags) - 1)
    assert results[-1] == message


def test_frag_no_room_for_payload():
    with pytest.raises(ValueError):
        frag_udp_message(_msg(data=b"hello world"), 17)


def test_defragger_sequence():
    cases = [
        ("no frag", _msg(987, 0, 1, b"hello"), _msg(987, 0, 1, b"hello")),
        ("frag 0 - 1/2", _msg(987, 0, 2, b"hello "), None),
        ("frag 0 - 2/2", _msg(987, 1, 2, b"moto"), _msg(987, 0, 1, b"hello moto")),
        ("frag 1 - 1/3", _msg(987, 0, 3, b"deco"), None),
        ("frag 1 - 2/3", _msg(987, 1, 3, b"*"), None),
        ("frag 1 - 3/3", _msg(987, 2, 3, b"27"), _msg(987, 0, 1, b"deco*27")),
        ("frag 2 - 1/2", _msg(233, 1, 2, b"shinsekai"), None),
        ("frag 3 - 2/2", _msg(244, 1, 2, b"what???"), None),
        ("frag 2 - 2/2", _msg(233, 1, 2, b" annaijo"), None),
        ("invalid id", _msg(233, 88, 2, b"shinsekai"), None),
        ("frag 2 - 1/2 re", _msg(233, 0, 2, b"shinsekai"), _msg(233, 0, 1, b"shinsekai annaijo")),
    ]
    defragger = Defragger()
    got = [(name, defragger.feed(message)) for name, message, _ in cases]
    assert got == [(name, expected) for name, _, expected in cases]