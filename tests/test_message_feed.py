"""Tests for MessageFeed loading, pulling and task coupling."""
import asyncio

import pytest

from mockserver.engine.message_feed import CLOSE, MessageFeed
from mockserver.engine.script_parser import ScriptMessage
from mockserver.exceptions import (
    BadMockError,
    FeedClosedError,
    FeedInUseError,
    ScriptLoadError,
    ScriptNotFoundError,
    ScriptParseError,
)
from mockserver.models import Direction
from mockserver.scripts.store import NamedScript

POP3_MESSAGES = [
    ScriptMessage(Direction.SERVER, b"+OK POP3 server ready\r\n"),
    ScriptMessage(Direction.CLIENT, b"QUIT\r\n"),
    ScriptMessage(Direction.SERVER, b"+OK POP3 server signing off\r\n"),
]


@pytest.fixture
def feed(store):
    return MessageFeed(store)


def test_new_feed_is_empty(feed):
    assert feed.dump() == []
    assert len(feed) == 0
    assert not feed.closed


def test_load_messages(feed):
    feed.load(POP3_MESSAGES)
    assert feed.dump() == POP3_MESSAGES


def test_load_direction_payload_pairs(feed):
    feed.load([("server", b"+OK POP3 server ready\r\n"), (Direction.CLIENT, bytearray(b"QUIT\r\n"))])
    assert feed.dump() == POP3_MESSAGES[:2]


def test_load_from_string(feed):
    feed.load(
        "S:+OK POP3 server ready\n"
        "C:QUIT\n"
        "S:+OK POP3 server signing off\n"
    )
    assert feed.dump() == POP3_MESSAGES


def test_load_from_named_script(feed):
    feed.load(NamedScript("trivial_pop3"))
    assert feed.dump() == POP3_MESSAGES


def test_load_from_path(feed, mocks_dir):
    feed.load(mocks_dir / "trivial_pop3.mock")
    assert feed.dump() == POP3_MESSAGES


def test_multiple_loads_append(feed):
    junk_mock = (Direction.SERVER, b"-ERR junk server data\r\n")
    feed.load(NamedScript("trivial_pop3"))
    feed.load(NamedScript("trivial_pop3"))
    feed.load([junk_mock])
    assert feed.dump() == POP3_MESSAGES + POP3_MESSAGES + [ScriptMessage(*junk_mock)]


@pytest.mark.parametrize(
    "bad_mock",
    [
        ("junk", b"-ERR junk server data\r\n"),
        "Who is this coming from?",
        (Direction.SERVER, "not bytes"),
        (Direction.SERVER, b"too", b"long"),
    ],
)
def test_invalid_mock_data_is_rejected(feed, bad_mock):
    with pytest.raises(BadMockError) as exc_info:
        feed.load([bad_mock])
    assert exc_info.value.entry == bad_mock
    assert feed.dump() == []


def test_bad_entry_leaves_feed_untouched(feed):
    feed.load(POP3_MESSAGES[:1])
    with pytest.raises(BadMockError):
        feed.load([POP3_MESSAGES[1], ("junk", b"x")])
    assert feed.dump() == POP3_MESSAGES[:1]


def test_script_errors_are_reported_and_nothing_loaded(feed):
    with pytest.raises(ScriptParseError) as exc_info:
        feed.load("S:fine\nC>0g\nX:bad\n")
    assert exc_info.value.line == 2
    assert exc_info.value.kind == "bad_hexadecimal"
    assert [e.line for e in exc_info.value.errors] == [2, 3]
    assert feed.dump() == []


def test_missing_named_script(feed):
    with pytest.raises(ScriptNotFoundError):
        feed.load(NamedScript("no_such_script"))


def test_missing_script_file(feed, tmp_path):
    with pytest.raises(ScriptNotFoundError):
        feed.load(tmp_path / "nope.mock")
    with pytest.raises(ScriptNotFoundError):
        feed.load(tmp_path)
    assert feed.dump() == []


@pytest.mark.parametrize("source", [42, None])
def test_source_that_is_not_a_script_or_message_list(feed, source):
    with pytest.raises(BadMockError) as exc_info:
        feed.load(source)
    assert exc_info.value.entry == source
    assert feed.dump() == []


def test_undecodable_script_file(feed, tmp_path):
    path = tmp_path / "latin1.mock"
    path.write_bytes(b"S:ok\nC:caf\xe9\n")

    with pytest.raises(ScriptParseError) as exc_info:
        feed.load(path)

    assert exc_info.value.kind == "bad_leader"
    assert exc_info.value.line == 2
    assert feed.dump() == []


def test_pull_in_order_then_close(feed):
    feed.load(NamedScript("trivial_pop3"))
    mocks = list(POP3_MESSAGES)

    while mocks:
        expected = mocks.pop(0)
        assert feed.pull() == expected
        assert feed.dump() == mocks

    assert feed.pull() is CLOSE
    assert feed.pull() is CLOSE
    assert not feed.closed


def test_dump_does_not_consume(feed):
    feed.load(POP3_MESSAGES)
    feed.dump()
    assert len(feed) == 3


def test_closed_feed(feed):
    feed.load(POP3_MESSAGES)
    feed.close()
    feed.close()

    assert feed.closed
    assert feed.dump() == []
    assert feed.pull() is CLOSE
    with pytest.raises(FeedClosedError):
        feed.load(POP3_MESSAGES)


@pytest.mark.asyncio
async def test_closing_feed_cancels_attached_task(feed):
    task = asyncio.create_task(asyncio.sleep(10))
    feed.attach(task)
    assert feed.attached

    feed.close()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert task.cancelled()


@pytest.mark.asyncio
async def test_finished_task_closes_feed(feed):
    feed.load(POP3_MESSAGES)
    task = asyncio.create_task(asyncio.sleep(0))
    feed.attach(task)

    await task
    await asyncio.sleep(0)  # let done callbacks run

    assert feed.closed
    assert not feed.attached


@pytest.mark.asyncio
async def test_failed_task_closes_feed(feed):
    async def fail():
        raise RuntimeError("boom")

    task = asyncio.create_task(fail())
    feed.attach(task)

    with pytest.raises(RuntimeError):
        await task
    await asyncio.sleep(0)

    assert feed.closed


@pytest.mark.asyncio
async def test_attach_to_second_task_fails(feed):
    first = asyncio.create_task(asyncio.sleep(10))
    second = asyncio.create_task(asyncio.sleep(10))
    try:
        feed.attach(first)
        with pytest.raises(FeedInUseError):
            feed.attach(second)
    finally:
        first.cancel()
        second.cancel()
        await asyncio.gather(first, second, return_exceptions=True)


@pytest.mark.asyncio
async def test_attach_closed_feed_fails(feed):
    feed.close()
    task = asyncio.create_task(asyncio.sleep(0))
    with pytest.raises(FeedClosedError):
        feed.attach(task)
    await task


@pytest.mark.parametrize(
    "source",
    [NamedScript("no_such_script"), "S:ok\nX:bad\n", [("sideways", b"x")]],
)
def test_load_failures_share_one_base(feed, source):
    with pytest.raises(ScriptLoadError):
        feed.load(source)
    assert feed.dump() == []
