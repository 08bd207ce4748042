import pytest
import trio
from trio.testing import wait_all_tasks_blocked

from erebus.core.gateway import DEFAULT_INTENTS
from erebus.core.state import ConnectionPhase
from erebus.exc import AlreadyConnected, GatewayClosed, HeartbeatTimeout, \
    ReconnectLimitExceeded, ResumeUnavailable

from .conftest import GATEWAY_URL, HEARTBEAT_ACK, HELLO, READY

RESUME_AT_1 = {"op": 6, "d": {"token": "token", "session_id": "abc", "seq": 1}}


async def start(nursery, gateway):
    await nursery.start(gateway.run)
    await wait_all_tasks_blocked()


async def connect_and_ready(nursery, gateway, connector):
    await start(nursery, gateway)
    websocket = connector.latest

    websocket.feed(HELLO)
    await wait_all_tasks_blocked()
    websocket.feed(READY)
    await wait_all_tasks_blocked()
    return websocket


# Connecting.
@pytest.mark.trio
async def test_identifies_once_open(nursery, gateway, connector):
    await start(nursery, gateway)

    websocket = connector.latest
    assert websocket.url == GATEWAY_URL + "?v=9&encoding=json"
    assert gateway.state.phase is ConnectionPhase.IDENTIFYING

    assert len(websocket.sent) == 1
    identify = websocket.sent[0]
    assert identify["op"] == 2
    assert identify["d"]["token"] == "token"
    assert identify["d"]["large_threshold"] == 50
    assert identify["d"]["intents"] == DEFAULT_INTENTS
    assert set(identify["d"]["properties"]) == {"os", "browser", "device"}


@pytest.mark.trio
async def test_ready_connects(nursery, gateway, connector):
    seen = []

    async def on_ready(ctx):
        seen.append(ctx.event_name)

    gateway.dispatcher.events.add_event(on_ready, name="ready")
    await connect_and_ready(nursery, gateway, connector)

    state = gateway.state
    assert state.phase is ConnectionPhase.CONNECTED
    assert state.sequence == 1
    assert state.session_id == "abc"
    assert state.user.username == "erebus"
    assert set(state.guilds) == {"10"}
    assert seen == ["ready"]


@pytest.mark.trio
async def test_connect_twice(nursery, gateway, connector):
    await connect_and_ready(nursery, gateway, connector)

    with pytest.raises(AlreadyConnected):
        await gateway.connect()

    assert gateway.state.phase is ConnectionPhase.CONNECTED
    assert len(connector.websockets) == 1


@pytest.mark.trio
async def test_kill(nursery, gateway, connector):
    websocket = await connect_and_ready(nursery, gateway, connector)

    await gateway.kill()
    await wait_all_tasks_blocked()

    assert gateway.state.phase is ConnectionPhase.DISCONNECTED
    assert websocket.closed.code == 1000
    assert len(connector.websockets) == 1


@pytest.mark.trio
async def test_malformed_frames_are_dropped(nursery, gateway, connector):
    websocket = await connect_and_ready(nursery, gateway, connector)

    websocket.feed("this isn't json")
    websocket.feed("[1, 2, 3]")
    websocket.feed({"op": 0, "t": "TYPING_START", "s": "2", "d": {}})
    await wait_all_tasks_blocked()

    assert gateway.state.sequence == 1
    assert gateway.state.phase is ConnectionPhase.CONNECTED
    assert websocket.closed is None
    assert len(connector.websockets) == 1


# Heartbeating.
@pytest.mark.trio
async def test_hello_heartbeats_immediately(nursery, gateway, connector):
    await start(nursery, gateway)
    websocket = connector.latest

    websocket.feed(HELLO)
    await wait_all_tasks_blocked()

    assert websocket.sent_ops(1) == [{"op": 1, "d": None}]
    assert gateway.heartbeat.interval_millis == 41250
    assert gateway.heartbeat.awaiting_first_ack
    assert gateway.monitor.running


@pytest.mark.trio
async def test_second_hello_replaces_timer(nursery, gateway, connector, mock_clock):
    websocket = await connect_and_ready(nursery, gateway, connector)
    websocket.feed(HEARTBEAT_ACK)
    await wait_all_tasks_blocked()

    websocket.feed(HELLO)
    await wait_all_tasks_blocked()
    websocket.feed(HEARTBEAT_ACK)
    await wait_all_tasks_blocked()
    assert len(websocket.sent_ops(1)) == 2

    mock_clock.jump(41.25)
    await wait_all_tasks_blocked()

    assert websocket.sent_ops(1) == [
        {"op": 1, "d": None},
        {"op": 1, "d": 1},
        {"op": 1, "d": 1},
    ]
    assert len(connector.websockets) == 1


@pytest.mark.trio
async def test_heartbeat_request_before_first_ack(nursery, gateway, connector):
    websocket = await connect_and_ready(nursery, gateway, connector)

    websocket.feed({"op": 1, "d": None})
    await wait_all_tasks_blocked()

    assert len(websocket.sent_ops(1)) == 2
    assert websocket.closed is None
    assert gateway.state.phase is ConnectionPhase.CONNECTED


@pytest.mark.trio
async def test_requests_before_first_ack_are_always_answered(nursery, gateway, connector):
    websocket = await connect_and_ready(nursery, gateway, connector)

    websocket.feed({"op": 1, "d": None})
    await wait_all_tasks_blocked()
    websocket.feed({"op": 1, "d": None})
    await wait_all_tasks_blocked()

    assert len(websocket.sent_ops(1)) == 3
    assert gateway.heartbeat.awaiting_first_ack
    assert websocket.closed is None


@pytest.mark.trio
async def test_ack_records_latency(nursery, gateway, connector, mock_clock):
    websocket = await connect_and_ready(nursery, gateway, connector)

    mock_clock.jump(0.25)
    websocket.feed(HEARTBEAT_ACK)
    await wait_all_tasks_blocked()

    assert gateway.heartbeat.heartbeat_acks == 1
    assert gateway.heartbeat.acknowledged
    assert not gateway.heartbeat.awaiting_first_ack
    assert gateway.heartbeat.latency == pytest.approx(0.25)


@pytest.mark.trio
async def test_heartbeat_request_restarts_timer(nursery, gateway, connector, mock_clock):
    websocket = await connect_and_ready(nursery, gateway, connector)
    websocket.feed(HEARTBEAT_ACK)
    await wait_all_tasks_blocked()

    mock_clock.jump(20)
    await wait_all_tasks_blocked()
    websocket.feed({"op": 1, "d": None})
    await wait_all_tasks_blocked()
    websocket.feed(HEARTBEAT_ACK)
    await wait_all_tasks_blocked()
    assert len(websocket.sent_ops(1)) == 2

    # the original timer would have fired here
    mock_clock.jump(21.25)
    await wait_all_tasks_blocked()
    assert len(websocket.sent_ops(1)) == 2

    mock_clock.jump(20)
    await wait_all_tasks_blocked()
    assert len(websocket.sent_ops(1)) == 3


@pytest.mark.trio
async def test_unacked_heartbeat_request_zombies(nursery, gateway, connector, mock_clock):
    errors = []

    async def on_error(ctx, error):
        errors.append(error)

    gateway.dispatcher.events.add_event(on_error, name="gateway_error")
    websocket = await connect_and_ready(nursery, gateway, connector)
    websocket.feed(HEARTBEAT_ACK)
    await wait_all_tasks_blocked()

    mock_clock.jump(41.25)
    await wait_all_tasks_blocked()
    assert len(websocket.sent_ops(1)) == 2

    websocket.feed({"op": 1, "d": None})
    await wait_all_tasks_blocked()

    assert websocket.closed.code == 1006
    assert len(errors) == 1
    assert isinstance(errors[0], HeartbeatTimeout)

    resumed = connector.latest
    assert resumed is not websocket
    assert resumed.sent == [RESUME_AT_1]
    assert gateway.state.phase is ConnectionPhase.RESUMING


@pytest.mark.trio
async def test_missed_ack_zombies(nursery, gateway, connector, mock_clock):
    websocket = await connect_and_ready(nursery, gateway, connector)

    mock_clock.jump(41.25)
    await wait_all_tasks_blocked()

    # no second heartbeat was written down the dead socket
    assert len(websocket.sent_ops(1)) == 1
    assert websocket.closed.code == 1006
    assert connector.latest.sent == [RESUME_AT_1]


@pytest.mark.trio
async def test_heartbeat_request_before_hello(nursery, gateway, connector):
    await start(nursery, gateway)
    websocket = connector.latest

    websocket.feed({"op": 1, "d": None})
    await wait_all_tasks_blocked()

    assert websocket.sent_ops(1) == []
    assert websocket.closed.code == 1006

    # there's no session to resume, so the new socket identifies
    assert len(connector.websockets) == 2
    assert connector.latest.sent_ops(2)
    assert gateway.state.phase is ConnectionPhase.IDENTIFYING


# Resuming.
@pytest.mark.trio
async def test_resume_needs_a_session(gateway):
    with pytest.raises(ResumeUnavailable):
        await gateway.send_resume()

    assert gateway.state.phase is ConnectionPhase.DISCONNECTED
    assert gateway.transport is None


@pytest.mark.trio
async def test_reconnect_request(nursery, gateway, connector):
    websocket = await connect_and_ready(nursery, gateway, connector)
    websocket.feed({"op": 0, "t": "TYPING_START", "s": 5, "d": {}})
    await wait_all_tasks_blocked()

    websocket.feed({"op": 7, "d": None})
    await wait_all_tasks_blocked()

    assert websocket.closed.code == 5000
    assert len(connector.websockets) == 2

    resumed = connector.latest
    assert resumed.sent == [{"op": 6, "d": {"token": "token", "session_id": "abc", "seq": 5}}]
    assert gateway.state.sequence == 5
    assert gateway.state.phase is ConnectionPhase.RESUMING

    resumed.feed({"op": 0, "t": "RESUMED", "s": 6, "d": {}})
    await wait_all_tasks_blocked()

    assert gateway.state.phase is ConnectionPhase.CONNECTED
    assert gateway.state.sequence == 6
    assert gateway.state.session_id == "abc"


@pytest.mark.trio
async def test_remote_close_resumes(nursery, gateway, connector):
    websocket = await connect_and_ready(nursery, gateway, connector)

    websocket.remote_close(1001, "Going away")
    await wait_all_tasks_blocked()

    assert len(connector.websockets) == 2
    assert connector.latest.sent == [RESUME_AT_1]


@pytest.mark.trio
async def test_invalid_session_resumes_then_identifies(nursery, gateway, connector, mock_clock):
    websocket = await connect_and_ready(nursery, gateway, connector)

    websocket.feed({"op": 9, "d": True})
    await wait_all_tasks_blocked()

    assert websocket.sent[-1] == RESUME_AT_1
    assert gateway.state.phase is ConnectionPhase.RESUMING

    websocket.feed({"op": 9, "d": False})
    await wait_all_tasks_blocked()

    assert gateway.state.session_id is None
    assert gateway.state.phase is ConnectionPhase.RECONNECTING
    assert len(websocket.sent_ops(2)) == 1

    mock_clock.jump(4)
    await wait_all_tasks_blocked()
    assert len(websocket.sent_ops(2)) == 1

    mock_clock.jump(1.5)
    await wait_all_tasks_blocked()

    assert len(websocket.sent_ops(2)) == 2
    assert gateway.state.phase is ConnectionPhase.IDENTIFYING
    assert gateway.state.sequence == 0
    assert len(connector.websockets) == 1


@pytest.mark.trio
async def test_unresumable_invalid_session(nursery, gateway, connector, mock_clock):
    websocket = await connect_and_ready(nursery, gateway, connector)

    websocket.feed({"op": 9, "d": False})
    await wait_all_tasks_blocked()

    assert websocket.sent_ops(6) == []
    assert gateway.state.phase is ConnectionPhase.RECONNECTING

    mock_clock.jump(5.5)
    await wait_all_tasks_blocked()

    assert len(websocket.sent_ops(2)) == 2
    assert gateway.state.phase is ConnectionPhase.IDENTIFYING


# Giving up.
@pytest.mark.trio
async def test_fatal_close_code(gateway, connector):
    async def close_when_open():
        await wait_all_tasks_blocked()
        connector.latest.remote_close(4004, "Authentication failed.")

    async with trio.open_nursery() as nursery:
        nursery.start_soon(close_when_open)
        with pytest.raises(GatewayClosed) as excinfo:
            await gateway.run()

    assert excinfo.value.code == 4004
    assert gateway.state.phase is ConnectionPhase.DISCONNECTED
    assert len(connector.websockets) == 1


@pytest.mark.trio
async def test_reconnect_limit(gateway, connector):
    gateway.info.max_reconnects = 0

    async def reconnect_when_ready():
        await wait_all_tasks_blocked()
        websocket = connector.latest
        websocket.feed(HELLO)
        websocket.feed(READY)
        await wait_all_tasks_blocked()
        websocket.feed({"op": 7, "d": None})

    async with trio.open_nursery() as nursery:
        nursery.start_soon(reconnect_when_ready)
        with pytest.raises(ReconnectLimitExceeded):
            await gateway.run()

    assert len(connector.websockets) == 1


@pytest.mark.trio
async def test_connect_while_resuming_replaces_socket(nursery, gateway, connector, mock_clock):
    websocket = await connect_and_ready(nursery, gateway, connector)
    websocket.feed(HEARTBEAT_ACK)
    websocket.feed({"op": 9, "d": True})
    await wait_all_tasks_blocked()
    assert gateway.state.phase is ConnectionPhase.RESUMING

    await gateway.connect()
    await wait_all_tasks_blocked()

    assert websocket.closed.code == 5000
    assert len(connector.websockets) == 2
    assert connector.latest.sent == [RESUME_AT_1]
    assert not gateway.monitor.running

    mock_clock.jump(41.25)
    await wait_all_tasks_blocked()

    # the old timer died with the old socket
    assert len(websocket.sent_ops(1)) == 1
    assert len(connector.websockets) == 2
