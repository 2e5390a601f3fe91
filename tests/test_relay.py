import asyncio
import uuid

from xat_api.errors import UpstreamFormatError, UpstreamUnavailable
from xat_api.utils.relay import APOLOGY_RESPONSE, RelayState, ResponseRelay


class StubInference:
    """Inference double: a fixed answer, a fragment list, or a failure."""

    def __init__(self, answer="full answer", fragments=(), fail_after=None, error=None):
        self.answer = answer
        self.fragments = list(fragments)
        self.fail_after = fail_after
        self.error = error
        self.calls = 0
        self.stream_closed = False

    async def generate(self, prompt, model=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.answer

    async def generate_stream(self, prompt, model=None):
        self.calls += 1
        try:
            for index, fragment in enumerate(self.fragments):
                if self.fail_after is not None and index == self.fail_after:
                    raise self.error
                await asyncio.sleep(0)
                yield fragment
            if self.fail_after is not None and self.fail_after >= len(self.fragments):
                raise self.error
        finally:
            self.stream_closed = True


def new_conversation(store) -> str:
    conversation_id = str(uuid.uuid4())
    asyncio.run(store.conversations.create_resource({"id": conversation_id}))
    return conversation_id


def stored_prompts(store):
    return asyncio.run(store.prompts.list_resource(order_by=["created_at"]))


def drain(session) -> list[dict]:
    async def run():
        return [event async for event in session.events()]
    return asyncio.run(run())


def test_complete_persists_response(store):
    relay = ResponseRelay(StubInference(answer="Bon dia"), store)
    conversation_id = new_conversation(store)

    result = asyncio.run(relay.complete(conversation_id, "Hola", "m"))

    assert result.state is RelayState.COMPLETED
    assert not result.degraded
    assert result.response == "Bon dia"
    [prompt] = stored_prompts(store)
    assert prompt["id"] == result.prompt_id
    assert (prompt["prompt"], prompt["response"], prompt["stream"]) == ("Hola", "Bon dia", False)


def test_complete_failure_still_persists_one_record(store):
    inference = StubInference(error=UpstreamUnavailable("down"))
    relay = ResponseRelay(inference, store)
    conversation_id = new_conversation(store)

    result = asyncio.run(relay.complete(conversation_id, "Hola", "m"))

    assert result.state is RelayState.FAILED
    assert result.degraded
    assert result.response == APOLOGY_RESPONSE
    prompts = stored_prompts(store)
    assert len(prompts) == 1
    assert prompts[0]["response"] == APOLOGY_RESPONSE
    assert inference.calls == 1


def test_stream_forwards_every_chunk_in_order(store):
    fragments = ["Un", " dos", " tres", " quatre"]
    relay = ResponseRelay(StubInference(fragments=fragments), store)
    conversation_id = new_conversation(store)

    session = asyncio.run(relay.open_stream(conversation_id, "Compta", "m"))
    # record exists with an empty response before any chunk arrives
    assert stored_prompts(store)[0]["response"] == ""

    events = drain(session)

    assert [e["type"] for e in events] == ["start"] + ["chunk"] * 4 + ["end"]
    assert events[0]["prompt"] == "Compta"
    assert [e["chunk"] for e in events[1:-1]] == fragments
    assert events[-1]["fullResponse"] == "".join(fragments)
    assert all(e["promptId"] == session.prompt_id for e in events)
    assert session.state is RelayState.FINALIZED
    [prompt] = stored_prompts(store)
    assert prompt["response"] == "Un dos tres quatre"
    assert prompt["stream"] is True


def test_stream_failure_emits_error_and_keeps_partial_text(store):
    inference = StubInference(
        fragments=["part", "ial", "never"], fail_after=2, error=UpstreamFormatError("bad chunk")
    )
    relay = ResponseRelay(inference, store)
    conversation_id = new_conversation(store)

    session = asyncio.run(relay.open_stream(conversation_id, "Hola", "m"))
    events = drain(session)

    assert [e["type"] for e in events] == ["start", "chunk", "chunk", "error"]
    assert session.state is RelayState.FAILED
    assert stored_prompts(store)[0]["response"] == "partial"


def test_stream_failure_before_any_chunk_stores_placeholder(store):
    inference = StubInference(fragments=[], fail_after=0, error=UpstreamUnavailable("down"))
    relay = ResponseRelay(inference, store)
    conversation_id = new_conversation(store)

    session = asyncio.run(relay.open_stream(conversation_id, "Hola", "m"))
    events = drain(session)

    assert [e["type"] for e in events] == ["start", "error"]
    assert stored_prompts(store)[0]["response"] == APOLOGY_RESPONSE


def test_client_disconnect_stops_forwarding_and_keeps_accumulated_text(store):
    inference = StubInference(fragments=["one", "two", "three"])
    relay = ResponseRelay(inference, store)
    conversation_id = new_conversation(store)
    session = asyncio.run(relay.open_stream(conversation_id, "Hola", "m"))

    async def read_two_then_leave():
        events = session.events()
        received = [await events.__anext__(), await events.__anext__()]
        await events.aclose()
        return received

    received = asyncio.run(read_two_then_leave())

    assert [e["type"] for e in received] == ["start", "chunk"]
    assert inference.stream_closed
    assert session.state is RelayState.FAILED
    assert stored_prompts(store)[0]["response"] == "one"


def test_stream_with_empty_answer_stores_placeholder(store):
    relay = ResponseRelay(StubInference(fragments=[]), store)
    conversation_id = new_conversation(store)

    session = asyncio.run(relay.open_stream(conversation_id, "Hola", "m"))
    events = drain(session)

    assert [e["type"] for e in events] == ["start", "end"]
    assert events[-1]["fullResponse"] == APOLOGY_RESPONSE
    assert session.state is RelayState.FINALIZED
    assert stored_prompts(store)[0]["response"] == APOLOGY_RESPONSE


def test_complete_with_empty_answer_stores_placeholder(store):
    relay = ResponseRelay(StubInference(answer=""), store)
    conversation_id = new_conversation(store)

    result = asyncio.run(relay.complete(conversation_id, "Hola", "m"))

    assert result.response == APOLOGY_RESPONSE
    assert stored_prompts(store)[0]["response"] == APOLOGY_RESPONSE
