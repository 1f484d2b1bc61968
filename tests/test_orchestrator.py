import threading
from pathlib import Path

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from fastchat.completion import CompletionClient
from fastchat.errors import ConversationBusy, InvalidArgument, UpstreamFailure
from fastchat.memory import ConversationMemory
from fastchat.models import MessageRole
from fastchat.orchestrator import Coordinator
from fastchat.storage import SQLiteStore

SYSTEM_PROMPT = "You are a test assistant."


class RecordingLLM:
    def __init__(self, reply: str = "recorded reply") -> None:
        self.reply = reply
        self.calls = []

    def invoke(self, messages):
        self.calls.append(messages)

        class Response:
            content = self.reply

        return Response()

    def stream(self, messages):
        self.calls.append(messages)
        for word in self.reply.split(" "):

            class Chunk:
                content = word + " "

            yield Chunk()


class BrokenLLM:
    def invoke(self, *args, **kwargs):
        raise RuntimeError("provider unavailable")

    def stream(self, *args, **kwargs):
        yield type("Chunk", (), {"content": "partial "})()
        raise RuntimeError("provider dropped the stream")


def _build_coordinator(tmp_path: Path, chat_model, max_messages: int = 20, lock_timeout: float = 5.0) -> Coordinator:
    store = SQLiteStore(db_path=str(tmp_path / "test.db"))
    memory = ConversationMemory(store=store, max_messages=max_messages)
    completion = CompletionClient(system_prompt=SYSTEM_PROMPT, chat_model=chat_model)
    return Coordinator(memory=memory, completion=completion, lock_timeout=lock_timeout)


def test_new_conversation_turn_is_persisted_in_order(tmp_path):
    coordinator = _build_coordinator(tmp_path, FakeListChatModel(responses=["Hi! How can I help?"]))
    assert coordinator.memory.load_context("x") == []

    reply = coordinator.respond("x", "hello")

    assert reply == "Hi! How can I help?"
    context = coordinator.memory.load_context("x")
    assert [(m.role, m.content) for m in context] == [
        (MessageRole.USER, "hello"),
        (MessageRole.ASSISTANT, "Hi! How can I help?"),
    ]


def test_prompt_has_system_preamble_history_and_new_message(tmp_path):
    llm = RecordingLLM()
    coordinator = _build_coordinator(tmp_path, llm)
    coordinator.memory.append_turn("conv", "earlier question", "earlier answer")

    coordinator.respond("conv", "follow up")

    prompt = llm.calls[0]
    assert [type(m).__name__ for m in prompt] == ["SystemMessage", "HumanMessage", "AIMessage", "HumanMessage"]
    assert prompt[0].content == SYSTEM_PROMPT
    assert [m.content for m in prompt[1:]] == ["earlier question", "earlier answer", "follow up"]


def test_prompt_window_is_bounded(tmp_path):
    llm = RecordingLLM()
    coordinator = _build_coordinator(tmp_path, llm, max_messages=3)
    for index in range(4):
        coordinator.memory.append_turn("conv", f"q{index}", f"a{index}")

    coordinator.respond("conv", "latest")

    prompt = llm.calls[0]
    assert prompt[0].content == SYSTEM_PROMPT
    assert [m.content for m in prompt[1:]] == ["q3", "a3", "latest"]
    assert [m.content for m in coordinator.memory.load_context("conv")] == ["a3", "latest", "recorded reply"]


@pytest.mark.parametrize(
    "conversation_id, message",
    [("", "hello"), ("   ", "hello"), ("conv", ""), ("conv", "  \n ")],
)
def test_blank_input_fails_before_store_or_model(tmp_path, conversation_id, message):
    llm = RecordingLLM()
    coordinator = _build_coordinator(tmp_path, llm)

    with pytest.raises(InvalidArgument):
        coordinator.respond(conversation_id, message)
    with pytest.raises(InvalidArgument):
        coordinator.stream(conversation_id, message)

    assert llm.calls == []
    assert coordinator.memory.store.get_messages(conversation_id) == []


def test_oversized_message_is_rejected(tmp_path):
    llm = RecordingLLM()
    coordinator = _build_coordinator(tmp_path, llm)

    with pytest.raises(InvalidArgument):
        coordinator.respond("conv", "x" * 4001)

    assert llm.calls == []


def test_upstream_failure_persists_nothing(tmp_path):
    coordinator = _build_coordinator(tmp_path, BrokenLLM())

    with pytest.raises(UpstreamFailure):
        coordinator.respond("conv", "hello")

    assert coordinator.memory.load_context("conv") == []


def test_empty_reply_is_an_upstream_failure(tmp_path):
    coordinator = _build_coordinator(tmp_path, RecordingLLM(reply="   "))

    with pytest.raises(UpstreamFailure):
        coordinator.respond("conv", "hello")

    assert coordinator.memory.load_context("conv") == []


def test_streamed_reply_is_persisted_after_completion(tmp_path):
    coordinator = _build_coordinator(tmp_path, RecordingLLM(reply="streamed answer here"))

    chunks = list(coordinator.stream("conv", "hello"))

    assert "".join(chunks) == "streamed answer here "
    context = coordinator.memory.load_context("conv")
    assert [m.content for m in context] == ["hello", "streamed answer here"]


def test_cancelled_stream_persists_nothing(tmp_path):
    coordinator = _build_coordinator(tmp_path, RecordingLLM(reply="one two three four"))

    stream = coordinator.stream("conv", "hello")
    assert next(stream) == "one "
    stream.close()

    assert coordinator.memory.load_context("conv") == []
    # the conversation lock was released, so the next turn goes through
    assert coordinator.respond("conv", "again") == "one two three four"


def test_failed_stream_persists_nothing(tmp_path):
    coordinator = _build_coordinator(tmp_path, BrokenLLM())

    stream = coordinator.stream("conv", "hello")
    assert next(stream) == "partial "
    with pytest.raises(UpstreamFailure):
        next(stream)

    assert coordinator.memory.load_context("conv") == []


def test_conversations_do_not_share_history(tmp_path):
    llm = RecordingLLM()
    coordinator = _build_coordinator(tmp_path, llm)

    coordinator.respond("alice", "secret from alice")
    coordinator.respond("bob", "hi from bob")

    bob_prompt = llm.calls[1]
    assert [m.content for m in bob_prompt[1:]] == ["hi from bob"]
    assert all("alice" not in m.content for m in coordinator.history("bob"))


def test_clear_starts_fresh_history(tmp_path):
    llm = RecordingLLM()
    coordinator = _build_coordinator(tmp_path, llm)
    coordinator.respond("conv", "remember me")

    coordinator.clear("conv")
    coordinator.respond("conv", "who am I?")

    assert [m.content for m in llm.calls[1][1:]] == ["who am I?"]


def test_streamed_and_plain_replies_are_stored_alike(tmp_path):
    coordinator = _build_coordinator(tmp_path, RecordingLLM(reply=" padded "))

    coordinator.respond("plain", "hello")
    list(coordinator.stream("streamed", "hello"))

    assert coordinator.history("plain")[-1].content == "padded"
    assert coordinator.history("streamed")[-1].content == "padded"


def test_open_stream_does_not_block_other_conversations(tmp_path):
    coordinator = _build_coordinator(tmp_path, RecordingLLM(reply="one two"), lock_timeout=0.2)
    stream = coordinator.stream("a", "hello")
    next(stream)

    assert coordinator.respond("b", "hi") == "one two"
    coordinator.clear("b")
    assert coordinator.history("b") == []
    stream.close()


def test_open_stream_makes_same_conversation_busy(tmp_path):
    llm = RecordingLLM(reply="one two")
    coordinator = _build_coordinator(tmp_path, llm, lock_timeout=0.2)
    stream = coordinator.stream("conv", "hello")
    next(stream)

    with pytest.raises(ConversationBusy):
        coordinator.respond("conv", "again")
    with pytest.raises(ConversationBusy):
        coordinator.clear("conv")
    assert len(llm.calls) == 1

    stream.close()
    coordinator.clear("conv")
    assert coordinator.respond("conv", "again") == "one two"


def test_same_conversation_turns_run_one_after_another(tmp_path):
    llm = RecordingLLM(reply="one two")
    coordinator = _build_coordinator(tmp_path, llm)
    stream = coordinator.stream("conv", "first")
    next(stream)

    errors = []

    def second_turn():
        try:
            coordinator.respond("conv", "second")
        except Exception as exc:  # pragma: no cover - surfaced by the assert below
            errors.append(exc)

    worker = threading.Thread(target=second_turn)
    worker.start()
    worker.join(timeout=0.3)
    assert worker.is_alive()

    list(stream)
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert errors == []
    assert [m.content for m in llm.calls[1][1:]] == ["first", "one two", "second"]
    assert [m.content for m in coordinator.history("conv")] == ["first", "one two", "second", "one two"]
