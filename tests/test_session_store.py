import logging
import threading

import pytest

from session_module import ChatMessage, MessageRole, Session, SessionConfig, SessionStore


def _contents(session):
    return [m.content for m in session.messages]


def _converse(store, session_id, config, turns):
    for user, assistant in turns:
        session = store.get_or_create(session_id, config)
        session.add_user_message(user)
        store.update(session)
        session = store.get_or_create(session_id, config)
        session.add_assistant_message(assistant)
        store.update(session)
    return store.get(session_id)


TURNS = [("Q1", "A1"), ("Q2", "A2"), ("Q3", "A3")]


def test_single_turn_window_keeps_latest_pair(store):
    session = _converse(store, "a", SessionConfig(max_turns=1), TURNS)
    assert _contents(session) == ["Q3", "A3"]


def test_system_prompt_survives_trimming(store):
    session = _converse(store, "b", SessionConfig(max_turns=2, system_prompt="S"), TURNS)
    assert _contents(session) == ["S", "Q2", "A2", "Q3", "A3"]
    assert session.messages[0].role is MessageRole.SYSTEM


@pytest.mark.parametrize("max_turns", [1, 2, 3])
def test_non_system_messages_bounded_after_each_turn(store, max_turns):
    config = SessionConfig(max_turns=max_turns, system_prompt="sys")
    for i in range(8):
        session = _converse(store, "bounded", config, [(f"q{i}", f"a{i}")])
        non_system = [m for m in session.messages if m.role is not MessageRole.SYSTEM]
        assert len(non_system) <= 2 * max_turns
        assert [m.role for m in session.messages].count(MessageRole.SYSTEM) == 1
        assert session.messages[0].content == "sys"


def test_pending_user_message_kept_until_reply():
    session = Session.new("s", SessionConfig(max_turns=1))
    session.add_user_message("Q1")
    session.add_assistant_message("A1")
    session.add_user_message("Q2")
    assert _contents(session) == ["Q1", "A1", "Q2"]
    session.add_assistant_message("A2")
    assert _contents(session) == ["Q2", "A2"]


def test_zero_turns_drops_completed_turns():
    session = Session.new("s", SessionConfig(max_turns=0, system_prompt="S"))
    session.add_user_message("Q1")
    session.add_assistant_message("A1")
    assert _contents(session) == ["S"]


def test_clear_with_and_without_system_prompt():
    with_system = Session.new("s1", SessionConfig(system_prompt="S"))
    with_system.add_user_message("hi")
    with_system.add_assistant_message("hello")
    with_system.clear()
    assert _contents(with_system) == ["S"]

    without_system = Session.new("s2", SessionConfig())
    without_system.add_user_message("hi")
    without_system.clear()
    assert without_system.messages == []


def test_get_or_create_is_idempotent(store):
    config = SessionConfig(system_prompt="S")
    first = store.get_or_create("x", config)
    second = store.get_or_create("x", config)
    assert first.messages == second.messages
    assert first.id == second.id
    assert len(store) == 1


def test_concurrent_get_or_create_makes_one_session(store, caplog):
    caplog.set_level(logging.INFO, logger="session_module.store")
    config = SessionConfig(system_prompt="S")
    barrier = threading.Barrier(8)
    seen = []

    def worker(n):
        barrier.wait()
        session = store.get_or_create("x", config)
        session.add_user_message(f"q{n}")
        store.update(session)
        seen.append(session.id)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert len(store) == 1
    assert seen == ["x"] * 8
    stored = store.get("x")
    assert [m.role for m in stored.messages].count(MessageRole.SYSTEM) == 1
    assert 2 <= len(stored.messages) <= 9
    assert caplog.text.count("Created session x") == 1


def test_snapshots_are_isolated_until_update(store):
    session = store.get_or_create("x", SessionConfig())
    session.add_user_message("draft")
    assert store.get("x").messages == []

    store.update(session)
    session.add_assistant_message("not yet stored")
    assert _contents(store.get("x")) == ["draft"]


def test_get_missing_returns_none(store):
    assert store.get("nope") is None


def test_sync_round_trip(store):
    config = SessionConfig(max_turns=5)
    messages = [
        ChatMessage.user("Q1"),
        ChatMessage.assistant("A1"),
        ChatMessage.user("Q2"),
        ChatMessage.assistant("A2"),
    ]
    synced = store.sync("x", messages, config)
    assert synced.messages == messages
    assert store.get("x").messages == messages


def test_sync_trims_to_config(store):
    messages = []
    for i in range(4):
        messages += [ChatMessage.user(f"Q{i}"), ChatMessage.assistant(f"A{i}")]
    store.sync("x", messages, SessionConfig(max_turns=2))
    assert _contents(store.get("x")) == ["Q2", "A2", "Q3", "A3"]


def test_sync_replaces_existing_history(store):
    _converse(store, "x", SessionConfig(), [("old", "reply")])
    store.sync("x", [ChatMessage.user("fresh")], SessionConfig())
    assert _contents(store.get("x")) == ["fresh"]


def test_remove_and_clear_history(store):
    _converse(store, "x", SessionConfig(system_prompt="S"), [("q", "a")])

    assert store.clear_history("x") is True
    assert _contents(store.get("x")) == ["S"]

    assert store.remove("x") is True
    assert store.remove("x") is False
    assert store.clear_history("x") is False
    assert len(store) == 0


def test_list_sessions_newest_first(store):
    _converse(store, "first", SessionConfig(), [("q1", "a1")])
    store.get_or_create("second", SessionConfig(system_prompt="S"))
    summaries = store.list_sessions()
    assert [s["session_id"] for s in summaries] == ["second", "first"]
    assert summaries[0] == {"session_id": "second", "message_count": 1, "last_message": ""}
    assert summaries[1] == {"session_id": "first", "message_count": 2, "last_message": "a1"}


def test_negative_max_turns_rejected():
    with pytest.raises(ValueError):
        SessionConfig(max_turns=-1)


def test_message_dict_round_trip():
    message = ChatMessage.from_dict({"role": "assistant", "content": "hi"})
    assert message.role is MessageRole.ASSISTANT
    assert message.to_dict() == {"role": "assistant", "content": "hi"}
