import pytest

from src.projectline.domain.actions import ProposedAction, SuggestedAction
from src.projectline.domain.chat_models import ActionState
from src.projectline.infrastructure.conversation_store import (
    DEFAULT_TITLE,
    ConversationNotFound,
    InMemoryConversationStore,
    generate_title,
)


@pytest.fixture
def store():
    return InMemoryConversationStore()


def test_generate_title():
    assert generate_title("  Plan the launch  ") == "Plan the launch"
    assert generate_title("   ") == DEFAULT_TITLE
    long = "Please help me reorganise every overdue task across all of my client projects"
    title = generate_title(long)
    assert title.endswith("...")
    assert len(title) <= 53
    assert title == "Please help me reorganise every overdue task..."
    assert generate_title("x" * 60) == "x" * 50 + "..."


def test_first_user_message_titles_the_conversation(store):
    conv = store.create_conversation("org", "u1")
    assert conv.title == DEFAULT_TITLE
    store.add_message(conv.conversation_id, "user", "What is due this week?")
    store.add_message(conv.conversation_id, "user", "And next week?")
    assert store.get_conversation(conv.conversation_id).title == "What is due this week?"


def test_explicit_title_is_kept(store):
    conv = store.create_conversation("org", "u1", title="Roadmap")
    store.add_message(conv.conversation_id, "user", "hello")
    assert store.get_conversation(conv.conversation_id).title == "Roadmap"


def test_list_is_scoped_to_user_and_org(store):
    mine = store.create_conversation("org", "u1")
    store.create_conversation("org", "u2")
    store.create_conversation("other-org", "u1")
    assert [c.conversation_id for c in store.list_conversations("org", "u1")] == [mine.conversation_id]


def test_rename_and_delete(store):
    conv = store.create_conversation("org", "u1")
    store.add_message(conv.conversation_id, "user", "hi")
    assert store.rename_conversation(conv.conversation_id, " Weekly sync ").title == "Weekly sync"
    store.delete_conversation(conv.conversation_id)
    assert store.get_conversation(conv.conversation_id) is None
    assert store.list_messages(conv.conversation_id) == []
    with pytest.raises(ConversationNotFound):
        store.delete_conversation(conv.conversation_id)


def test_update_message_only_changes_action_state(store):
    conv = store.create_conversation("org", "u1")
    msg = store.add_message(
        conv.conversation_id,
        "assistant",
        "I can do that.",
        action=ActionState.pending(ProposedAction(type="delete_task", data={"taskId": "t1"})),
    )
    updated = store.update_message(
        conv.conversation_id,
        msg.message_id,
        action=msg.action.model_copy(update={"status": "success"}),
    )
    assert updated.action.status == "success"
    assert updated.content == "I can do that."
    with pytest.raises(ValueError):
        store.update_message(conv.conversation_id, msg.message_id, content="rewritten")


def test_returned_messages_are_copies(store):
    conv = store.create_conversation("org", "u1")
    msg = store.add_message(
        conv.conversation_id,
        "assistant",
        "ok",
        suggested_actions=[SuggestedAction(label="More", prompt="Tell me more")],
    )
    msg.suggested_actions.clear()
    assert len(store.get_message(conv.conversation_id, msg.message_id).suggested_actions) == 1


def test_delete_and_clear_messages(store):
    conv = store.create_conversation("org", "u1")
    first = store.add_message(conv.conversation_id, "user", "one")
    store.add_message(conv.conversation_id, "assistant", "two")
    store.delete_message(conv.conversation_id, first.message_id)
    assert [m.content for m in store.list_messages(conv.conversation_id)] == ["two"]
    assert store.get_message(conv.conversation_id, first.message_id) is None
    assert store.clear_messages(conv.conversation_id) == 1
    assert store.list_messages(conv.conversation_id) == []


def test_search_matches_titles_and_message_text(store):
    conv = store.create_conversation("org", "u1", title="Budget review")
    store.add_message(conv.conversation_id, "user", "Can you summarise the marketing budget for Q3?")
    other = store.create_conversation("org", "u2", title="Budget elsewhere")

    hits = store.search("org", "u1", "budget")
    assert {h.conversation.conversation_id for h in hits} == {conv.conversation_id}
    assert hits[0].message is None
    assert hits[0].snippet == "Budget review"
    assert "marketing budget" in hits[1].snippet
    assert hits[1].message.role == "user"

    assert store.search("org", "u1", "   ") == []
    assert other.conversation_id not in {h.conversation.conversation_id for h in store.search("org", "u1", "elsewhere")}


def test_search_limit(store):
    conv = store.create_conversation("org", "u1", title="x")
    for i in range(5):
        store.add_message(conv.conversation_id, "user", f"standup notes {i}")
    assert len(store.search("org", "u1", "standup", limit=3)) == 3
