from src.projectline.services.response_parser import parse_chat_response


def test_plain_text_is_returned_unchanged():
    text = "You have three overdue tasks.\nWant me to help?"
    res = parse_chat_response(text)
    assert res.content == text
    assert res.action is None
    assert res.actions is None
    assert res.suggested_actions is None


def test_single_action_is_extracted_and_stripped():
    text = 'I can create that task for you.\nACTION_JSON: {"type": "create_task", "data": {"title": "Write report", "projectId": "p1"}}'
    res = parse_chat_response(text)
    assert res.content == "I can create that task for you."
    assert res.action is not None
    assert res.action.type == "create_task"
    assert res.action.data == {"title": "Write report", "projectId": "p1"}
    assert res.actions is None


def test_multi_action_wins_over_single_action():
    text = (
        "Here is the plan.\n"
        'ACTIONS_JSON: [{"type": "create_project", "data": {"name": "Site"}}, '
        '{"type": "create_task", "data": {"title": "Wireframes", "projectId": "$NEW_PROJECT_ID"}}]'
    )
    res = parse_chat_response(text)
    assert res.content == "Here is the plan."
    assert [a.type for a in res.actions] == ["create_project", "create_task"]
    assert res.actions[1].data["projectId"] == "$NEW_PROJECT_ID"
    assert res.action is None


def test_multi_line_actions_payload():
    text = (
        "Setting things up.\n"
        "ACTIONS_JSON: [\n"
        '  {"type": "create_client", "data": {"name": "Acme"}},\n'
        '  {"type": "create_project", "data": {"name": "Acme Web", "clientId": "$NEW_CLIENT_ID"}}\n'
        "]"
    )
    res = parse_chat_response(text)
    assert res.content == "Setting things up."
    assert len(res.actions) == 2


def test_nested_arrays_in_action_data():
    text = 'Done.\nACTIONS_JSON: [{"type": "create_note", "data": {"title": "Tags", "projectId": "p1", "tags": ["a", "b"]}}]'
    res = parse_chat_response(text)
    assert res.actions[0].data["tags"] == ["a", "b"]
    assert res.content == "Done."


def test_suggestions_are_extracted_alongside_action():
    text = (
        "Here are your tasks.\n"
        'ACTION_JSON: {"type": "update_task", "data": {"taskId": "t1", "status": "done"}}\n'
        'SUGGESTED_ACTIONS: [{"label": "Show overdue", "prompt": "Show my overdue tasks"}]'
    )
    res = parse_chat_response(text)
    assert res.content == "Here are your tasks."
    assert res.action.type == "update_task"
    assert res.suggested_actions[0].label == "Show overdue"
    assert res.suggested_actions[0].prompt == "Show my overdue tasks"


def test_malformed_single_action_is_stripped_without_action():
    text = 'Let me do that.\nACTION_JSON: {"type": "create_task", "data": {oops}}'
    res = parse_chat_response(text)
    assert res.action is None
    assert "ACTION_JSON" not in res.content
    assert res.content == "Let me do that."


def test_malformed_multi_action_falls_back_to_single_action():
    text = (
        "Working on it.\n"
        "ACTIONS_JSON: [not json]\n"
        'ACTION_JSON: {"type": "delete_task", "data": {"taskId": "t9"}}'
    )
    res = parse_chat_response(text)
    assert res.actions is None
    assert res.action.type == "delete_task"
    assert "ACTIONS_JSON: [not json]" in res.content


def test_malformed_suggestions_leave_content_untouched():
    text = "All good.\nSUGGESTED_ACTIONS: [{label: nope}]"
    res = parse_chat_response(text)
    assert res.suggested_actions is None
    assert res.content == text


def test_marker_must_end_its_line():
    text = 'ACTION_JSON: {"type": "create_task", "data": {}} is what I would send.'
    res = parse_chat_response(text)
    assert res.action is None
    assert res.content == text


def test_items_without_string_type_are_dropped():
    text = 'Ok.\nACTIONS_JSON: [{"type": 3, "data": {}}, {"data": {}}, {"type": "delete_task", "data": {"taskId": "t1"}}]'
    res = parse_chat_response(text)
    assert [a.type for a in res.actions] == ["delete_task"]


def test_unknown_action_type_survives_parsing():
    res = parse_chat_response('Ok.\nACTION_JSON: {"type": "launch_rocket", "data": {}}')
    assert res.action.type == "launch_rocket"


def test_action_without_data_gets_empty_mapping():
    res = parse_chat_response('Ok.\nACTION_JSON: {"type": "delete_task"}')
    assert res.action.data == {}


def test_empty_input():
    res = parse_chat_response("")
    assert res.content == ""
    assert res.action is None
