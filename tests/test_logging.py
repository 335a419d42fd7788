import logging

from src.projectline import EventFormatter


def _record(**extra):
    fields = {"name": "projectline.actions", "levelname": "INFO", "levelno": logging.INFO, "msg": "action_executed"}
    fields.update(extra)
    return logging.makeLogRecord(fields)


def test_extra_fields_follow_the_event():
    line = EventFormatter().format(_record(type="create_task", success=True))
    assert line == "[PROJECTLINE][INFO] projectline.actions: action_executed type=create_task success=True"


def test_plain_event():
    assert EventFormatter().format(_record()) == "[PROJECTLINE][INFO] projectline.actions: action_executed"


def test_private_attributes_are_hidden():
    line = EventFormatter().format(_record(_internal="x", user_id="u1"))
    assert line.endswith("action_executed user_id=u1")
