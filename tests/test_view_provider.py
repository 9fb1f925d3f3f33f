import pytest

from core.view_provider import RemindersViewProvider, reminder_view
from world.reminder import ReminderState


@pytest.fixture
def posted():
    return []


@pytest.fixture
def provider(make_manager, posted):
    return RemindersViewProvider(make_manager(), posted.append)


def last_update(posted):
    updates = [m for m in posted if m["type"] == "updateReminders"]
    assert updates, "没有收到 updateReminders"
    return updates[-1]


def test_attach_posts_initial_snapshot(provider, posted):
    provider.attach()
    assert provider.attached
    assert posted == [{
        "type": "updateReminders",
        "reminders": [],
        "stats": {"total": 0, "active": 0, "paused": 0, "snoozed": 0},
    }]


def test_add_message_updates_view(provider, posted, clock):
    provider.attach()
    provider.handle_message({"type": "addReminder", "text": "Drink water", "intervalMinutes": 0.5})

    update = last_update(posted)
    assert update["stats"]["total"] == 1
    item = update["reminders"][0]
    assert item["text"] == "Drink water"
    assert item["isActive"] is True
    assert item["isPaused"] is False
    assert item["timeUntilTrigger"] == 30_000


def test_add_invalid_posts_error(provider, posted):
    provider.attach()
    posted.clear()
    provider.handle_message({"type": "addReminder", "text": "Drink water", "intervalMinutes": 0})
    assert posted == [{"type": "error", "message": "Interval must be greater than zero."}]


def test_toggle_and_delete(provider, posted):
    provider.attach()
    provider.handle_message({"type": "addReminder", "text": "Stretch", "intervalMinutes": 10})
    rid = last_update(posted)["reminders"][0]["id"]

    provider.handle_message({"type": "toggleReminder", "id": rid})
    item = last_update(posted)["reminders"][0]
    assert item["state"] == ReminderState.PAUSED.value
    assert item["nextTriggerTime"] is None
    assert item["timeUntilTrigger"] is None

    provider.handle_message({"type": "deleteReminder", "id": rid})
    assert last_update(posted)["reminders"] == []


def test_unknown_id_posts_error(provider, posted):
    provider.attach()
    posted.clear()
    provider.handle_message({"type": "toggleReminder", "id": "nope"})
    provider.handle_message({"type": "deleteReminder", "id": "nope"})
    assert posted == [{"type": "error", "message": "Reminder not found."}] * 2


def test_get_reminders_resends_snapshot(provider, posted):
    provider.attach()
    provider.handle_message({"type": "getReminders"})
    assert len(posted) == 2
    assert posted[0] == posted[1]


def test_unknown_and_malformed_messages_ignored(provider, posted):
    provider.attach()
    posted.clear()
    provider.handle_message({"type": "launchRocket"})
    provider.handle_message(["not", "a", "dict"])
    assert posted == []


def test_detach_stops_updates(make_manager, posted):
    manager = make_manager()
    provider = RemindersViewProvider(manager, posted.append)
    provider.attach()
    provider.detach()
    posted.clear()

    manager.add("Stretch", 10)
    assert posted == []
    assert not provider.attached


def test_failing_post_does_not_break_manager(make_manager):
    def explode(message):
        raise ConnectionError("view closed")

    manager = make_manager()
    RemindersViewProvider(manager, explode).attach()
    assert manager.add("Stretch", 10).success


def test_reminder_view_fields(make_manager, clock):
    manager = make_manager()
    r = manager.add("Stretch", 10).reminder
    manager.snooze(r.id, 1)

    view = reminder_view(r, clock.now_ms())
    assert view["isSnoozed"] is True
    assert view["isActive"] is True
    assert view["timeUntilTrigger"] == 60_000
    assert view["intervalMinutes"] == 10
