from __future__ import annotations

import sqlite3

import pytest

from wellness_companion.errors import ValidationError
from wellness_companion.storage import preferences as preferences_module
from wellness_companion.storage.database import open_user_db
from wellness_companion.storage.preferences import PreferenceStore

from conftest import USER_ID


def test_first_access_creates_defaults() -> None:
    prefs = PreferenceStore(USER_ID).get_preferences()

    assert prefs.check_in_time == "09:00"
    assert prefs.timezone == "UTC"
    assert prefs.agent_name == "Wellness Companion"
    assert prefs.model_provider == "openai"
    with open_user_db(USER_ID) as conn:
        assert conn.execute("SELECT COUNT(*) FROM user_preferences").fetchone()[0] == 1


def test_getters_fall_back_to_defaults_without_row() -> None:
    store = PreferenceStore(USER_ID)
    assert store.get_agent_name() == "Wellness Companion"
    assert store.get_model_provider() == "openai"
    assert store.get_check_in_time() == "09:00"
    assert store.get_timezone() == "UTC"


def test_update_agent_name_trims_and_publishes(slot) -> None:
    store = PreferenceStore(USER_ID, slot)

    prefs = store.update_agent_name("  Sunny  ")

    assert prefs.agent_name == "Sunny"
    assert slot.state.preferences.agent_name == "Sunny"
    assert PreferenceStore(USER_ID).get_agent_name() == "Sunny"


@pytest.mark.parametrize("name", ["", "   ", "x" * 51])
def test_update_agent_name_rejects_invalid(name: str) -> None:
    with pytest.raises(ValidationError):
        PreferenceStore(USER_ID).update_agent_name(name)


def test_agent_name_of_fifty_characters_is_accepted() -> None:
    assert PreferenceStore(USER_ID).update_agent_name("y" * 50).agent_name == "y" * 50


def test_update_model_provider() -> None:
    store = PreferenceStore(USER_ID)
    assert store.update_model_provider("workers-ai").model_provider == "workers-ai"
    with pytest.raises(ValidationError):
        store.update_model_provider("anthropic")
    assert store.get_model_provider() == "workers-ai"


@pytest.mark.parametrize("value", ["25:99", "24:00", "12:60", "noon", "9"])
def test_invalid_check_in_time_leaves_previous_value(value: str) -> None:
    store = PreferenceStore(USER_ID)
    store.update_check_in_time("07:45")

    with pytest.raises(ValidationError):
        store.update_check_in_time(value)

    assert store.get_check_in_time() == "07:45"


@pytest.mark.parametrize("value", ["9:05", "00:00", "23:59"])
def test_valid_check_in_times(value: str) -> None:
    assert PreferenceStore(USER_ID).update_check_in_time(value).check_in_time == value


def test_update_timezone_validates_iana_names() -> None:
    store = PreferenceStore(USER_ID)
    assert store.update_timezone("Europe/Berlin").timezone == "Europe/Berlin"
    with pytest.raises(ValidationError):
        store.update_timezone("Mars/Olympus")
    assert store.get_timezone() == "Europe/Berlin"


def test_cached_state_is_read_before_database(slot) -> None:
    store = PreferenceStore(USER_ID, slot)
    store.update_agent_name("Cached")

    # A write behind the store's back is not seen while state holds a value
    with open_user_db(USER_ID) as conn:
        conn.execute("UPDATE user_preferences SET agent_name = 'Direct'")

    assert store.get_agent_name() == "Cached"
    assert PreferenceStore(USER_ID).get_agent_name() == "Direct"


def test_read_failure_degrades_to_default(monkeypatch) -> None:
    def _broken(user_id):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(preferences_module, "open_user_db", _broken)

    assert PreferenceStore(USER_ID).get_check_in_time() == "09:00"


def test_unexpected_read_error_degrades_to_default(monkeypatch) -> None:
    def _broken(conn):
        raise KeyError("agent_name")

    store = PreferenceStore(USER_ID)
    monkeypatch.setattr(store, "_read", _broken)

    assert store.get_agent_name() == "Wellness Companion"
    assert store.get_timezone() == "UTC"
