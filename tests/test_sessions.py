import threading

import pytest

from card_style import StyleParameters
from sessions import CONFIGURING, IDLE, ChatSession, SessionStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(ttl=60, clock=clock)


def test_get_creates_idle_session(store):
    session = store.get(42)
    assert session.step == IDLE
    assert session.image_bytes is None
    assert session.settings["themeColor"] == "#FFD700"
    assert 42 in store


def test_get_returns_same_session(store):
    store.get(1).prompt_text = "kept"
    assert store.get(1).prompt_text == "kept"


def test_expired_session_is_replaced_on_get(store, clock):
    store.update(1, prompt_text="old", step=CONFIGURING)
    clock.now += 61
    session = store.get(1)
    assert session.prompt_text == ""
    assert session.step == IDLE


def test_activity_extends_lifetime(store, clock):
    store.update(1, prompt_text="alive")
    clock.now += 50
    store.get(1)
    clock.now += 50
    assert store.get(1).prompt_text == "alive"


def test_reset_discards_state(store):
    store.update(1, image_bytes=b"img", prompt_text="p")
    store.reset(1)
    assert store.get(1).image_bytes is None


def test_update_rejects_unknown_field(store):
    with pytest.raises(AttributeError):
        store.update(1, colour="red")


def test_update_settings(store):
    session = store.update_settings(1, fontFamily="serif", showBorder=False)
    assert session.settings["fontFamily"] == "serif"
    assert session.settings["showBorder"] is False


def test_settings_are_not_shared_between_sessions(store):
    store.update_settings(1, model="None")
    assert store.get(2).settings["model"] == "Gemini"


def test_cleanup_evicts_only_idle_sessions(store, clock):
    store.get(1)
    clock.now += 30
    store.get(2)
    clock.now += 40
    assert store.cleanup() == 1
    assert 1 not in store
    assert 2 in store
    assert len(store) == 1


def test_set_replaces_session(store):
    store.set(5, ChatSession(prompt_text="preset"))
    assert store.get(5).prompt_text == "preset"


def test_len_and_contains_follow_store(store, clock):
    store.get(1)
    store.get(2)
    assert len(store) == 2
    assert 1 in store and 3 not in store

    clock.now += 61
    store.cleanup()
    assert len(store) == 0
    assert 1 not in store


def test_concurrent_access_from_threads():
    store = SessionStore(ttl=0)
    seen = []

    def worker(offset):
        for i in range(200):
            store.get(offset + i)
            seen.append(len(store))
            store.cleanup()

    threads = [threading.Thread(target=worker, args=(n * 1000,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(seen) == 800
    assert all(count >= 0 for count in seen)


def test_to_style_always_left_aligns():
    session = ChatSession(prompt_text="hello")
    session.settings.update({"alignment": "right", "model": "GPT-4", "fontFamily": "sans"})
    style = session.to_style()
    assert isinstance(style, StyleParameters)
    assert style.alignment == "left"
    assert style.prompt_text == "hello"
    assert style.model == "GPT-4"
    assert style.font_family == "sans"
