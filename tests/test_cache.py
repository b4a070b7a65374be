from cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_entries_expire():
    clock = FakeClock()
    cache = TTLCache(default_duration=30, clock=clock)
    cache.set("menu", ["idli"])

    clock.now += 30
    assert cache.get("menu") == ["idli"]
    clock.now += 1
    assert cache.get("menu") is None


def test_per_entry_duration():
    clock = FakeClock()
    cache = TTLCache(clock=clock)
    cache.set("short", 1, duration=5)
    clock.now += 6
    assert cache.get("short") is None


def test_get_or_load_calls_loader_once():
    calls = []
    cache = TTLCache(clock=FakeClock())

    def loader():
        calls.append(1)
        return {"items": 3}

    assert cache.get_or_load("k", loader) == {"items": 3}
    assert cache.get_or_load("k", loader) == {"items": 3}
    assert len(calls) == 1


def test_remove_and_clear():
    cache = TTLCache(clock=FakeClock())
    cache.set("a", 1)
    cache.set("b", 2)
    cache.remove("a")
    cache.remove("missing")
    assert cache.get("a") is None
    cache.clear()
    assert cache.get("b") is None
