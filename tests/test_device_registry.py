import threading

from meterhub.services.device_registry import DeviceRegistry


class FakeConnection:
    def __init__(self, connection_id):
        self.id = connection_id


def test_register_then_remove_by_connection():
    registry = DeviceRegistry()
    conn = FakeConnection("c1")

    entry = registry.register("meter-0001", "Kitchen meter", conn, now=1000)

    assert entry.device_id == "meter-0001"
    assert registry.snapshot() == [
        {"device_id": "meter-0001", "name": "Kitchen meter", "connected_at": 1000, "last_reading": None}
    ]

    removed = registry.remove_by_connection(conn)
    assert [e.device_id for e in removed] == ["meter-0001"]
    assert registry.snapshot() == []
    assert registry.remove_by_connection(conn) == []


def test_display_name_defaults_to_prefix_of_device_id():
    registry = DeviceRegistry()
    entry = registry.register("abcdef0123456789", None, FakeConnection("c1"))
    assert entry.display_name == "Device abcdef01"


def test_device_id_defaults_to_connection_identity():
    registry = DeviceRegistry()
    entry = registry.register(None, None, FakeConnection("0123456789abcdef"))
    assert entry.device_id == "0123456789abcdef"
    assert entry.display_name == "Device 01234567"


def test_reregistering_replaces_the_entry():
    registry = DeviceRegistry()
    first, second = FakeConnection("c1"), FakeConnection("c2")

    registry.register("meter-1", "Old name", first, now=1)
    registry.register("meter-1", "New name", second, now=2)

    snapshot = registry.snapshot()
    assert len(snapshot) == 1
    assert snapshot[0]["name"] == "New name"
    assert snapshot[0]["connected_at"] == 2

    # The stale connection closing must not evict the newer registration.
    assert registry.remove_by_connection(first) == []
    assert len(registry) == 1
    assert [e.device_id for e in registry.remove_by_connection(second)] == ["meter-1"]


def test_same_connection_registering_a_new_id_drops_the_old_one():
    registry = DeviceRegistry()
    conn = FakeConnection("c1")

    registry.register("meter-1", None, conn)
    registry.register("meter-2", None, conn)

    assert [d["device_id"] for d in registry.snapshot()] == ["meter-2"]


def test_note_reading_only_updates_connected_devices():
    registry = DeviceRegistry()
    registry.register("meter-1", None, FakeConnection("c1"))

    assert registry.note_reading({"ts": 5, "value": 1, "device_id": "meter-1"})
    assert not registry.note_reading({"ts": 5, "value": 1, "device_id": "ghost"})
    assert registry.get("meter-1").last_reading == {"ts": 5, "value": 1, "device_id": "meter-1"}


def test_concurrent_register_and_remove_leave_consistent_state():
    registry = DeviceRegistry()
    connections = [FakeConnection(f"c{i}") for i in range(50)]

    def churn(conn):
        for _ in range(20):
            registry.register(f"dev-{conn.id}", None, conn)
            registry.remove_by_connection(conn)
        registry.register(f"dev-{conn.id}", None, conn)

    threads = [threading.Thread(target=churn, args=(conn,)) for conn in connections]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    snapshot = registry.snapshot()
    assert len(snapshot) == 50
    assert len({d["device_id"] for d in snapshot}) == 50
