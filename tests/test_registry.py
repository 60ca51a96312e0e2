import numpy as np
import pytest

from meshlink.logging_config import configure_logging
from meshlink.services import GeometryRegistry

configure_logging()

V = np.arange(12, dtype=np.float32)
F = np.array([0, 1, 2, 1, 2, 3], dtype=np.uint32)
V2 = V * 2


@pytest.fixture
def registry():
    reg = GeometryRegistry()
    reg.register("m", V, F)
    return reg


def test_register_starts_at_version_zero(registry):
    assert registry.version("m") == 0
    snapshot = registry.get("m")
    np.testing.assert_array_equal(snapshot.vertices, V)
    np.testing.assert_array_equal(snapshot.faces, F)
    assert snapshot.vertex_count == 4
    assert snapshot.face_count == 2


def test_unknown_id_has_version_zero_and_no_snapshot():
    registry = GeometryRegistry()
    assert registry.version("nothing") == 0
    assert registry.get("nothing") is None
    assert "nothing" not in registry


def test_update_vertices_keeps_faces_and_bumps_version(registry):
    assert registry.update_vertices("m", V2) is True

    assert registry.version("m") == 1
    np.testing.assert_array_equal(registry.get("m").vertices, V2)
    np.testing.assert_array_equal(registry.get("m").faces, F)


def test_update_full_replaces_both_buffers(registry):
    registry.update_vertices("m", V2)
    assert registry.update_full("m", V[:9], F[:3]) is True

    assert registry.version("m") == 2
    assert registry.get("m").vertex_count == 3
    assert registry.get("m").faces.tolist() == [0, 1, 2]


def test_update_unknown_id_is_a_noop(registry):
    before = registry.get_all()

    assert registry.update_vertices("missing", V2) is False
    assert registry.update_full("missing", V2, F) is False

    assert "missing" not in registry
    assert registry.version("missing") == 0
    assert registry.get_all() == before
    assert len(registry) == 1


def test_reregister_resets_version(registry):
    registry.update_vertices("m", V2)
    registry.update_vertices("m", V)
    registry.register("m", V2, F)

    assert registry.version("m") == 0
    np.testing.assert_array_equal(registry.get("m").vertices, V2)


def test_evict_resets_to_unregistered(registry):
    registry.update_vertices("m", V2)

    assert registry.evict("m") is True

    assert registry.version("m") == 0
    assert registry.get("m") is None
    assert registry.evict("m") is False


def test_evict_all():
    registry = GeometryRegistry()
    registry.register("a", V, F)
    registry.register("b", V, F)
    registry.update_vertices("b", V2)

    registry.evict_all()

    assert len(registry) == 0
    assert registry.version("b") == 0
    assert registry.ids() == []


def test_snapshots_are_read_only_copies(registry):
    source = V.copy()
    registry.register("copy", source, F)
    source[0] = 100.0

    snapshot = registry.get("copy")
    assert snapshot.vertices[0] == 0.0
    with pytest.raises(ValueError):
        snapshot.vertices[0] = 5.0


def test_update_replaces_snapshot_object(registry):
    first = registry.get("m")
    registry.update_vertices("m", V2)

    assert registry.get("m") is not first
    np.testing.assert_array_equal(first.vertices, V)


def test_invalid_geometry_is_rejected(registry):
    with pytest.raises(ValueError):
        registry.register("bad", V[:4], F)
    with pytest.raises(ValueError):
        registry.update_full("m", V[:6], F)

    assert "bad" not in registry
    assert registry.version("m") == 0


def test_vertex_update_that_breaks_faces_is_rejected(registry):
    with pytest.raises(ValueError):
        registry.update_vertices("m", V[:6])

    assert registry.version("m") == 0


def test_subscribers_are_notified(registry):
    events = []
    registry.subscribe(lambda mesh_id, version: events.append((mesh_id, version)))

    registry.update_vertices("m", V2)
    registry.update_full("m", V, F)
    registry.update_vertices("missing", V2)
    registry.evict("m")

    assert events == [("m", 1), ("m", 2), ("m", 0)]


def test_unsubscribe_stops_notifications(registry):
    events = []

    def listener(mesh_id, version):
        events.append(version)

    registry.subscribe(listener)
    registry.unsubscribe(listener)
    registry.update_vertices("m", V2)

    assert events == []


def test_get_all_is_detached_from_registry(registry):
    everything = registry.get_all()
    everything.clear()

    assert "m" in registry


def test_get_versioned_reads_snapshot_and_version_together(registry):
    registry.update_vertices("m", V2)

    snapshot, version = registry.get_versioned("m")

    assert version == 1
    assert snapshot is registry.get("m")
    np.testing.assert_array_equal(snapshot.vertices, V2)
    assert registry.get_versioned("missing") == (None, 0)


def test_versioned_items_covers_every_mesh(registry):
    registry.register("other", V, F)
    registry.update_full("m", V[:9], F[:3])

    items = registry.versioned_items()

    assert sorted(items) == ["m", "other"]
    assert items["m"][1] == 1
    assert items["m"][0].face_count == 1
    assert items["other"][1] == 0
