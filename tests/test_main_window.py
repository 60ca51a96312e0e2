import os
import threading
import time

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
os.environ["MESHLINK_HEADLESS"] = "1"

import numpy as np
import pytest
from PyQt5 import QtWidgets

from meshlink.logging_config import configure_logging
from meshlink.services import GeometryRegistry, TransportError
from meshlink.ui import MeshLinkWindow

configure_logging()

V = np.arange(12, dtype=np.float32)
F = np.array([0, 1, 2, 1, 2, 3], dtype=np.uint32)
V2 = V * 2


class FakeClient:
    """Stands in for the service client; every call blocks until ``gate`` is set."""

    def __init__(self):
        self.gate = threading.Event()
        self.gate.set()
        self.delay = 0.0
        self.clean_result = (V[:9], F[:3])
        self.clean_error = None
        self.closed = False

    def _hold(self):
        self.gate.wait(5)
        if self.delay:
            time.sleep(self.delay)

    def register_meshes(self, snapshots, voxel_size=None):
        self._hold()
        return {}

    def deform_mesh(self, mesh_id, snapshot, deformation_ratio=None, number_of_modes=None):
        self._hold()
        return V2, snapshot.faces

    def clean_mesh(self, mesh_id, snapshot):
        self._hold()
        if self.clean_error is not None:
            raise self.clean_error
        return self.clean_result

    def close(self):
        self.closed = True


@pytest.fixture(scope="module")
def app():
    return QtWidgets.QApplication.instance() or QtWidgets.QApplication([])


@pytest.fixture
def messages(monkeypatch):
    shown = []
    for kind in ("information", "warning", "critical"):
        monkeypatch.setattr(
            QtWidgets.QMessageBox,
            kind,
            lambda *args, kind=kind: shown.append((kind, args[2])),
        )
    return shown


@pytest.fixture
def window(app, messages):
    win = MeshLinkWindow(registry=GeometryRegistry(), client=FakeClient())
    win.add_geometry("m", V, F)
    yield win
    win.client.gate.set()
    win.close()
    win.deleteLater()
    app.processEvents()


def _wait_until_idle(app, window, timeout=5.0):
    deadline = time.monotonic() + timeout
    while window._inflight and time.monotonic() < deadline:
        app.processEvents()
        time.sleep(0.01)
    assert not window._inflight


def test_second_call_on_same_control_is_rejected(app, window, messages):
    window.client.gate.clear()
    window.on_deform()

    assert "deform" in window._inflight
    assert not window.deform_button.isEnabled()
    assert window._start_call("deform", "m", window.client.deform_mesh, "m", window.registry.get("m")) is False
    assert messages == [("information", "Deformation is already running. Please wait.")]

    window.client.gate.set()
    _wait_until_idle(app, window)

    assert window.registry.version("m") == 1
    assert window.deform_button.isEnabled()


def test_other_controls_may_run_alongside(app, window):
    window.client.gate.clear()
    window.on_deform()
    window.on_clean()

    assert set(window._inflight) == {"deform", "clean"}

    window.client.gate.set()
    _wait_until_idle(app, window)


def test_deformation_result_replaces_vertices_only(app, window, messages):
    window.on_deform()
    _wait_until_idle(app, window)

    snapshot, version = window.registry.get_versioned("m")
    assert version == 1
    np.testing.assert_array_equal(snapshot.vertices, V2)
    np.testing.assert_array_equal(snapshot.faces, F)
    assert window._rendered["m"] == (1, snapshot)
    assert "version 1" in window.info_label.text()
    assert messages == []


def test_cleaning_result_may_change_counts(app, window):
    window.on_clean()
    _wait_until_idle(app, window)

    snapshot, version = window.registry.get_versioned("m")
    assert version == 1
    assert snapshot.vertex_count == 3
    assert snapshot.face_count == 1
    assert window.info_label.text().startswith("3 vertices, 1 faces")


def test_result_for_removed_mesh_is_discarded(app, window, messages):
    window.client.gate.clear()
    window.on_clean()
    window.remove_selected()

    window.client.gate.set()
    _wait_until_idle(app, window)

    assert "m" not in window.registry
    assert window.registry.version("m") == 0
    assert "m" not in window._rendered
    assert messages == []


def test_service_failure_is_reported_and_geometry_kept(app, window, messages):
    window.client.clean_error = TransportError("Cleaning", 500, "boom")
    window.on_clean()
    _wait_until_idle(app, window)

    assert window.registry.version("m") == 0
    assert messages == [("critical", "Cleaning failed: Cleaning failed: 500 - boom")]


def test_invalid_result_is_reported_and_geometry_kept(app, window, messages):
    window.client.clean_result = (V[:9], F)
    window.on_clean()
    _wait_until_idle(app, window)

    assert window.registry.version("m") == 0
    assert window.registry.get("m").face_count == 2
    assert len(messages) == 1
    assert messages[0][0] == "critical"
    assert "Cleaning returned invalid geometry" in messages[0][1]


def test_close_waits_for_a_call_still_running(app, window):
    window.client.delay = 0.3
    window.on_deform()
    thread = window._inflight["deform"]["thread"]

    window.close()

    assert thread.isFinished()
    assert not window._inflight
    assert window.client.closed
    # The late result is not applied once the window is closing.
    assert window.registry.version("m") == 0
