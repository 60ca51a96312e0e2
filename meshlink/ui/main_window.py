import logging
import math
import os

import numpy as np
from PyQt5 import QtCore, QtWidgets

from meshlink.config import ServiceSettings, headless_requested
from meshlink.services import (
    GeometryRegistry,
    IDENTITY_COLUMN_MAJOR,
    MeshOperationError,
    MeshServiceClient,
    load_geometry,
    mesh_color,
    polydata_from_geometry,
    save_geometry,
    to_row_major,
)
from meshlink.ui.workers import RemoteCallWorker

logger = logging.getLogger(__name__)

SYNC_INTERVAL_MS = 200

_CONTROL_LABELS = {
    "register": "Registration",
    "deform": "Deformation",
    "clean": "Cleaning",
}


class _DummyProperty:
    def __init__(self):
        self.opacity = 1.0

    def SetOpacity(self, opacity):
        self.opacity = opacity


class _DummyActor:
    def __init__(self):
        self.visible = True
        self.user_matrix = np.eye(4)
        self._property = _DummyProperty()

    def SetVisibility(self, visible):
        self.visible = visible

    def GetProperty(self):
        return self._property


class HeadlessPlotter:
    def __init__(self, parent=None):
        self.interactor = QtWidgets.QLabel("Headless Plotter", parent)
        self.interactor.setAlignment(QtCore.Qt.AlignCenter)
        self.actors = {}

    def add_axes(self):
        pass

    def add_text(self, text, **kwargs):
        self.interactor.setText(text)

    def add_mesh(self, mesh, name=None, **kwargs):
        actor = _DummyActor()
        if name:
            self.actors[name] = actor
        return actor

    def remove_actor(self, name, render=True):
        self.actors.pop(name, None)

    def reset_camera(self):
        pass

    def render(self):
        pass


class _ViewportEventFilter(QtCore.QObject):
    """Drives orbit/pan/zoom on the first plotter and re-renders the linked ones."""

    def __init__(self, plotter):
        super().__init__()
        self._plotters = [plotter]
        self._drag_mode = None
        self._last_pos = None

    def set_linked_plotters(self, plotters):
        if plotters:
            self._plotters = list(plotters)

    def eventFilter(self, obj, event):
        etype = event.type()
        if etype == QtCore.QEvent.MouseButtonPress:
            mode = {QtCore.Qt.LeftButton: 'orbit', QtCore.Qt.RightButton: 'pan'}.get(event.button())
            if mode is not None:
                self._drag_mode = mode
                self._last_pos = event.pos()
                return True
        elif etype == QtCore.QEvent.MouseMove and self._drag_mode is not None:
            current = event.pos()
            dx = current.x() - self._last_pos.x()
            dy = current.y() - self._last_pos.y()
            if dx or dy:
                if self._drag_mode == 'orbit':
                    self._apply(self._orbit, dx, dy)
                else:
                    self._apply(self._pan, dx, dy)
            self._last_pos = current
            return True
        elif etype == QtCore.QEvent.MouseButtonRelease and self._drag_mode is not None:
            self._drag_mode = None
            self._last_pos = None
            return True
        elif etype == QtCore.QEvent.Wheel:
            delta = event.angleDelta().y()
            if delta:
                factor = 1.0 + max(abs(delta) / 240.0, 0.1)
                self._apply(self._dolly, factor if delta > 0 else 1.0 / factor)
                return True
        return False

    def _apply(self, action, *args):
        primary = self._plotters[0]
        camera = getattr(primary, 'camera', None)
        renderer = getattr(primary, 'renderer', None)
        if camera is None or renderer is None:
            return
        try:
            action(camera, *args)
        except (ValueError, ZeroDivisionError):
            return
        for plotter in self._plotters:
            plotter.renderer.ResetCameraClippingRange()
            plotter.render()

    @staticmethod
    def _dolly(camera, factor):
        if not math.isfinite(factor) or factor <= 0:
            raise ValueError(factor)
        camera.Dolly(min(max(factor, 1.0 / 1.4), 1.4))

    @staticmethod
    def _orbit(camera, dx, dy):
        camera.Azimuth(-dx * 0.4)
        camera.Elevation(dy * 0.4)
        camera.OrthogonalizeViewUp()

    @staticmethod
    def _pan(camera, dx, dy):
        focal = np.array(camera.focal_point)
        position = np.array(camera.position)
        up = np.array(camera.up)
        direction = np.array(camera.direction)
        right = np.cross(direction, up)
        norms = [np.linalg.norm(v) for v in (direction, up, right)]
        if min(norms) == 0:
            raise ValueError("degenerate camera basis")
        up = up / norms[1]
        right = right / norms[2]
        gain = np.linalg.norm(position - focal) * 0.002
        translation = (-dx * gain) * right + (dy * gain) * up
        camera.focal_point = (focal + translation).tolist()
        camera.position = (position + translation).tolist()


class MeshLinkWindow(QtWidgets.QMainWindow):
    def __init__(self, registry=None, client=None, settings=None):
        super().__init__()
        self.setWindowTitle("MeshLink")
        self.setGeometry(100, 100, 1400, 850)

        self.settings = settings or ServiceSettings.from_env()
        # The window is the composition root: it owns the registry and hands it out.
        self.registry = registry if registry is not None else GeometryRegistry()
        self.client = client or MeshServiceClient(self.settings)
        self.headless_mode = headless_requested()

        self._transforms = {}
        self._colors = {}
        self._rendered = {}
        self._inflight = {}
        self._event_filters = []
        self._log_path = self._resolve_log_path()

        self.setup_ui()
        self.connect_signals()

        self._sync_timer = QtCore.QTimer(self)
        self._sync_timer.setInterval(SYNC_INTERVAL_MS)
        self._sync_timer.timeout.connect(self.sync_viewports)
        self._sync_timer.start()

        self._refresh_controls_enabled()
        logger.info("MeshLinkWindow initialized")

    def setup_ui(self):
        self.status_bar = self.statusBar()
        self.main_tabs = QtWidgets.QTabWidget()
        self.setCentralWidget(self.main_tabs)

        self.workspace_root = QtWidgets.QWidget()
        workspace_layout = QtWidgets.QHBoxLayout(self.workspace_root)
        self.main_tabs.addTab(self.workspace_root, "Meshes")

        self.control_panel = QtWidgets.QGroupBox("Controls")
        self.control_panel.setFixedWidth(350)
        self.control_layout = QtWidgets.QVBoxLayout(self.control_panel)
        workspace_layout.addWidget(self.control_panel)

        # Meshes
        meshes_group = QtWidgets.QGroupBox("Meshes")
        meshes_layout = QtWidgets.QVBoxLayout(meshes_group)
        self.mesh_list = QtWidgets.QListWidget()
        meshes_layout.addWidget(self.mesh_list)
        mesh_buttons = QtWidgets.QHBoxLayout()
        self.load_button = QtWidgets.QPushButton("Load...")
        self.remove_button = QtWidgets.QPushButton("Remove")
        self.clear_button = QtWidgets.QPushButton("Clear All")
        self.export_button = QtWidgets.QPushButton("Export...")
        for button in (self.load_button, self.remove_button, self.clear_button, self.export_button):
            mesh_buttons.addWidget(button)
        meshes_layout.addLayout(mesh_buttons)
        self.control_layout.addWidget(meshes_group)

        # Registration
        registration_group = QtWidgets.QGroupBox("Registration")
        registration_layout = QtWidgets.QFormLayout(registration_group)
        self.voxel_size_spin = QtWidgets.QDoubleSpinBox()
        self.voxel_size_spin.setDecimals(3)
        self.voxel_size_spin.setRange(0.001, 100.0)
        self.voxel_size_spin.setSingleStep(0.01)
        self.voxel_size_spin.setValue(self.settings.voxel_size)
        registration_layout.addRow("Voxel size:", self.voxel_size_spin)
        self.register_button = QtWidgets.QPushButton("Register All")
        registration_layout.addRow(self.register_button)
        registration_note = QtWidgets.QLabel("Aligns every loaded mesh; results appear in the right view.")
        registration_note.setWordWrap(True)
        registration_note.setStyleSheet("color: #555; font-size: 11px;")
        registration_layout.addRow(registration_note)
        self.control_layout.addWidget(registration_group)

        # Deformation
        deformation_group = QtWidgets.QGroupBox("Deformation")
        deformation_layout = QtWidgets.QFormLayout(deformation_group)
        self.deformation_ratio_spin = QtWidgets.QDoubleSpinBox()
        self.deformation_ratio_spin.setDecimals(3)
        self.deformation_ratio_spin.setRange(0.0, 10.0)
        self.deformation_ratio_spin.setSingleStep(0.01)
        self.deformation_ratio_spin.setValue(self.settings.deformation_ratio)
        deformation_layout.addRow("Deformation ratio:", self.deformation_ratio_spin)
        self.modes_spin = QtWidgets.QSpinBox()
        self.modes_spin.setRange(1, 1000)
        self.modes_spin.setValue(self.settings.number_of_modes)
        deformation_layout.addRow("Number of modes:", self.modes_spin)
        self.deform_button = QtWidgets.QPushButton("Deform Selected")
        deformation_layout.addRow(self.deform_button)
        self.control_layout.addWidget(deformation_group)

        # Cleaning
        cleaning_group = QtWidgets.QGroupBox("Cleaning")
        cleaning_layout = QtWidgets.QVBoxLayout(cleaning_group)
        self.clean_button = QtWidgets.QPushButton("Clean Selected")
        cleaning_layout.addWidget(self.clean_button)
        self.control_layout.addWidget(cleaning_group)

        # Display
        display_group = QtWidgets.QGroupBox("Display")
        display_layout = QtWidgets.QFormLayout(display_group)
        self.visibility_checkbox = QtWidgets.QCheckBox("Show")
        self.visibility_checkbox.setChecked(True)
        self.opacity_slider = QtWidgets.QSlider(QtCore.Qt.Horizontal)
        self.opacity_slider.setRange(0, 100)
        self.opacity_slider.setValue(100)
        selected_row = QtWidgets.QHBoxLayout()
        selected_row.addWidget(self.visibility_checkbox)
        selected_row.addWidget(self.opacity_slider)
        display_layout.addRow("Selected:", selected_row)
        self.info_label = QtWidgets.QLabel("-")
        self.info_label.setWordWrap(True)
        display_layout.addRow("Geometry:", self.info_label)
        self.link_views_checkbox = QtWidgets.QCheckBox("Link views")
        self.link_views_checkbox.setChecked(True)
        self.reset_view_button = QtWidgets.QPushButton("Reset View")
        view_row = QtWidgets.QHBoxLayout()
        view_row.addWidget(self.link_views_checkbox)
        view_row.addWidget(self.reset_view_button)
        display_layout.addRow(view_row)
        self.control_layout.addWidget(display_group)
        self.control_layout.addStretch(1)

        # Viewports
        self.view_container = QtWidgets.QWidget()
        view_layout = QtWidgets.QHBoxLayout(self.view_container)
        workspace_layout.addWidget(self.view_container, 1)

        self.loaded_plotter = self.create_plotter(self.view_container)
        self.aligned_plotter = self.create_plotter(self.view_container)
        for plotter, label in ((self.loaded_plotter, "As loaded"), (self.aligned_plotter, "Aligned")):
            view_layout.addWidget(plotter.interactor)
            plotter.add_axes()
            plotter.add_text(label, position='upper_left', font_size=12)
        self._link_views()

        # Debug
        self.debug_root = QtWidgets.QWidget()
        debug_layout = QtWidgets.QVBoxLayout(self.debug_root)
        debug_layout.setContentsMargins(12, 12, 12, 12)
        debug_layout.setSpacing(8)
        debug_header = QtWidgets.QLabel("Application log")
        debug_header.setStyleSheet("font-weight: bold; font-size: 14px;")
        debug_layout.addWidget(debug_header)
        controls_row = QtWidgets.QHBoxLayout()
        self.debug_refresh_button = QtWidgets.QPushButton("Refresh")
        self.debug_clear_button = QtWidgets.QPushButton("Clear")
        controls_row.addWidget(self.debug_refresh_button)
        controls_row.addWidget(self.debug_clear_button)
        controls_row.addStretch(1)
        debug_layout.addLayout(controls_row)
        self.debug_console = QtWidgets.QPlainTextEdit()
        self.debug_console.setReadOnly(True)
        self.debug_console.setLineWrapMode(QtWidgets.QPlainTextEdit.NoWrap)
        self.debug_console.setStyleSheet("font-family: Menlo, Consolas, monospace; font-size: 12px;")
        debug_layout.addWidget(self.debug_console, 1)
        self.debug_status_label = QtWidgets.QLabel()
        self.debug_status_label.setStyleSheet("color: #777; font-size: 11px;")
        debug_layout.addWidget(self.debug_status_label)
        self.main_tabs.addTab(self.debug_root, "Debug")

    def create_plotter(self, parent):
        if self.headless_mode:
            return HeadlessPlotter(parent)
        from pyvistaqt import QtInteractor

        plotter = QtInteractor(parent)
        event_filter = _ViewportEventFilter(plotter)
        plotter.interactor.installEventFilter(event_filter)
        setattr(plotter, "_viewport_event_filter", event_filter)
        self._event_filters.append(event_filter)
        return plotter

    def _link_views(self):
        if self.headless_mode:
            return
        plotters = [self.loaded_plotter, self.aligned_plotter]
        enabled = self.link_views_checkbox.isChecked()
        if enabled:
            self.loaded_plotter.link_views_across_plotters(plotters)
        else:
            for plotter in plotters:
                plotter.unlink_views()
        for plotter in plotters:
            event_filter = getattr(plotter, "_viewport_event_filter", None)
            if event_filter is not None:
                event_filter.set_linked_plotters(plotters if enabled else [plotter])

    def connect_signals(self):
        self.load_button.clicked.connect(self.load_model)
        self.remove_button.clicked.connect(self.remove_selected)
        self.clear_button.clicked.connect(self.clear_all)
        self.export_button.clicked.connect(self.export_selected)
        self.register_button.clicked.connect(self.on_register)
        self.deform_button.clicked.connect(self.on_deform)
        self.clean_button.clicked.connect(self.on_clean)
        self.mesh_list.currentItemChanged.connect(lambda *_: self._on_selection_changed())
        self.visibility_checkbox.toggled.connect(self.set_selected_visibility)
        self.opacity_slider.valueChanged.connect(lambda value: self.set_selected_opacity(value / 100.0))
        self.link_views_checkbox.stateChanged.connect(lambda *_: self._link_views())
        self.reset_view_button.clicked.connect(self.reset_camera_view)
        self.debug_refresh_button.clicked.connect(self._refresh_debug_console)
        self.debug_clear_button.clicked.connect(self._clear_debug_console)
        self.main_tabs.currentChanged.connect(self._on_tab_change)

    # --- meshes ---
    def selected_mesh_id(self):
        item = self.mesh_list.currentItem()
        return item.text() if item is not None else None

    def load_model(self):
        file_path, _ = QtWidgets.QFileDialog.getOpenFileName(
            self,
            "Load Model",
            "",
            "Model Files (*.obj *.stl *.ply *.gltf *.glb *.vtk *.vtp)",
            options=QtWidgets.QFileDialog.DontUseNativeDialog,
        )
        if not file_path:
            return
        try:
            vertices, faces = load_geometry(file_path)
        except MeshOperationError as exc:
            QtWidgets.QMessageBox.critical(self, "Error", f"Failed to load model: {exc}")
            return
        self.add_geometry(os.path.basename(file_path), vertices, faces)

    def add_geometry(self, mesh_id, vertices, faces):
        """Register geometry under ``mesh_id``; an existing id is reloaded."""
        try:
            self.registry.register(mesh_id, vertices, faces)
        except ValueError as exc:
            logger.error("Rejected geometry for %s: %s", mesh_id, exc)
            QtWidgets.QMessageBox.critical(self, "Error", f"Invalid geometry: {exc}")
            return
        self._transforms.pop(mesh_id, None)
        self._rendered.pop(mesh_id, None)
        if mesh_id not in self._colors:
            self._colors[mesh_id] = mesh_color(len(self._colors))
        matches = self.mesh_list.findItems(mesh_id, QtCore.Qt.MatchExactly)
        if matches:
            self.mesh_list.setCurrentItem(matches[0])
        else:
            self.mesh_list.addItem(mesh_id)
            self.mesh_list.setCurrentRow(self.mesh_list.count() - 1)
        self.sync_viewports()
        for plotter in (self.loaded_plotter, self.aligned_plotter):
            plotter.reset_camera()
        self._refresh_controls_enabled()

    def remove_selected(self):
        mesh_id = self.selected_mesh_id()
        if mesh_id is None:
            return
        self.registry.evict(mesh_id)
        self.mesh_list.takeItem(self.mesh_list.currentRow())
        self._forget(mesh_id)
        self._refresh_controls_enabled()

    def clear_all(self):
        for mesh_id in self.registry.ids():
            self._forget(mesh_id)
        self.registry.evict_all()
        self.mesh_list.clear()
        self._refresh_controls_enabled()

    def _forget(self, mesh_id):
        self._transforms.pop(mesh_id, None)
        self._rendered.pop(mesh_id, None)
        for plotter in (self.loaded_plotter, self.aligned_plotter):
            plotter.remove_actor(mesh_id, render=False)
            plotter.render()
        logger.info("Removed mesh %s from view", mesh_id)

    def export_selected(self):
        mesh_id = self.selected_mesh_id()
        snapshot = self.registry.get(mesh_id) if mesh_id else None
        if snapshot is None:
            QtWidgets.QMessageBox.warning(self, "Warning", "Select a mesh to export.")
            return
        file_path, _ = QtWidgets.QFileDialog.getSaveFileName(
            self,
            "Export Mesh",
            mesh_id,
            "PLY (*.ply);;STL (*.stl);;VTK PolyData (*.vtp)",
            options=QtWidgets.QFileDialog.DontUseNativeDialog,
        )
        if not file_path:
            return
        try:
            save_geometry(snapshot.vertices, snapshot.faces, file_path)
        except MeshOperationError as exc:
            QtWidgets.QMessageBox.critical(self, "Error", f"Failed to export mesh: {exc}")
            return
        self.status_bar.showMessage(f"Exported {mesh_id} to {file_path}", 3000)

    # --- rendering ---
    def sync_viewports(self):
        """Re-upload drawables whose registry version or snapshot changed."""
        current = self.registry.versioned_items()
        for mesh_id in list(self._rendered):
            if mesh_id not in current:
                self._forget(mesh_id)
        for mesh_id, (snapshot, version) in current.items():
            rendered = self._rendered.get(mesh_id)
            if rendered is not None and rendered[0] == version and rendered[1] is snapshot:
                continue
            self._render_mesh(mesh_id, snapshot)
            self._rendered[mesh_id] = (version, snapshot)
        self._update_info_label()

    def _render_mesh(self, mesh_id, snapshot):
        polydata = polydata_from_geometry(snapshot.vertices, snapshot.faces)
        opacity, visible = self._display_state(mesh_id)
        for plotter in (self.loaded_plotter, self.aligned_plotter):
            actor = plotter.add_mesh(
                polydata.copy(),
                name=mesh_id,
                color=self._colors.get(mesh_id, mesh_color(0)),
                opacity=opacity,
                lighting=True,
                smooth_shading=True,
                reset_camera=False,
            )
            actor.SetVisibility(visible)
        self._apply_transform(mesh_id)
        logger.debug("Rendered %s (%d faces)", mesh_id, snapshot.face_count)

    def _display_state(self, mesh_id):
        actor = self.loaded_plotter.actors.get(mesh_id)
        if actor is None:
            return 1.0, True
        prop = actor.GetProperty()
        opacity = prop.opacity if hasattr(prop, 'opacity') else prop.GetOpacity()
        visible = actor.visible if hasattr(actor, 'visible') else bool(actor.GetVisibility())
        return opacity, visible

    def _apply_transform(self, mesh_id):
        actor = self.aligned_plotter.actors.get(mesh_id)
        if actor is None:
            return
        flat = self._transforms.get(mesh_id, IDENTITY_COLUMN_MAJOR)
        actor.user_matrix = to_row_major(flat)
        self.aligned_plotter.render()

    def set_selected_visibility(self, visible):
        mesh_id = self.selected_mesh_id()
        for plotter in (self.loaded_plotter, self.aligned_plotter):
            if mesh_id and mesh_id in plotter.actors:
                plotter.actors[mesh_id].SetVisibility(visible)
                plotter.render()

    def set_selected_opacity(self, opacity):
        mesh_id = self.selected_mesh_id()
        for plotter in (self.loaded_plotter, self.aligned_plotter):
            if mesh_id and mesh_id in plotter.actors:
                plotter.actors[mesh_id].GetProperty().SetOpacity(opacity)
                plotter.render()

    def reset_camera_view(self):
        for plotter in (self.loaded_plotter, self.aligned_plotter):
            plotter.reset_camera()

    def _on_selection_changed(self):
        mesh_id = self.selected_mesh_id()
        opacity, visible = self._display_state(mesh_id) if mesh_id else (1.0, True)
        for widget, setter, value in (
            (self.visibility_checkbox, self.visibility_checkbox.setChecked, visible),
            (self.opacity_slider, self.opacity_slider.setValue, int(round(opacity * 100))),
        ):
            widget.blockSignals(True)
            setter(value)
            widget.blockSignals(False)
        self._update_info_label()
        self._refresh_controls_enabled()

    def _update_info_label(self):
        mesh_id = self.selected_mesh_id()
        snapshot, version = self.registry.get_versioned(mesh_id) if mesh_id else (None, 0)
        if snapshot is None:
            self.info_label.setText("-")
            return
        aligned = "aligned" if mesh_id in self._transforms else "not aligned"
        self.info_label.setText(
            f"{snapshot.vertex_count} vertices, {snapshot.face_count} faces, "
            f"version {version}, {aligned}"
        )

    # --- remote operations ---
    def on_register(self):
        snapshots = self.registry.get_all()
        if len(snapshots) < 2:
            QtWidgets.QMessageBox.warning(self, "Warning", "Load at least two meshes to register.")
            return
        self._start_call(
            "register",
            None,
            self.client.register_meshes,
            snapshots,
            voxel_size=self.voxel_size_spin.value(),
        )

    def on_deform(self):
        mesh_id = self.selected_mesh_id()
        snapshot = self.registry.get(mesh_id) if mesh_id else None
        if snapshot is None:
            QtWidgets.QMessageBox.warning(self, "Warning", "Select a mesh to deform.")
            return
        self._start_call(
            "deform",
            mesh_id,
            self.client.deform_mesh,
            mesh_id,
            snapshot,
            deformation_ratio=self.deformation_ratio_spin.value(),
            number_of_modes=self.modes_spin.value(),
        )

    def on_clean(self):
        mesh_id = self.selected_mesh_id()
        snapshot = self.registry.get(mesh_id) if mesh_id else None
        if snapshot is None:
            QtWidgets.QMessageBox.warning(self, "Warning", "Select a mesh to clean.")
            return
        self._start_call("clean", mesh_id, self.client.clean_mesh, mesh_id, snapshot)

    def _start_call(self, control, mesh_id, call, *args, **kwargs):
        label = _CONTROL_LABELS[control]
        if control in self._inflight:
            QtWidgets.QMessageBox.information(self, "Busy", f"{label} is already running. Please wait.")
            return False

        thread = QtCore.QThread(self)
        worker = RemoteCallWorker(control, call, *args, **kwargs)
        worker.moveToThread(thread)
        thread.started.connect(worker.run)
        worker.finished.connect(self.on_call_finished)
        worker.error.connect(self.on_call_error)
        worker.finished.connect(self.cleanup_call)
        worker.error.connect(self.cleanup_call)
        thread.finished.connect(thread.deleteLater)
        self._inflight[control] = {'thread': thread, 'worker': worker, 'mesh_id': mesh_id}
        thread.start()

        logger.info("%s started%s", label, f" for {mesh_id}" if mesh_id else "")
        self.status_bar.showMessage(f"{label} running...")
        self._refresh_controls_enabled()
        return True

    def on_call_finished(self, control, result):
        mesh_id = self._inflight.get(control, {}).get('mesh_id')
        label = _CONTROL_LABELS[control]
        try:
            if control == "register":
                self._apply_registration(result)
            elif control == "deform":
                self._apply_deformation(mesh_id, result)
            else:
                self._apply_cleaning(mesh_id, result)
        except ValueError as exc:
            logger.error("Could not apply %s result: %s", label, exc)
            QtWidgets.QMessageBox.critical(self, "Error", f"{label} returned invalid geometry: {exc}")
            return
        self.sync_viewports()
        self.status_bar.showMessage(f"{label} finished", 3000)

    def _apply_registration(self, transformations):
        for mesh_id, flat in transformations.items():
            if mesh_id not in self.registry:
                logger.info("Dropping transformation for removed mesh %s", mesh_id)
                continue
            self._transforms[mesh_id] = flat
            self._apply_transform(mesh_id)

    def _apply_deformation(self, mesh_id, result):
        vertices, faces = result
        current = self.registry.get(mesh_id)
        if current is not None and faces.size and faces.size != current.faces.size:
            logger.warning("Deformation of %s returned a different face buffer; keeping the existing faces", mesh_id)
        if not self.registry.update_vertices(mesh_id, vertices):
            self.status_bar.showMessage(f"{mesh_id} was removed; deformation discarded", 3000)

    def _apply_cleaning(self, mesh_id, result):
        vertices, faces = result
        # Alignment transforms stay attached: cleaning keeps the coordinate frame.
        if not self.registry.update_full(mesh_id, vertices, faces):
            self.status_bar.showMessage(f"{mesh_id} was removed; cleaning discarded", 3000)

    def on_call_error(self, control, message):
        label = _CONTROL_LABELS[control]
        logger.error("%s failed: %s", label, message)
        QtWidgets.QMessageBox.critical(self, "Error", f"{label} failed: {message}")

    def cleanup_call(self, control, *args):
        entry = self._inflight.pop(control, None)
        if entry is not None:
            entry['thread'].quit()
            entry['thread'].wait()
            entry['worker'].deleteLater()
        if not self._inflight:
            self.status_bar.clearMessage()
        self._refresh_controls_enabled()

    def _refresh_controls_enabled(self):
        has_selection = self.selected_mesh_id() is not None
        mesh_count = len(self.registry)
        self.register_button.setEnabled("register" not in self._inflight and mesh_count >= 2)
        self.deform_button.setEnabled("deform" not in self._inflight and has_selection)
        self.clean_button.setEnabled("clean" not in self._inflight and has_selection)
        for widget in (self.remove_button, self.export_button, self.visibility_checkbox, self.opacity_slider):
            widget.setEnabled(has_selection)
        self.clear_button.setEnabled(mesh_count > 0)

    # --- debug log ---
    def _on_tab_change(self, index):
        if index == self.main_tabs.indexOf(self.debug_root):
            QtCore.QTimer.singleShot(0, self._refresh_debug_console)

    def _resolve_log_path(self):
        for handler in logging.getLogger().handlers:
            path = getattr(handler, 'baseFilename', None)
            if path:
                return path
        return os.path.join(os.path.expanduser("~"), ".meshlink", "app.log")

    def _refresh_debug_console(self):
        path = self._log_path
        if not path or not os.path.exists(path):
            self.debug_console.setPlainText("Log file not found.")
            self.debug_status_label.setText("Log path: not found")
            return
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as fh:
                content = fh.read()
        except OSError as exc:
            self.debug_console.setPlainText(f"Failed to read log: {exc}")
            self.debug_status_label.setText(f"Log path: {path}")
            return
        self.debug_console.setPlainText(content)
        self.debug_console.verticalScrollBar().setValue(self.debug_console.verticalScrollBar().maximum())
        self.debug_status_label.setText(f"Log path: {path}")

    def _clear_debug_console(self):
        self.debug_console.clear()
        self.debug_status_label.setText("Console cleared. The log file itself is unchanged.")

    def closeEvent(self, event):
        self._sync_timer.stop()
        # A QThread destroyed while running aborts the process, and a blocking
        # request cannot be interrupted, so join each call without a time limit.
        for control, entry in list(self._inflight.items()):
            worker = entry['worker']
            worker.finished.disconnect()
            worker.error.disconnect()
            logger.info("Waiting for %s to return before closing", _CONTROL_LABELS[control])
            entry['thread'].quit()
            entry['thread'].wait()
            worker.deleteLater()
        self._inflight.clear()
        self.client.close()
        super().closeEvent(event)
