"""Qt worker objects for remote mesh service calls."""

import logging

from PyQt5 import QtCore

from meshlink.services import MeshOperationError, PlyFormatError, TransportError

logger = logging.getLogger(__name__)


class RemoteCallWorker(QtCore.QObject):
    """Runs one blocking service call off the GUI thread.

    Results are emitted back to the GUI thread, where the registry is updated.
    There is no cancellation: once started, the call runs to completion.
    """

    finished = QtCore.pyqtSignal(str, object)
    error = QtCore.pyqtSignal(str, str)

    def __init__(self, control, call, *args, **kwargs):
        super().__init__()
        self.control = control
        self._call = call
        self._args = args
        self._kwargs = kwargs

    @QtCore.pyqtSlot()
    def run(self):
        try:
            result = self._call(*self._args, **self._kwargs)
        except (TransportError, PlyFormatError, MeshOperationError, ValueError) as exc:
            logger.error("%s request failed: %s", self.control, exc)
            self.error.emit(self.control, str(exc))
            return
        except Exception as exc:  # pragma: no cover - surfaced to the UI
            logger.exception("Unexpected failure in %s request", self.control)
            self.error.emit(self.control, f"{type(exc).__name__}: {exc}")
            return

        self.finished.emit(self.control, result)
