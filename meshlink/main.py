import sys
from pathlib import Path

if __package__ is None or __package__ == '':
    sys.path.append(str(Path(__file__).resolve().parent.parent))

from meshlink.env_utils import prepare_runtime_dirs

prepare_runtime_dirs()

from PyQt5 import QtWidgets

from meshlink.logging_config import configure_logging
from meshlink.ui import MeshLinkWindow

configure_logging()


def main() -> int:
    app = QtWidgets.QApplication(sys.argv)
    window = MeshLinkWindow()
    window.show()
    return app.exec_()


if __name__ == "__main__":
    sys.exit(main())
