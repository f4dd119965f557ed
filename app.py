# app.py
import logging
import sys

from PySide6 import QtGui, QtWidgets

from config import ViewerConfig
from ui.main_window import MainWindow


def _select_folder_dialog(parent=None):
    dlg = QtWidgets.QFileDialog(parent)
    dlg.setWindowTitle("Select image folder")
    dlg.setFileMode(QtWidgets.QFileDialog.Directory)
    dlg.setOption(QtWidgets.QFileDialog.ShowDirsOnly, True)
    if dlg.exec() == QtWidgets.QDialog.Accepted:
        folders = dlg.selectedFiles()
        return folders[0] if folders else None
    return None


def setup_logging(level: str = "WARNING") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


def main(
    paths=None,
    *,
    config_path: str | None = None,
    cache_count: int | None = None,
    backend: str | None = None,
    dual: bool = False,
    log_level: str = "WARNING",
):
    setup_logging(log_level)
    cfg = ViewerConfig.load(config_path)
    if cache_count is not None and cache_count > 0:
        cfg.cache_count = cache_count
    if backend is not None:
        cfg.backend = backend
    paths = list(paths or [])
    if dual or len(paths) > 1:
        cfg.pane_layout = "dual"
    app = QtWidgets.QApplication(sys.argv)
    app.setWindowIcon(QtGui.QIcon("icon.png"))

    if not paths:
        folder = _select_folder_dialog()
        if not folder:
            return
        paths = [folder]

    w = MainWindow(config=cfg, paths=paths)
    w.show()
    app.exec()


def run():
    import argparse
    p = argparse.ArgumentParser(description="Browse image folders one frame at a time.")
    p.add_argument("paths", nargs="*", help="folder, image or .zip archive per pane")
    p.add_argument("--config")
    p.add_argument("--cache-count", type=int)
    p.add_argument("--backend", choices=("cpu", "gpu"))
    p.add_argument("--dual", action="store_true")
    p.add_argument("--log-level", default="WARNING")
    args = p.parse_args()
    main(
        args.paths,
        config_path=args.config,
        cache_count=args.cache_count,
        backend=args.backend,
        dual=args.dual,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    run()
