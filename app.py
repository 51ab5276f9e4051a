import argparse
import sys
from pathlib import Path

from PySide6.QtGui import QIcon
from PySide6.QtWidgets import QApplication

from engine.config import EngineConfig, configure_logging, load_config
from ui.main_window import MainWindow


def _asset_path(*parts: str) -> Path:
    # PyInstaller onefile extracts bundled files under sys._MEIPASS.
    if getattr(sys, "frozen", False):
        return Path(getattr(sys, "_MEIPASS")) / Path(*parts)
    return Path(__file__).resolve().parent / Path(*parts)


def main() -> int:
    parser = argparse.ArgumentParser(description="Lumen Canvas image editor")
    parser.add_argument("image", nargs="?", help="image to open on start")
    parser.add_argument("--config", help="JSON settings file")
    args, qt_args = parser.parse_known_args()

    config = load_config(args.config) if args.config else EngineConfig()
    configure_logging(config.log_level)

    app = QApplication([sys.argv[0]] + qt_args)
    app.setApplicationName("Lumen Canvas")
    app.setOrganizationName("Lumen Canvas")

    logo_path = _asset_path("assets", "Logo.png")
    if logo_path.exists():
        app.setWindowIcon(QIcon(str(logo_path)))

    w = MainWindow(config=config, logo_path=logo_path)
    if args.image:
        w._load_path(args.image)
    w.show()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
