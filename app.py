import argparse
import logging
import sys
from pathlib import Path

from core.batch import batch_crop_folder
from core.config import load_config
from core.logger import setup_logger


def _asset_path(*parts: str) -> Path:
    # PyInstaller onefile extracts bundled files under sys._MEIPASS.
    if getattr(sys, "frozen", False):
        return Path(getattr(sys, "_MEIPASS")) / Path(*parts)
    return Path(__file__).resolve().parent / Path(*parts)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="portrait-crop", description="Crop portraits to 300x400 ID photos.")
    parser.add_argument("--batch", nargs=2, metavar=("IN_DIR", "OUT_DIR"), help="crop a folder without the GUI")
    parser.add_argument("--config", help="JSON engine settings")
    parser.add_argument("--prefix", help="export filename prefix")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    logger = setup_logger(logging.DEBUG if args.verbose else logging.INFO)
    config = load_config(args.config) if args.config else None

    if args.batch:
        in_dir, out_dir = args.batch
        count = batch_crop_folder(in_dir, out_dir, config, args.prefix)
        logger.info("batch done: %d images exported to %s", count, out_dir)
        return 0

    from PySide6.QtGui import QIcon
    from PySide6.QtWidgets import QApplication

    from ui.main_window import MainWindow

    app = QApplication(sys.argv[:1])
    app.setApplicationName("Portrait Crop")
    app.setOrganizationName("Portrait Crop")

    logo_path = _asset_path("assets", "Logo.png")
    if logo_path.exists():
        app.setWindowIcon(QIcon(str(logo_path)))

    w = MainWindow(config=config, logo_path=logo_path)
    w.show()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
