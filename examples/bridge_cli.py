"""Shared helpers for capture_bridge example scripts."""

from __future__ import annotations

import argparse
import importlib
import logging
import pathlib
import sys
from typing import Optional

ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = ROOT / "src"


def ensure_repo_import(package: str = "capture_bridge") -> None:
    """Ensure the editable checkout is importable before importing *package*."""

    if package in sys.modules:
        return

    try:
        importlib.import_module(package)
        return
    except ImportError:
        pass

    if str(SRC_DIR) not in sys.path:
        sys.path.insert(0, str(SRC_DIR))

    importlib.import_module(package)


def parse_usb_id(value: str) -> int:
    """Parse a 16-bit USB identifier given in hex, with or without ``0x``."""

    token = value.strip().lower()
    if token.startswith("0x"):
        token = token[2:]
    if not token or any(ch not in "0123456789abcdef" for ch in token):
        raise argparse.ArgumentTypeError(f"Invalid USB identifier: {value!r}")
    parsed = int(token, 16)
    if not 0 <= parsed <= 0xFFFF:
        raise argparse.ArgumentTypeError("USB identifiers must be between 0x0000 and 0xFFFF")
    return parsed


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """Add VID/PID filters and the log level switch to *parser*."""

    parser.add_argument("--vid", type=parse_usb_id, help="Vendor ID filter (hex)")
    parser.add_argument("--pid", type=parse_usb_id, help="Product ID filter (hex)")
    parser.add_argument("--log-level", default="WARNING", help="Python logging level")


def configure_logging(level: str = "INFO", *, name: Optional[str] = None) -> logging.Logger:
    """Initialise basic logging and return the requested logger."""

    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger(name) if name else logging.getLogger()
