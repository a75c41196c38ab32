"""
QR code presentation for the login handshake.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, TextIO

import qrcode
from loguru import logger

from webwx.utils.helpers import ensure_dir, safe_filename


def print_terminal(url: str, out: Optional[TextIO] = None) -> None:
    """Print ``url`` as an ASCII QR code."""
    qr = qrcode.QRCode(border=1)
    qr.add_data(url)
    qr.make(fit=True)
    qr.print_ascii(out=out or sys.stdout, invert=True)


def save_image(data: bytes, directory: Path, uuid: str) -> Path:
    """Save the QR image fetched from the backend; returns its path."""
    path = ensure_dir(directory) / f"{safe_filename(uuid)}.jpg"
    path.write_bytes(data)
    logger.info("QR image saved | path={}", path)
    return path
