"""
Redemption artifact: QR code with booking data and checksum
Black & White, base64 PNG data URL
"""
import base64
import hashlib
import io
import json
import logging
from typing import Any, Dict

import qrcode  # type: ignore[import-untyped]
from qrcode.constants import ERROR_CORRECT_H  # type: ignore[import-untyped]

from moviebook.database.models import Booking

logger = logging.getLogger(__name__)

BLACK = "#000000"
WHITE = "#FFFFFF"


def build_ticket_payload(booking: Booking) -> str:
    """
    JSON payload scanned at the theatre entrance. A short checksum over the
    sorted payload lets the scanner reject hand-edited codes.
    """
    data: Dict[str, Any] = {
        "booking_code": booking.booking_code,
        "movie": booking.movie.title if booking.movie else None,
        "theatre": booking.theatre.name if booking.theatre else None,
        "date": booking.show_date.isoformat(),
        "time": booking.show_time,
        "seats": ", ".join(booking.seat_ids),
    }
    data["checksum"] = hashlib.sha256(json.dumps(data, sort_keys=True).encode()).hexdigest()[:16]
    return json.dumps(data, sort_keys=True)


def generate_qr_code(payload: str) -> str:
    """Encode ``payload`` as a QR code and return it as a PNG data URL."""
    qr = qrcode.QRCode(version=None, error_correction=ERROR_CORRECT_H, box_size=10, border=1)
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color=BLACK, back_color=WHITE)

    buf = io.BytesIO()
    img.save(buf)
    encoded = base64.b64encode(buf.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
