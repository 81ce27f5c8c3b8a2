"""
QR Code Generator Module - QR Attendance Session Core

Renders rotating tokens as QR code images for presenter displays that
cannot draw QR codes themselves. The image only carries the token string;
all validation happens when the token is redeemed.
"""

import base64
import io
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import qrcode
from PIL import Image


class QRGenerator:
    """
    QR code renderer for rotating tokens.
    """

    def __init__(self, box_size: int = 10, border: int = 4,
                 fill_color: str = 'black', back_color: str = 'white'):
        """Initialize the QR code generator with default settings."""
        self.logger = logging.getLogger(__name__)

        self.default_settings = {
            'version': None,  # Fit to the data
            'error_correction': qrcode.constants.ERROR_CORRECT_M,  # ~15% error correction
            'box_size': box_size,
            'border': border,
            'fill_color': fill_color,
            'back_color': back_color
        }

    def make_image(self, data: str, custom_settings: Optional[dict] = None) -> Image.Image:
        """
        Build a QR code image for arbitrary data.

        Args:
            data (str): Payload to encode
            custom_settings (dict): Overrides for the default settings

        Returns:
            Image.Image: Rendered QR code
        """
        settings = self.default_settings.copy()
        if custom_settings:
            settings.update(custom_settings)

        qr = qrcode.QRCode(
            version=settings['version'],
            error_correction=settings['error_correction'],
            box_size=settings['box_size'],
            border=settings['border']
        )
        qr.add_data(data)
        qr.make(fit=True)

        img = qr.make_image(
            fill_color=settings['fill_color'],
            back_color=settings['back_color']
        )
        # Unwrap qrcode's PilImage wrapper
        return img.get_image() if hasattr(img, 'get_image') else img

    def generate_token_qr(self, token: str, custom_settings: Optional[dict] = None) -> Dict[str, Any]:
        """
        Render a rotating token as a base64 PNG.

        Args:
            token (str): Token value to encode
            custom_settings (dict): Overrides for the default settings

        Returns:
            dict: Result with success flag and image data
        """
        try:
            if not token:
                raise ValueError("Token is required")

            img = self.make_image(token, custom_settings)

            buffer = io.BytesIO()
            img.save(buffer, format='PNG')
            img_base64 = base64.b64encode(buffer.getvalue()).decode()

            return {
                'success': True,
                'image_base64': img_base64,
                'image_size': img.size,
                'generated_at': datetime.now(timezone.utc).isoformat()
            }

        except Exception as e:
            self.logger.error(f"QR code generation failed: {str(e)}")
            return {
                'success': False,
                'error': str(e)
            }
