"""
Proof Issuer - Renders proof-of-redemption artifacts with Pillow.

Rendering is synchronous and CPU bound; callers run it in a worker thread.
"""

import io
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from PIL import Image, ImageDraw, ImageFont

from gem_ledger.exceptions import ProofIssuerError
from gem_ledger.models.api import JustificationType, OfferType
from gem_ledger.models.domain import RenderedArtifact

WIDTH = 800
HEIGHT = 600

BACKGROUND_COLOR = "#1F2937"
PRIMARY_COLOR = "#3B82F6"
SECONDARY_COLOR = "#10B981"
TEXT_COLOR = "#FFFFFF"
ACCENT_COLOR = "#F59E0B"

CONTENT_TYPES = {
    JustificationType.IMAGE: "image/png",
    JustificationType.QR: "image/png",
    JustificationType.PDF: "application/pdf",
}


@dataclass(frozen=True)
class ProofRequest:
    """Everything printed on a justification."""

    reference: str
    justification_type: JustificationType
    partner_name: str
    offer_type: OfferType
    offer_description: str
    value_label: str
    promo_code: str
    user_label: str
    gems_cost: int
    activated_at: datetime

    @property
    def offer_label(self) -> str:
        return "Offre Gratuite" if self.offer_type == OfferType.FREE else "Offre Premium"


class ProofIssuer(Protocol):
    """Produces the bytes of a justification artifact."""

    def render(self, request: ProofRequest) -> RenderedArtifact:
        """
        Render an artifact for a completed activation.

        Raises:
            ProofIssuerError: Rendering failed
        """
        ...


class PillowProofIssuer:
    """Draws an 800x600 voucher and encodes it as PNG or PDF."""

    def render(self, request: ProofRequest) -> RenderedArtifact:
        try:
            image = self._draw(request)
            buffer = io.BytesIO()
            if request.justification_type == JustificationType.PDF:
                image.save(buffer, format="PDF", resolution=100.0)
            else:
                image.save(buffer, format="PNG")
        except (OSError, ValueError) as e:
            raise ProofIssuerError(f"Rendering {request.reference} failed: {e}") from e

        return RenderedArtifact(
            content=buffer.getvalue(),
            content_type=CONTENT_TYPES[request.justification_type],
        )

    def _draw(self, request: ProofRequest) -> Image.Image:
        image = Image.new("RGB", (WIDTH, HEIGHT), BACKGROUND_COLOR)
        draw = ImageDraw.Draw(image)

        # Header band
        draw.rectangle((0, 0, WIDTH, 80), fill=PRIMARY_COLOR)
        self._centered(draw, "WORKYT AWARD", 25, 32, TEXT_COLOR)

        self._centered(draw, request.partner_name, 115, 28, TEXT_COLOR)
        offer_color = SECONDARY_COLOR if request.offer_type == OfferType.FREE else ACCENT_COLOR
        self._centered(draw, request.offer_label, 160, 24, offer_color)
        self._centered(draw, request.offer_description, 200, 18, TEXT_COLOR)
        self._centered(draw, request.value_label, 240, 36, SECONDARY_COLOR)

        details = [
            f"Utilisateur: {request.user_label}",
            f"Code promo: {request.promo_code}",
        ]
        if request.gems_cost > 0:
            details.append(f"Coût: {request.gems_cost} gemmes")
        details.append(f"Activé le: {request.activated_at.strftime('%d/%m/%Y %H:%M')} UTC")
        details.append(f"Référence: {request.reference}")

        detail_font = ImageFont.load_default(size=16)
        for index, line in enumerate(details):
            draw.text((50, 320 + index * 28), line, font=detail_font, fill=TEXT_COLOR)

        self._centered(draw, "Présentez ce justificatif au commerçant", 480, 18, PRIMARY_COLOR)

        if request.justification_type == JustificationType.QR:
            self._centered(
                draw, f"Code de vérification: {request.reference}", 530, 14, TEXT_COLOR
            )

        # Decorative border
        draw.rectangle((10, 10, WIDTH - 10, HEIGHT - 10), outline=PRIMARY_COLOR, width=3)
        return image

    @staticmethod
    def _centered(draw: ImageDraw.ImageDraw, text: str, y: int, size: int, fill: str) -> None:
        font = ImageFont.load_default(size=size)
        x = max(10, (WIDTH - draw.textlength(text, font=font)) / 2)
        draw.text((x, y), text, font=font, fill=fill)
