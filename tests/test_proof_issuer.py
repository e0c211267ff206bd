"""
Tests for the Pillow proof issuer.
"""

import io
from datetime import UTC, datetime

import pytest
from PIL import Image

from gem_ledger.exceptions import ProofIssuerError
from gem_ledger.models.api import JustificationType, OfferType
from gem_ledger.services.proof_issuer import PillowProofIssuer, ProofRequest


def _request(justification_type: JustificationType, **overrides) -> ProofRequest:
    fields = {
        "reference": "jst_0123456789abcdef01234567",
        "justification_type": justification_type,
        "partner_name": "Café des Arts",
        "offer_type": OfferType.PREMIUM,
        "offer_description": "Un café offert",
        "value_label": "20%",
        "promo_code": "ARTS20",
        "user_label": "user-1",
        "gems_cost": 50,
        "activated_at": datetime(2026, 10, 19, 9, 30, tzinfo=UTC),
    }
    fields.update(overrides)
    return ProofRequest(**fields)


class TestPillowProofIssuer:
    """Rendering real artifacts."""

    @pytest.mark.parametrize("justification_type", [JustificationType.IMAGE, JustificationType.QR])
    def test_png(self, justification_type):
        artifact = PillowProofIssuer().render(_request(justification_type))

        assert artifact.content_type == "image/png"
        assert artifact.content.startswith(b"\x89PNG")
        with Image.open(io.BytesIO(artifact.content)) as image:
            assert image.size == (800, 600)

    def test_pdf(self):
        artifact = PillowProofIssuer().render(_request(JustificationType.PDF))

        assert artifact.content_type == "application/pdf"
        assert artifact.content.startswith(b"%PDF")

    def test_free_offer(self):
        request = _request(JustificationType.IMAGE, offer_type=OfferType.FREE, gems_cost=0)

        assert request.offer_label == "Offre Gratuite"
        assert PillowProofIssuer().render(request).content.startswith(b"\x89PNG")

    def test_render_failure_wrapped(self, monkeypatch):
        issuer = PillowProofIssuer()

        def broken(request):
            raise OSError("cannot open resource")

        monkeypatch.setattr(issuer, "_draw", broken)

        with pytest.raises(ProofIssuerError, match="cannot open resource"):
            issuer.render(_request(JustificationType.IMAGE))
