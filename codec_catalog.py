"""Audio codecs offered to the service during negotiation, in order."""

from __future__ import annotations

from typing import Optional, Tuple

CODEC_CATALOG: Tuple[str, ...] = ("MSB16K", "16K", "LSB16K", "ADPCM")


def codec_catalog(preferred: Optional[str] = None) -> Tuple[str, ...]:
    """Return the negotiation order, with ``preferred`` moved to the front.

    ``None``, ``"-"`` and codecs the service does not know leave the default
    order untouched.
    """
    if not preferred or preferred == "-" or preferred not in CODEC_CATALOG:
        return CODEC_CATALOG
    return (preferred,) + tuple(c for c in CODEC_CATALOG if c != preferred)
