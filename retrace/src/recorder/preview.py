"""Low-fidelity preview images."""
from __future__ import annotations

import io

from PIL import Image


def downscale_preview(data: bytes, *, max_width: int = 960, quality: int = 30) -> bytes:
    """Re-encode a screenshot as a small JPEG no wider than ``max_width``."""
    with Image.open(io.BytesIO(data)) as img:
        img = img.convert("RGB")
        if img.width > max_width:
            height = max(1, round(img.height * max_width / img.width))
            img = img.resize((max_width, height))
        out = io.BytesIO()
        img.save(out, format="JPEG", quality=quality, optimize=True)
    return out.getvalue()
