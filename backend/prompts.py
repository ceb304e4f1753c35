# backend/prompts.py

from dataclasses import dataclass
from typing import Dict, Optional

DEFAULT_STYLE = "anime"


@dataclass(frozen=True)
class StylePrompt:
    positive: str
    negative: str
    # Used by instruction-following edit models instead of positive/negative
    instruction: str


STYLE_PROMPTS: Dict[str, StylePrompt] = {
    "anime": StylePrompt(
        positive=(
            "anime style, high quality anime artwork, studio ghibli style, detailed anime face, "
            "vibrant colors, beautiful lighting, masterpiece, best quality, detailed eyes, smooth skin"
        ),
        negative=(
            "photo, realistic, 3d render, ugly, deformed, blurry, low quality, bad anatomy, "
            "bad proportions, extra limbs, cloned face, disfigured, gross proportions, malformed limbs, "
            "missing arms, missing legs, extra arms, extra legs, fused fingers, too many fingers, "
            "long neck, username, watermark, signature"
        ),
        instruction=(
            "Turn this photo into a studio ghibli style anime illustration with vibrant colors "
            "and soft lighting, keep the same people and pose"
        ),
    ),
    "cartoon": StylePrompt(
        positive=(
            "pixar style, 3d cartoon, disney style, high quality 3d render, colorful, smooth shading, "
            "expressive face, vibrant colors, professional 3d art, octane render, masterpiece, best quality"
        ),
        negative=(
            "anime, realistic photo, ugly, deformed, blurry, low quality, bad anatomy, bad proportions, "
            "extra limbs, disfigured, gross proportions, malformed limbs, missing arms, missing legs, "
            "extra arms, extra legs, fused fingers, too many fingers, long neck, username, watermark, "
            "signature, 2d, flat"
        ),
        instruction=(
            "Turn this photo into a pixar style 3d cartoon character render with smooth shading "
            "and expressive faces, keep the same people and pose"
        ),
    ),
}


def resolve_style(style: Optional[str]) -> str:
    """Known style name, or anime for anything else (including empty)."""
    key = (style or "").strip().lower()
    return key if key in STYLE_PROMPTS else DEFAULT_STYLE


def get_style_prompt(style: Optional[str]) -> StylePrompt:
    return STYLE_PROMPTS[resolve_style(style)]
