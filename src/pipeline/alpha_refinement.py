"""
Alpha refinement for segmentation output.

The refinement is an ordered chain of named steps over the alpha channel:

    linear    alpha * gain + bias, clipped to 0..255
    threshold values at or below the threshold become fully transparent
    blur      small Gaussian blur to soften the remaining hard edges

The order is fixed; each step is a plain function so it can be checked on
its own.
"""

from dataclasses import dataclass
from typing import Callable, Sequence, Tuple

import numpy as np
from PIL import Image, ImageFilter


@dataclass(frozen=True)
class AlphaRefinementParams:
    gain: float = 1.2
    bias: float = -25.0
    threshold: int = 15
    blur_radius: float = 0.5


ALPHA_PARAMS = AlphaRefinementParams()


def linear_stretch(alpha: Image.Image, params: AlphaRefinementParams) -> Image.Image:
    values = np.asarray(alpha, dtype=np.float32) * params.gain + params.bias
    return Image.fromarray(np.clip(np.rint(values), 0, 255).astype(np.uint8))


def zero_below_threshold(alpha: Image.Image, params: AlphaRefinementParams) -> Image.Image:
    # Cuts faint halo noise only; values above the threshold keep their
    # graded opacity, the mask is not binarised
    values = np.array(alpha, dtype=np.uint8)
    values[values <= params.threshold] = 0
    return Image.fromarray(values)


def soften_edges(alpha: Image.Image, params: AlphaRefinementParams) -> Image.Image:
    return alpha.filter(ImageFilter.GaussianBlur(radius=params.blur_radius))


@dataclass(frozen=True)
class AlphaStep:
    name: str
    apply: Callable[[Image.Image, AlphaRefinementParams], Image.Image]


ALPHA_REFINEMENT_STEPS: Tuple[AlphaStep, ...] = (
    AlphaStep("linear", linear_stretch),
    AlphaStep("threshold", zero_below_threshold),
    AlphaStep("blur", soften_edges),
)


def refine_alpha(
    alpha: Image.Image,
    steps: Sequence[AlphaStep] = ALPHA_REFINEMENT_STEPS,
    params: AlphaRefinementParams = ALPHA_PARAMS
) -> Image.Image:
    """Run ``alpha`` (mode ``L``) through ``steps`` in order."""
    if alpha.mode != "L":
        alpha = alpha.convert("L")
    for step in steps:
        alpha = step.apply(alpha, params)
    return alpha


def apply_refined_alpha(segmented: Image.Image) -> Image.Image:
    """Refine the alpha of ``segmented`` and recombine it with its own RGB channels."""
    rgba = segmented.convert("RGBA")
    red, green, blue, alpha = rgba.split()
    return Image.merge("RGBA", (red, green, blue, refine_alpha(alpha)))
