"""Named option presets."""
from typing import Any, Dict

from rastertrace.types import InvalidOptionError

_GRAYS = tuple((v, v, v, 255) for v in (0, 42, 85, 128, 170, 213, 255))

PRESETS: Dict[str, Dict[str, Any]] = {
    "default": {},
    "posterized1": {"color_sampling_mode": "histogram", "number_of_colors": 2},
    "posterized2": {"number_of_colors": 4, "blur_radius": 5},
    "curvy": {"line_threshold": 0.01, "right_angle_enhance": False},
    "sharp": {"quad_threshold": 0.01},
    "detailed": {
        "path_omit_threshold": 0,
        "round_coordinates": 2,
        "line_threshold": 0.5,
        "quad_threshold": 0.5,
        "number_of_colors": 64,
    },
    "smoothed": {"blur_radius": 5, "blur_delta": 64},
    "grayscale": {
        "color_sampling_mode": "histogram",
        "quantization_cycles": 1,
        "number_of_colors": 7,
        "palette": _GRAYS,
    },
}


def get_preset(name: str) -> Dict[str, Any]:
    """Return a copy of the named preset's options."""
    try:
        return dict(PRESETS[name])
    except KeyError:
        raise InvalidOptionError(
            f"Unknown preset {name!r}; choose from {', '.join(sorted(PRESETS))}"
        ) from None
