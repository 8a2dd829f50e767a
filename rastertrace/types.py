"""Core types and exceptions for the tracing pipeline."""
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple
import logging

import numpy as np

logger = logging.getLogger(__name__)

# Type aliases
RGBA = Tuple[int, int, int, int]
Contour = np.ndarray  # (N, 2) float (x, y) corner points, closing point not repeated

TRANSPARENT: RGBA = (0, 0, 0, 0)


class VectorizationError(Exception):
    """Base exception for vectorization errors."""
    pass


class InvalidInputError(VectorizationError):
    """Raster dimensions or buffer are unusable."""
    pass


class DegenerateInputError(VectorizationError):
    """No distinguishable colors, e.g. a fully transparent image."""
    pass


class InvalidOptionError(VectorizationError, ValueError):
    """An option is out of range or has the wrong type."""
    pass


class TracingFailureError(VectorizationError):
    """Internal invariant violation while tracing."""
    pass


def _frozen_array(array: np.ndarray, dtype=None) -> np.ndarray:
    array = np.array(array, dtype=dtype, copy=True)
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class Raster:
    """RGBA pixel grid, row-major, top-left origin."""
    width: int
    height: int
    pixels: np.ndarray  # (height, width, 4) uint8

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise InvalidInputError(
                f"Raster dimensions must be positive, got {self.width}x{self.height}"
            )
        pixels = np.asarray(self.pixels)
        if pixels.size == 0:
            raise InvalidInputError("Raster buffer is empty")
        if pixels.shape != (self.height, self.width, 4):
            raise InvalidInputError(
                f"Expected pixel array of shape {(self.height, self.width, 4)}, "
                f"got {pixels.shape}"
            )
        object.__setattr__(self, "pixels", _frozen_array(pixels, np.uint8))

    @classmethod
    def from_buffer(cls, width: int, height: int, buffer: Sequence[int]) -> "Raster":
        """
        Build a raster from a flat RGBA buffer of length width*height*4.

        Raises:
            InvalidInputError: If the dimensions or buffer length are wrong
        """
        if width <= 0 or height <= 0:
            raise InvalidInputError(
                f"Raster dimensions must be positive, got {width}x{height}"
            )
        data = np.asarray(buffer, dtype=np.uint8).reshape(-1)
        if data.size == 0:
            raise InvalidInputError("Raster buffer is empty")
        if data.size != width * height * 4:
            raise InvalidInputError(
                f"Buffer length {data.size} does not match {width}x{height}x4"
            )
        return cls(width, height, data.reshape(height, width, 4))


@dataclass(frozen=True)
class PaletteEntry:
    """Palette color with its pixel coverage ratio."""
    color: RGBA
    coverage: float = 0.0

    @property
    def is_transparent(self) -> bool:
        return self.color[3] == 0


@dataclass(frozen=True)
class Palette:
    """Ordered, bounded set of distinct colors."""
    entries: Tuple[PaletteEntry, ...]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def __getitem__(self, index: int) -> PaletteEntry:
        return self.entries[index]

    @property
    def colors(self) -> np.ndarray:
        """Palette colors as a (K, 4) float array."""
        return np.array([e.color for e in self.entries], dtype=np.float64).reshape(-1, 4)


@dataclass(frozen=True)
class IndexMap:
    """Per-pixel palette indices."""
    indices: np.ndarray  # (height, width) int32
    palette_size: int

    def __post_init__(self):
        indices = np.asarray(self.indices)
        if indices.size and (indices.min() < 0 or indices.max() >= self.palette_size):
            raise TracingFailureError("Index map references a color outside the palette")
        object.__setattr__(self, "indices", _frozen_array(indices, np.int32))

    @property
    def height(self) -> int:
        return self.indices.shape[0]

    @property
    def width(self) -> int:
        return self.indices.shape[1]


@dataclass(frozen=True)
class Region:
    """Outer contour plus holes of one connected pixel group."""
    outer: Contour
    holes: Tuple[Contour, ...] = ()
    area: int = 0

    def __post_init__(self):
        object.__setattr__(self, "outer", _frozen_array(self.outer, np.float64))
        object.__setattr__(
            self, "holes", tuple(_frozen_array(h, np.float64) for h in self.holes)
        )


@dataclass(frozen=True)
class SimplifiedContour:
    """Reduced vertex loop with corner flags."""
    points: np.ndarray          # (M, 2) kept vertices
    corners: np.ndarray         # (M,) bool
    source_indices: np.ndarray  # (M,) increasing indices into the raw contour

    def __post_init__(self):
        object.__setattr__(self, "points", _frozen_array(self.points, np.float64))
        object.__setattr__(self, "corners", _frozen_array(self.corners, bool))
        object.__setattr__(
            self, "source_indices", _frozen_array(self.source_indices, np.int64)
        )

    def __len__(self) -> int:
        return len(self.points)


@dataclass(frozen=True)
class Layer:
    """All regions of one palette index."""
    index: int
    color: RGBA
    regions: Tuple[Region, ...] = ()


class SegmentKind(Enum):
    """Kind of path segment."""
    LINE = "line"
    QUADRATIC = "quadratic"
    CUBIC = "cubic"


Point = Tuple[float, float]


@dataclass(frozen=True)
class Segment:
    """Line or bezier piece; points are start, controls..., end."""
    kind: SegmentKind
    points: Tuple[Point, ...]

    def __post_init__(self):
        expected = {SegmentKind.LINE: 2, SegmentKind.QUADRATIC: 3, SegmentKind.CUBIC: 4}
        if len(self.points) != expected[self.kind]:
            raise TracingFailureError(
                f"{self.kind.value} segment needs {expected[self.kind]} points, "
                f"got {len(self.points)}"
            )

    @property
    def start(self) -> Point:
        return self.points[0]

    @property
    def end(self) -> Point:
        return self.points[-1]

    @property
    def controls(self) -> Tuple[Point, ...]:
        return self.points[1:-1]


@dataclass(frozen=True)
class Path:
    """Closed chain of segments."""
    segments: Tuple[Segment, ...]

    def is_closed(self, tolerance: float = 1e-9) -> bool:
        if not self.segments:
            return False
        pairs = zip(self.segments, self.segments[1:] + self.segments[:1])
        return all(
            abs(a.end[0] - b.start[0]) <= tolerance and abs(a.end[1] - b.start[1]) <= tolerance
            for a, b in pairs
        )


@dataclass(frozen=True)
class CompoundPath:
    """Outer path plus hole paths, rendered as one even-odd shape."""
    outer: Path
    holes: Tuple[Path, ...] = ()


@dataclass(frozen=True)
class VectorLayer:
    """One colored layer of the output document."""
    palette_index: int
    color: RGBA
    coverage: float
    paths: Tuple[CompoundPath, ...] = ()


@dataclass(frozen=True)
class VectorDocument:
    """Coordinate frame plus ordered colored layers."""
    width: int
    height: int
    scale: float = 1.0
    layers: Tuple[VectorLayer, ...] = ()
    include_viewbox: bool = True
    stroke_width: float = 0.0

    @property
    def frame_width(self) -> float:
        return self.width * self.scale

    @property
    def frame_height(self) -> float:
        return self.height * self.scale

    @property
    def path_count(self) -> int:
        return sum(len(layer.paths) for layer in self.layers)


class SamplingMode(Enum):
    """How the quantizer seeds and samples colors."""
    PER_PIXEL = "per_pixel"
    HISTOGRAM = "histogram"


# camelCase and legacy short option names -> TraceConfig fields
OPTION_ALIASES: Dict[str, str] = {
    "numberOfColors": "number_of_colors",
    "numberofcolors": "number_of_colors",
    "minColorRatio": "min_color_ratio",
    "mincolorratio": "min_color_ratio",
    "quantizationCycles": "quantization_cycles",
    "colorquantcycles": "quantization_cycles",
    "colorSamplingMode": "color_sampling_mode",
    "colorsampling": "color_sampling_mode",
    "pathOmitThreshold": "path_omit_threshold",
    "pathomit": "path_omit_threshold",
    "lineThreshold": "line_threshold",
    "ltres": "line_threshold",
    "quadThreshold": "quad_threshold",
    "qtres": "quad_threshold",
    "simplifyTolerance": "simplify_tolerance",
    "lineControlPointRatio": "line_control_point_ratio",
    "lcpr": "line_control_point_ratio",
    "quadControlPointRatio": "quad_control_point_ratio",
    "qcpr": "quad_control_point_ratio",
    "roundCoordinates": "round_coordinates",
    "roundcoords": "round_coordinates",
    "descendingOrder": "descending_order",
    "desc": "descending_order",
    "includeViewbox": "include_viewbox",
    "viewbox": "include_viewbox",
    "alphaThreshold": "alpha_threshold",
    "blurRadius": "blur_radius",
    "blurradius": "blur_radius",
    "blurDelta": "blur_delta",
    "blurdelta": "blur_delta",
    "rightAngleEnhance": "right_angle_enhance",
    "rightangleenhance": "right_angle_enhance",
    "strokeWidth": "stroke_width",
    "strokewidth": "stroke_width",
    "pal": "palette",
    "maxSamples": "max_samples",
    "maxWorkers": "max_workers",
}


@dataclass
class TraceConfig:
    """Configuration for the tracing pipeline."""

    # Color quantization
    number_of_colors: int = 16
    min_color_ratio: float = 0.02
    quantization_cycles: int = 3
    color_sampling_mode: SamplingMode = SamplingMode.PER_PIXEL
    alpha_threshold: int = 0
    palette: Optional[Tuple[RGBA, ...]] = None
    max_samples: int = 65536

    # Preprocessing
    blur_radius: int = 0
    blur_delta: float = 20.0

    # Boundary tracing
    connectivity: int = 4
    path_omit_threshold: float = 8

    # Simplification and curve fitting
    line_threshold: float = 1.0
    quad_threshold: float = 1.0
    simplify_tolerance: float = 0.0
    right_angle_enhance: bool = True
    line_control_point_ratio: float = 0.0
    quad_control_point_ratio: float = 0.0

    # SVG output
    scale: float = 1.0
    round_coordinates: Optional[int] = 1
    descending_order: bool = False
    include_viewbox: bool = True
    stroke_width: float = 0.0

    # Performance
    parallel: bool = False
    max_workers: Optional[int] = None

    def __post_init__(self):
        self.color_sampling_mode = _parse_sampling_mode(self.color_sampling_mode)
        if self.palette is not None:
            self.palette = tuple(_parse_color(c) for c in self.palette)
        self.validate()

    def validate(self) -> None:
        """
        Check every option against its documented range.

        Raises:
            InvalidOptionError: On the first out-of-range option
        """
        _require_int("number_of_colors", self.number_of_colors, minimum=1)
        _require_range("min_color_ratio", self.min_color_ratio, 0.0, 1.0)
        _require_int("quantization_cycles", self.quantization_cycles, minimum=0)
        _require_int("alpha_threshold", self.alpha_threshold, minimum=0, maximum=254)
        _require_int("max_samples", self.max_samples, minimum=1)
        _require_int("blur_radius", self.blur_radius, minimum=0, maximum=5)
        _require_range("blur_delta", self.blur_delta, 0.0)
        if self.connectivity not in (4, 8):
            raise InvalidOptionError(f"connectivity must be 4 or 8, got {self.connectivity!r}")
        _require_range("path_omit_threshold", self.path_omit_threshold, 0.0)
        _require_range("line_threshold", self.line_threshold, 0.0)
        _require_range("quad_threshold", self.quad_threshold, 0.0)
        _require_range("simplify_tolerance", self.simplify_tolerance, 0.0)
        _require_range("line_control_point_ratio", self.line_control_point_ratio, 0.0, 1.0)
        _require_range("quad_control_point_ratio", self.quad_control_point_ratio, 0.0, 1.0)
        _require_range("scale", self.scale, 0.0)
        if self.scale == 0:
            raise InvalidOptionError("scale must be > 0, got 0")
        if self.round_coordinates is not None:
            _require_int("round_coordinates", self.round_coordinates, minimum=0)
        _require_range("stroke_width", self.stroke_width, 0.0)
        for name in ("right_angle_enhance", "descending_order", "include_viewbox", "parallel"):
            if not isinstance(getattr(self, name), (bool, np.bool_)):
                raise InvalidOptionError(f"{name} must be a bool, got {getattr(self, name)!r}")
        if self.max_workers is not None:
            _require_int("max_workers", self.max_workers, minimum=1)
        if self.palette is not None and len(self.palette) == 0:
            raise InvalidOptionError("palette must contain at least one color")

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]] = None) -> "TraceConfig":
        """
        Build a config from an options record.

        Accepts snake_case field names, camelCase names and legacy short
        names such as ``ltres`` or ``pathomit``. A ``preset`` key is applied
        first; explicit keys override it. Unrecognized keys are ignored.

        Raises:
            InvalidOptionError: If a value is out of range or the preset is unknown
        """
        options = dict(options or {})
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}

        preset = options.pop("preset", None)
        if preset is not None:
            from rastertrace.presets import get_preset
            for key, value in get_preset(preset).items():
                values[OPTION_ALIASES.get(key, key)] = value

        for key, value in options.items():
            name = OPTION_ALIASES.get(key, key)
            if name not in known:
                logger.debug(f"Ignoring unrecognized option {key!r}")
                continue
            values[name] = value

        return cls(**values)


def _parse_sampling_mode(value: Any) -> SamplingMode:
    if isinstance(value, SamplingMode):
        return value
    # Legacy numeric modes: 0 = generated palette, 1 = random, 2 = deterministic
    if isinstance(value, (int, np.integer)) and not isinstance(value, bool):
        return SamplingMode.HISTOGRAM if value == 0 else SamplingMode.PER_PIXEL
    if isinstance(value, str):
        normalized = value.strip().lower().replace("-", "_")
        for mode in SamplingMode:
            if mode.value == normalized:
                return mode
    raise InvalidOptionError(
        f"color_sampling_mode must be 'per_pixel' or 'histogram', got {value!r}"
    )


def _parse_color(value: Any) -> RGBA:
    try:
        channels = [int(c) for c in value]
    except (TypeError, ValueError) as e:
        raise InvalidOptionError(f"Invalid palette color {value!r}") from e
    if len(channels) == 3:
        channels.append(255)
    if len(channels) != 4 or any(c < 0 or c > 255 for c in channels):
        raise InvalidOptionError(f"Palette colors need 3 or 4 channels in 0-255, got {value!r}")
    return tuple(channels)


def _require_int(name: str, value: Any, minimum: int = None, maximum: int = None) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise InvalidOptionError(f"{name} must be an integer, got {value!r}")
    if minimum is not None and value < minimum:
        raise InvalidOptionError(f"{name} must be >= {minimum}, got {value}")
    if maximum is not None and value > maximum:
        raise InvalidOptionError(f"{name} must be <= {maximum}, got {value}")


def _require_range(name: str, value: Any, minimum: float, maximum: float = None) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        raise InvalidOptionError(f"{name} must be a number, got {value!r}")
    if not np.isfinite(value) or value < minimum:
        raise InvalidOptionError(f"{name} must be >= {minimum}, got {value}")
    if maximum is not None and value > maximum:
        raise InvalidOptionError(f"{name} must be <= {maximum}, got {value}")
