"""rastertrace: layered raster-to-vector tracing."""
from rastertrace.types import (
    Raster,
    Palette,
    PaletteEntry,
    IndexMap,
    Region,
    Layer,
    SegmentKind,
    Segment,
    Path,
    CompoundPath,
    VectorLayer,
    VectorDocument,
    SamplingMode,
    TraceConfig,
    VectorizationError,
    InvalidInputError,
    DegenerateInputError,
    InvalidOptionError,
    TracingFailureError,
)
from rastertrace.pipeline import (
    TraceArtifacts,
    TracePipeline,
    TraceResult,
    process_image,
    trace,
    trace_result,
    trace_to_svg,
)
from rastertrace.raster_ingest import load_raster, raster_from_array
from rastertrace.svg_export import to_svg

__version__ = "0.1.0"

__all__ = [
    "Raster",
    "Palette",
    "PaletteEntry",
    "IndexMap",
    "Region",
    "Layer",
    "SegmentKind",
    "Segment",
    "Path",
    "CompoundPath",
    "VectorLayer",
    "VectorDocument",
    "SamplingMode",
    "TraceConfig",
    "VectorizationError",
    "InvalidInputError",
    "DegenerateInputError",
    "InvalidOptionError",
    "TracingFailureError",
    "TraceArtifacts",
    "TracePipeline",
    "TraceResult",
    "process_image",
    "trace",
    "trace_result",
    "trace_to_svg",
    "load_raster",
    "raster_from_array",
    "to_svg",
]
