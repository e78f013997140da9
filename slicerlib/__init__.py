from ._version import __version__
from .models import (
    Clip,
    Region,
    EnvelopeBucket,
    EffectsSettings,
    ExportResult,
    PlaybackState,
)
from .errors import (
    SlicerError,
    InvalidBreakpoint,
    InvalidRegionIndex,
    DecodeFailure,
    InvalidEffectsParameter,
    RenderFailure,
    EncodeFailure,
    CancelledComputation,
    PlaybackError,
    NoClipLoaded,
)
from .config import (
    default_config,
    merge_configs,
    validate_config,
    validate_config_fields,
    validate_param_values,
    validate_effects,
    load_preset,
    save_preset,
    ConfigError,
    ConfigFieldError,
    ParamSpec,
    EFFECTS_PARAMS,
)
from .timeline import IntervalModel
from .waveform import Zoom, Tile, compute_buckets, plan_tiles, overview_buckets
from .downsampler import Downsampler, BucketTask
from .playback import PlaybackScheduler
from .rendering import render_region, encode_wav, export_region, Exporter
from .audio import decode, load_clip
from .session import Session
from .events import EventBus

__all__ = [
    "__version__",
    "Clip",
    "Region",
    "EnvelopeBucket",
    "EffectsSettings",
    "ExportResult",
    "PlaybackState",
    "SlicerError",
    "InvalidBreakpoint",
    "InvalidRegionIndex",
    "DecodeFailure",
    "InvalidEffectsParameter",
    "RenderFailure",
    "EncodeFailure",
    "CancelledComputation",
    "PlaybackError",
    "NoClipLoaded",
    "default_config",
    "merge_configs",
    "validate_config",
    "validate_config_fields",
    "validate_param_values",
    "validate_effects",
    "load_preset",
    "save_preset",
    "ConfigError",
    "ConfigFieldError",
    "ParamSpec",
    "EFFECTS_PARAMS",
    "IntervalModel",
    "Zoom",
    "Tile",
    "compute_buckets",
    "plan_tiles",
    "overview_buckets",
    "Downsampler",
    "BucketTask",
    "PlaybackScheduler",
    "render_region",
    "encode_wav",
    "export_region",
    "Exporter",
    "decode",
    "load_clip",
    "Session",
    "EventBus",
]
