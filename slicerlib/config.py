"""ParamSpec-driven configuration: defaults, merging, presets and validation.

Effects settings are range-checked here, with the Nyquist limits checked
once a clip's samplerate is known.
"""

from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass
from typing import Any

from .errors import InvalidEffectsParameter
from .models import EffectsSettings

PRESET_SCHEMA_VERSION = "1.0"

# Keys that are internal/CLI-only and should not be saved in presets
_INTERNAL_KEYS = {"output_folder", "play"}


class ConfigError(Exception):
    """Raised when configuration validation fails."""
    pass


@dataclass
class ConfigFieldError:
    """A single validation error for one configuration field.

    Attributes:
        key:     The config key that failed validation.
        value:   The offending value.
        message: Human-readable explanation of what is wrong.
    """
    key: str
    value: Any
    message: str


@dataclass(frozen=True)
class ParamSpec:
    """Declarative description of a single configuration parameter.

    Describes type, default, valid range, allowed values and labels for
    the effects chain, playback and export sections.
    """
    key: str
    type: type | tuple              # expected Python type(s)
    default: Any
    label: str                       # short UI label
    description: str = ""            # longer help text
    min: float | int | None = None   # inclusive lower bound (unless min_exclusive)
    max: float | int | None = None   # inclusive upper bound (unless max_exclusive)
    min_exclusive: bool = False
    max_exclusive: bool = False
    choices: list | None = None      # allowed string values
    nullable: bool = False           # True if None is valid


# ---------------------------------------------------------------------------
# Parameter sections
# ---------------------------------------------------------------------------

EFFECTS_PARAMS: list[ParamSpec] = [
    ParamSpec(
        key="speed", type=(int, float), default=1.0,
        min=0.0, max=16.0, min_exclusive=True,
        label="Playback rate",
        description=(
            "Playback-rate multiplier. 2.0 plays an octave up in half the "
            "time, 0.5 an octave down in twice the time."
        ),
    ),
    ParamSpec(
        key="highpass_hz", type=(int, float), default=0.0, min=0.0,
        label="High-pass cutoff (Hz)",
        description="Frequencies below this are attenuated. 0 disables the filter.",
    ),
    ParamSpec(
        key="lowpass_hz", type=(int, float), default=None, min=0.0,
        min_exclusive=True, nullable=True,
        label="Low-pass cutoff (Hz)",
        description=(
            "Frequencies above this are attenuated. Empty disables the "
            "filter. Must not exceed the clip's Nyquist frequency."
        ),
    ),
    ParamSpec(
        key="compression_threshold_db", type=(int, float), default=0.0,
        min=-100.0, max=0.0,
        label="Compression threshold (dB)",
        description="Level above which dynamic-range compression is applied.",
    ),
    ParamSpec(
        key="gain_db", type=(int, float), default=0.0,
        min=-96.0, max=24.0,
        label="Output gain (dB)",
    ),
    ParamSpec(
        key="loop", type=bool, default=False,
        label="Loop playback",
        description="Repeat the region during live playback (ignored on export).",
    ),
]

PLAYBACK_PARAMS: list[ParamSpec] = [
    ParamSpec(
        key="ramp_ms", type=(int, float), default=1.0,
        min=0.0, max=50.0, min_exclusive=True,
        label="Fade ramp (ms)",
        description="Length of the linear gain ramp applied at every start and stop.",
    ),
    ParamSpec(
        key="samples_per_pixel", type=int, default=32, min=1, max=1024,
        label="Initial zoom (samples/pixel)",
    ),
    ParamSpec(
        key="downsample_workers", type=int, default=4, min=1, max=32,
        label="Waveform worker threads",
    ),
]

EXPORT_PARAMS: list[ParamSpec] = [
    ParamSpec(
        key="wav_subtype", type=str, default="PCM_16",
        choices=["PCM_16", "PCM_24", "PCM_32"],
        label="WAV sample format",
        description=(
            "Integer PCM only: float WAVs carry a timestamped PEAK chunk, "
            "which would break content-addressed naming."
        ),
    ),
    ParamSpec(
        key="output_folder", type=str, default="exports",
        label="Export folder",
    ),
]


def _all_param_specs() -> list[ParamSpec]:
    return list(EFFECTS_PARAMS) + list(PLAYBACK_PARAMS) + list(EXPORT_PARAMS)


def default_config() -> dict[str, Any]:
    """Returns the built-in default configuration."""
    return {p.key: p.default for p in _all_param_specs()}


def merge_configs(*configs: dict[str, Any]) -> dict[str, Any]:
    """Merge multiple config dicts left-to-right.

    Later values override earlier ones; a ``None`` only overrides keys
    whose ParamSpec is nullable, so unset CLI flags don't clobber presets.
    """
    nullable = {p.key for p in _all_param_specs() if p.nullable}
    result: dict[str, Any] = {}
    for cfg in configs:
        for k, v in cfg.items():
            if v is None and k in result and k not in nullable:
                continue
            result[k] = v
    return result


def load_preset(path: str) -> dict[str, Any]:
    """
    Load a JSON preset file. Returns a partial config dict.
    Raises ConfigError if the file cannot be read or parsed.
    """
    if not os.path.isfile(path):
        raise ConfigError(f"Preset file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in preset file {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read preset file {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Preset file must contain a JSON object, got {type(data).__name__}")

    # Metadata keys are informational, not config
    return {k: v for k, v in data.items() if k not in ("schema_version", "_description")}


def save_preset(config: dict[str, Any], path: str, *, description: str | None = None) -> None:
    """
    Save a config dict as a JSON preset file.
    Internal/CLI-only keys and values equal to the defaults are skipped.
    """
    preset: dict[str, Any] = {"schema_version": PRESET_SCHEMA_VERSION}
    if description:
        preset["_description"] = description

    defaults = default_config()
    for k, v in config.items():
        if k in _INTERNAL_KEYS or k.startswith("_"):
            continue
        if k in defaults and defaults[k] == v:
            continue
        preset[k] = v

    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(preset, f, indent=4, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Validation  (ParamSpec-driven)
# ---------------------------------------------------------------------------

def _check_value(spec: ParamSpec, value: Any) -> str | None:
    """Return what is wrong with *value* for *spec*, or None if it is valid."""
    if value is None:
        return None if spec.nullable else f"{spec.label} must not be empty."

    # bool is an int subclass; only accept it where bool is expected
    if isinstance(value, bool) and spec.type is not bool:
        return f"{spec.label} must be {_type_label(spec.type)}, got boolean."
    if not isinstance(value, spec.type):
        return (f"{spec.label} must be {_type_label(spec.type)}, "
                f"got {type(value).__name__}.")

    if spec.choices is not None:
        if value not in spec.choices:
            opts = ", ".join(repr(c) for c in spec.choices)
            return f"{spec.label} must be one of {opts}."
        return None

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value):
        return f"{spec.label} must be a number."
    if spec.min is not None:
        if spec.min_exclusive and value <= spec.min:
            return f"{spec.label} must be greater than {spec.min}."
        if not spec.min_exclusive and value < spec.min:
            return f"{spec.label} must be at least {spec.min}."
    if spec.max is not None:
        if spec.max_exclusive and value >= spec.max:
            return f"{spec.label} must be less than {spec.max}."
        if not spec.max_exclusive and value > spec.max:
            return f"{spec.label} must be at most {spec.max}."
    return None


def validate_param_values(
    params: list[ParamSpec],
    values: dict[str, Any],
) -> list[ConfigFieldError]:
    """Check *values* against *params*, one error at most per field.

    Keys absent from *values* are skipped (they take their default).
    """
    errors: list[ConfigFieldError] = []
    for spec in params:
        if spec.key not in values:
            continue
        message = _check_value(spec, values[spec.key])
        if message is not None:
            errors.append(ConfigFieldError(spec.key, values[spec.key], message))
    return errors


def validate_config_fields(config: dict[str, Any]) -> list[ConfigFieldError]:
    """Validate a flat config dict against every known :class:`ParamSpec`.

    Returns structured errors.  Never raises.
    """
    return validate_param_values(_all_param_specs(), config)


def validate_config(config: dict[str, Any]) -> None:
    """Validate a flat config dict.

    Raises :class:`ConfigError` listing every invalid field.
    """
    errors = validate_config_fields(config)
    if errors:
        lines = [e.message for e in errors]
        raise ConfigError(
            "Configuration has invalid values:\n  • " + "\n  • ".join(lines)
        )


def effects_field_errors(
    settings: EffectsSettings,
    samplerate: int | None = None,
) -> list[ConfigFieldError]:
    """Range-check *settings*, including the Nyquist limit of *samplerate*.

    Without a samplerate (no clip loaded yet) only the static ranges apply.
    """
    values = settings.to_dict()
    errors = validate_param_values(EFFECTS_PARAMS, values)
    if samplerate is None:
        return errors
    bad = {e.key for e in errors}
    labels = {p.key: p.label for p in EFFECTS_PARAMS}
    nyquist = samplerate / 2.0
    hp = values.get("highpass_hz")
    if "highpass_hz" not in bad and hp is not None and hp >= nyquist:
        errors.append(ConfigFieldError(
            "highpass_hz", hp,
            f"{labels['highpass_hz']} must be below the Nyquist frequency "
            f"({nyquist:g} Hz).",
        ))
    # A low-pass at exactly Nyquist is a bypass
    lp = values.get("lowpass_hz")
    if "lowpass_hz" not in bad and lp is not None and lp > nyquist:
        errors.append(ConfigFieldError(
            "lowpass_hz", lp,
            f"{labels['lowpass_hz']} must not exceed the Nyquist frequency "
            f"({nyquist:g} Hz).",
        ))
    return errors


def validate_effects(settings: EffectsSettings, samplerate: int | None = None) -> None:
    """Raise :class:`InvalidEffectsParameter` for the first invalid field.

    Nothing is ever clamped: an out-of-range value stops the render.
    """
    errors = effects_field_errors(settings, samplerate)
    if errors:
        first = errors[0]
        raise InvalidEffectsParameter(first.key, first.value, first.message)


def effects_from_config(config: dict[str, Any]) -> EffectsSettings:
    """Build :class:`EffectsSettings` from the effects keys of a flat config."""
    keys = {p.key for p in EFFECTS_PARAMS}
    return EffectsSettings.from_dict({k: v for k, v in config.items() if k in keys})


def _type_label(t) -> str:
    """Human-readable label for an expected type or tuple of types."""
    if isinstance(t, tuple):
        return " or ".join(x.__name__ for x in t)
    return t.__name__
