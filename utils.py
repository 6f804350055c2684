"""
Shared helpers for plugin configuration.
"""
import dataclasses
import math
import re

from errors import ConfigurationError

_CAMEL_RE = re.compile(r'(?<!^)(?=[A-Z])')


def camel_to_snake(key):
    """'windowSize' -> 'window_size'; snake_case keys pass through unchanged."""
    return _CAMEL_RE.sub('_', str(key)).lower()


def config_from_mapping(config_cls, mapping=None):
    """
    Build a frozen config dataclass from a flat key->value mapping.

    Keys may be camelCase or snake_case. Unknown keys and values the config
    rejects raise ConfigurationError.
    """
    fields = {f.name: f for f in dataclasses.fields(config_cls)}
    kwargs = {}
    for raw_key, value in (mapping or {}).items():
        key = camel_to_snake(raw_key)
        if key not in fields:
            raise ConfigurationError(
                f"Unknown parameter '{raw_key}' for {config_cls.__name__}; "
                f"expected one of {sorted(fields)}"
            )
        if isinstance(value, list):
            value = tuple(value)
        kwargs[key] = value
    try:
        return config_cls(**kwargs)
    except ConfigurationError:
        raise
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid {config_cls.__name__}: {exc}") from exc


def clamp(value, lo=0.0, hi=1.0):
    """Clamp to [lo, hi]; NaN maps to lo."""
    v = float(value)
    if math.isnan(v):
        return lo
    return max(lo, min(hi, v))
