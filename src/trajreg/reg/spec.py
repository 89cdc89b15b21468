from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from trajreg.exceptions import ConfigurationError

DYNAMIC_MARKER = "#"

SpecLike = Union[str, "MeasureSpec"]


@dataclass(frozen=True)
class MeasureSpec:
    """
    A parsed measure spec.

    raw: the spec string without the dynamic marker, e.g. "dtheta:smoothsd=0.05".
    name: measure name, e.g. "dtheta".
    args: measure arguments keyed by lower-case name; a positional argument is
        stored under the empty key "" until a measure binds it.
    dynamic: True when the measure is evaluated per time point.
    """

    raw: str
    name: str
    args: Mapping[str, str] = field(default_factory=dict)
    dynamic: bool = False

    def arg(self, key: str, default: Optional[str] = None, *, positional: bool = False) -> Optional[str]:
        """Argument value by name; with positional=True an unnamed argument also matches."""
        key = key.lower()
        if key in self.args:
            return self.args[key]
        if positional and "" in self.args:
            return self.args[""]
        return default


def _split_args(raw: str, text: str) -> Dict[str, str]:
    args: Dict[str, str] = {}
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        if "=" in part:
            k, v = part.split("=", 1)
            k = k.strip().lower()
            if not k:
                raise ConfigurationError(f"Malformed argument '{part}' in measure spec '{raw}'")
        else:
            k, v = "", part
        if k in args:
            raise ConfigurationError(f"Duplicate argument '{k or part}' in measure spec '{raw}'")
        args[k] = v.strip()
    return args


def parse_measure_spec(spec: SpecLike, *, dynamic: bool = False) -> MeasureSpec:
    """
    Parse "[#]name[:arg,...]" into a MeasureSpec.

    A leading '#' marks the measure as dynamic and is stripped from the name.
    Without the marker the measure is dynamic only if the caller says so.
    Arguments are either "key=value" or a single positional value.
    """
    if isinstance(spec, MeasureSpec):
        return spec if spec.dynamic or not dynamic else MeasureSpec(spec.raw, spec.name, spec.args, True)
    if not isinstance(spec, str):
        raise ConfigurationError(f"Measure spec must be a string, got {type(spec).__name__}")

    raw = spec.strip()
    if raw.startswith(DYNAMIC_MARKER):
        dynamic = True
        raw = raw[len(DYNAMIC_MARKER):]
    if not raw:
        raise ConfigurationError(f"Empty measure spec '{spec}'")

    name, sep, rest = raw.partition(":")
    name = name.strip()
    if not name:
        raise ConfigurationError(f"Measure spec '{spec}' has no measure name")
    args = _split_args(raw, rest) if sep else {}
    return MeasureSpec(raw=raw, name=name, args=args, dynamic=dynamic)


def parse_measure_specs(
    specs: Union[SpecLike, Sequence[SpecLike]], *, dynamic: bool = False
) -> Tuple[List[MeasureSpec], List[bool]]:
    """
    Parse one spec or a list of specs.

    Returns (specs, is_fixed) where is_fixed[i] is False for dynamic specs.
    """
    if isinstance(specs, (str, MeasureSpec)):
        specs = [specs]
    parsed = [parse_measure_spec(s, dynamic=dynamic) for s in specs]
    return parsed, [not s.dynamic for s in parsed]
