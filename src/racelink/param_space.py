"""
Parameter space definitions for racelink.

All subspace types use name as the first argument:
- Real(name, lower, upper, log=False)
- Integer(name, lower, upper, log=False)
- Bool(name)
- Categorical(name, variants, labels=None)
- Nested(name, space)

Numerical and boolean values travel across the driver boundary as JSON
numbers/booleans. Categorical values travel by their stable label (the
variant's name), never by position, so reordering variants does not change
what a driver-side configuration means.

All non-nested types support:
- sample(rng) - draw a random value (in the wire domain)
- to_unit(value) / from_unit(value) - map to and from [0, 1]
- encode(value) / decode(raw) - convert between native and wire values
"""
from __future__ import annotations

import enum
import math
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from .foundation.exceptions import ParameterSpaceError


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, (bool, np.bool_))


def _default_label(variant: Any) -> str:
    if isinstance(variant, enum.Enum):
        return variant.name
    return str(variant)


@dataclass
class Real:
    """Real-valued parameter in [lower, upper]."""

    name: str
    lower: float
    upper: float
    log: bool = False
    kind = "real"

    def __post_init__(self) -> None:
        _check_bounds(self.name, self.lower, self.upper, self.log)

    def sample(self, rng: np.random.Generator) -> float:
        if self.log:
            lo, hi = math.log(self.lower), math.log(self.upper)
            return float(min(self.upper, max(self.lower, math.exp(rng.uniform(lo, hi)))))
        return float(rng.uniform(self.lower, self.upper))

    def to_unit(self, value: float) -> float:
        """Map value to [0, 1] space."""
        v = float(value)
        if self.log:
            lo, hi = math.log(self.lower), math.log(self.upper)
            return 0.0 if hi == lo else (math.log(v) - lo) / (hi - lo)
        return 0.0 if self.upper == self.lower else (v - self.lower) / (self.upper - self.lower)

    def from_unit(self, value: float) -> float:
        """Map from [0, 1] space to parameter value."""
        u = min(max(value, 0.0), 1.0)
        if self.log:
            lo, hi = math.log(self.lower), math.log(self.upper)
            return float(min(self.upper, max(self.lower, math.exp(lo + u * (hi - lo)))))
        return float(self.lower + u * (self.upper - self.lower))

    def encode(self, value: Any) -> float:
        return self.decode(value)

    def decode(self, raw: Any) -> float:
        if not _is_number(raw) or not math.isfinite(float(raw)):
            raise ParameterSpaceError(f"Real parameter '{self.name}' expects a finite number, got {raw!r}", self.name)
        value = float(raw)
        if not (self.lower <= value <= self.upper):
            raise ParameterSpaceError(
                f"Real parameter '{self.name}'={value} out of [{self.lower}, {self.upper}]", self.name
            )
        return value

    def to_wire(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.kind, "lower": float(self.lower), "upper": float(self.upper), "log": self.log}

    def __str__(self) -> str:
        log = " (log)" if self.log else ""
        return f"{self.name}: [{self.lower!r}, {self.upper!r}]{log}"


@dataclass
class Integer:
    """Integer parameter in [lower, upper] (inclusive)."""

    name: str
    lower: int
    upper: int
    log: bool = False
    kind = "integer"

    def __post_init__(self) -> None:
        _check_bounds(self.name, self.lower, self.upper, self.log)

    def sample(self, rng: np.random.Generator) -> int:
        if self.log:
            lo, hi = math.log(self.lower), math.log(self.upper)
            return int(min(self.upper, max(self.lower, round(math.exp(rng.uniform(lo, hi))))))
        return int(rng.integers(self.lower, self.upper + 1))

    def to_unit(self, value: int) -> float:
        """Map value to [0, 1] space."""
        v = float(value)
        if self.log:
            lo, hi = math.log(self.lower), math.log(self.upper)
            return 0.0 if hi == lo else (math.log(v) - lo) / (hi - lo)
        return 0.0 if self.upper == self.lower else (v - self.lower) / (self.upper - self.lower)

    def from_unit(self, value: float) -> int:
        """Map from [0, 1] space to parameter value."""
        u = min(max(value, 0.0), 1.0)
        if self.log:
            lo, hi = math.log(self.lower), math.log(self.upper)
            mapped = math.exp(lo + u * (hi - lo))
        else:
            mapped = self.lower + u * (self.upper - self.lower)
        return int(min(self.upper, max(self.lower, round(mapped))))

    def encode(self, value: Any) -> int:
        return self.decode(value)

    def decode(self, raw: Any) -> int:
        if not _is_number(raw) or not float(raw).is_integer():
            raise ParameterSpaceError(f"Integer parameter '{self.name}' expects an integer, got {raw!r}", self.name)
        value = int(raw)
        if not (self.lower <= value <= self.upper):
            raise ParameterSpaceError(
                f"Integer parameter '{self.name}'={value} out of [{self.lower}, {self.upper}]", self.name
            )
        return value

    def to_wire(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.kind, "lower": int(self.lower), "upper": int(self.upper), "log": self.log}

    def __str__(self) -> str:
        log = " (log)" if self.log else ""
        return f"{self.name}: [{self.lower}, {self.upper}]{log}"


@dataclass
class Bool:
    """Boolean parameter (True/False)."""

    name: str
    kind = "bool"

    def sample(self, rng: np.random.Generator) -> bool:
        return bool(rng.integers(0, 2))

    def to_unit(self, value: bool) -> float:
        return 1.0 if value else 0.0

    def from_unit(self, value: float) -> bool:
        return value >= 0.5

    def encode(self, value: Any) -> bool:
        return self.decode(value)

    def decode(self, raw: Any) -> bool:
        # irace models booleans as the categorical strings "TRUE"/"FALSE".
        if isinstance(raw, (bool, np.bool_)):
            return bool(raw)
        if isinstance(raw, str) and raw.strip().lower() in {"true", "false"}:
            return raw.strip().lower() == "true"
        raise ParameterSpaceError(f"Bool parameter '{self.name}' expects a boolean, got {raw!r}", self.name)

    def to_wire(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.kind}

    def __str__(self) -> str:
        return f"{self.name}: bool"


@dataclass
class Categorical:
    """
    Categorical parameter with discrete variants.

    Variants can be arbitrary objects; each one is identified on the wire by
    a unique label (its enum name or str() unless labels are given).
    """

    name: str
    variants: Sequence[Any]
    labels: Optional[Sequence[str]] = None
    kind = "categorical"

    def __post_init__(self) -> None:
        self.variants = tuple(self.variants)
        if not self.variants:
            raise ParameterSpaceError(f"Categorical parameter '{self.name}' needs at least one variant", self.name)
        labels = tuple(self.labels) if self.labels is not None else tuple(_default_label(v) for v in self.variants)
        if len(labels) != len(self.variants):
            raise ParameterSpaceError(f"Categorical parameter '{self.name}' has {len(labels)} labels for {len(self.variants)} variants", self.name)
        if len(set(labels)) != len(labels):
            raise ParameterSpaceError(f"Categorical parameter '{self.name}' has duplicate variant labels {list(labels)}", self.name)
        self.labels = labels

    def sample(self, rng: np.random.Generator) -> str:
        return self.labels[int(rng.integers(0, len(self.labels)))]

    def to_unit(self, value: Any) -> float:
        """Map a label to [0, 1] space based on its position."""
        idx = list(self.labels).index(value)
        return 0.0 if len(self.labels) == 1 else idx / float(len(self.labels) - 1)

    def from_unit(self, value: float) -> str:
        """Map from [0, 1] space to a label."""
        u = min(max(value, 0.0), 1.0)
        idx = int(round(u * (len(self.labels) - 1)))
        return self.labels[idx]

    def encode(self, value: Any) -> str:
        for label, variant in zip(self.labels, self.variants):
            if variant is value or variant == value:
                return label
        if isinstance(value, str) and value in self.labels:
            return value
        raise ParameterSpaceError(f"Categorical parameter '{self.name}'={value!r} not in {list(self.variants)}", self.name)

    def decode(self, raw: Any) -> Any:
        label = raw if isinstance(raw, str) else str(raw)
        try:
            return self.variants[list(self.labels).index(label)]
        except ValueError:
            raise ParameterSpaceError(
                f"Categorical parameter '{self.name}' has no variant named {raw!r} (known: {list(self.labels)})", self.name
            ) from None

    def to_wire(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.kind, "variants": list(self.labels)}

    def __str__(self) -> str:
        return f"{self.name}: [{', '.join(repr(v) for v in self.variants)}]"


@dataclass
class Nested:
    """A parameter space embedded under a prefix; must be flattened before racing."""

    name: str
    space: "ParamSpace"
    kind = "nested"

    def __str__(self) -> str:
        return f"{self.name}: {self.space}"


ParamType = Union[Real, Integer, Bool, Categorical]
SubspaceType = Union[Real, Integer, Bool, Categorical, Nested]

_WIRE_TYPES = {"real": Real, "integer": Integer, "bool": Bool, "categorical": Categorical}


def _check_bounds(name: str, lower: float, upper: float, log: bool) -> None:
    if not (_is_number(lower) and _is_number(upper)):
        raise ParameterSpaceError(f"Bounds of '{name}' must be numbers", name)
    if lower > upper:
        raise ParameterSpaceError(f"Parameter '{name}' has lower bound {lower} > upper bound {upper}", name)
    if log and lower <= 0:
        raise ParameterSpaceError(f"Log-scaled parameter '{name}' needs a positive lower bound", name)


class Configuration(Mapping[str, Any]):
    """
    Immutable, ordered mapping from parameter name to its native value.

    Produced by decoding a driver-side configuration against a ParamSpace.
    """

    __slots__ = ("_values", "configuration_id")

    def __init__(self, values: Mapping[str, Any] | None = None, configuration_id: str | None = None) -> None:
        self._values: Dict[str, Any] = dict(values or {})
        self.configuration_id = configuration_id

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Configuration):
            return self._values == other._values
        if isinstance(other, Mapping):
            return self._values == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple((k, repr(v)) for k, v in self._values.items()))

    def __repr__(self) -> str:
        ident = f"#{self.configuration_id} " if self.configuration_id is not None else ""
        return f"Configuration({ident}{self._values!r})"

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._values)


@dataclass
class ParamSpace:
    """
    Defines a named parameter space.

    Example:
        space = (
            ParamSpace()
            .with_real("initial_temp", 0.02, 5e4, log=True)
            .with_integer("population_size", 5, 64)
            .with_bool("no_local_search")
            .with_categorical_names("restart", ["yes", "no"])
        )
    """

    subspaces: Dict[str, SubspaceType] = field(default_factory=dict)

    # --- building -----------------------------------------------------------------

    def add_raw(self, name: str, subspace: SubspaceType) -> "ParamSpace":
        """Adds a subspace under `name`, replacing any existing one."""
        self.subspaces[name] = subspace
        return self

    def add_real(self, name: str, lower: float, upper: float, log: bool = False) -> "ParamSpace":
        return self.add_raw(name, Real(name, lower, upper, log))

    def add_integer(self, name: str, lower: int, upper: int, log: bool = False) -> "ParamSpace":
        return self.add_raw(name, Integer(name, lower, upper, log))

    def add_bool(self, name: str) -> "ParamSpace":
        return self.add_raw(name, Bool(name))

    def add_categorical(self, name: str, variants: Sequence[Any], labels: Sequence[str] | None = None) -> "ParamSpace":
        return self.add_raw(name, Categorical(name, variants, labels))

    def add_categorical_names(self, name: str, variants: Sequence[str]) -> "ParamSpace":
        """Adds a categorical parameter whose variants are plain strings."""
        return self.add_categorical(name, [str(v) for v in variants])

    def add_nested(self, name: str, space: "ParamSpace") -> "ParamSpace":
        """Adds a nested parameter space; see flatten()."""
        return self.add_raw(name, Nested(name, space))

    # The original builder API distinguishes mutating add_* from consuming
    # with_*; both return the same instance here.
    with_real = add_real
    with_integer = add_integer
    with_bool = add_bool
    with_categorical = add_categorical
    with_categorical_names = add_categorical_names
    with_nested = add_nested

    # --- inspection ---------------------------------------------------------------

    def get_raw(self, name: str) -> Optional[SubspaceType]:
        return self.subspaces.get(name)

    @property
    def names(self) -> List[str]:
        return list(self.subspaces)

    def __contains__(self, name: object) -> bool:
        return name in self.subspaces

    def __iter__(self) -> Iterator[str]:
        return iter(self.subspaces)

    def __len__(self) -> int:
        return len(self.subspaces)

    def __str__(self) -> str:
        return "{" + ", ".join(str(s) for s in self.subspaces.values()) + "}"

    def is_flat(self) -> bool:
        return not any(isinstance(s, Nested) for s in self.subspaces.values())

    def flatten(self) -> bool:
        """
        Flatten nested spaces recursively, in place.

        `{"outer": {"inner": ...}}` becomes `{"outer.inner": ...}`. Returns
        True when anything was modified.
        """
        modified = False
        flat: Dict[str, SubspaceType] = {}
        for key, subspace in self.subspaces.items():
            if not isinstance(subspace, Nested):
                if key in flat:
                    raise ParameterSpaceError(f"Flat key '{key}' is already present", key)
                flat[key] = subspace
                continue
            modified = True
            inner = subspace.space
            inner.flatten()
            for inner_key, inner_param in inner.subspaces.items():
                flat_key = f"{key}.{inner_key}"
                if flat_key in flat or flat_key in self.subspaces:
                    raise ParameterSpaceError(f"Flat key '{flat_key}' is already present", flat_key)
                flat[flat_key] = _renamed(inner_param, flat_key)
        self.subspaces = flat
        return modified

    def flattened(self) -> "ParamSpace":
        """Return a flat copy of this space, leaving it (and nested spaces) untouched."""
        flat = ParamSpace(dict(self.subspaces))
        for key, subspace in flat.subspaces.items():
            if isinstance(subspace, Nested):
                flat.subspaces[key] = Nested(subspace.name, subspace.space.flattened())
        flat.flatten()
        return flat

    def _param(self, name: str) -> ParamType:
        subspace = self.subspaces.get(name)
        if subspace is None:
            raise ParameterSpaceError(f"Unknown parameter name: '{name}'", name)
        if isinstance(subspace, Nested):
            raise ParameterSpaceError(f"Nested parameter space '{name}' is not supported; call flatten() first", name)
        return subspace

    # --- sampling (wire domain) ---------------------------------------------------

    def sample(self, rng: Optional[np.random.Generator] = None) -> Dict[str, Any]:
        """Sample a wire-domain configuration from the space."""
        rng = np.random.default_rng() if rng is None else rng
        return {name: self._param(name).sample(rng) for name in self.subspaces}

    # --- conversion ---------------------------------------------------------------

    def encode_configuration(self, config: Mapping[str, Any]) -> Dict[str, Any]:
        """Convert native values into their JSON-safe wire form."""
        return {name: self._param(name).encode(value) for name, value in config.items()}

    def decode_configuration(self, raw: Mapping[str, Any], configuration_id: str | None = None) -> Configuration:
        """
        Convert a wire configuration into a Configuration.

        Values are ordered as in the space. Parameters the driver left out
        (inactive ones) are simply absent.
        """
        if not isinstance(raw, Mapping):
            raise ParameterSpaceError(f"Configuration must be an object, got {type(raw).__name__}")
        for name in raw:
            self._param(name)
        values = {name: self._param(name).decode(raw[name]) for name in self.subspaces if name in raw and raw[name] is not None}
        return Configuration(values, configuration_id=configuration_id)

    def validate(self, config: Mapping[str, Any]) -> None:
        """Validate that all parameters are present and within bounds."""
        for name in self.subspaces:
            if name not in config:
                raise ParameterSpaceError(f"Parameter '{name}' missing from config", name)
        self.encode_configuration(config)

    def to_wire(self) -> List[Dict[str, Any]]:
        return [self._param(name).to_wire() for name in self.subspaces]

    @classmethod
    def from_wire(cls, records: Sequence[Mapping[str, Any]]) -> "ParamSpace":
        """Rebuild a space from its wire description; categorical variants become their labels."""
        space = cls()
        for record in records:
            try:
                kind = _WIRE_TYPES[record["type"]]
                name = str(record["name"])
            except (KeyError, TypeError) as exc:
                raise ParameterSpaceError(f"Malformed parameter description {record!r}") from exc
            if kind is Bool:
                space.add_raw(name, Bool(name))
            elif kind is Categorical:
                space.add_raw(name, Categorical(name, list(record.get("variants") or [])))
            else:
                space.add_raw(name, kind(name, record["lower"], record["upper"], bool(record.get("log", False))))
        return space


def _renamed(param: SubspaceType, name: str) -> SubspaceType:
    if isinstance(param, Categorical):
        return Categorical(name, param.variants, param.labels)
    if isinstance(param, Bool):
        return Bool(name)
    if isinstance(param, (Real, Integer)):
        return type(param)(name, param.lower, param.upper, param.log)
    return Nested(name, param.space)


__all__ = [
    "ParamSpace",
    "Configuration",
    "Real",
    "Integer",
    "Bool",
    "Categorical",
    "Nested",
    "ParamType",
    "SubspaceType",
]
