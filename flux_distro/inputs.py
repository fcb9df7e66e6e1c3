"""Library for combining the inputs exported by multiple input providers.

Each input provider exports a list of input sets (mappings of key to value).
The inputs of all providers are combined into a single list, either by
flattening them or by computing every permutation of one input set per
provider:

```python
from flux_distro import inputs

permuter = inputs.Permuter()
permuter.add_provider("tenants", [{"name": "team-a"}, {"name": "team-b"}])
permuter.add_provider("regions", [{"zone": "eu"}, {"zone": "us"}])
for combined in permuter.combine():
    print(combined["id"], combined["tenants"]["name"], combined["regions"]["zone"])
```
"""

from collections.abc import Iterator
import copy
import hashlib
import logging
import math
import re
from typing import Any, Protocol

from .exceptions import InputException, PermutationLimitException
from .instance import INPUT_STRATEGY_FLATTEN, INPUT_STRATEGY_PERMUTE

__all__ = [
    "FactSet",
    "Combined",
    "Combiner",
    "Flattener",
    "Permuter",
    "combine",
    "input_id",
    "normalize_key_for_template",
]

_LOGGER = logging.getLogger(__name__)

MAX_PERMUTATIONS = 10000
ID_KEY = "id"

# Hex characters of the input set identifier
ID_LENGTH = 16

FactSet = dict[str, Any]
Combined = list[FactSet]

_INVALID_KEY_CHARS = re.compile(r"[^A-Za-z0-9_]+")


def normalize_key_for_template(name: str) -> str:
    """Return a key for the name that can be referenced as a template attribute."""
    key = _INVALID_KEY_CHARS.sub("_", name)
    return key.lstrip("_0123456789").rstrip("_")


def input_id(selection: str) -> str:
    """Return the identifier of an input set from the providers and indices selected.

    The identifier is a lowercase hex digest, so it can be used as part of a
    Kubernetes object name.
    """
    return hashlib.sha256(selection.encode("utf-8")).hexdigest()[:ID_LENGTH]


def _deep_merge(dst: dict[str, Any], src: dict[str, Any]) -> None:
    for key, value in src.items():
        if isinstance(value, dict) and isinstance(dst.get(key), dict):
            _deep_merge(dst[key], value)
        else:
            dst[key] = copy.deepcopy(value)


class Combiner(Protocol):
    """A strategy for combining the inputs of multiple providers."""

    def add_provider(self, name: str, inputs: list[FactSet]) -> None:
        """Accumulate the inputs exported by a provider."""

    def combine(self) -> Combined:
        """Return the combined inputs, after which no providers may be added."""


class _SingleUse:
    """Rejects new providers once the inputs have been combined."""

    def __init__(self) -> None:
        self._combined: Combined | None = None

    def _check_open(self) -> None:
        if self._combined is not None:
            raise InputException(
                "permutations have already been generated, cannot add more inputs"
            )


class Flattener(_SingleUse):
    """Concatenates the inputs of all providers in the order they were added."""

    def __init__(self) -> None:
        """Initialize Flattener."""
        super().__init__()
        self._inputs: list[tuple[str, int, FactSet]] = []

    def add_provider(self, name: str, inputs: list[FactSet]) -> None:
        """Accumulate the inputs exported by a provider."""
        self._check_open()
        self._inputs.extend((name, index, input_set) for index, input_set in enumerate(inputs))

    def combine(self) -> Combined:
        """Return every input set of every provider.

        Input sets keep their own `id` and otherwise get one derived from the
        provider and the position of the input set.
        """
        if self._combined is None:
            self._combined = []
            for name, index, input_set in self._inputs:
                flat = copy.deepcopy(input_set)
                flat.setdefault(ID_KEY, input_id(f"{name}={index}"))
                self._combined.append(flat)
        return self._combined


class Permuter(_SingleUse):
    """Computes the cross product L_1 x L_2 x ... x L_n of provider inputs.

    The inputs of each provider are scoped under the normalized provider
    name so that keys exported by different providers cannot collide.
    """

    def __init__(self, include_empty_providers: bool = False) -> None:
        """Initialize Permuter.

        By default a provider without inputs makes the combination empty.
        When include_empty_providers is set, such a provider contributes a
        single empty input set instead.
        """
        super().__init__()
        self._include_empty_providers = include_empty_providers
        self._names: list[str] = []
        self._scoped_inputs: list[list[FactSet]] = []
        self._expected = 0

    @property
    def expected_permutations(self) -> int:
        """The number of permutations the accumulated providers produce."""
        return self._expected

    def add_provider(self, name: str, inputs: list[FactSet]) -> None:
        """Accumulate the inputs exported by a provider.

        Raises PermutationLimitException if the provider would push the
        number of permutations over the maximum.
        """
        self._check_open()
        if not inputs and self._include_empty_providers:
            _LOGGER.debug("Input provider '%s' has no inputs, using an empty set", name)
            inputs = [{}]

        expected = len(inputs) if not self._scoped_inputs else self._expected * len(inputs)
        if expected > MAX_PERMUTATIONS:
            raise PermutationLimitException(name, len(inputs), MAX_PERMUTATIONS, expected)

        if not (key := normalize_key_for_template(name)):
            raise InputException(f"normalized provider name is empty: '{name}'")

        self._expected = expected
        self._names.append(key)
        self._scoped_inputs.append([{key: input_set} for input_set in inputs])

    def iter_permutations(self) -> Iterator[FactSet]:
        """Yield the permutations one at a time.

        This walks the providers with an explicit cursor instead of recursion
        so the state is one index per provider however many permutations
        there are. Permutations are yielded in lexicographic order of the
        selected input indices.
        """
        count = len(self._scoped_inputs)
        if count == 0 or any(not scoped for scoped in self._scoped_inputs):
            return

        # selected[i] is the input index chosen for provider i, -1 for none
        selected = [-1] * count
        cursor = 0
        while True:
            selected[cursor] += 1
            while selected[cursor] == len(self._scoped_inputs[cursor]):
                if cursor == 0:
                    return
                selected[cursor] = -1
                cursor -= 1
                selected[cursor] += 1
            cursor += 1
            if cursor == count:
                yield self._permutation(selected)
                cursor -= 1

    def _permutation(self, selected: list[int]) -> FactSet:
        perm: FactSet = {}
        id_parts = []
        for provider, index in enumerate(selected):
            _deep_merge(perm, self._scoped_inputs[provider][index])
            id_parts.append(f"{self._names[provider]}={index}")
        perm[ID_KEY] = input_id("/".join(id_parts))
        return perm

    def combine(self) -> Combined:
        """Return all the permutations of the accumulated provider inputs."""
        if self._combined is None:
            self._combined = list(self.iter_permutations())
            _LOGGER.debug(
                "Generated %d permutations from %d providers",
                len(self._combined),
                len(self._scoped_inputs),
            )
        return self._combined


def new_combiner(strategy: str, include_empty_providers: bool = False) -> Combiner:
    """Return a combiner for the named input strategy."""
    if strategy == INPUT_STRATEGY_FLATTEN:
        return Flattener()
    if strategy == INPUT_STRATEGY_PERMUTE:
        return Permuter(include_empty_providers=include_empty_providers)
    raise InputException(f"unknown input strategy: '{strategy}'")


def combine(
    strategy: str,
    providers: list[tuple[str, list[FactSet]]],
    include_empty_providers: bool = False,
) -> Combined:
    """Combine the inputs of the providers, in order, with the named strategy."""
    combiner = new_combiner(strategy, include_empty_providers)
    for name, provider_inputs in providers:
        combiner.add_provider(name, provider_inputs)
    result = combiner.combine()
    _LOGGER.debug(
        "Combined %d providers into %d input sets (%s)",
        len(providers),
        len(result),
        strategy,
    )
    return result


def expected_size(strategy: str, sizes: list[int]) -> int:
    """Return the number of input sets the strategy produces for provider sizes."""
    if strategy == INPUT_STRATEGY_PERMUTE:
        return math.prod(sizes) if sizes else 0
    return sum(sizes)
