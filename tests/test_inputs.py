"""Tests for the inputs library."""

import re

import pytest

from flux_distro.exceptions import InputException, PermutationLimitException
from flux_distro.inputs import (
    Flattener,
    Permuter,
    combine,
    expected_size,
    input_id,
    normalize_key_for_template,
)


def _inputs(count: int, key: str = "value") -> list[dict[str, int]]:
    return [{key: i} for i in range(count)]


def test_permute_cross_product() -> None:
    """Test the number and identity of permutations of two providers."""
    permuter = Permuter()
    permuter.add_provider("tenants", _inputs(3, "tenant"))
    permuter.add_provider("regions", _inputs(4, "region"))
    result = permuter.combine()

    assert len(result) == 12
    assert len({perm["id"] for perm in result}) == 12
    assert result[0] == {
        "tenants": {"tenant": 0},
        "regions": {"region": 0},
        "id": input_id("tenants=0/regions=0"),
    }
    assert result[1]["id"] == input_id("tenants=0/regions=1")
    assert result[-1]["id"] == input_id("tenants=2/regions=3")


def test_input_id() -> None:
    """Test the input set identifier can be used in object names."""
    assert input_id("tenants=0/regions=0") == "d6c2313b1da5c984"
    assert re.fullmatch(r"[a-z0-9]{16}", input_id("My_Provider=10"))


def test_permute_unique_ids() -> None:
    """Test selections with the same index sums get distinct ids."""
    permuter = Permuter()
    permuter.add_provider("a", _inputs(2))
    permuter.add_provider("b", _inputs(3))
    permuter.add_provider("c", _inputs(2))
    assert len({perm["id"] for perm in permuter.combine()}) == 12


def test_permute_order() -> None:
    """Test permutations are in lexicographic order of the selected inputs."""
    permuter = Permuter()
    permuter.add_provider("a", _inputs(2))
    permuter.add_provider("b", _inputs(2))
    permuter.add_provider("c", _inputs(2))
    assert [perm["id"] for perm in permuter.combine()] == [
        input_id("a=0/b=0/c=0"),
        input_id("a=0/b=0/c=1"),
        input_id("a=0/b=1/c=0"),
        input_id("a=0/b=1/c=1"),
        input_id("a=1/b=0/c=0"),
        input_id("a=1/b=0/c=1"),
        input_id("a=1/b=1/c=0"),
        input_id("a=1/b=1/c=1"),
    ]


def test_permute_iter_matches_combine() -> None:
    """Test streaming the permutations yields the same order."""
    permuter = Permuter()
    permuter.add_provider("a", _inputs(3))
    permuter.add_provider("b", _inputs(2))
    streamed = list(permuter.iter_permutations())
    assert streamed == permuter.combine()


def test_permute_scopes_provider_names() -> None:
    """Test inputs are scoped under the normalized provider name."""
    permuter = Permuter()
    permuter.add_provider("my-provider.v1", [{"name": "x"}])
    assert permuter.combine() == [
        {"my_provider_v1": {"name": "x"}, "id": input_id("my_provider_v1=0")}
    ]


def test_permute_does_not_alias_inputs() -> None:
    """Test permutations are independent copies of the provider inputs."""
    provider_inputs = [{"settings": {"replicas": 1}}]
    permuter = Permuter()
    permuter.add_provider("app", provider_inputs)
    permuter.add_provider("env", [{"name": "dev"}, {"name": "prod"}])
    result = permuter.combine()
    result[0]["app"]["settings"]["replicas"] = 3
    assert result[1]["app"]["settings"]["replicas"] == 1
    assert provider_inputs[0]["settings"]["replicas"] == 1


def test_permute_limit() -> None:
    """Test the permutation cap is enforced when adding providers."""
    permuter = Permuter()
    for i in range(1, 5):
        permuter.add_provider(f"provider-{i}", _inputs(10))
    assert permuter.expected_permutations == 10000
    with pytest.raises(
        PermutationLimitException,
        match=(
            r"adding provider 'provider-5' with 10 inputs would exceed the maximum "
            r"allowed permutations. max: 10000, got: 100000"
        ),
    ):
        permuter.add_provider("provider-5", _inputs(10))
    assert permuter.expected_permutations == 10000


def test_permute_single_large_provider() -> None:
    """Test a single provider over the cap is rejected."""
    permuter = Permuter()
    with pytest.raises(PermutationLimitException, match="got: 10001"):
        permuter.add_provider("big", _inputs(10001))


def test_permute_empty_provider() -> None:
    """Test a provider without inputs empties the combination by default."""
    permuter = Permuter()
    permuter.add_provider("a", _inputs(2))
    permuter.add_provider("empty", [])
    permuter.add_provider("b", _inputs(3))
    assert permuter.expected_permutations == 0
    assert permuter.combine() == []


def test_permute_include_empty_providers() -> None:
    """Test an included empty provider contributes one empty input set."""
    permuter = Permuter(include_empty_providers=True)
    permuter.add_provider("a", _inputs(2))
    permuter.add_provider("empty", [])
    assert permuter.expected_permutations == 2
    combined = permuter.combine()
    assert len(combined) == 2
    assert combined[0]["empty"] == {}
    assert combined[0]["id"] == input_id("a=0/empty=0")


def test_permute_no_providers() -> None:
    """Test combining without providers."""
    assert Permuter().combine() == []


def test_permute_empty_name() -> None:
    """Test a provider name that normalizes to nothing is rejected."""
    permuter = Permuter()
    with pytest.raises(InputException, match="normalized provider name is empty: '123-'"):
        permuter.add_provider("123-", _inputs(1))


def test_add_after_combine() -> None:
    """Test providers can't be added once combined."""
    for combiner in (Permuter(), Flattener()):
        combiner.add_provider("a", _inputs(1))
        first = combiner.combine()
        with pytest.raises(InputException, match="already been generated"):
            combiner.add_provider("b", _inputs(1))
        assert combiner.combine() is first


def test_flatten() -> None:
    """Test flattening the inputs of providers."""
    flattener = Flattener()
    flattener.add_provider("a", [{"name": "x", "id": "custom"}, {"name": "y"}])
    flattener.add_provider("b", [{"name": "z"}])
    assert flattener.combine() == [
        {"name": "x", "id": "custom"},
        {"name": "y", "id": input_id("a=1")},
        {"name": "z", "id": input_id("b=0")},
    ]


@pytest.mark.parametrize(
    ("strategy", "sizes"),
    [
        ("Permute", [3, 4]),
        ("Permute", [2, 5, 1]),
        ("Flatten", [3, 4]),
        ("Permute", [2, 0, 3]),
        ("Flatten", [1, 0, 2]),
    ],
)
def test_combine_sizes(strategy: str, sizes: list[int]) -> None:
    """Test the size of the combination for each strategy."""
    providers = [(f"p{i}", _inputs(size)) for i, size in enumerate(sizes)]
    assert len(combine(strategy, providers)) == expected_size(strategy, sizes)


def test_combine_unknown_strategy() -> None:
    """Test an unknown strategy is an input error."""
    with pytest.raises(InputException, match="unknown input strategy: 'Zip'"):
        combine("Zip", [("a", _inputs(1))])


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("tenants", "tenants"),
        ("my-provider", "my_provider"),
        ("my--provider..v1", "my_provider_v1"),
        ("-leading-and-trailing-", "leading_and_trailing"),
        ("1st-provider", "st_provider"),
        ("__private", "private"),
        ("1234", ""),
        ("", ""),
    ],
)
def test_normalize_key_for_template(name: str, expected: str) -> None:
    """Test normalizing provider names to template keys."""
    assert normalize_key_for_template(name) == expected
