"""Exceptions related to flux-distro."""

__all__ = [
    "FluxDistroException",
    "InputException",
    "VersionException",
    "RegistryException",
    "PolicyException",
    "PermutationLimitException",
    "RenderException",
    "CommandException",
    "KustomizeException",
    "BuildException",
]


class FluxDistroException(Exception):
    """Generic base exception used for this library."""


class InputException(FluxDistroException):
    """Raised when the input files or values are not formatted as expected."""


class VersionException(InputException):
    """Raised when a version or version constraint cannot be parsed or matched."""


class RegistryException(InputException):
    """Raised when a container registry is not a known distribution variant."""


class PolicyException(FluxDistroException):
    """Raised when a valid configuration is not allowed for the resolved version."""


class PermutationLimitException(FluxDistroException):
    """Raised when combining input providers would exceed the permutation cap."""

    def __init__(self, provider_name: str, inputs: int, maximum: int, got: int) -> None:
        super().__init__(
            f"adding provider '{provider_name}' with {inputs} inputs would exceed "
            f"the maximum allowed permutations. max: {maximum}, got: {got}"
        )
        self.provider_name = provider_name
        self.maximum = maximum
        self.got = got


class RenderException(FluxDistroException):
    """Raised when a resource template fails to render or parse."""


class CommandException(FluxDistroException):
    """Raised when there is a failure running a subcommand."""


class KustomizeException(CommandException):
    """Raised when there is a failure running a kustomize command."""


class BuildException(FluxDistroException):
    """Raised when a manifest build stage fails."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage} failed: {message}")
        self.stage = stage
