"""Flux-distro build action."""

from argparse import (
    ArgumentParser,
    _SubParsersAction as SubParsersAction,
    BooleanOptionalAction,
)
import logging
import pathlib
import tempfile
from typing import Any, cast

import yaml

from flux_distro import builder, images, inputs, templating
from flux_distro.exceptions import InputException
from flux_distro.instance import CommonMetadata, FluxInstance, ResourceSet
from flux_distro.manifest import dump_objects, set_common_metadata
from flux_distro.options import options_for_instance
from flux_distro.preflight import preflight_checks
from flux_distro.version import match_version

_LOGGER = logging.getLogger(__name__)


def _read_docs(path: pathlib.Path) -> list[Any]:
    try:
        with open(path) as f:
            return [doc for doc in yaml.safe_load_all(f) if doc is not None]
    except OSError as err:
        raise InputException(f"Unable to read {path}: {err}") from err
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse {path}: {err}") from err


def _find_doc(path: pathlib.Path, kind: str) -> dict[str, Any]:
    for doc in _read_docs(path):
        if isinstance(doc, dict) and doc.get("kind") == kind:
            return doc
    raise InputException(f"No {kind} found in {path}")


def _set_metadata(
    objects: list[dict[str, Any]],
    common_metadata: CommonMetadata | None,
    owner_labels: dict[str, str],
) -> None:
    if not objects:
        raise InputException("no objects were generated")
    if common_metadata is not None:
        set_common_metadata(
            objects, common_metadata.labels, common_metadata.annotations
        )
    set_common_metadata(objects, owner_labels)


def _write_objects(output_file: str, objects: list[dict[str, Any]]) -> None:
    with open(output_file, "w") as file:
        file.write(dump_objects(objects))


class BuildInstanceAction:
    """Flux-distro build for FluxInstances."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "instance",
                help="Build the distribution described by a FluxInstance",
                description="""Resolves the distribution version, generates the
                    overlays for the instance and builds the objects with
                    kustomize build.""",
            ),
        )
        args.add_argument(
            "path", type=pathlib.Path, help="Path to the FluxInstance file"
        )
        args.add_argument(
            "--distribution",
            type=pathlib.Path,
            required=True,
            help="Path to the directory with one sub-directory per distribution version",
        )
        args.add_argument(
            "--fetch-images",
            type=bool,
            action=BooleanOptionalAction,
            default=False,
            help="Download the pinned image digests for the registry variant",
        )
        args.add_argument(
            "--storage-path",
            type=pathlib.Path,
            help="Local storage holding the pinned image digests in flux-images/",
        )
        args.add_argument(
            "--output-file",
            type=str,
            default="/dev/stdout",
            help="Output file for the results of the command",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path: pathlib.Path,
        distribution: pathlib.Path,
        fetch_images: bool,
        storage_path: pathlib.Path | None,
        output_file: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        instance = FluxInstance.parse_doc(_find_doc(path, "FluxInstance"))
        instance.set_defaults()
        instance.validate()

        version = match_version(distribution, instance.spec.distribution.version)
        _LOGGER.info("Resolved version %s for %s", version, instance.name)
        options = options_for_instance(instance, version)
        if storage_path is not None:
            preflight_checks(storage_path)
            options.component_images = (
                await images.extract_component_images_with_digest(storage_path, options)
            )
        elif fetch_images:
            options.component_images = await images.fetch_component_images(options)

        with tempfile.TemporaryDirectory() as work_dir:
            result = await builder.build(
                distribution / version, pathlib.Path(work_dir), options
            )
        _LOGGER.info("Built revision %s", result.revision)
        _set_metadata(
            result.objects, instance.spec.common_metadata, instance.owner_labels
        )
        _write_objects(output_file, result.objects)


class BuildResourceSetAction:
    """Flux-distro build for ResourceSets."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "resourceset",
                aliases=["rset"],
                help="Render the resources of a ResourceSet",
                description="""Combines the inputs of the ResourceSet with the
                    inputs of any extra providers and renders the resource
                    templates once per input set.""",
            ),
        )
        args.add_argument(
            "path", type=pathlib.Path, help="Path to the ResourceSet file"
        )
        args.add_argument(
            "--inputs-from",
            type=pathlib.Path,
            help="YAML file mapping input provider names to their list of inputs",
        )
        args.add_argument(
            "--output-file",
            type=str,
            default="/dev/stdout",
            help="Output file for the results of the command",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path: pathlib.Path,
        inputs_from: pathlib.Path | None,
        output_file: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        rset = ResourceSet.parse_doc(_find_doc(path, "ResourceSet"))
        providers = []
        if rset.spec.inputs:
            providers.append((rset.name, rset.spec.inputs))
        if inputs_from is not None:
            providers.extend(_read_providers(inputs_from))

        combined = inputs.combine(rset.input_strategy, providers)
        objects = templating.build_resource_set(
            rset.spec.resources, rset.spec.resources_template, combined
        )
        _LOGGER.info("Rendered %d objects for %s", len(objects), rset.name)
        _set_metadata(objects, rset.spec.common_metadata, rset.owner_labels)
        _write_objects(output_file, objects)


def _read_providers(path: pathlib.Path) -> list[tuple[str, list[dict[str, Any]]]]:
    docs = _read_docs(path)
    if len(docs) != 1 or not isinstance(docs[0], dict):
        raise InputException(f"Expected a mapping of providers to inputs in {path}")
    providers = []
    for name, provider_inputs in docs[0].items():
        if not isinstance(provider_inputs, list):
            raise InputException(f"Expected a list of inputs for provider '{name}'")
        providers.append((str(name), provider_inputs))
    return providers


class BuildAction:
    """Flux-distro build action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args: ArgumentParser = subparsers.add_parser(
            "build",
            help="Build a distribution or a ResourceSet",
            description="""You can use the flux-distro cli to build the objects
                    of a Flux distribution, similar to how the operator builds
                    them in-cluster. This uses kustomize build internally.""",
        )
        subcmds = args.add_subparsers(
            title="Available commands",
            required=True,
        )
        BuildInstanceAction.register(subcmds)
        BuildResourceSetAction.register(subcmds)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        # No-op given subcommands are dispatched
