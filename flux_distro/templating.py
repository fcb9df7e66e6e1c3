"""Library for rendering the resource templates of a ResourceSet.

Templates are Kubernetes objects whose string values may contain template
expressions. Expressions use `<<` and `>>` as delimiters so they do not clash
with the `{{ }}` syntax of Helm values embedded in the objects, and the
current input set is available as `inputs` (or `inputs()`):

```yaml
apiVersion: v1
kind: Namespace
metadata:
  name: << inputs.tenant | slugify >>
```

Rendering the templates of a ResourceSet with the combined inputs:

```python
from flux_distro import templating

engine = templating.TemplateEngine()
objects = engine.render_resource_set(templates, [{"tenant": "Team A"}])
```

Statements use `<<%` and `%>>` and comments `<<#` and `#>>`. Referencing
an input that is not set is an error rather than an empty value.
"""

import base64
from collections.abc import Callable
import copy
import json
import logging
from typing import Any

import jinja2
from slugify import slugify
import yaml

from .exceptions import FluxDistroException, RenderException
from .manifest import ObjectKey, check_object, is_reconcile_disabled

__all__ = [
    "TemplateEngine",
    "build_resource_set",
]

_LOGGER = logging.getLogger(__name__)

# Maximum length of a Kubernetes label value
SLUG_MAX_LENGTH = 63

# Avoid line folding of long template expressions when converting to text
_YAML_WIDTH = 4096


class _BlockStyleDumper(yaml.SafeDumper):
    """Dumper writing multi-line strings as literal blocks."""


def _str_presenter(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    """Represent multi-line yaml strings as you'd expect.

    See https://github.com/yaml/pyyaml/issues/240
    """
    return dumper.represent_scalar(
        "tag:yaml.org,2002:str", data, style="|" if data.count("\n") > 0 else None
    )


_BlockStyleDumper.add_representer(str, _str_presenter)


def _dump(value: Any) -> str:
    return yaml.dump(
        value, Dumper=_BlockStyleDumper, sort_keys=False, width=_YAML_WIDTH
    )


def _is_empty(value: Any) -> bool:
    if isinstance(value, jinja2.Undefined):
        return True
    return value is None or value is False or value == 0 or value in ("", [], {})


def _to_yaml(value: Any) -> str:
    try:
        return _must_to_yaml(value)
    except RenderException:
        return ""


def _must_to_yaml(value: Any) -> str:
    try:
        return _dump(value).rstrip("\n")
    except yaml.YAMLError as err:
        raise RenderException(f"Unable to encode value as YAML: {err}") from err


def _to_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


def _quote(value: Any) -> str:
    return json.dumps(str(value))


def _squote(value: Any) -> str:
    return f"'{value}'"


def _b64enc(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _b64dec(value: str) -> str:
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as err:
        raise RenderException(f"Unable to decode base64 value: {err}") from err


def _nindent(value: str, width: int) -> str:
    pad = " " * width
    return "\n" + "\n".join(pad + line for line in str(value).split("\n"))


def _trunc(value: str, length: int) -> str:
    if length < 0:
        return value[length:]
    return value[:length]


def _trim_prefix(value: str, prefix: str) -> str:
    return value.removeprefix(prefix)


def _trim_suffix(value: str, suffix: str) -> str:
    return value.removesuffix(suffix)


def _default(value: Any, fallback: Any) -> Any:
    return fallback if _is_empty(value) else value


def _dig(mapping: dict[str, Any], *keys: str, default: Any = None) -> Any:
    current: Any = mapping
    for key in keys:
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


def _merge(dst: dict[str, Any], *sources: dict[str, Any]) -> dict[str, Any]:
    """Deep merge the sources into a copy of dst, keeping existing keys."""
    result = copy.deepcopy(dst)
    for src in sources:
        for key, value in src.items():
            if key not in result:
                result[key] = copy.deepcopy(value)
            elif isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = _merge(result[key], value)
    return result


def _keys(mapping: dict[str, Any]) -> list[str]:
    return list(mapping)


def _has(collection: Any, item: Any) -> bool:
    return item in collection


class _Inputs(dict[str, Any]):
    """The current input set, usable as `inputs.key` or `inputs().key`."""

    def __call__(self) -> "_Inputs":
        return self


_BlockStyleDumper.add_representer(_Inputs, _BlockStyleDumper.represent_dict)


class TemplateEngine:
    """Renders resource templates against input sets."""

    def __init__(
        self,
        slug_max_length: int = SLUG_MAX_LENGTH,
        slug_word_boundary: bool = True,
    ) -> None:
        """Initialize TemplateEngine."""
        self._env = jinja2.Environment(
            block_start_string="<<%",
            block_end_string="%>>",
            variable_start_string="<<",
            variable_end_string=">>",
            comment_start_string="<<#",
            comment_end_string="#>>",
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        functions: dict[str, Callable[..., Any]] = {
            "slugify": lambda text: slugify(
                str(text),
                max_length=slug_max_length,
                word_boundary=slug_word_boundary,
            ),
            "toYaml": _to_yaml,
            "mustToYaml": _must_to_yaml,
            "toJson": _to_json,
            "quote": _quote,
            "squote": _squote,
            "b64enc": _b64enc,
            "b64dec": _b64dec,
            "nindent": _nindent,
            "trunc": _trunc,
            "trimPrefix": _trim_prefix,
            "trimSuffix": _trim_suffix,
            "default": _default,
            "dig": _dig,
            "merge": _merge,
            "keys": _keys,
            "has": _has,
        }
        self._env.filters.update(functions)
        self._env.globals.update(functions)

    def render_text(self, text: str, inputs: dict[str, Any] | None) -> str:
        """Render a template string with the input set bound as `inputs`."""
        try:
            return self._env.from_string(text).render(inputs=_Inputs(inputs or {}))
        except RenderException:
            raise
        except jinja2.TemplateError as err:
            raise RenderException(f"failed to execute template: {err}") from err
        except (TypeError, ValueError, AttributeError) as err:
            raise RenderException(f"failed to execute template: {err}") from err

    def render_resource(
        self, template: dict[str, Any], inputs: dict[str, Any] | None
    ) -> dict[str, Any]:
        """Render a single object template into an object."""
        try:
            text = _dump(template)
        except yaml.YAMLError as err:
            raise RenderException(
                f"failed to convert template to YAML: {err}"
            ) from err
        rendered = self.render_text(text, inputs)
        try:
            doc = yaml.safe_load(rendered)
        except yaml.YAMLError as err:
            raise RenderException(f"failed to read object: {err}") from err
        try:
            return check_object(doc)
        except FluxDistroException as err:
            raise RenderException(f"failed to read object: {err}") from err

    def render_resource_template(
        self, text: str, inputs: dict[str, Any] | None
    ) -> list[dict[str, Any]]:
        """Render a multi-document template string into objects."""
        rendered = self.render_text(text, inputs)
        try:
            docs = list(yaml.safe_load_all(rendered))
        except yaml.YAMLError as err:
            raise RenderException(f"failed to read objects: {err}") from err
        try:
            return [check_object(doc) for doc in docs if doc is not None]
        except FluxDistroException as err:
            raise RenderException(f"failed to read objects: {err}") from err

    def render_resource_set(
        self,
        templates: list[dict[str, Any]],
        combined: list[dict[str, Any]],
        objects: list[dict[str, Any]] | None = None,
    ) -> list[dict[str, Any]]:
        """Render every template once per input set.

        Without input sets each template is rendered once with empty inputs.
        Objects with reconciliation disabled are dropped, as are objects with
        the same identity as an object rendered before them.
        """
        accumulator = _Accumulator(objects)
        for i, template in enumerate(templates):
            if not combined:
                try:
                    obj = self.render_resource(template, None)
                except RenderException as err:
                    raise RenderException(
                        f"failed to build resources[{i}]: {err}"
                    ) from err
                accumulator.add(obj)
                continue
            for j, inputs in enumerate(combined):
                try:
                    obj = self.render_resource(template, inputs)
                except RenderException as err:
                    raise RenderException(
                        f"failed to build resources[{i}] with inputs[{j}]: {err}"
                    ) from err
                accumulator.add(obj)
        return accumulator.objects

    def render_resource_set_template(
        self,
        text: str,
        combined: list[dict[str, Any]],
        objects: list[dict[str, Any]] | None = None,
    ) -> list[dict[str, Any]]:
        """Render a multi-document template once per input set.

        The results are folded into objects with the same filtering and
        deduplication as `render_resource_set`.
        """
        accumulator = _Accumulator(objects)
        if not combined:
            try:
                rendered = self.render_resource_template(text, None)
            except RenderException as err:
                raise RenderException(
                    f"failed to build resourcesTemplate: {err}"
                ) from err
            accumulator.extend(rendered)
            return accumulator.objects
        for j, inputs in enumerate(combined):
            try:
                rendered = self.render_resource_template(text, inputs)
            except RenderException as err:
                raise RenderException(
                    f"failed to build resourcesTemplate with inputs[{j}]: {err}"
                ) from err
            accumulator.extend(rendered)
        return accumulator.objects


class _Accumulator:
    """Collects rendered objects, keeping the first object for each identity."""

    def __init__(self, objects: list[dict[str, Any]] | None) -> None:
        self.objects: list[dict[str, Any]] = list(objects or [])
        self._seen = {ObjectKey.from_doc(obj) for obj in self.objects}

    def add(self, obj: dict[str, Any]) -> None:
        key = ObjectKey.from_doc(obj)
        if is_reconcile_disabled(obj):
            _LOGGER.debug("Excluding %s with reconciliation disabled", key)
            return
        if key in self._seen:
            _LOGGER.debug("Skipping duplicate %s", key)
            return
        self._seen.add(key)
        self.objects.append(obj)

    def extend(self, objs: list[dict[str, Any]]) -> None:
        for obj in objs:
            self.add(obj)


def build_resource_set(
    templates: list[dict[str, Any]],
    template_text: str | None,
    combined: list[dict[str, Any]],
    engine: TemplateEngine | None = None,
) -> list[dict[str, Any]]:
    """Render the object templates and then the template text of a ResourceSet."""
    engine = engine or TemplateEngine()
    objects = engine.render_resource_set(templates, combined)
    if template_text:
        objects = engine.render_resource_set_template(template_text, combined, objects)
    _LOGGER.debug("Rendered %d objects from %d input sets", len(objects), len(combined))
    return objects
