import re
from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping

from spotheus.errors import LabelMappingError

_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_INVALID_LABEL_CHARS_RE = re.compile(r"[^a-zA-Z0-9_]")
_RESERVED_LABEL_PREFIX = "__"


@dataclass(frozen=True, slots=True)
class LabelMapping:
    """
    LabelMapping maps a Kubernetes resource label onto
    a Prometheus label.
    """

    resource_label: "str"
    prometheus_label: "str"


def sanitize_label_name(name: "str") -> "str":
    """
    turns a resource label name into a valid prometheus label name,
    e.g. `app.kubernetes.io/name` becomes `app_kubernetes_io_name`.
    """
    sanitized = _INVALID_LABEL_CHARS_RE.sub("_", name)
    if sanitized[:1].isdigit():
        sanitized = "_" + sanitized[1:]
    return sanitized


def _validate_prometheus_label(name: "str") -> "None":
    if not _LABEL_NAME_RE.match(name):
        raise LabelMappingError(f"invalid prometheus label name: {name!r}")

    if name.startswith(_RESERVED_LABEL_PREFIX):
        raise LabelMappingError(
            f"prometheus label name {name!r} must not start with "
            f"{_RESERVED_LABEL_PREFIX!r}"
        )


class LabelMappings:
    """
    LabelMappings is the ordered list of resource labels that get
    propagated to the namespace and workload cost metrics.

    The input format is a comma separated list of
    `resource-label[=prometheus-label]` pairs, e.g.
    `team,app.kubernetes.io/name=app`. Without an explicit prometheus
    label the resource label name is sanitized.
    """

    def __init__(self, mappings: "Iterable[LabelMapping]" = ()) -> "None":
        self._mappings: "list[LabelMapping]" = list(mappings)

    @classmethod
    def parse(cls, value: "str") -> "LabelMappings":
        """
        parses label mappings from a comma separated string. Raises
        LabelMappingError if the input is malformed.
        """
        mappings: "list[LabelMapping]" = []

        for pair in value.split(","):
            resource_label, sep, prometheus_label = pair.partition("=")
            if not sep:
                prometheus_label = sanitize_label_name(resource_label)

            if not resource_label or not prometheus_label:
                raise LabelMappingError("label names must not be empty")

            _validate_prometheus_label(prometheus_label)
            mappings.append(LabelMapping(resource_label, prometheus_label))

        return cls(mappings)

    def extend(self, other: "LabelMappings") -> "None":
        self._mappings.extend(other._mappings)

    def label_names(self) -> "list[str]":
        return [m.prometheus_label for m in self._mappings]

    def label_values(self, labels: "Mapping[str, str | None]") -> "list[str]":
        """
        extracts the values of the mapped labels, in declaration order.
        Missing and null labels resolve to an empty string.
        """
        return [str(labels.get(m.resource_label) or "") for m in self._mappings]

    def __len__(self) -> "int":
        return len(self._mappings)

    def __iter__(self) -> "Iterator[LabelMapping]":
        return iter(self._mappings)

    def __eq__(self, other: "object") -> "bool":
        if not isinstance(other, LabelMappings):
            return NotImplemented
        return self._mappings == other._mappings

    def __str__(self) -> "str":
        return ",".join(
            f"{m.resource_label}={m.prometheus_label}" for m in self._mappings
        )
