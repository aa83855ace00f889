"""
Adapter registry.

Adapters register metadata here so configuration can be validated before
any provider module is imported.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence, Tuple


@dataclass(frozen=True)
class AdapterDescriptor:
    """Metadata describing an importer adapter."""

    name: str
    title: str
    optional_dependencies: Tuple[str, ...] = ()
    summary: str | None = None


def get_adapter_registry() -> Mapping[str, AdapterDescriptor]:
    return OrderedDict(
        (
            (
                "wildapricot",
                AdapterDescriptor(
                    name="wildapricot",
                    title="Wild Apricot (REST API v2.2)",
                    optional_dependencies=("requests",),
                    summary="Pull members, events, and registrations from Wild Apricot.",
                ),
            ),
        )
    )


def resolve_adapters(
    configured: Sequence[str],
    registry: Mapping[str, AdapterDescriptor] | None = None,
) -> Iterable[AdapterDescriptor]:
    """
    Map configured adapter names to registry descriptors, raising on unknowns.
    """
    registry = registry or get_adapter_registry()
    unknown = sorted({adapter for adapter in configured if adapter not in registry})
    if unknown:
        raise ValueError(
            "Unknown importer adapters configured: "
            + ", ".join(unknown)
            + ". Update configuration or register these adapters first."
        )
    return tuple(registry[name] for name in configured)


__all__ = ["AdapterDescriptor", "get_adapter_registry", "resolve_adapters"]
