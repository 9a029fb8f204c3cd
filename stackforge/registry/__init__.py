"""stackforge module registry -- descriptors, lookup and manifest loading.

Quick usage::

    from stackforge.registry import load_registry_dir

    registry = load_registry_dir("./modules")
    auth = registry.get("auth")
"""

from stackforge.registry.loader import (
    fetch_registry,
    load_manifest,
    load_registry_dir,
    parse_index,
    parse_manifest,
)
from stackforge.registry.models import ModuleCategory, ModuleDescriptor, ParameterSpec
from stackforge.registry.registry import ModuleRegistry, RegistryError

__all__ = [
    "ModuleCategory",
    "ModuleDescriptor",
    "ModuleRegistry",
    "ParameterSpec",
    "RegistryError",
    "fetch_registry",
    "load_manifest",
    "load_registry_dir",
    "parse_index",
    "parse_manifest",
]
