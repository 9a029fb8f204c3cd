"""Module registry sources.

Populates a ``ModuleRegistry`` from YAML manifests on disk or from a remote
index served over HTTP.  A manifest describes exactly one module::

    id: auth
    name: Auth.js
    category: auth
    dependencies: [db]
    conflicts: [clerk]
    parameters:
      - name: providers
        default: [github]
    blueprint:
      - type: INSTALL_PACKAGES
        packages: [next-auth]
      - type: CREATE_FILE
        path: "{{paths.auth_config}}/auth.ts"
        template: templates/auth.ts.j2
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
import yaml
from pydantic import ValidationError

from .models import ModuleDescriptor
from .registry import ModuleRegistry, RegistryError

MANIFEST_SUFFIXES = (".yaml", ".yml")


def parse_manifest(data: Any, source: str, source_dir: Path | None = None) -> ModuleDescriptor:
    """Validate one manifest mapping into a ``ModuleDescriptor``."""
    if not isinstance(data, dict):
        raise RegistryError(f"{source}: manifest must be a mapping, got {type(data).__name__}")
    payload = dict(data)
    if source_dir is not None:
        payload["source_dir"] = source_dir
    try:
        return ModuleDescriptor.model_validate(payload)
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise RegistryError(f"{source}: invalid manifest ({details})") from exc


def load_manifest(path: str | Path) -> ModuleDescriptor:
    """Load a single YAML manifest file.

    Raises:
        RegistryError: If the file is not valid YAML or not a valid manifest.
    """
    file_path = Path(path)
    try:
        data = yaml.safe_load(file_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise RegistryError(f"{file_path}: invalid YAML ({exc})") from exc
    return parse_manifest(data, str(file_path), source_dir=file_path.parent.resolve())


def load_registry_dir(directory: str | Path) -> ModuleRegistry:
    """Scan *directory* recursively for manifests and register them.

    Files are visited in sorted order so the resulting registry is
    reproducible.
    """
    root = Path(directory)
    if not root.is_dir():
        raise RegistryError(f"Registry directory not found: {root}")

    registry = ModuleRegistry()
    for manifest in sorted(p for p in root.rglob("*") if p.suffix in MANIFEST_SUFFIXES):
        registry.register(load_manifest(manifest))
    return registry


def parse_index(text: str, source: str) -> list[ModuleDescriptor]:
    """Parse a remote index document (JSON or YAML).

    The document is either a list of manifests or a mapping with a
    ``modules`` list.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise RegistryError(f"{source}: index is neither JSON nor YAML ({exc})") from exc

    if isinstance(data, dict):
        data = data.get("modules")
    if not isinstance(data, list):
        raise RegistryError(f"{source}: index must be a list of modules or contain a 'modules' list")

    return [parse_manifest(entry, f"{source}[{i}]") for i, entry in enumerate(data)]


async def fetch_registry(
    url: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> ModuleRegistry:
    """Download a module index from *url* and build a registry from it.

    Args:
        url: Location of the JSON or YAML index.
        client: Optional shared ``httpx.AsyncClient``.
        timeout: Request timeout in seconds when a client is created here.

    Raises:
        RegistryError: On transport errors, non-2xx responses, or bad content.
    """
    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=5.0))
    try:
        response = await http.get(url)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise RegistryError(f"{url}: HTTP {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        raise RegistryError(f"{url}: {exc}") from exc
    finally:
        if owns_client:
            await http.aclose()

    return ModuleRegistry(parse_index(response.text, url))
