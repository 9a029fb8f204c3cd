"""Pydantic v2 models for module descriptors.

A module descriptor declares a selectable unit of technology: its identity,
the modules it depends on or conflicts with, the parameters it accepts and
the blueprint (ordered action list) that installs it.  Descriptors are
immutable once registered.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stackforge.blueprint.actions import Action


class ModuleCategory(str, Enum):
    """Broad technology category a module belongs to."""
    FRAMEWORK = "framework"
    DATABASE = "database"
    AUTH = "auth"
    UI = "ui"
    DEPLOYMENT = "deployment"
    TESTING = "testing"
    EMAIL = "email"
    PAYMENT = "payment"
    OBSERVABILITY = "observability"
    STATE = "state"
    CONTENT = "content"
    OTHER = "other"


class ParameterSpec(BaseModel):
    """A parameter a module accepts, with its default."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Parameter key, referenced as module.parameters.<name>")
    description: str = Field(default="")
    default: Optional[Any] = Field(default=None, description="Value used when none is supplied")
    required: bool = Field(default=False, description="Whether a value must be supplied")

    @property
    def has_default(self) -> bool:
        return self.default is not None


class ModuleDescriptor(BaseModel):
    """A registered module and its blueprint."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Unique module identifier")
    name: str = Field(default="", description="Human-readable name")
    description: str = Field(default="")
    category: ModuleCategory = Field(default=ModuleCategory.OTHER)
    version: str = Field(default="0.1.0")
    tags: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(
        default_factory=list, description="Module ids that must be installed first, in order"
    )
    conflicts: list[str] = Field(
        default_factory=list, description="Module ids that cannot be installed alongside this one"
    )
    parameters: list[ParameterSpec] = Field(default_factory=list)
    blueprint: list[Action] = Field(default_factory=list)
    source_dir: Optional[Path] = Field(
        default=None, description="Directory of the manifest, used to resolve template files"
    )

    @field_validator("id")
    @classmethod
    def _strip_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("module id must not be blank")
        return v

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def parameter(self, name: str) -> Optional[ParameterSpec]:
        """Return the spec for parameter *name*, if declared."""
        for spec in self.parameters:
            if spec.name == name:
                return spec
        return None

    def parameter_defaults(self) -> dict[str, Any]:
        """Return ``{name: default}`` for every parameter with a default."""
        return {p.name: p.default for p in self.parameters if p.has_default}

    def missing_required(self, values: dict[str, Any]) -> list[str]:
        """Names of required parameters with neither a value nor a default."""
        return [
            p.name
            for p in self.parameters
            if p.required and values.get(p.name) is None and not p.has_default
        ]
