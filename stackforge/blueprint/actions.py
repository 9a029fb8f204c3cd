"""Pydantic v2 models for blueprint actions.

A blueprint is an ordered list of actions.  Actions form a closed,
discriminated union on their ``type`` field, so a manifest entry with an
unknown type is rejected when the manifest is loaded instead of being
silently ignored at execution time.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)

from .merge import MergeStrategy


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class ActionType(str, Enum):
    """Every action kind the blueprint engine understands."""
    INSTALL_PACKAGES = "INSTALL_PACKAGES"
    ADD_SCRIPT = "ADD_SCRIPT"
    ADD_ENV_VAR = "ADD_ENV_VAR"
    CREATE_FILE = "CREATE_FILE"
    APPEND_TO_FILE = "APPEND_TO_FILE"
    PREPEND_TO_FILE = "PREPEND_TO_FILE"
    RUN_COMMAND = "RUN_COMMAND"
    MERGE_JSON = "MERGE_JSON"
    MERGE_CONFIG = "MERGE_CONFIG"
    EXTEND_SCHEMA = "EXTEND_SCHEMA"
    ENHANCE_FILE = "ENHANCE_FILE"


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class BaseAction(BaseModel):
    """Fields shared by every action."""
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    condition: Optional[str] = Field(
        default=None, description="Condition evaluated against the project context"
    )
    for_each: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("for_each", "forEach"),
        description="Dotted selector of a context collection; the action runs once per element",
    )

    @property
    def kind(self) -> ActionType:
        return ActionType(self.type)  # type: ignore[attr-defined]

    @property
    def target(self) -> Optional[str]:
        """The (unrendered) file path this action writes, if any."""
        return getattr(self, "path", None)


# ---------------------------------------------------------------------------
# Package manifest actions
# ---------------------------------------------------------------------------

class InstallPackagesAction(BaseAction):
    """Add packages to the manifest and install them."""
    type: Literal["INSTALL_PACKAGES"] = "INSTALL_PACKAGES"
    packages: list[str] = Field(..., min_length=1)
    dev: bool = Field(default=False, validation_alias=AliasChoices("dev", "isDev"))


class AddScriptAction(BaseAction):
    type: Literal["ADD_SCRIPT"] = "ADD_SCRIPT"
    name: str
    command: str


class AddEnvVarAction(BaseAction):
    """Declare an environment variable in the project's env files."""
    type: Literal["ADD_ENV_VAR"] = "ADD_ENV_VAR"
    key: str
    value: str = ""
    description: Optional[str] = None
    path: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def _stringify_scalar(cls, v: Any) -> Any:
        if isinstance(v, bool):
            return "true" if v else "false"
        if isinstance(v, (int, float)):
            return str(v)
        return v


# ---------------------------------------------------------------------------
# File actions
# ---------------------------------------------------------------------------

class CreateFileAction(BaseAction):
    """Write a file from inline content or a template file."""
    type: Literal["CREATE_FILE"] = "CREATE_FILE"
    path: str
    content: Optional[str] = None
    template: Optional[str] = None
    overwrite: bool = True
    merge: Optional[MergeStrategy] = None

    @model_validator(mode="after")
    def _needs_a_source(self) -> "CreateFileAction":
        if self.content is None and self.template is None:
            raise ValueError("CREATE_FILE requires 'content' or 'template'")
        if self.content is not None and self.template is not None:
            raise ValueError("CREATE_FILE accepts only one of 'content' and 'template'")
        return self


class AppendToFileAction(BaseAction):
    type: Literal["APPEND_TO_FILE"] = "APPEND_TO_FILE"
    path: str
    content: str


class PrependToFileAction(BaseAction):
    type: Literal["PREPEND_TO_FILE"] = "PREPEND_TO_FILE"
    path: str
    content: str


class MergeJsonAction(BaseAction):
    """Structured-merge a mapping (or a JSON template string) into a file."""
    type: Literal["MERGE_JSON"] = "MERGE_JSON"
    path: str
    content: Union[dict[str, Any], str]


class MergeConfigAction(BaseAction):
    type: Literal["MERGE_CONFIG"] = "MERGE_CONFIG"
    path: str
    config: dict[str, Any]
    strategy: Literal["deep-merge", "shallow-merge", "replace"] = "deep-merge"


class SchemaTable(BaseModel):
    """A table definition appended to a schema file."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    definition: str


class ExtendSchemaAction(BaseAction):
    type: Literal["EXTEND_SCHEMA"] = "EXTEND_SCHEMA"
    path: str
    tables: list[SchemaTable] = Field(..., min_length=1)
    imports: list[str] = Field(default_factory=list)


class EnhanceFileAction(BaseAction):
    """Run a named content modifier over an existing file."""
    type: Literal["ENHANCE_FILE"] = "ENHANCE_FILE"
    path: str
    modifier: str
    params: dict[str, Any] = Field(default_factory=dict)
    fallback: Literal["error", "skip", "create"] = "error"


# ---------------------------------------------------------------------------
# Command actions
# ---------------------------------------------------------------------------

class RunCommandAction(BaseAction):
    type: Literal["RUN_COMMAND"] = "RUN_COMMAND"
    command: str
    working_dir: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("working_dir", "workingDir")
    )


# ---------------------------------------------------------------------------
# Union
# ---------------------------------------------------------------------------

Action = Annotated[
    Union[
        InstallPackagesAction,
        AddScriptAction,
        AddEnvVarAction,
        CreateFileAction,
        AppendToFileAction,
        PrependToFileAction,
        RunCommandAction,
        MergeJsonAction,
        MergeConfigAction,
        ExtendSchemaAction,
        EnhanceFileAction,
    ],
    Field(discriminator="type"),
]

_ACTION_LIST: TypeAdapter[list[Action]] = TypeAdapter(list[Action])


def parse_actions(raw: list[dict[str, Any]]) -> list[Action]:
    """Validate a list of raw action mappings into typed actions."""
    return _ACTION_LIST.validate_python(raw)
