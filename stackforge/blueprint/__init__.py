"""stackforge blueprint engine -- actions, templates, merge strategies and execution.

Quick usage::

    from stackforge.blueprint import BlueprintExecutor, ProjectContext, ProjectMetadata

    context = ProjectContext(project=ProjectMetadata(name="my-app", root=Path("./my-app")))
    context.enter_module(descriptor, {"provider": "github"})
    result = await BlueprintExecutor(skip_install=True).execute(descriptor.blueprint, context)
"""

from stackforge.blueprint.actions import (
    Action,
    ActionType,
    AddEnvVarAction,
    AddScriptAction,
    AppendToFileAction,
    CreateFileAction,
    EnhanceFileAction,
    ExtendSchemaAction,
    InstallPackagesAction,
    MergeConfigAction,
    MergeJsonAction,
    PrependToFileAction,
    RunCommandAction,
    SchemaTable,
    parse_actions,
)
from stackforge.blueprint.context import ProjectContext, ProjectMetadata
from stackforge.blueprint.executor import (
    ActionError,
    ActionOutcome,
    BlueprintExecutor,
    ExecutionResult,
    split_package_spec,
)
from stackforge.blueprint.merge import (
    MergeError,
    MergeStrategy,
    apply_merge,
    deep_merge,
    merge_env_lines,
    merge_structured_data,
    strategy_for_path,
)
from stackforge.blueprint.modifiers import MODIFIERS, ModifierError, get_modifier
from stackforge.blueprint.paths import PathResolver, ProjectStructure, detect_structure
from stackforge.blueprint.renderer import TemplateRenderer, build_template_context
from stackforge.blueprint.runner import CommandError, CommandResult, ProcessRunner
from stackforge.blueprint.template import (
    TemplateError,
    TemplateProcessor,
    evaluate_condition,
    extract_variables,
    format_value,
    is_truthy,
    parse_template,
    validate_template,
)

__all__ = [
    "Action",
    "ActionError",
    "ActionOutcome",
    "ActionType",
    "AddEnvVarAction",
    "AddScriptAction",
    "AppendToFileAction",
    "BlueprintExecutor",
    "CommandError",
    "CommandResult",
    "CreateFileAction",
    "EnhanceFileAction",
    "ExecutionResult",
    "ExtendSchemaAction",
    "InstallPackagesAction",
    "MODIFIERS",
    "MergeConfigAction",
    "MergeError",
    "MergeJsonAction",
    "MergeStrategy",
    "ModifierError",
    "PathResolver",
    "PrependToFileAction",
    "ProcessRunner",
    "ProjectContext",
    "ProjectMetadata",
    "ProjectStructure",
    "RunCommandAction",
    "SchemaTable",
    "TemplateError",
    "TemplateProcessor",
    "TemplateRenderer",
    "apply_merge",
    "build_template_context",
    "deep_merge",
    "detect_structure",
    "evaluate_condition",
    "extract_variables",
    "format_value",
    "get_modifier",
    "is_truthy",
    "merge_env_lines",
    "merge_structured_data",
    "parse_actions",
    "parse_template",
    "split_package_spec",
    "strategy_for_path",
    "validate_template",
]
