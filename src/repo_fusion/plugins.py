"""Plugin hook points.

The pipeline only consumes plugin objects that are already loaded. Every hook
call goes through `PluginManager`, which logs a failing hook and carries on
with the value it had before the call.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from repo_fusion.config import FileRecord
from repo_fusion.exceptions import PluginHookError
from repo_fusion.logging import logger
from repo_fusion.output_construction import OutputGenerator
from repo_fusion.settings import Settings

if TYPE_CHECKING:
    from collections.abc import Sequence

HOOK_NAMES = frozenset({
    "before_file",
    "after_file",
    "before_run",
    "after_run",
    "register_extensions",
    "register_output_formats",
})


class PluginMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    version: str = "0.0.0"
    description: str = ""
    author: str | None = None


class Plugin:
    """Base plugin: every hook is a pass-through.

    Subclasses set `metadata` and override the hooks they need.
    """

    metadata: PluginMetadata

    def before_file(self, record: FileRecord, settings: Settings) -> FileRecord | None:  # noqa: ARG002
        """Return the (possibly replaced) record, or None to skip the file."""
        return record

    def after_file(self, record: FileRecord, rendered: str, settings: Settings) -> str:  # noqa: ARG002
        return rendered

    def before_run(
        self,
        settings: Settings,
        records: list[FileRecord],
    ) -> tuple[Settings, list[FileRecord]]:
        return settings, records

    def after_run(self, result: Any, settings: Settings) -> Any:  # noqa: ANN401, ARG002
        return result

    def register_extensions(self) -> dict[str, list[str]]:
        return {}

    def register_output_formats(self) -> list[OutputGenerator]:
        return []


def create_plugin(metadata: PluginMetadata | Mapping[str, Any], **hooks: Callable[..., Any]) -> Plugin:
    """Build a plugin from plain callables.

    Args:
        metadata (PluginMetadata | Mapping[str, Any]): the plugin metadata
        **hooks: hook implementations keyed by hook name

    Raises:
        ValueError: if a keyword is not a known hook name.

    Returns:
        Plugin: a plugin whose given hooks replace the pass-through defaults
    """
    unknown = sorted(set(hooks) - HOOK_NAMES)
    if unknown:
        msg = f"Unknown plugin hooks: {', '.join(unknown)}"
        raise ValueError(msg)
    plugin = Plugin()
    plugin.metadata = metadata if isinstance(metadata, PluginMetadata) else PluginMetadata.model_validate(metadata)
    for name, hook in hooks.items():
        setattr(plugin, name, hook)
    return plugin


class PluginManager:
    """Registered plugins and guarded hook execution, in registration order."""

    def __init__(self, plugins: Sequence[Plugin] = ()) -> None:
        self._plugins: dict[str, Plugin] = {}
        self._disabled: set[str] = set()
        for plugin in plugins:
            self.register(plugin)

    def register(self, plugin: Plugin) -> None:
        self._plugins[plugin.metadata.name] = plugin

    def unregister(self, name: str) -> None:
        self._plugins.pop(name, None)
        self._disabled.discard(name)

    def set_enabled(self, name: str, *, enabled: bool) -> None:
        if enabled:
            self._disabled.discard(name)
        else:
            self._disabled.add(name)

    def get(self, name: str) -> Plugin | None:
        return self._plugins.get(name)

    @property
    def enabled(self) -> list[Plugin]:
        return [p for name, p in self._plugins.items() if name not in self._disabled]

    def list_plugins(self) -> list[PluginMetadata]:
        return [p.metadata for p in self._plugins.values()]

    @staticmethod
    def _hook_failed(plugin: Plugin, hook: str, exc: Exception) -> None:
        logger.exception("plugin_hook_failed", plugin=plugin.metadata.name, hook=hook, error=str(exc))

    def before_file(self, record: FileRecord, settings: Settings) -> FileRecord | None:
        current = record
        for plugin in self.enabled:
            try:
                result = plugin.before_file(current, settings)
                if result is None:
                    logger.info("plugin_vetoed_file", plugin=plugin.metadata.name, path=current.relative_path)
                    return None
                if not isinstance(result, FileRecord):
                    raise PluginHookError(plugin=plugin.metadata.name, hook="before_file")
                current = result
            except Exception as e:  # noqa: BLE001
                self._hook_failed(plugin, "before_file", e)
        return current

    def after_file(self, record: FileRecord, rendered: str, settings: Settings) -> str:
        current = rendered
        for plugin in self.enabled:
            try:
                result = plugin.after_file(record, current, settings)
                if not isinstance(result, str):
                    raise PluginHookError(plugin=plugin.metadata.name, hook="after_file")
                current = result
            except Exception as e:  # noqa: BLE001
                self._hook_failed(plugin, "after_file", e)
        return current

    def before_run(
        self,
        settings: Settings,
        records: list[FileRecord],
    ) -> tuple[Settings, list[FileRecord]]:
        cur_settings, cur_records = settings, records
        for plugin in self.enabled:
            try:
                new_settings, new_records = plugin.before_run(cur_settings, list(cur_records))
                if not isinstance(new_settings, Settings) or not all(isinstance(r, FileRecord) for r in new_records):
                    raise PluginHookError(plugin=plugin.metadata.name, hook="before_run")
                cur_settings, cur_records = new_settings, list(new_records)
            except Exception as e:  # noqa: BLE001
                self._hook_failed(plugin, "before_run", e)
        return cur_settings, cur_records

    def after_run(self, result: Any, settings: Settings) -> Any:  # noqa: ANN401
        current = result
        for plugin in self.enabled:
            try:
                current = plugin.after_run(current, settings)
            except Exception as e:  # noqa: BLE001
                self._hook_failed(plugin, "after_run", e)
        return current

    def extension_groups(self) -> dict[str, list[str]]:
        groups: dict[str, list[str]] = {}
        for plugin in self.enabled:
            try:
                staged = {name: [str(e) for e in exts] for name, exts in plugin.register_extensions().items()}
                for name, exts in staged.items():
                    groups.setdefault(name, []).extend(exts)
            except Exception as e:  # noqa: BLE001
                self._hook_failed(plugin, "register_extensions", e)
        return groups

    def output_generators(self) -> list[OutputGenerator]:
        generators: list[OutputGenerator] = []
        for plugin in self.enabled:
            try:
                contributed = list(plugin.register_output_formats())
                if not all(isinstance(g, OutputGenerator) for g in contributed):
                    raise PluginHookError(plugin=plugin.metadata.name, hook="register_output_formats")
                generators.extend(contributed)
            except Exception as e:  # noqa: BLE001
                self._hook_failed(plugin, "register_output_formats", e)
        return generators
