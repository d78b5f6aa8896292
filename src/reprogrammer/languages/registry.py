"""
Language plugin registry.

Maps target language identifiers to plugins. Targets without a dedicated
plugin get the lexical GenericPlugin.
"""

from typing import Type

from reprogrammer.config.models import LanguageSettings
from reprogrammer.languages.base.plugin import LanguagePlugin
from reprogrammer.languages.generic.plugin import GenericPlugin
from reprogrammer.languages.java.plugin import JavaPlugin
from reprogrammer.languages.python.plugin import PythonPlugin


class LanguagePluginRegistry:
    """Registry for language plugins."""

    _plugins: dict[str, Type[LanguagePlugin]] = {
        "python": PythonPlugin,
        "java": JavaPlugin,
    }

    _aliases: dict[str, str] = {
        "py": "python",
        "python3": "python",
    }

    @classmethod
    def _key(cls, language: str) -> str:
        key = language.strip().lower()
        return cls._aliases.get(key, key)

    @classmethod
    def register_plugin(cls, language: str, plugin_class: Type[LanguagePlugin]):
        """
        Register a new language plugin.

        Args:
            language: The target language identifier
            plugin_class: The plugin class (must extend LanguagePlugin)
        """
        if not issubclass(plugin_class, LanguagePlugin):
            raise TypeError(f"{plugin_class} must extend LanguagePlugin")

        cls._plugins[cls._key(language)] = plugin_class

    @classmethod
    def is_supported(cls, language: str) -> bool:
        """Check if a language has a dedicated plugin."""
        return cls._key(language) in cls._plugins

    @classmethod
    def list_supported_languages(cls) -> list[str]:
        return sorted(cls._plugins)


def get_plugin(target_language: str, settings: LanguageSettings | None = None) -> LanguagePlugin:
    """
    Get the plugin for a target language.

    Args:
        target_language: Target language identifier (case-insensitive)
        settings: Language settings; supply the extension and block symbols
            of the generic fallback

    Returns:
        Instantiated language plugin
    """
    key = LanguagePluginRegistry._key(target_language)
    plugin_class = LanguagePluginRegistry._plugins.get(key)
    if plugin_class is not None:
        return plugin_class()

    if settings is None:
        return GenericPlugin(language_name=key)
    return GenericPlugin(
        language_name=key,
        file_extension=settings.output_extension,
        open_symbol=settings.block_open_symbol,
        close_symbol=settings.block_close_symbol,
    )
