"""Named selector descriptors loaded from YAML.

File layout::

    version: "1"
    login:
      submit_button:
        primary: "button[type=submit]"
        fallbacks: ["#submit", ".btn-submit"]
        xpath: ["//button[contains(., 'Sign in')]"]
        accessibility: {role: button, label: "Sign in"}
        semantic: {element_type: button, keywords: [sign]}
"""

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from loguru import logger

from selfheal.core.exceptions import ConfigurationError
from selfheal.models.selector import SelectorDescriptor

_DESCRIPTOR_KEYS = frozenset({"primary", "selector", "css", "fallbacks", "xpath"})


class SelectorRegistry:
    """Resolve dot-notation names (``login.submit_button``) to descriptors."""

    def __init__(
        self,
        selectors: Optional[Mapping[str, Any]] = None,
        selectors_file: Optional[Union[str, Path]] = None,
    ):
        """
        Initialize selector registry.

        Args:
            selectors: Nested mapping of selector definitions
            selectors_file: YAML file to load definitions from

        Raises:
            ConfigurationError: If the YAML file cannot be parsed
        """
        self.selectors_file = Path(selectors_file) if selectors_file else None
        self._selectors: Dict[str, Any] = dict(selectors or {})
        if self.selectors_file is not None:
            self._load_selectors()

    def _load_selectors(self) -> None:
        if self.selectors_file is None:
            return
        if not self.selectors_file.exists():
            logger.warning(f"Selectors file not found: {self.selectors_file}")
            return
        with open(self.selectors_file, "r", encoding="utf-8") as f:
            try:
                loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid selectors file {self.selectors_file}: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Selectors file must contain a mapping: {self.selectors_file}")
        self._selectors = loaded
        logger.info(f"Selectors loaded (version: {loaded.get('version', 'unknown')})")

    def _lookup(self, path: str) -> Any:
        value: Any = self._selectors
        for key in path.split("."):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return None
        return value

    def get(self, path: str) -> Optional[SelectorDescriptor]:
        """
        Get the descriptor registered under ``path``.

        Args:
            path: Dot-separated path (e.g., "login.submit_button")

        Returns:
            Descriptor, or None if nothing is registered there
        """
        value = self._lookup(path)
        if isinstance(value, str):
            return SelectorDescriptor(primary=value, name=path)
        if isinstance(value, dict) and _DESCRIPTOR_KEYS & value.keys():
            return SelectorDescriptor.from_mapping(value, name=path)
        return None

    def resolve(self, target: Union[SelectorDescriptor, str, Mapping[str, Any]]) -> SelectorDescriptor:
        """
        Turn a registered name, raw selector, mapping or descriptor into a descriptor.

        Strings are looked up first and otherwise treated as a CSS selector.

        Raises:
            ConfigurationError: If the target cannot be turned into a descriptor
        """
        if isinstance(target, str):
            registered = self.get(target)
            if registered is not None:
                return registered
        descriptor = SelectorDescriptor.coerce(target)
        if descriptor is None:
            raise ConfigurationError(f"Cannot build a selector descriptor from {target!r}")
        return descriptor

    def names(self) -> List[str]:
        """All registered dot-notation names."""
        found: List[str] = []

        def walk(node: Any, prefix: str) -> None:
            if not isinstance(node, dict):
                return
            for key, value in node.items():
                path = f"{prefix}.{key}" if prefix else str(key)
                if isinstance(value, str) or (isinstance(value, dict) and _DESCRIPTOR_KEYS & value.keys()):
                    found.append(path)
                else:
                    walk(value, path)

        walk({k: v for k, v in self._selectors.items() if k != "version"}, "")
        return found

    def register(self, path: str, definition: Union[str, Mapping[str, Any]]) -> None:
        """Add or replace a definition at ``path``."""
        node = self._selectors
        *parents, leaf = path.split(".")
        for key in parents:
            node = node.setdefault(key, {})
        node[leaf] = definition if isinstance(definition, str) else dict(definition)

    def reload(self) -> None:
        if self.selectors_file is not None:
            self._load_selectors()
