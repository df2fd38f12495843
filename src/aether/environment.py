"""
Aether Environment
Variable store with write-once (immutable) bindings
"""

from typing import Any, Dict, Optional, Set

from .errors import AetherRuntimeError, RuntimeErrorKind

class Environment:
    def __init__(self, values: Optional[Dict[str, Any]] = None):
        self.values: Dict[str, Any] = dict(values or {})
        self.immutable: Set[str] = set()

    def contains(self, name: str) -> bool:
        return name in self.values

    def get(self, name: str) -> Any:
        if name in self.values:
            return self.values[name]
        raise AetherRuntimeError(RuntimeErrorKind.UNDEFINED_NAME, f"Undefined variable '{name}'")

    def set(self, name: str, value: Any, immutable: bool = False):
        if name in self.immutable:
            raise AetherRuntimeError(RuntimeErrorKind.IMMUTABLE_VIOLATION,
                                     f"Cannot rebind immutable name '{name}'")
        self.values[name] = value
        if immutable:
            self.immutable.add(name)

    def is_immutable(self, name: str) -> bool:
        return name in self.immutable

    def snapshot(self) -> Dict[str, Any]:
        return dict(self.values)

    def __repr__(self) -> str:
        return f"Environment({sorted(self.values)}, immutable={sorted(self.immutable)})"
