"""运行时特性检测：检查可选依赖与平台模块。

Runtime feature detection for optional extras and platform modules.
"""
from __future__ import annotations


def _check_import(module_name: str) -> bool:
    """Check if a module is importable."""
    try:
        __import__(module_name)
        return True
    except ImportError:
        return False


# Optional extra: system keyring lookup of API keys
HAS_KEYRING: bool = _check_import("keyring")
# Unix-only stdlib module used by the default memory probe
HAS_RESOURCE: bool = _check_import("resource")
