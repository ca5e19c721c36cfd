"""
Policy loader for building immutable policy snapshots.

This module provides:
- Snapshot: All loaded modules grouped by package, frozen at load time
- load_snapshot(): Walk policy roots and parse every rule file
- PolicyStore: Holds the published snapshot and swaps it on reload

Design Decisions:
    - A parse error in any file aborts the whole load (no partial rule sets)
    - Roots and files are visited in sorted order so loads are reproducible
    - Test files (*_test.rego) are not policies and are skipped
    - A file reachable from several (nested) roots is loaded once
    - Reload builds the new snapshot off to the side, then publishes it
      with a single reference assignment; readers never lock
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from guardrail.errors import PolicyDataError, PolicyLoadError, PolicyRootNotFoundError
from guardrail.policy.backend import PolicyModule, RuleBackend

logger = logging.getLogger(__name__)

_EMPTY: Mapping[str, Any] = MappingProxyType({})


@dataclass(frozen=True)
class Snapshot:
    """
    The complete, immutable set of loaded policy modules.

    Concurrent evaluations share one snapshot. A reload produces a new
    snapshot and never mutates this one.

    Attributes:
        modules: Every module, in load order
        index: Package path -> modules contributing to it
        backend: The backend that parsed the modules (and evaluates them)
        root_dirs: Roots this snapshot was loaded from
        data: Auxiliary data document available to rules
        generation: Load counter, incremented by each reload
    """

    modules: tuple[PolicyModule, ...]
    index: Mapping[str, tuple[PolicyModule, ...]]
    backend: RuleBackend
    root_dirs: tuple[str, ...] = ()
    data: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    generation: int = 1

    @property
    def packages(self) -> list[str]:
        """Distinct package paths, sorted."""
        return sorted(self.index)

    def modules_for(self, package: str) -> tuple[PolicyModule, ...]:
        """Modules contributing to a package (empty if unresolved)."""
        return self.index.get(package, ())

    def has_package(self, package: str) -> bool:
        return package in self.index


def build_index(modules: Iterable[PolicyModule]) -> Mapping[str, tuple[PolicyModule, ...]]:
    """Group modules by declared package, preserving load order."""
    grouped: dict[str, list[PolicyModule]] = {}
    for module in modules:
        grouped.setdefault(module.package, []).append(module)
    return MappingProxyType({pkg: tuple(mods) for pkg, mods in grouped.items()})


def iter_policy_files(root: Path, suffix: str) -> Iterator[Path]:
    """
    Yield policy files under root, recursively and in sorted order.

    Raises:
        PolicyRootNotFoundError: If root is missing or not a directory
    """
    if not root.is_dir():
        raise PolicyRootNotFoundError(source=str(root))

    for path in sorted(root.rglob(f"*{suffix}")):
        if not path.is_file():
            continue
        if path.stem.endswith("_test"):
            continue
        yield path


def load_data_file(path: Path | str) -> Mapping[str, Any]:
    """
    Load the auxiliary data document (JSON or YAML).

    Raises:
        PolicyDataError: If the file is unreadable or not a mapping
    """
    path = Path(path)
    try:
        with path.open() as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise PolicyDataError(source=str(path), underlying_error=str(e)) from e

    if data is None:
        return _EMPTY
    if not isinstance(data, dict):
        raise PolicyDataError(
            source=str(path),
            underlying_error=f"top level must be a mapping, got {type(data).__name__}",
        )
    return MappingProxyType(data)


def load_snapshot(
    root_dirs: Iterable[Path | str],
    backend: RuleBackend | None = None,
    data: Mapping[str, Any] | None = None,
    generation: int = 1,
) -> Snapshot:
    """
    Load every policy file under the given roots.

    Args:
        root_dirs: Directories to walk recursively
        backend: Rule backend (defaults to Rego)
        data: Auxiliary data document for rules
        generation: Generation number to stamp on the snapshot

    Returns:
        A new immutable Snapshot

    Raises:
        PolicyLoadError: If any root or file cannot be loaded
    """
    if backend is None:
        from guardrail.policy.rego import RegoBackend

        backend = RegoBackend()

    roots = tuple(str(Path(r)) for r in root_dirs)
    modules: list[PolicyModule] = []
    seen: set[Path] = set()

    for root in roots:
        for path in iter_policy_files(Path(root), backend.file_suffix):
            # Overlapping roots reach the same file more than once
            resolved = path.resolve()
            if resolved in seen:
                continue
            seen.add(resolved)

            source = str(path)
            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise PolicyLoadError(source=source, underlying_error=str(e)) from e

            module = backend.parse(source, text)
            logger.debug("Loaded %s (package %s)", source, module.package)
            modules.append(module)

    index = build_index(modules)
    logger.info(
        "Loaded %d policy modules in %d packages from %s",
        len(modules),
        len(index),
        ", ".join(roots),
    )

    return Snapshot(
        modules=tuple(modules),
        index=index,
        backend=backend,
        root_dirs=roots,
        data=MappingProxyType(dict(data)) if data else _EMPTY,
        generation=generation,
    )


class PolicyStore:
    """
    Holder of the currently published Snapshot.

    Readers take `store.snapshot` once per request and use that object
    throughout; a concurrent reload cannot change it underneath them.

    Usage:
        store = PolicyStore(["policies/kubernetes"])
        snapshot = store.snapshot
        store.reload()  # raises PolicyLoadError, old snapshot stays live
    """

    def __init__(
        self,
        root_dirs: Iterable[Path | str],
        backend: RuleBackend | None = None,
        data_file: Path | str | None = None,
    ) -> None:
        """
        Load the initial snapshot.

        Raises:
            PolicyLoadError: If the initial load fails
        """
        self._root_dirs = tuple(Path(r) for r in root_dirs)
        self._backend = backend
        self._data_file = Path(data_file) if data_file is not None else None
        self._reload_lock = threading.Lock()
        self._snapshot = self._build(generation=1)

    @classmethod
    def from_config(cls, config: Any, backend: RuleBackend | None = None) -> PolicyStore:
        """Create a store from a GatewayConfig."""
        return cls(config.policy_dirs, backend=backend, data_file=config.data_file)

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def reload(self) -> Snapshot:
        """
        Rebuild and publish a new snapshot.

        Returns:
            The newly published snapshot

        Raises:
            PolicyLoadError: If loading fails; the current snapshot is kept
        """
        with self._reload_lock:
            snapshot = self._build(generation=self._snapshot.generation + 1)
            self._snapshot = snapshot

        logger.info("Published policy snapshot generation %d", snapshot.generation)
        return snapshot

    def try_reload(self) -> bool:
        """Reload, logging instead of raising on failure."""
        try:
            self.reload()
        except PolicyLoadError as e:
            logger.error("Policy reload failed, keeping generation %d: %s", self._snapshot.generation, e)
            return False
        return True

    def _build(self, generation: int) -> Snapshot:
        data = load_data_file(self._data_file) if self._data_file is not None else None
        return load_snapshot(
            self._root_dirs,
            backend=self._backend,
            data=data,
            generation=generation,
        )
