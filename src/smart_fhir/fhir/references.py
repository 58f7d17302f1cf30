"""Resolve Reference fields of a FHIR resource into the referenced resources.

Paths are grouped by depth and the groups run in ascending order, so a
child path such as ``"encounter.serviceProvider"`` sees its parent already
mounted. Paths in one group are fetched concurrently. One
:class:`ReferenceCache` is shared by the whole call: identical references
are fetched once, and a reference that cycles back to a URL already in the
cache reuses that entry even while its fetch is still in flight.

A 404 on a referenced resource is logged and skipped. Any other failure
aborts the call.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import Any, Literal

from ..errors import RequestError
from .paths import get_path, path_depth, set_path

logger = logging.getLogger(__name__)

Mode = Literal["graph", "flat"]


class ReferenceCache:
    """Reference URL -> fetch future, shared across one resolution call.

    An entry is pending while its future runs, resolved once it holds a
    resource. Failed entries are dropped so a later path may try again.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Future] = {}
        self._lock = threading.Lock()

    def get_or_submit(self, reference: str, submit: Callable[[str], Future]) -> Future:
        with self._lock:
            entry = self._entries.get(reference)
            if entry is not None:
                logger.debug("Reference %s already requested", reference)
                return entry
            entry = submit(reference)
            self._entries[reference] = entry
            return entry

    def discard(self, reference: str, entry: Future) -> None:
        with self._lock:
            if self._entries.get(reference) is entry:
                del self._entries[reference]

    def resolved(self) -> dict[str, Any]:
        """Settled, successful entries as ``{reference: resource}``."""
        with self._lock:
            entries = dict(self._entries)
        return {
            reference: entry.result()
            for reference, entry in entries.items()
            if entry.done() and not entry.cancelled() and entry.exception() is None
        }

    def __contains__(self, reference: object) -> bool:
        with self._lock:
            return reference in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._entries))


class ReferenceResolver:
    """Fetches references through ``fetch`` (a GET of a relative URL)."""

    def __init__(self, fetch: Callable[[str], Any], max_workers: int = 8) -> None:
        self._fetch = fetch
        self._max_workers = max_workers

    def resolve_references(self, resource: dict, paths: list[str]) -> dict:
        self.fetch_references(resource, paths, mode="graph")
        return resource

    def get_references(self, resource: dict, paths: list[str]) -> dict[str, Any]:
        return self.fetch_references(resource, paths, mode="flat").resolved()

    def fetch_references(
        self,
        resource: dict,
        paths: list[str],
        mode: Mode = "graph",
        cache: ReferenceCache | None = None,
    ) -> ReferenceCache:
        """Fetch every reference found at ``paths``.

        In ``"graph"`` mode each resolved Reference node in ``resource`` is
        replaced by the fetched resource. In ``"flat"`` mode ``resource`` is
        left untouched and only the returned cache is populated.
        """
        if mode not in ("graph", "flat"):
            raise ValueError(f"Unknown reference resolution mode {mode!r}")
        cache = cache if cache is not None else ReferenceCache()
        executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="fhir-ref")
        try:
            self._fetch_into(resource, normalize_paths(paths), mode == "graph", cache, executor)
        finally:
            # Siblings still in flight after an abort finish on their own.
            executor.shutdown(wait=False)
        return cache

    def _fetch_into(
        self,
        resource: dict,
        paths: list[str],
        graph: bool,
        cache: ReferenceCache,
        executor: ThreadPoolExecutor,
    ) -> None:
        if resource.get("resourceType") == "Bundle":
            # Entries run one after another; the shared cache dedupes across them.
            for entry in resource.get("entry") or []:
                if isinstance(entry, dict) and isinstance(entry.get("resource"), dict):
                    self._fetch_into(entry["resource"], paths, graph, cache, executor)
            return
        if not paths:
            return

        groups: dict[int, list[str]] = {}
        for path in paths:
            groups.setdefault(path_depth(path), []).append(path)

        def submit(reference: str) -> Future:
            return executor.submit(self._fetch, reference)

        for depth in sorted(groups):
            targets = []
            for path in groups[depth]:
                for target, reference in _reference_targets(resource, path):
                    targets.append((target, reference, cache.get_or_submit(reference, submit)))
            _settle(targets, cache)
            if graph:
                for target, _, entry in targets:
                    if entry.exception() is None:
                        set_path(resource, target, entry.result())


def normalize_paths(paths: list[str]) -> list[str]:
    """Strip, drop empty and de-duplicate paths, keeping first occurrences."""
    normalized: list[str] = []
    for raw in paths:
        path = str(raw).strip()
        if not path:
            continue
        if path in normalized:
            logger.debug('Duplicated reference path "%s"', path)
            continue
        normalized.append(path)
    return normalized


def _reference_targets(resource: dict, path: str) -> list[tuple[str, str]]:
    """``(concrete path, reference)`` for every Reference found at ``path``."""
    node = get_path(resource, path)
    if not node:
        return []
    if not isinstance(node, list):
        reference = node.get("reference") if isinstance(node, dict) else None
        return [(path, reference)] if reference else []

    targets = []
    for index, item in enumerate(node):
        if not item or not isinstance(item, dict):
            continue
        reference = item.get("reference")
        if not reference:
            continue
        if ".." in path:
            target = path.replace("..", f".{index}.", 1)
        else:
            target = f"{path}.{index}"
        targets.append((target, reference))
    return targets


def _settle(targets: list[tuple[str, str, Future]], cache: ReferenceCache) -> None:
    """Wait for every fetch in a depth group; re-raise the first non-404 failure."""
    pending = {entry for _, _, entry in targets}
    while pending:
        done, pending = wait(pending, return_when=FIRST_EXCEPTION)
        for target, reference, entry in targets:
            if entry not in done:
                continue
            error = entry.exception()
            if error is None:
                continue
            cache.discard(reference, entry)
            if isinstance(error, RequestError) and error.status == 404:
                logger.warning("Missing reference %s at %s: %s", reference, target, error)
                continue
            raise error
