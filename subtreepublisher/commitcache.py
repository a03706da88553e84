# -----------------------------------------------------------------------------
# Copyright (C) 2024 Iliyas Jorio.
# This file is part of SubtreePublisher, distributed under the GNU GPL v3.
# For full terms, see the included LICENSE file.
# -----------------------------------------------------------------------------

import logging
import os
import threading
from typing import Any, Hashable

from pygit2 import Object as _GitObject
from pygit2.enums import ObjectType

logger = logging.getLogger(__name__)


class CommitCache:
    """
    Memoizes commit lookups against one or more object stores.

    Entries are keyed by (repository identity, oid), so identical hashes from
    unrelated repositories never collide. Misses are cached as well. Any error
    other than "not found" raised by the object store propagates to the caller.

    Repositories without an on-disk path are identified by id(); the cache
    keeps them alive until clear() so that their ids cannot be reused.
    """

    def __init__(self):
        self._entries: dict[tuple[Hashable, Hashable], Any] = {}
        self._anchors: dict[int, Any] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def repoIdentity(repo) -> Hashable:
        path = getattr(repo, "path", None)
        if path:
            return os.path.normcase(os.path.realpath(path))
        return id(repo)

    def lookup(self, repo, oid):
        """
        Return the commit with the given id in `repo`, or None if the object
        store has no such commit.
        """
        identity = self.repoIdentity(repo)
        key = (identity, oid)

        with self._lock:
            try:
                commit = self._entries[key]
                self.hits += 1
                return commit
            except KeyError:
                pass

        # Decode outside the lock; a concurrent decode of the same key yields an equivalent object.
        commit = repo.get(oid)
        if isinstance(commit, _GitObject) and commit.type != ObjectType.COMMIT:
            commit = None

        with self._lock:
            commit = self._entries.setdefault(key, commit)
            if isinstance(identity, int):
                self._anchors.setdefault(identity, repo)
            self.misses += 1

        if commit is None:
            logger.debug(f"Commit not found: {oid}")
        return commit

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._anchors.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self):
        return len(self._entries)

    def __repr__(self):
        return f"CommitCache({len(self)} entries, {self.hits} hits, {self.misses} misses)"
