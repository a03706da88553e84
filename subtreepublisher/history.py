# -----------------------------------------------------------------------------
# Copyright (C) 2024 Iliyas Jorio.
# This file is part of SubtreePublisher, distributed under the GNU GPL v3.
# For full terms, see the included LICENSE file.
# -----------------------------------------------------------------------------

"""
Walks over commit history.

First-parent chains are ordered newest first: the tip is at index 0 and the
root commit is the last element, as with `git log --first-parent`.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence
from typing import Hashable

from subtreepublisher.benchmark import benchmark
from subtreepublisher.commitcache import CommitCache
from subtreepublisher.porcelain import RepositoryError

logger = logging.getLogger(__name__)

Oid = Hashable


@dataclasses.dataclass
class MockCommit:
    id: Oid
    parent_ids: Sequence[Oid]
    message: str = ""


def _resolve(cache: CommitCache, repo, oid: Oid, child: Oid):
    commit = cache.lookup(repo, oid)
    if commit is None:
        raise RepositoryError(f"can't resolve parent {oid} of commit {child}", oid=oid)
    return commit


@benchmark
def firstParentList(repo, tip, cache: CommitCache | None = None) -> list:
    """
    Return the commits reached by following first parents from `tip` down to
    the root commit, tip first.

    Raises RepositoryError if any commit in the chain is missing from the
    object store (e.g. shallow or corrupt checkout).
    """
    if cache is None:
        cache = CommitCache()

    chain = [tip]
    commit = tip
    while commit.parent_ids:
        commit = _resolve(cache, repo, commit.parent_ids[0], commit.id)
        chain.append(commit)

    logger.debug(f"First-parent chain from {tip.id}: {len(chain)} commits")
    return chain


@benchmark
def mergePoints(repo, firstParents: Sequence, cache: CommitCache | None = None) -> dict:
    """
    Map every commit reachable from the tip of `firstParents` to the mainline
    commit through which it was first absorbed into the mainline.

    Mainline commits map to themselves. A commit brought in by a merge maps to
    the oldest mainline merge that reaches it; when several merges share
    ancestors, the first assignment wins and the ancestor is not explored again.
    """
    if cache is None:
        cache = CommitCache()

    table = {}

    # Oldest first: when a mainline commit is processed, its first parent
    # (and everything behind it) has been assigned already.
    for mainlineCommit in reversed(firstParents):
        if mainlineCommit.id in table:
            continue
        table[mainlineCommit.id] = mainlineCommit

        stack = [pid for pid in mainlineCommit.parent_ids[1:] if pid not in table]
        while stack:
            oid = stack.pop()
            if oid in table:
                # Diamond: reached through another side parent already
                continue
            commit = _resolve(cache, repo, oid, mainlineCommit.id)
            table[oid] = mainlineCommit
            stack.extend(pid for pid in commit.parent_ids if pid not in table)

    logger.debug(f"Merge point table: {len(table)} commits under {len(firstParents)} mainline commits")
    return table
