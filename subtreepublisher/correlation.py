# -----------------------------------------------------------------------------
# Copyright (C) 2024 Iliyas Jorio.
# This file is part of SubtreePublisher, distributed under the GNU GPL v3.
# For full terms, see the included LICENSE file.
# -----------------------------------------------------------------------------

"""
Correlates the upstream mainline with a downstream branch produced by
filtering a subdirectory of the upstream repository.

    dst  upstream
     |    |
     F'<--F
     z    |
     y    |
     E'<--E
     x   ,D
     |  / |
     C'<--C
     w    |
     v<-, |
        |-B
         `A - initial commit

Only some downstream commits (C', E', F') record the upstream commit they were
transplanted from. Every other upstream mainline commit maps to the most recent
downstream commit known to include its effects.
"""

from __future__ import annotations

import logging
import string
from collections.abc import Sequence
from typing import TextIO

from subtreepublisher.benchmark import Benchmark
from subtreepublisher.commitcache import CommitCache
from subtreepublisher.history import firstParentList, mergePoints
from subtreepublisher.porcelain import first_line
from subtreepublisher.sourcehash import SourceHashParser, SourceHashStatus

logger = logging.getLogger(__name__)

NOT_FOUND_MARKER = "<not-found>"

MAPPING_TEMPLATE_FIELDS = ("branch", "tag")

# Placeholders from Go text/template, as found in older job definitions
GO_TEMPLATE_PLACEHOLDERS = {
    "{{.Branch}}": "{branch}",
    "{{.Tag}}": "{tag}",
}


class CorrelationGap(KeyError):
    """ An upstream commit has no known downstream equivalent. """

    def __init__(self, upstreamId, what: str = ""):
        super().__init__(upstreamId)
        self.upstreamId = upstreamId
        self.what = what

    def __str__(self):
        what = f"{self.what} " if self.what else ""
        return f"{what}{self.upstreamId} has no downstream equivalent"

    def __repr__(self):
        return f"CorrelationGap({self.upstreamId}, {self.what!r})"


class CorrelationMap(dict):
    """
    Upstream mainline commit id -> downstream commit id.

    Upstream commits for which no downstream commit exists yet are absent.
    """

    directCount: int
    "Number of upstream mainline commits with a direct downstream counterpart"

    isDegenerate: bool
    "True if no correlation point between both histories was ever found"

    def __init__(self, *args, directCount: int = 0, isDegenerate: bool = False, **kwargs):
        super().__init__(*args, **kwargs)
        self.directCount = directCount
        self.isDegenerate = isDegenerate

    def __repr__(self):
        return f"CorrelationMap({len(self)} commits, {self.directCount} direct, degenerate={self.isDegenerate})"

    def lookup(self, upstreamId, what: str = ""):
        try:
            return self[upstreamId]
        except KeyError:
            raise CorrelationGap(upstreamId, what) from None


def directCorrespondences(downstreamFirstParents: Sequence, mergePointTable: dict, parser: SourceHashParser) -> dict:
    """
    Map upstream merge points to the downstream commits that recorded them.

    If several downstream commits lead to the same merge point, the first one
    in `downstreamFirstParents` wins.
    """
    direct = {}

    for commit in downstreamFirstParents:
        sourceHash = parser.parse(commit.message)

        if sourceHash.status == SourceHashStatus.ABSENT:
            continue
        elif sourceHash.status == SourceHashStatus.MALFORMED:
            logger.warning(f"Ignoring unparsable source hash {sourceHash.text!r} in downstream commit {commit.id}")
            continue

        # The recorded hash may be a non-mainline commit (branch commits used to be recorded long ago)
        mergePoint = mergePointTable.get(sourceHash.oid)
        if mergePoint is None:
            logger.debug(f"Downstream commit {commit.id} refers to {sourceHash.oid}, which isn't under the mainline")
            continue

        # Don't override: we might have seen the actual merge before
        direct.setdefault(mergePoint.id, commit.id)

    return direct


def correlate(
        upstreamFirstParents: Sequence,
        downstreamFirstParents: Sequence,
        mergePointTable: dict,
        parser: SourceHashParser,
) -> CorrelationMap:
    """
    Map every upstream mainline commit to its best-known downstream equivalent.

    Both first-parent lists are ordered newest first. The result is monotonic:
    walking the upstream mainline forward in time never moves backward on the
    downstream mainline.
    """
    direct = directCorrespondences(downstreamFirstParents, mergePointTable, parser)

    # Start from the downstream root, unless the root is itself claimed by an
    # upstream commit: upstream history before that commit has no equivalent.
    initial = None
    if downstreamFirstParents:
        root = downstreamFirstParents[-1].id
        if root not in direct.values():
            initial = root

    cursor = initial
    advanced = False
    result = CorrelationMap(directCount=len(direct))

    for upstreamCommit in reversed(upstreamFirstParents):
        try:
            cursor = direct[upstreamCommit.id]
            advanced = True
        except KeyError:
            pass
        if cursor is not None:
            result[upstreamCommit.id] = cursor

    if not advanced:
        result.isDegenerate = True
        logger.warning("No upstream mainline commit found on the downstream branch")

    logger.info(f"Correlated {len(result)} of {len(upstreamFirstParents)} upstream mainline commits "
                f"({len(direct)} direct) with {len(downstreamFirstParents)} downstream commits")
    return result


def buildCorrelation(
        upstreamRepo,
        upstreamTip,
        downstreamRepo,
        downstreamTip,
        parser: SourceHashParser,
        cache: CommitCache | None = None,
        upstreamFirstParents: Sequence | None = None,
) -> tuple[CorrelationMap, list]:
    """
    Walk both histories, resolve upstream merge points and correlate.

    Returns the correlation and the upstream first-parent list it was built
    from. Pass `upstreamFirstParents` to reuse an upstream walk.
    """
    if cache is None:
        cache = CommitCache()

    with Benchmark("buildCorrelation"):
        if upstreamFirstParents is None:
            upstreamFirstParents = firstParentList(upstreamRepo, upstreamTip, cache)
        downstreamFirstParents = firstParentList(downstreamRepo, downstreamTip, cache)
        table = mergePoints(upstreamRepo, upstreamFirstParents, cache)
        correlation = correlate(upstreamFirstParents, downstreamFirstParents, table, parser)

    return correlation, list(upstreamFirstParents)


def writeMapping(stream: TextIO, correlation: CorrelationMap, upstreamFirstParents: Sequence):
    """
    Dump the correlation for debugging: one row per upstream mainline commit,
    newest first.
    """
    for commit in upstreamFirstParents:
        downstreamId = correlation.get(commit.id)
        downstreamText = str(downstreamId) if downstreamId is not None else NOT_FOUND_MARKER
        stream.write(f"{commit.id} {downstreamText} {first_line(commit.message)}\n")


def _translateGoPlaceholders(template: str) -> str:
    for goPlaceholder, placeholder in GO_TEMPLATE_PLACEHOLDERS.items():
        template = template.replace(goPlaceholder, placeholder)
    return template


def checkMappingOutputTemplate(template: str):
    """
    Raise ValueError unless {branch} and {tag} (or their {{.Branch}} and
    {{.Tag}} spellings) are the only placeholders in the template, and the
    template has no other braces.
    """
    translated = _translateGoPlaceholders(template)
    for literal, field, formatSpec, conversion in string.Formatter().parse(translated):
        if "{" in literal or "}" in literal:
            raise ValueError(f"stray brace in {template!r}")
        if field is None:
            continue
        if field not in MAPPING_TEMPLATE_FIELDS or formatSpec or conversion:
            raise ValueError(f"unsupported placeholder {{{field}}} in {template!r}")


def mappingOutputFileName(template: str, branch: str, tag: str) -> str:
    """ Substitute {branch} and {tag} in the mapping output file name template. """
    return _translateGoPlaceholders(template).format(branch=branch, tag=tag)
