# -----------------------------------------------------------------------------
# Copyright (C) 2024 Iliyas Jorio.
# This file is part of SubtreePublisher, distributed under the GNU GPL v3.
# For full terms, see the included LICENSE file.
# -----------------------------------------------------------------------------

"""
Recovers the upstream commit that a downstream commit was transplanted from.

The filtering process records the upstream hash in a trailer line such as:

    Kubernetes-commit: 0123456789abcdef0123456789abcdef01234567

Very old downstream commits carry it in a synthetic subject line instead:

    sync(kubernetes/kubernetes)0123456789abcdef0123456789abcdef01234567
"""

from __future__ import annotations

import dataclasses
import enum

from pygit2 import Oid

from subtreepublisher.porcelain import parse_hex_oid


@enum.unique
class SourceHashStatus(enum.IntEnum):
    ABSENT = 0
    FOUND = 1
    MALFORMED = 2


class MalformedTrailer(ValueError):
    def __init__(self, text: str, line: str):
        super().__init__(f"Unparsable source hash: {text!r}")
        self.text = text
        self.line = line

    def __repr__(self):
        return f"MalformedTrailer({self.text!r})"


@dataclasses.dataclass(frozen=True)
class SourceHash:
    status: SourceHashStatus
    oid: Oid | None = None
    line: str = ""
    "Message line the hash was read from"

    text: str = ""
    "Raw hash text (after stripping whitespace)"

    legacy: bool = False

    def __bool__(self):
        return self.status == SourceHashStatus.FOUND

    def require(self) -> Oid | None:
        """Return the oid (None if absent); raise MalformedTrailer if unparsable."""
        if self.status == SourceHashStatus.MALFORMED:
            raise MalformedTrailer(self.text, self.line)
        return self.oid


SOURCE_HASH_ABSENT = SourceHash(SourceHashStatus.ABSENT)


def defaultCommitMessageTag(sourceRepo: str) -> str:
    """ "kubernetes" -> "Kubernetes-commit" (only the first letter is upper-cased) """
    return sourceRepo[:1].upper() + sourceRepo[1:] + "-commit"


class SourceHashParser:
    def __init__(self, sourceOrg: str, sourceRepo: str, commitMessageTag: str = ""):
        self.sourceOrg = sourceOrg
        self.sourceRepo = sourceRepo
        self.commitMessageTag = commitMessageTag or defaultCommitMessageTag(sourceRepo)
        self.trailerPrefix = self.commitMessageTag + ": "
        self.legacyPrefix = f"sync({sourceOrg}/{sourceRepo})"

    def __repr__(self):
        return f"SourceHashParser({self.trailerPrefix!r}, {self.legacyPrefix!r})"

    def parse(self, message: str) -> SourceHash:
        lines = message.split("\n")

        for line in lines:
            if line.startswith(self.trailerPrefix):
                return self._parseHash(line, line[len(self.trailerPrefix):], legacy=False)

        if lines[0].startswith(self.legacyPrefix):
            return self._parseHash(lines[0], lines[0][len(self.legacyPrefix):], legacy=True)

        return SOURCE_HASH_ABSENT

    @staticmethod
    def _parseHash(line: str, text: str, legacy: bool) -> SourceHash:
        text = text.strip()
        oid = parse_hex_oid(text)
        status = SourceHashStatus.FOUND if oid is not None else SourceHashStatus.MALFORMED
        return SourceHash(status, oid=oid, line=line, text=text, legacy=legacy)

    def sourceHash(self, commit) -> Oid | None:
        """
        Return the upstream commit id recorded in `commit`'s message, or None
        if there's none (or if it can't be parsed).
        """
        return self.parse(commit.message).oid
