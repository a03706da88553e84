# -----------------------------------------------------------------------------
# Copyright (C) 2024 Iliyas Jorio.
# This file is part of SubtreePublisher, distributed under the GNU GPL v3.
# For full terms, see the included LICENSE file.
# -----------------------------------------------------------------------------

from __future__ import annotations as _annotations

import logging as _logging
import re as _re
from pathlib import Path as _Path

from pygit2 import (
    Commit,
    GitError,
    InvalidSpecError,
    Oid,
    Repository as _VanillaRepository,
    Signature,
    Tag,
)

from pygit2.enums import (
    ObjectType,
    ReferenceType,
    RepositoryOpenFlag,
)

from subtreepublisher.commitcache import CommitCache

_logger = _logging.getLogger(__name__)

HEX_OID_PATTERN = _re.compile(r"^(?:[0-9a-fA-F]{40}|[0-9a-fA-F]{64})$")


class RefPrefix:
    HEADS = "refs/heads/"
    REMOTES = "refs/remotes/"
    TAGS = "refs/tags/"


class RepositoryError(Exception):
    """
    The object store could not satisfy a read: unresolvable reference, missing
    commit in a first-parent chain, etc. Fatal for the run.
    """

    def __init__(self, message: str, oid: Oid | None = None, refname: str = ""):
        super().__init__(message)
        self.oid = oid
        self.refname = refname

    def __repr__(self):
        return f"RepositoryError({self.args[0]!r}, oid={self.oid}, refname={self.refname!r})"


def parse_hex_oid(text: str) -> Oid | None:
    """Return an Oid for a full-length hex object id, or None if the text isn't one."""
    text = text.strip()
    if not HEX_OID_PATTERN.match(text):
        return None
    try:
        return Oid(hex=text.lower())
    except ValueError:
        # SHA-256 ids with a SHA-1-only libgit2
        return None


def first_line(message: str) -> str:
    return message.split("\n", 1)[0]


class Repo(_VanillaRepository):
    """
    Drop-in replacement for pygit2.Repository with convenient front-ends to
    the few git operations the publisher needs.

    Each handle owns its own commit cache.
    """

    commit_cache: CommitCache

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.commit_cache = CommitCache()

    @property
    def head_branch_shorthand(self) -> str:
        if self.head_is_detached or self.head_is_unborn:
            return ""
        return self.head.shorthand

    def commit(self, commit_id: Oid) -> Commit:
        commit = self.commit_cache.lookup(self, commit_id)
        if commit is None:
            raise RepositoryError(f"commit {commit_id} not found", oid=commit_id)
        return commit

    def commit_id_from_refname(self, refname: str) -> Oid:
        try:
            reference = self.references[refname]
            commit: Commit = reference.peel(Commit)
        except (KeyError, InvalidSpecError, GitError) as exc:
            raise RepositoryError(f"failed to resolve {refname}: {exc}", refname=refname) from exc
        return commit.id

    def branch_head(self, branch: str) -> Commit:
        """
        Return the commit at the head of the given branch. The branch name is
        prefixed with refs/heads/ if it is not fully qualified.
        """
        if branch != "HEAD" and not branch.startswith("refs/"):
            branch = RefPrefix.HEADS + branch
        if branch == "HEAD":
            try:
                commit_id = self.head.peel(Commit).id
            except GitError as exc:
                raise RepositoryError(f"failed to resolve HEAD: {exc}", refname="HEAD") from exc
        else:
            commit_id = self.commit_id_from_refname(branch)
        return self.commit(commit_id)

    def remote_branch_head(self, remote: str, branch: str) -> Commit:
        return self.branch_head(f"{RefPrefix.REMOTES}{remote}/{branch}")

    def has_remote_branch(self, remote: str, branch: str) -> bool:
        return f"{RefPrefix.REMOTES}{remote}/{branch}" in self.references

    def remote_tags(self, remote: str) -> dict[str, Oid]:
        """
        Map tag names fetched from `remote` into refs/tags/<remote>/ to the ids
        their refs point at (a tag object for annotated tags).
        """
        prefix = f"{RefPrefix.TAGS}{remote}/"
        tags = {}
        for ref in self.references.objects:
            if ref.type != ReferenceType.DIRECT:
                continue
            if ref.name.startswith(prefix):
                tags[ref.name[len(prefix):]] = ref.target
        return tags

    def remove_remote_tags(self, *remotes: str):
        prefixes = tuple(f"{RefPrefix.TAGS}{remote}/" for remote in remotes)
        doomed = [name for name in self.references if name.startswith(prefixes)]
        for name in doomed:
            _logger.debug(f"Deleting {name}")
            self.references.delete(name)

    def fetch_remote_tags(self, remote_name: str):
        """Fetch all tags of a remote into refs/tags/<remote>/*."""
        try:
            remote = self.remotes[remote_name]
        except KeyError as exc:
            raise RepositoryError(f"no remote named {remote_name}") from exc

        refspec = f"+{RefPrefix.TAGS}*:{RefPrefix.TAGS}{remote_name}/*"
        try:
            stats = remote.fetch([refspec], message=f"fetch tags from {remote_name}")
        except GitError as exc:
            raise RepositoryError(f"failed to fetch tags from {remote_name}: {exc}") from exc
        _logger.info(f"Fetched tags from {remote_name}: {stats.received_objects} objects received")

    def annotated_tag(self, ref_target: Oid) -> Tag | None:
        """Return the tag object at `ref_target`, or None for lightweight tags."""
        obj = self.get(ref_target)
        if obj is None or obj.type != ObjectType.TAG:
            return None
        return obj

    def tag_exists(self, tagname: str) -> bool:
        assert not tagname.startswith("refs/")
        return RefPrefix.TAGS + tagname in self.references

    def tagged_commit_id(self, tagname: str) -> Oid:
        """Return the commit of refs/tags/<tagname>, whether the tag is annotated or not."""
        assert not tagname.startswith("refs/")
        return self.commit_id_from_refname(RefPrefix.TAGS + tagname)

    def delete_tag(self, tagname: str):
        assert not tagname.startswith("refs/")
        refname = RefPrefix.TAGS + tagname
        assert refname in self.references
        self.references.delete(refname)

    def create_annotated_tag(self, tagname: str, target: Oid, tagger: Signature, message: str) -> Oid:
        assert not tagname.startswith("refs/")
        return self.create_tag(tagname, target, ObjectType.COMMIT, tagger, message)


class RepoContext:
    def __init__(self, path: str | _Path, flags: RepositoryOpenFlag = RepositoryOpenFlag.DEFAULT):
        try:
            self.repo = Repo(str(path), flags)
        except GitError as exc:
            raise RepositoryError(f"failed to open repository at {path}: {exc}") from exc

    def __enter__(self) -> Repo:
        return self.repo

    def __exit__(self, exc_type, exc_val, exc_tb):
        # repo.free() is necessary for correct test teardown on Windows
        self.repo.free()
        del self.repo
        self.repo = None
