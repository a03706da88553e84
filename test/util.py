import hashlib
import os
import re

import pygit2
from pygit2 import Oid, Signature
from pygit2.enums import FileMode, ObjectType

from subtreepublisher.history import MockCommit
from subtreepublisher.porcelain import Repo

TEST_SIGNATURE = Signature("Test Person", "toto@example.com", 1672600000, 0)
OLD_SIGNATURE = Signature("Test Person", "toto@example.com", 1400000000, 0)
TRAILER = "Kubernetes-commit"


def oidOf(name: str) -> Oid:
    """Deterministic fake object id for a commit name in a test graph."""
    return Oid(hex=hashlib.sha1(name.encode("utf-8")).hexdigest())


def parseAncestryDefinition(text):
    sequence = []
    parentsOf = {}
    seen = set()
    heads = set()
    for line in text:
        line = line.strip()
        if not line:
            continue
        split = line.strip().split(",")
        commit = split[0]
        assert commit not in parentsOf, f"Commit hash appears twice in sequence! {commit}"
        sequence.append(commit)
        parentsOf[commit] = split[1:]
        if commit not in seen:
            heads.add(commit)
        seen.update(parentsOf[commit])
    return sequence, parentsOf, heads


def parseAncestryOneLiner(text):
    return parseAncestryDefinition(re.split(r"\s+", text))


def trailerMessage(subject: str, upstreamName: str = "", upstreamId: Oid | None = None) -> str:
    if upstreamName:
        upstreamId = oidOf(upstreamName)
    if upstreamId is None:
        return subject + "\n"
    return f"{subject}\n\n{TRAILER}: {upstreamId}\n"


class MockGraph:
    """
    Commit graph built from a one-liner such as "c,b,y y,x x,b b,a a"
    (each token: commit, then its parents; the first parent is the mainline).

    The graph itself (a dict of oid -> MockCommit) stands in for a repository.
    """

    def __init__(self, oneLiner: str, messages: dict[str, str] | None = None):
        messages = messages or {}
        self.sequence, parentsOf, self.heads = parseAncestryOneLiner(oneLiner)
        self.repo: dict[Oid, MockCommit] = {}
        self.names: dict[Oid, str] = {}
        for name in self.sequence:
            oid = oidOf(name)
            self.names[oid] = name
            self.repo[oid] = MockCommit(oid, [oidOf(p) for p in parentsOf[name]], messages.get(name, name))

    def __getitem__(self, name: str) -> MockCommit:
        return self.repo[oidOf(name)]

    def name(self, oid: Oid) -> str:
        return self.names[oid]

    def nameList(self, commits) -> list[str]:
        return [self.names[c.id] for c in commits]


# -----------------------------------------------------------------------------
# Real repositories

def makeBareRepo(path: str) -> Repo:
    pygit2.init_repository(path, bare=True)
    return Repo(path)


def makeCommit(repo, message: str, parents=(), files: dict[str, str] | None = None, signature=TEST_SIGNATURE) -> Oid:
    builder = repo.TreeBuilder()
    for name, content in (files or {}).items():
        builder.insert(name, repo.create_blob(content.encode("utf-8")), FileMode.BLOB)
    tree = builder.write()
    return repo.create_commit(None, signature, signature, message, tree, list(parents))


def setRef(repo, refname: str, target: Oid):
    repo.references.create(refname, target, force=True)


def makeAnnotatedTag(repo, name: str, target: Oid, signature=TEST_SIGNATURE, message="") -> Oid:
    return repo.create_tag(name, target, ObjectType.COMMIT, signature, message or f"Release {name}\n")


def buildUpstream(repo) -> dict[str, Oid]:
    """
    Upstream mainline a-b-c-d-e, where c merges topic branch x-y forked off b.

        e
        d
        c
        | y
        | x
        b/
        a

    Deterministic: building it in two repos yields identical ids.
    """
    up = {}
    up["a"] = makeCommit(repo, "a\n", files={"lib.txt": "a"})
    up["b"] = makeCommit(repo, "b\n", [up["a"]], files={"lib.txt": "b"})
    up["x"] = makeCommit(repo, "x\n", [up["b"]], files={"lib.txt": "b", "x": "x"})
    up["y"] = makeCommit(repo, "y\n", [up["x"]], files={"lib.txt": "y", "x": "x"})
    up["c"] = makeCommit(repo, "Merge pull request #1 from topic\n", [up["b"], up["y"]],
                         files={"lib.txt": "y", "x": "x"})
    up["d"] = makeCommit(repo, "d (doesn't touch staging)\n", [up["c"]],
                         files={"lib.txt": "y", "x": "x", "d": "d"})
    up["e"] = makeCommit(repo, "e\n", [up["d"]], files={"lib.txt": "e", "x": "x", "d": "d"})
    setRef(repo, "refs/remotes/upstream/master", up["e"])
    return up


def buildDownstream(repo, up: dict[str, Oid]) -> dict[str, Oid]:
    """
    Downstream branch published from staging/lib: d1 (transplanted from y,
    merged upstream by c) and d2 (from e). Checked out as master.
    """
    down = {}
    down["d1"] = makeCommit(repo, trailerMessage("y", upstreamId=up["y"]), files={"a.txt": "y"})
    down["d2"] = makeCommit(repo, trailerMessage("e", upstreamId=up["e"]), [down["d1"]], files={"a.txt": "e"})
    setRef(repo, "refs/heads/master", down["d2"])
    repo.set_head("refs/heads/master")
    return down


def makePublishingRepo(path: str) -> tuple[Repo, dict[str, Oid], dict[str, Oid]]:
    os.makedirs(path, exist_ok=True)
    repo = makeBareRepo(path)
    up = buildUpstream(repo)
    down = buildDownstream(repo, up)
    return repo, up, down
