# -----------------------------------------------------------------------------
# Copyright (C) 2024 Iliyas Jorio.
# This file is part of SubtreePublisher, distributed under the GNU GPL v3.
# For full terms, see the included LICENSE file.
# -----------------------------------------------------------------------------

"""
Recreates upstream release tags on the downstream branch, and works out which
commit of each dependency repo a downstream release should pin.

Upstream tags are expected under refs/tags/<source-remote>/<name>, and tags
already published downstream under refs/tags/origin/<name>. New tags are
created locally; pushing them is left to the push script.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os

import semver
from pygit2 import GitError, Oid, Signature

from subtreepublisher.correlation import (
    CorrelationGap,
    CorrelationMap,
    buildCorrelation,
    mappingOutputFileName,
    writeMapping,
)
from subtreepublisher.history import firstParentList
from subtreepublisher.porcelain import RefPrefix, Repo, RepoContext, RepositoryError
from subtreepublisher.settings import SettingsError, SyncSettings
from subtreepublisher.sourcehash import SourceHashParser

logger = logging.getLogger(__name__)

ORIGIN = "origin"


def resolveTagTarget(correlation: CorrelationMap, upstreamTarget: Oid) -> Oid:
    """
    Return the downstream commit that an upstream tag's target corresponds to.
    Raises CorrelationGap if there's none; the tag must then be skipped.
    """
    return correlation.lookup(upstreamTarget, "tag target")


def resolvePinCommit(correlation: CorrelationMap, upstreamTarget: Oid) -> Oid:
    """
    Return the commit of a dependency repo that corresponds to an upstream tag
    target, given that dependency's own correlation map.
    """
    return correlation.lookup(upstreamTarget, "pin target")


def downstreamTagName(upstreamName: str, prefix: str) -> str:
    """ v1.9.2 -> kubernetes-1.9.2 """
    if not prefix:
        return upstreamName
    return prefix + upstreamName[1:]


def semverTagName(upstreamName: str) -> str:
    """
    v1.x.y -> v0.x.y, for upstream tags that are valid semantic versions
    (semver.org rules, as Go modules expect). Returns an empty string for any
    other tag.
    """
    if not upstreamName.startswith("v1."):
        return ""
    try:
        semver.Version.parse(upstreamName[1:])
    except ValueError:
        return ""
    return "v0." + upstreamName[len("v1."):]


def releaseMessage(settings: SyncSettings, upstreamName: str) -> str:
    projectTitle = settings.sourceRepo[:1].upper() + settings.sourceRepo[1:]
    return (f"{projectTitle} release {upstreamName}\n"
            f"\n"
            f"Based on https://github.com/{settings.sourceOrg}/{settings.sourceRepo}/releases/tag/{upstreamName}\n")


@dataclasses.dataclass
class TagSyncReport:
    created: list[str] = dataclasses.field(default_factory=list)
    skippedGaps: list[str] = dataclasses.field(default_factory=list)
    skippedExisting: list[str] = dataclasses.field(default_factory=list)
    skippedOld: list[str] = dataclasses.field(default_factory=list)
    pins: dict[str, dict[str, str]] = dataclasses.field(default_factory=dict)
    mappingFiles: list[str] = dataclasses.field(default_factory=list)


class DependencyPinner:
    """
    Finds the commit of a dependency repo (a sibling checkout) that matches a
    downstream release tag.

    A tag that the dependency already carries (locally or as published at
    origin) wins. Otherwise, if the dependency has the upstream branch, its own
    correlation map is used.
    """

    def __init__(self, settings: SyncSettings, parser: SourceHashParser):
        self.settings = settings
        self.parser = parser
        self._correlations: dict[str, CorrelationMap | None] = {}

    def dependencyPath(self, name: str) -> str:
        return os.path.join(self.settings.dependencyRoot, name)

    def pin(self, name: str, tagName: str, upstreamTarget: Oid) -> Oid:
        with RepoContext(self.dependencyPath(name)) as depRepo:
            for candidate in tagName, f"{ORIGIN}/{tagName}":
                if depRepo.tag_exists(candidate):
                    commitId = depRepo.tagged_commit_id(candidate)
                    logger.debug(f"{name}: pinning {tagName} to tagged commit {commitId}")
                    return commitId

            correlation = self._dependencyCorrelation(name, depRepo)

        if correlation is None:
            raise CorrelationGap(upstreamTarget, f"dependency {name}")
        return resolvePinCommit(correlation, upstreamTarget)

    def _dependencyCorrelation(self, name: str, depRepo: Repo) -> CorrelationMap | None:
        try:
            return self._correlations[name]
        except KeyError:
            pass

        sourceRemote = self.settings.sourceRemote
        sourceBranch = self.settings.sourceBranch
        correlation = None

        if depRepo.has_remote_branch(sourceRemote, sourceBranch):
            logger.info(f"{name}: computing mapping from upstream commits to {depRepo.head_branch_shorthand}")
            correlation, _ = buildCorrelation(
                depRepo, depRepo.remote_branch_head(sourceRemote, sourceBranch),
                depRepo, depRepo.branch_head("HEAD"),
                self.parser, cache=depRepo.commit_cache)
        else:
            logger.warning(f"{name}: no {sourceRemote}/{sourceBranch} branch to correlate with")

        self._correlations[name] = correlation
        return correlation


class TagSyncer:
    def __init__(self, repo: Repo, settings: SyncSettings, pinner: DependencyPinner | None = None):
        self.repo = repo
        self.settings = settings
        self.parser = SourceHashParser(settings.sourceOrg, settings.sourceRepo, settings.effectiveCommitMessageTag)
        self.pinner = pinner or DependencyPinner(settings, self.parser)

        self.localBranch = ""
        self.sourceFirstParents = []
        self._correlation: CorrelationMap | None = None

    def run(self) -> TagSyncReport:
        settings = self.settings
        repo = self.repo
        report = TagSyncReport()

        self.localBranch = repo.head_branch_shorthand
        if not self.localBranch:
            raise RepositoryError("Failed to get current branch", refname="HEAD")

        sourceHead = repo.remote_branch_head(settings.sourceRemote, settings.sourceBranch)
        self.sourceFirstParents = firstParentList(repo, sourceHead, repo.commit_cache)

        if not settings.skipFetch:
            logger.info(f"Removing all local copies of {ORIGIN} and {settings.sourceRemote} tags")
            repo.remove_remote_tags(ORIGIN, settings.sourceRemote)
            logger.info(f"Fetching tags from remote {settings.sourceRemote}")
            repo.fetch_remote_tags(settings.sourceRemote)
            logger.info(f"Fetching tags from remote {ORIGIN}")
            repo.fetch_remote_tags(ORIGIN)

        sourceTags = self.sourceBranchTags()
        originTags = repo.remote_tags(ORIGIN)

        for name in sorted(sourceTags):
            self.syncTag(name, sourceTags[name], originTags, report)

        if settings.pushScript and report.created:
            self.appendPushCommand(report.created)

        if settings.pinsOutputFile and report.pins:
            with open(settings.pinsOutputFile, 'wt', encoding='utf-8') as file:
                json.dump(report.pins, file, indent='\t', sort_keys=True)
            logger.info(f"Wrote dependency pins to {settings.pinsOutputFile}")

        if report.skippedGaps:
            logger.info(f"Skipped tags without a downstream equivalent: {', '.join(report.skippedGaps)}")
        logger.info(f"Created {len(report.created)} tags")
        return report

    def sourceBranchTags(self):
        """ Annotated upstream tags whose target lies on the upstream mainline. """
        onMainline = {c.id for c in self.sourceFirstParents}
        tags = {}

        for name, refTarget in self.repo.remote_tags(self.settings.sourceRemote).items():
            tag = self.repo.annotated_tag(refTarget)
            if tag is None:
                logger.debug(f"Ignoring lightweight tag {name}")
                continue
            if tag.target not in onMainline:
                logger.debug(f"Ignoring tag {name}, not on {self.settings.sourceBranch}")
                continue
            tags[name] = tag

        return tags

    @property
    def correlation(self) -> CorrelationMap:
        if self._correlation is None:
            repo = self.repo
            localHead = repo.branch_head(self.localBranch)
            logger.info(f"Computing mapping from upstream commits to the local branch {self.localBranch} at {localHead.id}")
            self._correlation, _ = buildCorrelation(
                repo, self.sourceFirstParents[0], repo, localHead, self.parser,
                cache=repo.commit_cache, upstreamFirstParents=self.sourceFirstParents)
        return self._correlation

    def syncTag(self, name: str, tag, originTags: dict, report: TagSyncReport):
        settings = self.settings
        repo = self.repo

        bName = downstreamTagName(name, settings.prefix)
        semverTag = semverTagName(name) if settings.publishSemverTags else ""

        if tag.tagger is None or tag.tagger.time < settings.oldestTagTimestamp:
            logger.debug(f"Ignoring old tag {name}")
            report.skippedOld.append(name)
            return

        if bName in originTags or (semverTag and semverTag in originTags):
            report.skippedExisting.append(bName)
            return

        for localName in bName, semverTag:
            if localName and repo.tag_exists(localName):
                logger.info(f"Deleting stale local tag {localName}")
                repo.delete_tag(localName)

        try:
            bh = resolveTagTarget(self.correlation, tag.target)
        except CorrelationGap as gap:
            # The tag isn't on the current source branch
            logger.warning(f"Skipping {name}: {gap}")
            report.skippedGaps.append(name)
            return

        if settings.mappingOutputFile:
            self.writeMappingFile(bName, report)

        if settings.dependencies:
            report.pins[bName] = self.pinDependencies(semverTag or bName, tag.target)

        tagger = self.tagger(tag.tagger)
        message = releaseMessage(settings, name)

        for newName in semverTag, bName:
            if not newName:
                continue
            logger.info(f"Tagging {bh} as {newName}")
            repo.create_annotated_tag(newName, bh, tagger, message)
            report.created.append(newName)

    def pinDependencies(self, tagName: str, upstreamTarget: Oid) -> dict[str, str]:
        logger.info(f"Checking that dependencies point to the actual tags in {', '.join(self.settings.dependencies)}")
        pins = {}
        for dep in self.settings.dependencies:
            try:
                pinId = self.pinner.pin(dep, tagName, upstreamTarget)
            except CorrelationGap as gap:
                logger.warning(f"Not pinning {dep} for {tagName}: {gap}")
                continue
            logger.info(f"Pinning {dep} to {pinId} for {tagName}")
            pins[dep] = str(pinId)
        return pins

    def writeMappingFile(self, tagName: str, report: TagSyncReport):
        fileName = mappingOutputFileName(self.settings.mappingOutputFile, self.localBranch, tagName)
        if fileName in report.mappingFiles:
            return
        logger.info(f"Writing source->dest hash mapping to {fileName}")
        with open(fileName, 'wt', encoding='utf-8') as file:
            writeMapping(file, self.correlation, self.sourceFirstParents)
        report.mappingFiles.append(fileName)

    def tagger(self, upstreamTagger: Signature) -> Signature:
        name = self.settings.committerName
        email = self.settings.committerEmail
        if not name or not email:
            try:
                default = self.repo.default_signature
            except (KeyError, GitError) as exc:
                raise SettingsError("No committer identity: set GIT_COMMITTER_NAME and GIT_COMMITTER_EMAIL") from exc
            name = name or default.name
            email = email or default.email
        return Signature(name, email, upstreamTagger.time, upstreamTagger.offset)

    def appendPushCommand(self, tagNames: list[str]):
        # --atomic: releases that already have their non-semver tag become no-ops
        path = self.settings.pushScript
        isNew = not os.path.exists(path)
        refs = " ".join(RefPrefix.TAGS + name for name in tagNames)
        with open(path, 'at', encoding='utf-8') as script:
            script.write(f"git push --atomic {ORIGIN} {refs}\n")
        if isNew:
            os.chmod(path, 0o755)
