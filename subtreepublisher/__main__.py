# -----------------------------------------------------------------------------
# Copyright (C) 2024 Iliyas Jorio.
# This file is part of SubtreePublisher, distributed under the GNU GPL v3.
# For full terms, see the included LICENSE file.
# -----------------------------------------------------------------------------

import logging
import sys
from argparse import ArgumentParser

logger = logging.getLogger(__name__)

DESCRIPTION = """\
Syncs tags between the upstream remote branch and the local checkout of an
origin branch. Tags which do not exist in origin, but in upstream are
prepended with the given prefix and then created locally to be pushed to
origin (not done by this tool).

Tags from the upstream remote are fetched as refs/tags/<source-remote>/<tag-name>.
"""


def makeArgumentParser():
    parser = ArgumentParser(prog="subtreepublisher-sync-tags", description=DESCRIPTION)
    parser.add_argument("--source-remote", help="the source repo remote (e.g. upstream)")
    parser.add_argument("--source-branch", help="the source repo branch (not qualified, just the name)")
    parser.add_argument("--commit-message-tag",
                        help="the git commit message tag used to point back to source commits "
                             "(default: derived from --source-repo, e.g. Kubernetes-commit)")
    parser.add_argument("--source-org", help="organization of the source repo (default: kubernetes)")
    parser.add_argument("--source-repo", help="name of the source repo (default: kubernetes)")
    parser.add_argument("--prefix", help="a string to put in front of upstream tags (default: kubernetes-)")
    parser.add_argument("--push-script",
                        help="git-push command(s) are appended to this file to push the new tags to the origin remote")
    parser.add_argument("--dependencies", help="comma-separated list of repo:branch pairs of dependencies")
    parser.add_argument("--dependency-root", help="directory holding the dependency checkouts (default: ..)")
    parser.add_argument("--skip-fetch", action="store_true", default=None, help="skip fetching tags")
    parser.add_argument("--mapping-output-file",
                        help="a file name to write the source->dest hash mapping to "
                             "({tag} is substituted with the tag name, {branch} with the local branch name)")
    parser.add_argument("--pins-output-file", help="a JSON file to write the dependency pin commits to")
    parser.add_argument("--publish-v0-semver", action="store_true", default=None,
                        help="publish v0.x.y tag at destination repo for v1.x.y tag at the source repo")
    parser.add_argument("--config", help="JSON settings file; command line flags take precedence")
    parser.add_argument("--repo", default=".", help="path to the downstream checkout (default: .)")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def parseDependencies(text: str | None) -> list[str] | None:
    if text is None:
        return None
    return [pair.split(":")[0] for pair in text.split(",") if pair]


def settingsFromArgs(args):
    from subtreepublisher.settings import SyncSettings

    settings = SyncSettings.load(args.config) if args.config else SyncSettings()
    settings.update(
        sourceRemote=args.source_remote,
        sourceBranch=args.source_branch,
        commitMessageTag=args.commit_message_tag,
        sourceOrg=args.source_org,
        sourceRepo=args.source_repo,
        prefix=args.prefix,
        pushScript=args.push_script,
        dependencies=parseDependencies(args.dependencies),
        dependencyRoot=args.dependency_root,
        skipFetch=args.skip_fetch,
        mappingOutputFile=args.mapping_output_file,
        pinsOutputFile=args.pins_output_file,
        publishSemverTags=args.publish_v0_semver,
    )
    settings.validate()
    return settings


def main(argv=None):
    args = makeArgumentParser().parse_args(argv)

    logging.basicConfig(
        stream=sys.stdout,
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(levelname).1s %(asctime)s %(filename)-16s | %(message)s',
        datefmt="%H:%M:%S")

    from subtreepublisher.porcelain import RepoContext, RepositoryError
    from subtreepublisher.settings import SettingsError
    from subtreepublisher.tagsync import TagSyncer

    try:
        settings = settingsFromArgs(args)
        with RepoContext(args.repo) as repo:
            TagSyncer(repo, settings).run()
    except (SettingsError, RepositoryError) as exc:
        logger.error(str(exc))
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
