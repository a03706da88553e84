# -----------------------------------------------------------------------------
# Copyright (C) 2024 Iliyas Jorio.
# This file is part of SubtreePublisher, distributed under the GNU GPL v3.
# For full terms, see the included LICENSE file.
# -----------------------------------------------------------------------------

"""
Correlates a monorepo's mainline with the downstream repos published from its
subdirectories, and carries release tags and dependency pins across.
"""

__version__ = "0.1"

from .commitcache import CommitCache
from .correlation import (
    CorrelationGap,
    CorrelationMap,
    buildCorrelation,
    checkMappingOutputTemplate,
    correlate,
    mappingOutputFileName,
    writeMapping,
)
from .history import MockCommit, firstParentList, mergePoints
from .porcelain import Repo, RepoContext, RepositoryError
from .settings import SettingsError, SyncSettings
from .sourcehash import MalformedTrailer, SourceHash, SourceHashParser, SourceHashStatus
from .tagsync import (
    DependencyPinner,
    TagSyncer,
    TagSyncReport,
    downstreamTagName,
    resolvePinCommit,
    resolveTagTarget,
    semverTagName,
)
