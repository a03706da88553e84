# -----------------------------------------------------------------------------
# Copyright (C) 2024 Iliyas Jorio.
# This file is part of SubtreePublisher, distributed under the GNU GPL v3.
# For full terms, see the included LICENSE file.
# -----------------------------------------------------------------------------

import dataclasses
import datetime
import json
import logging
import os
import typing

from subtreepublisher.correlation import checkMappingOutputTemplate
from subtreepublisher.sourcehash import defaultCommitMessageTag

logger = logging.getLogger(__name__)


class SettingsError(ValueError):
    pass


def _envCommitterName():
    return os.environ.get("GIT_COMMITTER_NAME", "")


def _envCommitterEmail():
    return os.environ.get("GIT_COMMITTER_EMAIL", "")


@dataclasses.dataclass
class SyncSettings:
    sourceRemote: str = ""
    "Remote of the upstream repo (e.g. upstream)"

    sourceBranch: str = ""
    "Upstream branch, not qualified"

    sourceOrg: str = "kubernetes"
    sourceRepo: str = "kubernetes"

    commitMessageTag: str = ""
    "Trailer key pointing back to upstream commits (default: derived from sourceRepo)"

    prefix: str = "kubernetes-"
    "Replaces the leading 'v' of upstream tag names"

    pushScript: str = ""
    dependencies: list[str] = dataclasses.field(default_factory=list)
    dependencyRoot: str = ".."
    skipFetch: bool = False
    mappingOutputFile: str = ""
    pinsOutputFile: str = ""
    publishSemverTags: bool = False

    oldestTagDate: str = "2017-09-01"
    "Upstream tags created before this date (UTC) are ignored"

    committerName: str = dataclasses.field(default_factory=_envCommitterName)
    committerEmail: str = dataclasses.field(default_factory=_envCommitterEmail)

    @property
    def effectiveCommitMessageTag(self) -> str:
        return self.commitMessageTag or defaultCommitMessageTag(self.sourceRepo)

    @property
    def oldestTagTimestamp(self) -> int:
        date = datetime.date.fromisoformat(self.oldestTagDate)
        dt = datetime.datetime(date.year, date.month, date.day, tzinfo=datetime.timezone.utc)
        return int(dt.timestamp())

    def validate(self):
        if not self.sourceRemote:
            raise SettingsError("source-remote cannot be empty")
        if not self.sourceBranch:
            raise SettingsError("source-branch cannot be empty")
        try:
            datetime.date.fromisoformat(self.oldestTagDate)
        except ValueError as exc:
            raise SettingsError(f"invalid oldest tag date {self.oldestTagDate!r}: {exc}") from exc
        if self.mappingOutputFile:
            try:
                checkMappingOutputTemplate(self.mappingOutputFile)
            except ValueError as exc:
                raise SettingsError(f"invalid mapping output file name: {exc}") from exc

    def update(self, **values):
        """ Override fields with the given values, ignoring None. """
        fields = {f.name for f in dataclasses.fields(self)}
        for key, value in values.items():
            assert key in fields, f"unknown setting {key}"
            if value is not None:
                setattr(self, key, value)

    @classmethod
    def load(cls, path: str) -> "SyncSettings":
        """
        Load settings from a JSON object. Unknown keys are dropped with a
        warning; values of the wrong type are rejected.
        """
        settings = cls()

        with open(path, 'rt', encoding='utf-8') as file:
            try:
                jsonObject = json.load(file)
            except ValueError as loadError:
                raise SettingsError(f"{path}: {loadError}") from loadError

        if not isinstance(jsonObject, dict):
            raise SettingsError(f"{path}: expected a JSON object")

        hints = typing.get_type_hints(cls)
        fields = {f.name for f in dataclasses.fields(cls)}

        for key, value in jsonObject.items():
            if key.startswith('_') or key not in fields:
                logger.warning(f"{path}: dropping key: {key}")
                continue
            if value is None:
                continue

            expected = typing.get_origin(hints[key]) or hints[key]
            if not isinstance(value, expected):
                raise SettingsError(f"{path}: {key} should be {expected.__name__}, not {type(value).__name__}")
            if expected is list and not all(isinstance(item, str) for item in value):
                raise SettingsError(f"{path}: {key} should be a list of strings")

            setattr(settings, key, value)

        logger.info(f"Loaded settings from {path}")
        return settings
