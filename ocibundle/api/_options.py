# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Any, Callable, Dict, IO, Mapping, Optional, Tuple, Union
from dataclasses import dataclass, field
import abc
import enum
import os

import structlog
from ruamel.yaml import YAML, YAMLError
from sortedcontainers import SortedDict

from .._errors import InvalidOptionError
from ._platform import Platform, parse_platform

_LOGGER = structlog.get_logger("ocibundle.api")

KiB = 1024
MiB = 1024 * KiB
GiB = 1024 * MiB


class ProgressSink(metaclass=abc.ABCMeta):
    """Receives best-effort progress updates during a transfer.

    Implementations must return quickly. Any exception raised from
    report is logged and otherwise ignored.
    """

    @abc.abstractmethod
    def report(self, current: int, total: int) -> None:
        """Record that current of total bytes are done (total is -1 if unknown)."""

        pass


class CallbackProgress(ProgressSink):
    """Adapts a plain (current, total) callable into a progress sink."""

    def __init__(self, callback: Callable[[int, int], Any]) -> None:

        self._callback = callback

    def report(self, current: int, total: int) -> None:

        self._callback(current, total)


class Backoff(enum.Enum):

    LINEAR = "linear"
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


def _reject_unknown(kind: str, data: Mapping[str, Any]) -> None:

    for name in data:
        raise InvalidOptionError(f"Unknown field in {kind}: '{name}'")


def _non_negative(name: str, value: Any) -> None:

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidOptionError(f"{name} must be a number, got {value!r}")
    if value < 0:
        raise InvalidOptionError(f"{name} must not be negative, got {value}")


@dataclass(frozen=True)
class TransferOptions:
    """Retry, progress and timeout settings for a single push or pull.

    retry_delay and timeout are in seconds. A timeout of None leaves
    each registry call bounded only by the caller's context.
    """

    max_retries: int = 3
    retry_delay: float = 2.0
    backoff: Backoff = Backoff.LINEAR
    progress: Optional[ProgressSink] = None
    timeout: Optional[float] = None
    concurrency: int = 4

    def __post_init__(self) -> None:

        if not isinstance(self.max_retries, int):
            raise InvalidOptionError(f"max_retries must be an integer: {self.max_retries!r}")
        _non_negative("max_retries", self.max_retries)
        _non_negative("retry_delay", self.retry_delay)
        if self.timeout is not None:
            _non_negative("timeout", self.timeout)
            if self.timeout == 0:
                raise InvalidOptionError("timeout must be greater than zero")
        if isinstance(self.concurrency, bool) or not isinstance(self.concurrency, int):
            raise InvalidOptionError(f"concurrency must be an integer: {self.concurrency!r}")
        if self.concurrency < 1:
            raise InvalidOptionError("concurrency must be at least 1")

        if not isinstance(self.backoff, Backoff):
            try:
                object.__setattr__(self, "backoff", Backoff(self.backoff))
            except ValueError:
                raise InvalidOptionError(f"unknown backoff policy: {self.backoff!r}")

        if self.progress is not None and not isinstance(self.progress, ProgressSink):
            if not callable(self.progress):
                raise InvalidOptionError("progress must be a ProgressSink or callable")
            object.__setattr__(self, "progress", CallbackProgress(self.progress))

    def delay_for(self, attempt: int) -> float:
        """The number of seconds to wait after the given (1-based) failed attempt."""

        if self.backoff is Backoff.FIXED:
            return self.retry_delay
        if self.backoff is Backoff.EXPONENTIAL:
            return self.retry_delay * (2 ** (attempt - 1))
        return self.retry_delay * attempt

    def to_dict(self) -> Dict[str, Any]:

        out: Dict[str, Any] = {
            "max_retries": self.max_retries,
            "retry_delay": self.retry_delay,
            "backoff": self.backoff.value,
            "concurrency": self.concurrency,
        }
        if self.timeout is not None:
            out["timeout"] = self.timeout
        return out

    @staticmethod
    def from_dict(
        data: Mapping[str, Any], progress: Optional[ProgressSink] = None
    ) -> "TransferOptions":

        data = dict(data)
        defaults = TransferOptions()
        opts = TransferOptions(
            max_retries=data.pop("max_retries", defaults.max_retries),
            retry_delay=data.pop("retry_delay", defaults.retry_delay),
            backoff=data.pop("backoff", defaults.backoff),
            timeout=data.pop("timeout", defaults.timeout),
            concurrency=data.pop("concurrency", defaults.concurrency),
            progress=progress,
        )
        _reject_unknown("TransferOptions", data)
        return opts


@dataclass(frozen=True)
class ExtractionPolicy:
    """Limits and rules applied when unpacking a bundle into a directory.

    Quotas are in bytes (or files) and a value of zero disables
    that particular quota. Entries that do not start with strip_prefix
    are written unmodified, unless strict_prefix is set in which
    case they are rejected.
    """

    max_files: int = 10000
    max_size: int = 1 * GiB
    max_file_size: int = 100 * MiB
    preserve_permissions: bool = False
    strip_prefix: str = ""
    strict_prefix: bool = False
    allow_hidden_files: bool = True
    files_to_extract: Tuple[str, ...] = ()

    def __post_init__(self) -> None:

        for name in ("max_files", "max_size", "max_file_size"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidOptionError(f"{name} must be an integer: {value!r}")
            _non_negative(name, value)
        if not isinstance(self.strip_prefix, str):
            raise InvalidOptionError("strip_prefix must be a string")
        if self.strip_prefix.startswith("/"):
            raise InvalidOptionError(
                f"strip_prefix must be relative: {self.strip_prefix}"
            )
        if self.strict_prefix and not self.strip_prefix:
            raise InvalidOptionError("strict_prefix requires a strip_prefix")
        if isinstance(self.files_to_extract, str):
            raise InvalidOptionError("files_to_extract must be a list of patterns")
        object.__setattr__(self, "files_to_extract", tuple(self.files_to_extract))

    def to_dict(self) -> Dict[str, Any]:

        out: Dict[str, Any] = {
            "max_files": self.max_files,
            "max_size": self.max_size,
            "max_file_size": self.max_file_size,
            "preserve_permissions": self.preserve_permissions,
            "allow_hidden_files": self.allow_hidden_files,
        }
        if self.strip_prefix:
            out["strip_prefix"] = self.strip_prefix
            out["strict_prefix"] = self.strict_prefix
        if self.files_to_extract:
            out["files_to_extract"] = list(self.files_to_extract)
        return out

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "ExtractionPolicy":

        data = dict(data)
        defaults = ExtractionPolicy()
        policy = ExtractionPolicy(
            max_files=data.pop("max_files", defaults.max_files),
            max_size=data.pop("max_size", defaults.max_size),
            max_file_size=data.pop("max_file_size", defaults.max_file_size),
            preserve_permissions=bool(
                data.pop("preserve_permissions", defaults.preserve_permissions)
            ),
            strip_prefix=data.pop("strip_prefix", defaults.strip_prefix),
            strict_prefix=bool(data.pop("strict_prefix", defaults.strict_prefix)),
            allow_hidden_files=bool(
                data.pop("allow_hidden_files", defaults.allow_hidden_files)
            ),
            files_to_extract=tuple(data.pop("files_to_extract", ())),
        )
        _reject_unknown("ExtractionPolicy", data)
        return policy


def copy_annotations(annotations: Optional[Mapping[str, str]]) -> SortedDict:
    """Validate and copy the given annotations into a new, sorted mapping."""

    copied = SortedDict()
    for key, value in (annotations or {}).items():
        if not isinstance(key, str) or not key:
            raise InvalidOptionError(f"annotation keys must be non-empty strings: {key!r}")
        if not isinstance(value, str):
            raise InvalidOptionError(
                f"annotation values must be strings: {key}={value!r}"
            )
        copied[key] = value
    return copied


@dataclass(frozen=True)
class PushOptions:
    """Settings for packing and pushing a directory."""

    annotations: Mapping[str, str] = field(default_factory=SortedDict)
    platform: Optional[Union[str, Platform]] = None
    layer_size_limit: int = 0
    transfer: TransferOptions = field(default_factory=TransferOptions)

    def __post_init__(self) -> None:

        object.__setattr__(self, "annotations", copy_annotations(self.annotations))
        if self.platform is not None and not isinstance(self.platform, Platform):
            object.__setattr__(self, "platform", parse_platform(self.platform))
        if isinstance(self.layer_size_limit, bool) or not isinstance(
            self.layer_size_limit, int
        ):
            raise InvalidOptionError("layer_size_limit must be an integer")
        _non_negative("layer_size_limit", self.layer_size_limit)

    @staticmethod
    def from_dict(
        data: Mapping[str, Any], progress: Optional[ProgressSink] = None
    ) -> "PushOptions":

        data = dict(data)
        opts = PushOptions(
            annotations=dict(data.pop("annotations", None) or {}),
            platform=data.pop("platform", None),
            layer_size_limit=data.pop("layer_size_limit", 0),
            transfer=TransferOptions.from_dict(
                data.pop("transfer", None) or {}, progress=progress
            ),
        )
        _reject_unknown("PushOptions", data)
        return opts


@dataclass(frozen=True)
class PullOptions:
    """Settings for pulling a bundle and unpacking it into a directory."""

    policy: ExtractionPolicy = field(default_factory=ExtractionPolicy)
    transfer: TransferOptions = field(default_factory=TransferOptions)

    @staticmethod
    def from_dict(
        data: Mapping[str, Any], progress: Optional[ProgressSink] = None
    ) -> "PullOptions":

        data = dict(data)
        opts = PullOptions(
            policy=ExtractionPolicy.from_dict(data.pop("policy", None) or {}),
            transfer=TransferOptions.from_dict(
                data.pop("transfer", None) or {}, progress=progress
            ),
        )
        _reject_unknown("PullOptions", data)
        return opts


def read_options(stream: IO[str]) -> Tuple[PushOptions, PullOptions]:
    """Load push and pull options from a yaml document.

    The document may contain 'push' and 'pull' sections, as well
    as a shared 'transfer' section whose values are used by both
    unless overridden within the push or pull section itself.
    """

    try:
        data = YAML(typ="safe").load(stream) or {}
    except YAMLError as e:
        raise InvalidOptionError(f"invalid options document: {e}") from e
    if not isinstance(data, dict):
        raise InvalidOptionError("options document must be a mapping")

    shared = dict(data.pop("transfer", None) or {})
    push_data = dict(data.pop("push", None) or {})
    pull_data = dict(data.pop("pull", None) or {})
    _reject_unknown("options document", data)

    push_data["transfer"] = {**shared, **(push_data.get("transfer") or {})}
    pull_data["transfer"] = {**shared, **(pull_data.get("transfer") or {})}
    return PushOptions.from_dict(push_data), PullOptions.from_dict(pull_data)


def read_options_file(filepath: str) -> Tuple[PushOptions, PullOptions]:
    """Load push and pull options from a yaml file on disk."""

    filepath = os.path.abspath(filepath)
    _LOGGER.debug("reading options", path=filepath)
    with open(filepath, "r") as f:
        return read_options(f)
