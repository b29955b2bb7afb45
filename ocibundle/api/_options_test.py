# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Any, List, Tuple
import io

import py.path
import pytest

from .._errors import InvalidOptionError
from ._options import (
    Backoff,
    CallbackProgress,
    ExtractionPolicy,
    PullOptions,
    PushOptions,
    TransferOptions,
    copy_annotations,
    read_options,
    read_options_file,
)
from ._platform import Platform


def test_transfer_defaults() -> None:

    opts = TransferOptions()
    assert opts.max_retries == 3
    assert opts.retry_delay == 2.0
    assert opts.backoff is Backoff.LINEAR


@pytest.mark.parametrize(
    "backoff,expected",
    [
        ("linear", [1.0, 2.0, 3.0]),
        ("fixed", [1.0, 1.0, 1.0]),
        ("exponential", [1.0, 2.0, 4.0]),
    ],
)
def test_delay_for(backoff: str, expected: List[float]) -> None:

    opts = TransferOptions(retry_delay=1.0, backoff=backoff)  # type: ignore
    assert [opts.delay_for(i) for i in (1, 2, 3)] == expected


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_retries": -1},
        {"max_retries": 1.5},
        {"retry_delay": -0.1},
        {"timeout": 0},
        {"concurrency": 0},
        {"backoff": "random"},
        {"progress": "not callable"},
    ],
)
def test_transfer_invalid(kwargs: Any) -> None:

    with pytest.raises(InvalidOptionError):
        TransferOptions(**kwargs)


def test_transfer_callable_progress() -> None:

    calls: List[Tuple[int, int]] = []
    opts = TransferOptions(progress=lambda c, t: calls.append((c, t)))  # type: ignore
    assert isinstance(opts.progress, CallbackProgress)
    opts.progress.report(1, 2)
    assert calls == [(1, 2)]


def test_policy_defaults() -> None:

    policy = ExtractionPolicy()
    assert policy.max_files == 10000
    assert policy.max_size == 1024 ** 3
    assert policy.max_file_size == 100 * 1024 ** 2
    assert not policy.preserve_permissions


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_files": -1},
        {"max_size": "big"},
        {"strip_prefix": "/abs"},
        {"strict_prefix": True},
        {"files_to_extract": "*.txt"},
    ],
)
def test_policy_invalid(kwargs: Any) -> None:

    with pytest.raises(InvalidOptionError):
        ExtractionPolicy(**kwargs)


def test_policy_from_dict_unknown_field() -> None:

    with pytest.raises(InvalidOptionError, match="max_filez"):
        ExtractionPolicy.from_dict({"max_filez": 1})


def test_policy_dict_round_trip() -> None:

    policy = ExtractionPolicy(max_files=5, strip_prefix="data", strict_prefix=True)
    assert ExtractionPolicy.from_dict(policy.to_dict()) == policy


def test_copy_annotations_is_a_copy() -> None:

    source = {"b": "2", "a": "1"}
    copied = copy_annotations(source)
    source["c"] = "3"
    assert list(copied.keys()) == ["a", "b"]


@pytest.mark.parametrize("annotations", [{"": "x"}, {"key": 1}])
def test_copy_annotations_invalid(annotations: Any) -> None:

    with pytest.raises(InvalidOptionError):
        copy_annotations(annotations)


def test_push_options_parse_platform() -> None:

    opts = PushOptions(platform="linux/arm64/v8")
    assert opts.platform == Platform("linux", "arm64", "v8")


def test_read_options() -> None:

    stream = io.StringIO(
        """
transfer:
  max_retries: 5
  retry_delay: 0.5
push:
  platform: linux/amd64
  annotations:
    org.opencontainers.image.version: "1.0"
  transfer:
    backoff: exponential
pull:
  policy:
    max_files: 10
    strip_prefix: data
"""
    )
    push, pull = read_options(stream)
    assert push.transfer.max_retries == 5
    assert push.transfer.backoff is Backoff.EXPONENTIAL
    assert push.annotations["org.opencontainers.image.version"] == "1.0"
    assert str(push.platform) == "linux/amd64"
    assert pull.transfer.max_retries == 5
    assert pull.transfer.backoff is Backoff.LINEAR
    assert pull.policy.max_files == 10
    assert pull.policy.strip_prefix == "data"


def test_read_options_empty() -> None:

    push, pull = read_options(io.StringIO(""))
    assert push == PushOptions()
    assert pull == PullOptions()


@pytest.mark.parametrize(
    "source", ["unknown: 1", "push: {bogus: 1}", "- a list", "push: [unclosed"]
)
def test_read_options_invalid(source: str) -> None:

    with pytest.raises(InvalidOptionError):
        read_options(io.StringIO(source))


def test_read_options_file(tmpdir: py.path.local) -> None:

    filename = tmpdir.join("options.yaml")
    filename.write("pull:\n  policy:\n    preserve_permissions: true\n")
    _, pull = read_options_file(filename.strpath)
    assert pull.policy.preserve_permissions
