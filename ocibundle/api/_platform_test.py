# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

import pytest

from .._errors import InvalidOptionError
from ._platform import Platform, host_platform, parse_platform


@pytest.mark.parametrize(
    "source,expected",
    [
        ("linux/amd64", Platform("linux", "amd64")),
        ("linux/arm/v7", Platform("linux", "arm", "v7")),
    ],
)
def test_parse_platform(source: str, expected: Platform) -> None:

    actual = parse_platform(source)
    assert actual == expected
    assert str(actual) == source


@pytest.mark.parametrize("source", ["", "linux", "linux/", "/amd64", "a/b/c/d"])
def test_parse_platform_invalid(source: str) -> None:

    with pytest.raises(InvalidOptionError):
        parse_platform(source)


def test_host_platform() -> None:

    platform = host_platform()
    assert platform.os
    assert platform.architecture != "x86_64"
    assert Platform.from_dict(platform.to_dict()) == platform
