# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Any

import py.path
import pytest

from ._transport import RegistryTransport
from ._mem import MemTransport
from ._layout import LayoutTransport


def pytest_generate_tests(metafunc: Any) -> None:
    if "transport" in metafunc.fixturenames:
        metafunc.parametrize(
            "transport", [MemTransport, LayoutTransport], indirect=True
        )


@pytest.fixture
def transport(request: Any, tmpdir: py.path.local) -> RegistryTransport:

    if request.param is MemTransport:
        return MemTransport()
    if request.param is LayoutTransport:
        root = tmpdir.join("layout").ensure_dir()
        return LayoutTransport(root.strpath, create=True)

    raise NotImplementedError(
        "Unknown transport type to be tested: " + str(request.param)
    )
