# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from ._transport import RegistryTransport, split_reference, DEFAULT_TAG
from ._mem import MemTransport
from ._layout import LayoutTransport
