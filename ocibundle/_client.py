# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Optional
from dataclasses import dataclass
import os

import structlog

from . import api, archive, storage
from ._context import Context
from ._errors import InvalidOptionError
from ._transfer import TransferEngine, TransferReport

_LOGGER = structlog.get_logger("ocibundle")


@dataclass
class PullResult:

    bundle: api.Bundle
    report: TransferReport
    extracted: archive.ExtractResult


def push(
    transport: storage.RegistryTransport,
    source_dir: str,
    reference: str,
    options: Optional[api.PushOptions] = None,
    ctx: Optional[Context] = None,
) -> TransferReport:
    """Pack a local directory and push it to reference as a bundle."""

    if not reference:
        raise InvalidOptionError("reference cannot be empty", op="push")
    options = options or api.PushOptions()
    ctx = ctx or Context.background()

    packed = archive.pack(source_dir, options.layer_size_limit, ctx)
    bundle = api.build_manifest(packed, options.annotations, options.platform)
    return TransferEngine(transport, options.transfer).push(ctx, reference, bundle)


def pull(
    transport: storage.RegistryTransport,
    reference: str,
    target_dir: str,
    options: Optional[api.PullOptions] = None,
    ctx: Optional[Context] = None,
) -> PullResult:
    """Pull the bundle at reference and unpack it into target_dir.

    The target directory must be empty or not exist yet. Nothing is
    written until the manifest and every blob it references have been
    downloaded and verified.
    """

    if not reference:
        raise InvalidOptionError("reference cannot be empty", op="pull")
    if not target_dir:
        raise InvalidOptionError("target directory cannot be empty", op="pull")
    options = options or api.PullOptions()
    ctx = ctx or Context.background()

    if os.path.lexists(target_dir):
        if not os.path.isdir(target_dir):
            raise InvalidOptionError("target is not a directory", op="pull", ref=target_dir)
        if os.listdir(target_dir):
            raise InvalidOptionError(
                "target directory is not empty", op="pull", ref=target_dir
            )

    bundle, report = TransferEngine(transport, options.transfer).pull(ctx, reference)
    extracted = archive.extract(bundle.layers(), target_dir, options.policy, ctx)
    _LOGGER.info("pulled", reference=reference, path=target_dir, files=extracted.files)
    return PullResult(bundle=bundle, report=report, extracted=extracted)
