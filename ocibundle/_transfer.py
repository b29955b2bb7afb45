# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Any, Callable, Dict, List, Optional, Tuple
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
import enum
import threading

import structlog

from . import api, storage
from ._context import Context
from ._errors import (
    CanceledError,
    DigestMismatchError,
    InvalidManifestError,
    InvalidOptionError,
    SecurityViolationError,
    TransferFailedError,
    TransientTransportError,
    is_transient,
)

_LOGGER = structlog.get_logger("ocibundle.transfer")


class TransferStatus(enum.Enum):

    PENDING = "pending"
    ATTEMPTING = "attempting"
    RETRY_SCHEDULED = "retry-scheduled"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class TransferState:
    """The progress of one blob or manifest transfer.

    Each state is only ever modified by the task that performs its
    transfer, and is discarded along with the report.
    """

    op: str
    ref: str
    status: TransferStatus = TransferStatus.PENDING
    attempts: int = 0
    bytes_transferred: int = 0
    last_error: Optional[Exception] = None


@dataclass
class TransferReport:
    """A summary of a completed push or pull."""

    op: str
    reference: str
    manifest_digest: str = ""
    progress: int = 0
    states: List[TransferState] = field(default_factory=list)

    @property
    def attempts(self) -> int:

        return sum(s.attempts for s in self.states)

    @property
    def bytes_transferred(self) -> int:

        return sum(s.bytes_transferred for s in self.states)

    @property
    def succeeded(self) -> bool:

        return all(s.status is TransferStatus.SUCCEEDED for s in self.states)


class _Progress:
    """A shared byte counter that forwards every update to a progress sink."""

    def __init__(self, sink: Optional[api.ProgressSink], total: int) -> None:

        self._sink = sink
        self._lock = threading.Lock()
        self.total = total
        self.current = 0

    def add(self, count: int) -> None:

        with self._lock:
            self.current += count
            current = self.current
        if self._sink is None:
            return
        try:
            self._sink.report(current, self.total)
        except Exception:
            _LOGGER.warning("progress callback failed", exc_info=True)


_Unit = Tuple[TransferState, Callable[[Context], Any]]


class TransferEngine:
    """Moves bundles between memory and a registry transport.

    Every blob and manifest is transferred as its own unit with its
    own retry budget: transient failures are retried after a backoff
    delay until options.max_retries is exhausted, while any other
    failure ends the transfer immediately. Sibling blobs are moved in
    parallel, but a manifest is only ever pushed once all of its blobs
    are confirmed, and blobs are only pulled once the manifest is known.
    """

    def __init__(
        self,
        transport: storage.RegistryTransport,
        options: Optional[api.TransferOptions] = None,
    ) -> None:

        self._transport = transport
        self._options = options or api.TransferOptions()

    @property
    def options(self) -> api.TransferOptions:

        return self._options

    def push(self, ctx: Context, reference: str, bundle: api.Bundle) -> TransferReport:
        """Upload every blob of the bundle, then its manifest."""

        manifest = bundle.manifest
        report = TransferReport("push", reference, manifest_digest=manifest.digest())
        progress = _Progress(self._options.progress, max(manifest.content_size(), 0))
        _LOGGER.info(
            "pushing bundle", reference=reference, digest=report.manifest_digest
        )

        def upload(desc: api.Descriptor, state: TransferState) -> Callable[[Context], Any]:
            blob = bundle.blobs[desc.digest]

            def call(attempt: Context) -> None:
                self._transport.put_blob(attempt, reference, desc.digest, blob.data)
                state.bytes_transferred = blob.size
                progress.add(desc.content_size() or 0)

            return call

        units = []
        for desc in manifest.descriptors():
            state = TransferState("put_blob", desc.digest)
            units.append((state, upload(desc, state)))
        report.states.extend(s for s, _ in units)
        self._run_all(ctx, units)

        state = TransferState("put_manifest", reference)
        report.states.append(state)
        data_size = len(manifest.to_json())

        def put_manifest(attempt: Context) -> None:
            self._transport.put_manifest(attempt, reference, manifest)
            state.bytes_transferred = data_size

        self._run(ctx, state, put_manifest)
        report.progress = progress.current
        _LOGGER.info(
            "pushed bundle",
            reference=reference,
            digest=report.manifest_digest,
            attempts=report.attempts,
        )
        return report

    def pull(self, ctx: Context, reference: str) -> Tuple[api.Bundle, TransferReport]:
        """Download the manifest of reference, and then every blob it references."""

        report = TransferReport("pull", reference)
        _LOGGER.info("pulling bundle", reference=reference)

        state = TransferState("get_manifest", reference)
        report.states.append(state)

        def get_manifest(attempt: Context) -> api.Manifest:
            manifest = self._transport.get_manifest(attempt, reference)
            if not isinstance(manifest, api.Manifest):
                raise InvalidManifestError(
                    "transport returned an invalid manifest",
                    op="get_manifest",
                    ref=reference,
                )
            state.bytes_transferred = len(manifest.to_json())
            return manifest

        manifest: api.Manifest = self._run(ctx, state, get_manifest)
        report.manifest_digest = manifest.digest()
        progress = _Progress(self._options.progress, manifest.content_size())

        blobs: Dict[str, api.Blob] = {}
        lock = threading.Lock()

        def download(desc: api.Descriptor, state: TransferState) -> Callable[[Context], Any]:
            def call(attempt: Context) -> None:
                data = self._transport.get_blob(attempt, reference, desc.digest)
                if len(data) != desc.size:
                    raise DigestMismatchError(
                        f"expected {desc.size} bytes, got {len(data)}",
                        op="get_blob",
                        ref=desc.digest,
                    )
                blob = api.Blob(desc.media_type, data, desc.digest)
                state.bytes_transferred = blob.size
                with lock:
                    blobs[desc.digest] = blob
                content_size = desc.content_size()
                if desc is manifest.config:
                    content_size = content_size or 0
                progress.add(blob.size if content_size is None else content_size)

            return call

        units = []
        for desc in manifest.descriptors():
            unit_state = TransferState("get_blob", desc.digest)
            units.append((unit_state, download(desc, unit_state)))
        report.states.extend(s for s, _ in units)
        self._run_all(ctx, units)

        report.progress = progress.current
        bundle = api.Bundle(manifest, blobs)
        _LOGGER.info(
            "pulled bundle",
            reference=reference,
            digest=report.manifest_digest,
            attempts=report.attempts,
        )
        return bundle, report

    def _run_all(self, ctx: Context, units: List[_Unit]) -> None:
        """Transfer all of the given units, in parallel where allowed.

        The first failure cancels any sibling transfers still in
        flight, and is raised once they have all stopped.
        """

        workers = min(self._options.concurrency, len(units))
        if workers <= 1:
            for state, call in units:
                self._run(ctx, state, call)
            return

        with ctx.child() as batch:
            errors: List[Exception] = []
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = [pool.submit(self._run, batch, state, call) for state, call in units]
                for future in as_completed(futures):
                    try:
                        future.result()
                    except Exception as e:
                        errors.append(e)
                        batch.cancel("sibling transfer failed")

        if not errors:
            return
        for err in errors:
            if not isinstance(err, CanceledError):
                raise err
        ctx.check("transfer")
        raise errors[0]

    def _run(self, ctx: Context, state: TransferState, call: Callable[[Context], Any]) -> Any:
        """Drive one unit through its attempts until it succeeds or fails for good."""

        opts = self._options
        while True:
            ctx.check(state.op, state.ref)
            state.attempts += 1
            state.status = TransferStatus.ATTEMPTING
            err: Exception
            try:
                with ctx.with_timeout(opts.timeout) as attempt:
                    result = call(attempt)
            except CanceledError as e:
                if ctx.done():
                    state.status = TransferStatus.FAILED
                    state.last_error = e
                    raise
                err = TransientTransportError(
                    f"timed out after {opts.timeout}s", op=state.op, ref=state.ref
                )
            except (SecurityViolationError, InvalidOptionError) as e:
                state.status = TransferStatus.FAILED
                state.last_error = e
                raise
            except Exception as e:
                err = e
            else:
                state.status = TransferStatus.SUCCEEDED
                _LOGGER.debug(
                    "transfer succeeded", op=state.op, ref=state.ref, attempt=state.attempts
                )
                return result

            state.last_error = err
            if not is_transient(err) or state.attempts > opts.max_retries:
                state.status = TransferStatus.FAILED
                _LOGGER.warning(
                    "transfer failed",
                    op=state.op,
                    ref=state.ref,
                    attempts=state.attempts,
                    error=str(err),
                )
                raise TransferFailedError(state.op, state.ref, state.attempts, err) from err

            state.status = TransferStatus.RETRY_SCHEDULED
            delay = opts.delay_for(state.attempts)
            _LOGGER.warning(
                "transfer failed, retrying",
                op=state.op,
                ref=state.ref,
                attempt=state.attempts,
                delay=delay,
                error=str(err),
            )
            try:
                ctx.wait(delay, state.op, state.ref)
            except CanceledError as e:
                state.status = TransferStatus.FAILED
                state.last_error = e
                raise
