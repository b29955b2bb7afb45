from ._blob import Blob, compute_digest, validate_digest, digest_hex, DIGEST_ALGORITHM
from ._entry import BundleEntry, EntryKind, validate_entry_path
from ._platform import Platform, parse_platform, host_platform
from ._options import (
    Backoff,
    CallbackProgress,
    ExtractionPolicy,
    ProgressSink,
    PullOptions,
    PushOptions,
    TransferOptions,
    copy_annotations,
    read_options,
    read_options_file,
)
from ._manifest import (
    Descriptor,
    Manifest,
    MANIFEST_MEDIA_TYPE,
    ARTIFACT_TYPE,
    CONFIG_MEDIA_TYPE,
    LAYER_MEDIA_TYPE,
    ANNOTATION_TITLE,
    ANNOTATION_REF_NAME,
    ANNOTATION_CONTENT_SIZE,
)
from ._bundle import Bundle, PackedLayer, PackResult, build_manifest, build_config, read_config
