from ._packer import pack
from ._extract import (
    extract,
    Extractor,
    ExtractResult,
    SAFE_DIR_MODE,
    SAFE_EXEC_MODE,
    SAFE_FILE_MODE,
)
from ._paths import (
    safe_join,
    strip_prefix,
    validate_member_path,
    validate_symlink,
    is_absolute,
    has_traversal,
)
