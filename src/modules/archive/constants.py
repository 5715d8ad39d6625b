"""Archive build constants — object keys, zip format, task names."""

from __future__ import annotations

import zipfile

# Local file header signature every well-formed archive starts with
ZIP_SIGNATURE = b"PK\x03\x04"
ZIP_CONTENT_TYPE = "application/zip"
ZIP_COMPRESSION = zipfile.ZIP_DEFLATED
ZIP_COMPRESS_LEVEL = 9

# Object key templates
FINAL_ASSET_KEY = "galleries/{gallery_id}/final/{order_id}/{key}"
FINAL_ASSET_PREFIX = "galleries/{gallery_id}/final/{order_id}/"
ARCHIVE_KEY = "galleries/{gallery_id}/zips/{order_id}.zip"

# Object metadata carrying the content hash of the archived assets
FILES_HASH_METADATA_KEY = "finalfiles-hash"
FILES_HASH_LENGTH = 16

FINALIZE_TASK_NAME = "src.modules.archive.tasks.finalize_order_delivery"
RELEASE_STALE_FLAGS_TASK_NAME = "src.modules.archive.tasks.release_stale_final_zip_flags"

# Seconds of headroom between the build deadline and Celery's soft limit
TASK_TIME_LIMIT_HEADROOM_SECONDS = 30
