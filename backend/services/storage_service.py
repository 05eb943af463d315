# backend/services/storage_service.py
import os
import uuid
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union

import settings
from errors import ValidationFailed

logger = logging.getLogger(__name__)

LOGO_TYPES = ('image/png', 'image/jpeg', 'image/jpg', 'image/svg+xml')
LOGO_MAX_BYTES = 2 * 1024 * 1024

IMAGE_TYPES = ('image/jpeg', 'image/jpg', 'image/png', 'image/gif', 'image/webp')
DOCUMENT_TYPES = (
    'application/pdf',
    'application/msword',
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    'application/vnd.ms-excel',
    'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'application/vnd.ms-powerpoint',
    'application/vnd.openxmlformats-officedocument.presentationml.presentation',
    'application/vnd.oasis.opendocument.text',
)
# Presets the form editor stores in uploadConfig.allowedTypes.
TYPE_PRESETS = {'images': IMAGE_TYPES, 'docs': DOCUMENT_TYPES}

def public_dir() -> Path:
    return Path(settings.PUBLIC_DIR)

def resolve_allowed_types(allowed_types: Union[str, Iterable[str], None]) -> List[str]:
    """Expands a form's allowedTypes setting into mime types. An empty list means any type."""
    if not allowed_types:
        return []
    entries = [allowed_types] if isinstance(allowed_types, str) else list(allowed_types)
    resolved: List[str] = []
    for entry in entries:
        entry = str(entry).strip().lower()
        if entry in ('any', '*', '*/*', ''):
            return []
        resolved.extend(TYPE_PRESETS.get(entry, (entry,)))
    return resolved

def type_allowed(content_type: Optional[str], allowed: List[str]) -> bool:
    if not allowed:
        return True
    content_type = (content_type or '').split(';')[0].strip().lower()
    for entry in allowed:
        if entry.endswith('/*') and content_type.startswith(entry[:-1]):
            return True
        if content_type == entry:
            return True
    return False

def max_bytes_for(upload_config: Optional[dict]) -> Optional[int]:
    """Size limit from uploadConfig, which has carried both ``maxSizeMB`` and ``maxSizeMb``."""
    upload_config = upload_config or {}
    limit = upload_config.get('maxSizeMB', upload_config.get('maxSizeMb'))
    try:
        limit = float(limit)
    except (TypeError, ValueError):
        return None
    return int(limit * 1024 * 1024) if limit > 0 else None

def validate_file(content_type: Optional[str], size: int,
                  allowed_types: Union[str, Iterable[str], None] = None, max_bytes: Optional[int] = None):
    if not type_allowed(content_type, resolve_allowed_types(allowed_types)):
        raise ValidationFailed(f"Invalid file type: {content_type or 'unknown'}")
    if max_bytes is not None and size > max_bytes:
        raise ValidationFailed(f"File too large. Maximum size is {max_bytes / 1024 / 1024:g}MB")

def save_file(content: bytes, original_name: Optional[str], subdir: str) -> dict:
    """Writes the payload under public/<subdir> with a random name."""
    target_dir = public_dir() / subdir
    target_dir.mkdir(parents=True, exist_ok=True)
    ext = os.path.splitext(original_name or '')[1].lower()
    filename = f"{uuid.uuid4()}{ext}"
    (target_dir / filename).write_bytes(content)
    logger.info("Stored %s (%d bytes) in %s", filename, len(content), target_dir)
    return {"url": f"/{subdir}/{filename}", "filename": filename, "size": len(content)}

def save_logo(content: bytes, original_name: Optional[str], content_type: Optional[str]) -> dict:
    if content_type not in LOGO_TYPES:
        raise ValidationFailed("Invalid file type. Only PNG, JPG, and SVG are allowed")
    if len(content) > LOGO_MAX_BYTES:
        raise ValidationFailed("File too large. Maximum size is 2MB")
    stored = save_file(content, original_name, "logos")
    stored["type"] = content_type
    return stored
