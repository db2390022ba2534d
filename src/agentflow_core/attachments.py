"""Project attachments: bytes go to object storage, metadata to the database."""
import logging
import re
import secrets
from typing import Optional

from sqlalchemy.orm import Session

from . import crud, models
from .database import transaction
from .external.storage import ObjectStorage

logger = logging.getLogger("agentflow-core.attachments")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def build_file_key(project_id: int, file_name: str) -> str:
    safe_name = _UNSAFE_CHARS.sub("_", file_name).strip("_") or "file"
    return f"projects/{project_id}/attachments/{secrets.token_hex(5)}-{safe_name}"


def add_attachment(
    db: Session,
    storage: ObjectStorage,
    project_id: int,
    file_name: str,
    data: bytes,
    mime_type: str,
    uploaded_by: Optional[int] = None,
) -> models.ProjectAttachment:
    """
    Upload bytes and record the attachment.

    The project is checked before uploading. If the row cannot be written the
    uploaded object is deleted again.

    Raises:
        NotFound: If the project does not exist
        ExternalUnavailable: If storage fails
    """
    crud.require_project(db, project_id)
    file_key = build_file_key(project_id, file_name)
    url = storage.put(file_key, data, mime_type)

    try:
        with transaction(db):
            attachment = crud.create_attachment(
                db,
                project_id=project_id,
                file_name=file_name,
                file_size=len(data),
                mime_type=mime_type,
                file_key=file_key,
                file_url=url,
                uploaded_by=uploaded_by,
            )
    except Exception:
        logger.error(f"Recording attachment {file_key} failed, removing uploaded object")
        storage.delete(file_key)
        raise

    logger.info(f"Attached {file_name} ({len(data)} bytes) to project {project_id}")
    return attachment


def delete_attachment(db: Session, storage: ObjectStorage, attachment_id: int) -> None:
    """
    Delete the stored object, then the row.

    Raises:
        NotFound: If the attachment does not exist
        ExternalUnavailable: If storage fails; the row is kept
    """
    attachment = crud.require_attachment(db, attachment_id)
    storage.delete(attachment.file_key)
    with transaction(db):
        crud.delete_attachment(db, attachment)
    logger.info(f"Deleted attachment {attachment_id}")
