"""
Ticket attachments and organization documents.

Uploads are two-phase so that a metadata row never points at a missing
object for long:

1. ``begin_*`` inserts the row in the ``pending`` state
2. the pending row is committed
3. the bytes go to object storage
4. the row flips to ``stored`` inside the request transaction

A failed upload deletes its pending row and commits. If the request fails
after the upload, the rollback returns the row to ``pending`` and
``sweep_orphans`` later removes both the row and the object.
"""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..models import ClientDocument, TicketAttachment, UploadState, as_utc, utcnow
from .errors import NotFoundError, UpstreamError, ValidationError
from .storage import SIGNED_URL_TTL_SECONDS, StorageClient

logger = logging.getLogger(__name__)


class AttachmentNotFoundError(NotFoundError):
    pass


class DocumentNotFoundError(NotFoundError):
    pass


def _timestamp(now: datetime | None = None) -> int:
    """Milliseconds since the epoch, used to keep object keys unique."""
    return int(as_utc(now or utcnow()).timestamp() * 1000)


def _safe_name(file_name: str) -> str:
    name = file_name.replace("\\", "/").rsplit("/", 1)[-1].strip()
    if not name:
        raise ValidationError("File name is required")
    return name


def document_path(organization_id: UUID, file_name: str, now: datetime | None = None) -> str:
    """``{org_id}/{timestamp}_{filename}``"""
    return f"{organization_id}/{_timestamp(now)}_{_safe_name(file_name)}"


def attachment_path(
    user_id: UUID, ticket_id: UUID, file_name: str, now: datetime | None = None
) -> str:
    """``{user_id}/{ticket_id}/{timestamp}-{filename}``"""
    return f"{user_id}/{ticket_id}/{_timestamp(now)}-{_safe_name(file_name)}"


class UploadManager:
    """Owns the metadata rows and drives the storage client."""

    def __init__(self, session: AsyncSession, storage: StorageClient | None = None):
        settings = get_settings()
        self.session = session
        self.storage = storage or StorageClient()
        self.attachments_bucket = settings.attachments_bucket
        self.documents_bucket = settings.documents_bucket

    # =========================================================================
    # TICKET ATTACHMENTS
    # =========================================================================

    async def begin_attachment(
        self,
        ticket_id: UUID,
        user_id: UUID,
        file_name: str,
        file_size: int | None = None,
        content_type: str | None = None,
    ) -> TicketAttachment:
        attachment = TicketAttachment(
            ticket_id=ticket_id,
            uploaded_by_user_id=user_id,
            file_name=_safe_name(file_name),
            file_path=attachment_path(user_id, ticket_id, file_name),
            file_size=file_size,
            content_type=content_type,
            upload_state=UploadState.PENDING,
        )
        self.session.add(attachment)
        await self.session.flush()
        return attachment

    async def upload_attachment(
        self,
        ticket_id: UUID,
        user_id: UUID,
        file_name: str,
        data: bytes,
        content_type: str | None = None,
    ) -> TicketAttachment:
        attachment = await self.begin_attachment(
            ticket_id, user_id, file_name, len(data), content_type
        )
        await self.session.commit()
        await self._store(attachment, self.attachments_bucket, data)
        return attachment

    async def list_attachments(self, ticket_id: UUID) -> list[TicketAttachment]:
        result = await self.session.execute(
            select(TicketAttachment)
            .where(
                TicketAttachment.ticket_id == ticket_id,
                TicketAttachment.upload_state == UploadState.STORED,
            )
            .order_by(TicketAttachment.created_at)
        )
        return list(result.scalars().all())

    async def get_attachment(self, attachment_id: UUID) -> TicketAttachment:
        attachment = await self.session.get(TicketAttachment, attachment_id)
        if attachment is None or attachment.upload_state != UploadState.STORED:
            raise AttachmentNotFoundError(f"Attachment {attachment_id} not found")
        return attachment

    async def attachment_url(
        self, attachment: TicketAttachment, expires_in: int = SIGNED_URL_TTL_SECONDS
    ) -> str:
        return await self.storage.signed_url(
            self.attachments_bucket, attachment.file_path, expires_in
        )

    # =========================================================================
    # ORGANIZATION DOCUMENTS
    # =========================================================================

    async def begin_document(
        self,
        organization_id: UUID,
        user_id: UUID,
        file_name: str,
        file_size: int | None = None,
        content_type: str | None = None,
        description: str | None = None,
    ) -> ClientDocument:
        document = ClientDocument(
            organization_id=organization_id,
            uploaded_by_user_id=user_id,
            file_name=_safe_name(file_name),
            file_path=document_path(organization_id, file_name),
            file_size=file_size,
            content_type=content_type,
            description=description or None,
            upload_state=UploadState.PENDING,
        )
        self.session.add(document)
        await self.session.flush()
        return document

    async def upload_document(
        self,
        organization_id: UUID,
        user_id: UUID,
        file_name: str,
        data: bytes,
        content_type: str | None = None,
        description: str | None = None,
    ) -> ClientDocument:
        document = await self.begin_document(
            organization_id, user_id, file_name, len(data), content_type, description
        )
        await self.session.commit()
        await self._store(document, self.documents_bucket, data)
        return document

    async def list_documents(self, organization_id: UUID) -> list[ClientDocument]:
        result = await self.session.execute(
            select(ClientDocument)
            .where(
                ClientDocument.organization_id == organization_id,
                ClientDocument.upload_state == UploadState.STORED,
            )
            .order_by(ClientDocument.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_document(self, document_id: UUID) -> ClientDocument:
        document = await self.session.get(ClientDocument, document_id)
        if document is None or document.upload_state != UploadState.STORED:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return document

    async def document_url(
        self, document: ClientDocument, expires_in: int = SIGNED_URL_TTL_SECONDS
    ) -> str:
        return await self.storage.signed_url(self.documents_bucket, document.file_path, expires_in)

    async def delete_document(self, document: ClientDocument) -> None:
        """Remove the object first, then the row."""
        await self.storage.remove(self.documents_bucket, [document.file_path])
        await self.session.delete(document)
        await self.session.flush()
        logger.info(f"Deleted document {document.id}")

    # =========================================================================
    # SHARED
    # =========================================================================

    async def _store(
        self,
        row: TicketAttachment | ClientDocument,
        bucket: str,
        data: bytes,
    ) -> None:
        try:
            await self.storage.upload(bucket, row.file_path, data, row.content_type)
        except UpstreamError:
            logger.error(f"Upload of {row.file_path} failed, discarding pending row")
            await self.session.delete(row)
            await self.session.commit()
            raise
        row.upload_state = UploadState.STORED
        await self.session.flush()

    async def sweep_orphans(
        self,
        older_than: timedelta | None = None,
        now: datetime | None = None,
    ) -> int:
        """Delete pending rows (and any partial objects) older than the cutoff."""
        if older_than is None:
            older_than = timedelta(minutes=get_settings().orphan_upload_max_age_minutes)
        cutoff = as_utc(now or utcnow()) - older_than

        removed = 0
        for model, bucket in (
            (TicketAttachment, self.attachments_bucket),
            (ClientDocument, self.documents_bucket),
        ):
            result = await self.session.execute(
                select(model).where(model.upload_state == UploadState.PENDING)
            )
            stale = [row for row in result.scalars().all() if as_utc(row.created_at) < cutoff]
            if not stale:
                continue
            if self.storage.is_configured:
                await self.storage.remove(bucket, [row.file_path for row in stale])
            for row in stale:
                await self.session.delete(row)
            removed += len(stale)

        await self.session.flush()
        if removed:
            logger.info(f"Swept {removed} orphaned pending upload(s)")
        return removed
