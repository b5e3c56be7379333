"""Timeline comment and activity download for one converted record.

``download_comments`` extends a ``ConvertResult`` in place: every remote
timeline comment and every communication activity becomes a pending
``Comment`` sub-document, and every file attached to a comment becomes a
pending ``BlobDescriptor``.  Nothing is written here; the merger does that.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from ..config_schema import EntityMapping
from ..converters.bbcode import bbcode_to_html
from ..core.async_utils import run_sync
from .models import (
    SYSTEM_ACCOUNT,
    BlobData,
    BlobDescriptor,
    ConvertResult,
    DocClass,
    Document,
    SyncedDocument,
    SyncTrait,
    now_ms,
)

if TYPE_CHECKING:
    from ..core.client import RemoteClient

logger = logging.getLogger(__name__)

COMMENT_ENTITY = "crm.timeline.comment"
ACTIVITY_LIST = "crm.activity.list"

BlobProvider = Callable[[str, str, str], Awaitable[BlobData | None]]

_HEADER_STYLE = "color: var(--primary-color-skyblue);"


class OwnerTypeNotFoundError(LookupError):
    """No ``crm.enum.ownertype`` entry matches a mapping's entity type."""


def entity_type_name(mapping: EntityMapping) -> str:
    """``crm.lead`` -> ``lead``."""
    return mapping.type.replace("crm.", "", 1)


def find_owner_type(
    mapping: EntityMapping, owner_types: list[dict[str, Any]]
) -> dict[str, Any]:
    entity_type = entity_type_name(mapping)
    for owner_type in owner_types:
        if str(owner_type.get("SYMBOL_CODE", "")).lower() == entity_type:
            return owner_type
    raise OwnerTypeNotFoundError(f"No owner type found for {entity_type}")


def parse_remote_time(value: str | None) -> int:
    """Remote ISO 8601 timestamp to epoch ms; now when absent or invalid."""
    if not value:
        return now_ms()
    try:
        return int(datetime.fromisoformat(value).timestamp() * 1000)
    except ValueError:
        logger.debug("Unparseable remote timestamp %r", value)
        return now_ms()


def _comment_document(
    primary: Document, message: str, author: str, created: int
) -> Document:
    return Document(
        doc_class=DocClass.COMMENT.value,
        space=primary.space,
        attached_to=primary.id,
        attached_to_class=primary.doc_class,
        collection="comments",
        modified_by=author,
        modified_on=created,
        data={"message": message},
    )


def _file_descriptor(
    comment: Document,
    file_info: dict[str, Any],
    author: str,
    created: int,
    blob_provider: BlobProvider | None,
) -> BlobDescriptor:
    url = file_info.get("urlDownload", "")
    file_id = str(file_info.get("id"))
    name = file_info.get("name", file_id)

    attachment = Document(
        doc_class=DocClass.ATTACHMENT.value,
        space=comment.space,
        attached_to=comment.id,
        attached_to_class=comment.doc_class,
        collection="attachments",
        modified_by=author,
        modified_on=created,
        data={
            "name": name,
            "size": file_info.get("size"),
            "type": "file",
            "last_modified": now_ms(),
        },
    )

    async def fetch() -> BlobData | None:
        if blob_provider is None:
            return None
        blob = await blob_provider(url, file_id, name)
        if blob is None:
            return None
        return BlobData(name=name, content=blob.content, content_type=blob.content_type)

    def mutate(blob: BlobData, target: Document) -> None:
        # comment.id may have been swapped for a stored comment's id
        target.attached_to = comment.id
        target.data["type"] = blob.content_type
        target.data["size"] = blob.size
        target.data["name"] = blob.name

    return BlobDescriptor(
        attachment=attachment,
        remote_id=f"attach-{file_id}",
        fetch=fetch,
        mutate=mutate,
    )


def _activity_message(activity: dict[str, Any]) -> str:
    targets = ",".join(
        (c.get("ENTITY_SETTINGS") or {}).get("LEAD_TITLE", "")
        for c in activity.get("COMMUNICATIONS") or []
    )
    lines = [
        "<p>",
        f'<span style="{_HEADER_STYLE}">e-mail: {targets}</span><br/>',
        f'<span style="{_HEADER_STYLE}">Subject: {activity.get("SUBJECT", "")}</span><br/>',
    ]
    settings = activity.get("SETTINGS") or {}
    headers = list((settings.get("EMAIL_META") or {}).items()) + list(
        (settings.get("MESSAGE_HEADERS") or {}).items()
    )
    for key, value in headers:
        if value is not None and str(value).strip():
            lines.append(f'<span style="{_HEADER_STYLE}">{key}: {value}</span><br/>')
    return "\n".join(lines) + "\n</p>" + (activity.get("DESCRIPTION") or "")


async def download_comments(
    result: ConvertResult,
    client: RemoteClient,
    mapping: EntityMapping,
    direction: str,
    comment_field_keys: list[str],
    user_map: dict[str, str],
    owner_types: list[dict[str, Any]],
    blob_provider: BlobProvider | None = None,
) -> None:
    """Append the record's comments, activities and files to *result*.

    Raises:
        OwnerTypeNotFoundError: The mapping's entity type has no owner type.
    """
    owner_type = find_owner_type(mapping, owner_types)
    entity_type = entity_type_name(mapping)
    primary = result.document.document
    remote_id = result.remote_id

    comments = await run_sync(
        client.call,
        f"{COMMENT_ENTITY}.list",
        {
            "filter": {"ENTITY_ID": remote_id, "ENTITY_TYPE": entity_type},
            "select": comment_field_keys,
            "order": {"ID": direction},
        },
    )
    for item in comments.result or []:
        author = user_map.get(str(item.get("AUTHOR_ID")), SYSTEM_ACCOUNT)
        created = parse_remote_time(item.get("CREATED"))
        comment = _comment_document(
            primary, bbcode_to_html(item.get("COMMENT") or ""), author, created
        )
        comment.data["attachments"] = 0

        for file_info in (item.get("FILES") or {}).values():
            comment.data["message"] += (
                f"</br> Attachment: <a href='{file_info.get('urlDownload')}'>"
                f"{file_info.get('name')} by {file_info.get('authorName')}</a>"
            )
            comment.data["attachments"] += 1
            result.blobs.append(
                _file_descriptor(comment, file_info, author, created, blob_provider)
            )

        result.extra_sync.append(
            SyncedDocument(
                document=comment,
                trait=SyncTrait(
                    remote_type=str(item.get("ENTITY_TYPE") or entity_type),
                    remote_id=str(item["ID"]),
                    raw_data=item,
                ),
            )
        )

    activities = await run_sync(
        client.call,
        ACTIVITY_LIST,
        {
            "order": {"ID": "DESC"},
            "filter": {"OWNER_ID": remote_id, "OWNER_TYPE": owner_type["ID"]},
            "select": ["*", "COMMUNICATIONS"],
        },
    )
    entries = activities.result
    if entries is None:
        entries = []
    elif not isinstance(entries, list):
        entries = [entries]

    for activity in entries:
        author = user_map.get(str(activity.get("AUTHOR_ID")), SYSTEM_ACCOUNT)
        comment = _comment_document(
            primary,
            _activity_message(activity),
            author,
            parse_remote_time(activity.get("CREATED")),
        )
        result.extra_sync.append(
            SyncedDocument(
                document=comment,
                trait=SyncTrait(
                    remote_type="email",
                    remote_id=str(activity["ID"]),
                    raw_data=activity,
                ),
            )
        )

    logger.debug(
        "Record %s: %d comments, %d activities, %d files",
        remote_id,
        len(comments.result or []),
        len(entries),
        len(result.blobs),
    )
