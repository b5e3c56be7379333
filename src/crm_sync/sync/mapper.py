"""Default record converter.

``convert_record`` turns one raw remote record into a ``ConvertResult``
driven by the mapping's ``FieldMapping`` list:

- ``field`` -- copy the remote value into ``Document.data``.  Multi-value
  lists (``[{"VALUE": ...}, ...]``) are flattened into a comma-separated
  string.
- ``tags`` -- split the value into titles; reuse or create ``TagElement``
  documents and emit one ``TagReference`` per title into ``labels``.
- ``files`` -- every remote file value becomes a pending attachment on
  the primary document.

Any callable with the same signature can replace it via
``SyncOptions.converter``.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from ..config_schema import EntityMapping, FieldMapping
from ..store.base import DocumentStore
from .comments import BlobProvider, parse_remote_time
from .models import (
    SYSTEM_ACCOUNT,
    BlobData,
    BlobDescriptor,
    ConvertResult,
    DocClass,
    Document,
    SyncedDocument,
    SyncTrait,
    generate_id,
    now_ms,
)

logger = logging.getLogger(__name__)


class Converter(Protocol):
    async def __call__(
        self,
        store: DocumentStore,
        mapping: EntityMapping,
        space: str,
        fields: list[FieldMapping],
        record: dict[str, Any],
        user_map: dict[str, str],
        existing: Document | None,
        categories: list[Document],
        tag_elements: list[Document],
        blob_provider: BlobProvider | None = None,
    ) -> ConvertResult: ...


def flatten_value(value: Any) -> Any:
    """Collapse remote multi-value fields into a comma-separated string."""
    if isinstance(value, list):
        parts = [
            str(item.get("VALUE", "")) if isinstance(item, dict) else str(item)
            for item in value
        ]
        return ", ".join(p for p in parts if p)
    return value


def split_titles(value: Any) -> list[str]:
    """Tag titles from a list or comma-separated string, in order, deduplicated."""
    if value is None:
        return []
    if isinstance(value, list):
        raw = [
            str(item.get("VALUE", "")) if isinstance(item, dict) else str(item)
            for item in value
        ]
    else:
        raw = str(value).split(",")
    titles: list[str] = []
    for title in (t.strip() for t in raw):
        if title and title not in titles:
            titles.append(title)
    return titles


def _pick_category(categories: list[Document], target_class: str) -> str | None:
    for category in categories:
        if category.data.get("target_class") == target_class:
            return category.id
    return categories[0].id if categories else None


def _find_tag(
    tag_elements: list[Document], title: str, target_class: str
) -> Document | None:
    for element in tag_elements:
        if (
            element.data.get("title") == title
            and element.data.get("target_class") == target_class
        ):
            return element
    return None


def _tag_references(
    result: ConvertResult,
    mapping: EntityMapping,
    field: FieldMapping,
    record: dict[str, Any],
    categories: list[Document],
    tag_elements: list[Document],
) -> int:
    primary = result.document.document
    titles = split_titles(record.get(field.remote_field))
    for title in titles:
        element = _find_tag(tag_elements, title, mapping.of_class) or _find_tag(
            result.extra_docs, title, mapping.of_class
        )
        if element is None:
            element = Document(
                doc_class=DocClass.TAG_ELEMENT.value,
                space=primary.space,
                modified_by=primary.modified_by,
                modified_on=primary.modified_on,
                data={
                    "title": title,
                    "target_class": mapping.of_class,
                    "category": _pick_category(categories, mapping.of_class),
                    "description": "",
                    "color": 0,
                },
            )
            result.extra_docs.append(element)

        reference = Document(
            doc_class=DocClass.TAG_REFERENCE.value,
            space=primary.space,
            attached_to=primary.id,
            attached_to_class=primary.doc_class,
            collection="labels",
            modified_by=primary.modified_by,
            modified_on=primary.modified_on,
            data={
                "title": title,
                "tag": element.id,
                "color": element.data.get("color", 0),
            },
        )
        result.extra_sync.append(
            SyncedDocument(
                document=reference,
                trait=SyncTrait(
                    remote_type=mapping.type,
                    remote_id=f"{result.remote_id}:{title}",
                ),
            )
        )
    return len(titles)


def _file_blobs(
    result: ConvertResult,
    field: FieldMapping,
    record: dict[str, Any],
    blob_provider: BlobProvider | None,
) -> int:
    primary = result.document.document
    value = record.get(field.remote_field)
    if value is None:
        return 0
    files = value if isinstance(value, list) else [value]

    count = 0
    for info in files:
        if not isinstance(info, dict) or "id" not in info:
            continue
        file_id = str(info["id"])
        url = info.get("downloadUrl") or info.get("showUrl") or ""
        name = f"{field.remote_field}-{file_id}"
        attachment = Document(
            doc_class=DocClass.ATTACHMENT.value,
            space=primary.space,
            attached_to=primary.id,
            attached_to_class=primary.doc_class,
            collection="attachments",
            modified_by=primary.modified_by,
            modified_on=primary.modified_on,
            data={"name": name, "size": None, "type": "file", "last_modified": now_ms()},
        )

        async def fetch(url=url, file_id=file_id, name=name) -> BlobData | None:
            if blob_provider is None:
                return None
            return await blob_provider(url, file_id, name)

        def mutate(blob: BlobData, target: Document) -> None:
            target.attached_to = primary.id
            target.data["type"] = blob.content_type
            target.data["size"] = blob.size
            target.data["name"] = blob.name

        result.blobs.append(
            BlobDescriptor(
                attachment=attachment,
                remote_id=f"{field.remote_field}-{file_id}",
                fetch=fetch,
                mutate=mutate,
            )
        )
        count += 1
    return count


async def convert_record(
    store: DocumentStore,
    mapping: EntityMapping,
    space: str,
    fields: list[FieldMapping],
    record: dict[str, Any],
    user_map: dict[str, str],
    existing: Document | None,
    categories: list[Document],
    tag_elements: list[Document],
    blob_provider: BlobProvider | None = None,
) -> ConvertResult:
    """Convert one raw remote record.

    ``store`` is part of the converter interface for custom converters
    that need lookups; this one works from its arguments alone.  The
    document reuses ``existing.id`` when a previous sync exists so
    sub-documents point at the stored primary.
    """
    remote_id = str(record["ID"])
    document = Document(
        id=existing.id if existing is not None else generate_id(),
        doc_class=mapping.of_class,
        space=space,
        modified_by=user_map.get(str(record.get("ASSIGNED_BY_ID")), SYSTEM_ACCOUNT),
        modified_on=parse_remote_time(record.get("DATE_MODIFY")),
    )
    result = ConvertResult(
        document=SyncedDocument(
            document=document,
            trait=SyncTrait(
                remote_type=mapping.type, remote_id=remote_id, raw_data=record
            ),
        )
    )

    for field in fields:
        match field.kind:
            case "field":
                document.data[field.attribute] = flatten_value(
                    record.get(field.remote_field)
                )
            case "tags":
                document.data[field.attribute] = _tag_references(
                    result, mapping, field, record, categories, tag_elements
                )
            case "files":
                document.data[field.attribute] = _file_blobs(
                    result, field, record, blob_provider
                )

    return result
