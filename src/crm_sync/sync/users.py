"""Remote user directory reconciliation.

Maps every remote CRM user to a local account, matched by email.  Users
without a local account get an ``Employee`` profile and an
``EmployeeAccount`` created for them.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..core.async_utils import run_sync
from ..store.base import DocumentStore
from .models import CONTACTS_SPACE, MODEL_SPACE, DocClass, Document, now_ms

if TYPE_CHECKING:
    from ..core.client import RemoteClient

logger = logging.getLogger(__name__)

USER_ROLE = "USER"


def combine_name(first: str | None, last: str | None) -> str:
    """Platform person name: ``"Last,First"``."""
    return f"{last or ''},{first or ''}"


async def _create_account(store: DocumentStore, user: dict[str, Any]) -> Document:
    name = combine_name(user.get("NAME"), user.get("LAST_NAME"))
    employee_id = await store.create_doc(
        DocClass.EMPLOYEE.value,
        CONTACTS_SPACE,
        {
            "name": name,
            "avatar": user.get("PERSONAL_PHOTO"),
            "active": user.get("ACTIVE"),
            "city": user.get("PERSONAL_CITY"),
            "create_on": now_ms(),
        },
    )
    data = {
        "email": user.get("EMAIL"),
        "name": name,
        "employee": employee_id,
        "role": USER_ROLE,
    }
    account_id = await store.create_doc(
        DocClass.EMPLOYEE_ACCOUNT.value, MODEL_SPACE, data
    )
    logger.info("Created account %s for remote user %s", name, user.get("ID"))
    return Document(
        id=account_id,
        doc_class=DocClass.EMPLOYEE_ACCOUNT.value,
        space=MODEL_SPACE,
        data=data,
    )


async def synchronize_users(
    client: RemoteClient,
    store: DocumentStore,
    accounts: list[Document],
) -> dict[str, str]:
    """Resolve every remote user to a local account id.

    Args:
        client: Remote CRM client.
        store: Target store; missing accounts are created directly on it.
        accounts: Snapshot of existing ``EmployeeAccount`` documents.
            Accounts created here are appended to it.

    Returns:
        Mapping of remote user id to local account id.
    """
    user_map: dict[str, str] = {}
    total = 1
    cursor: int | None = 0

    while len(user_map) < total:
        page = await run_sync(client.call, "user.search", {"start": cursor})
        if page.total is not None:
            total = page.total
        users = page.result or []

        for user in users:
            email = user.get("EMAIL")
            account = next(
                (a for a in accounts if a.data.get("email") == email), None
            )
            if account is None:
                account = await _create_account(store, user)
                accounts.append(account)
            user_map[str(user["ID"])] = account.id

        cursor = page.next
        if cursor is None or not users:
            break

    logger.debug("Resolved %d remote users", len(user_map))
    return user_map
