"""
Board Provisioning Adapter

Contract for the external task board plus its Trello implementation.
Tokens come from the owner's BoardLink; the board itself stays owned by
the board service and is only referenced by id.

Error mapping:
    no token        -> BoardNotLinked
    HTTP 401        -> token deleted, BoardLinkExpired (never retried)
    429 / 5xx / I/O -> TransientCollaboratorError (retried once)
    other 4xx       -> CollaboratorError

Author: Goal Forge Core Team
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from urllib.parse import urlencode

import httpx

from config import (
    TRELLO_API_BASE,
    TRELLO_API_KEY,
    TRELLO_APP_NAME,
    TRELLO_AUTHORIZE_URL,
    TRELLO_RETURN_URL,
    STEP_TIMEOUT_SECONDS,
)
from error_handler import call_with_retry
from exceptions import (
    BoardLinkExpired,
    BoardNotLinked,
    CollaboratorError,
    TransientCollaboratorError,
)
from logging_config import get_logger
from schemas import (
    BoardCard,
    BoardList,
    BoardSnapshot,
    Checklist,
    ChecklistItem,
    ProvisionedBoard,
)

logger = get_logger(__name__)

BOARD_LISTS = ("To Do", "Doing", "Done", "Vision")


def authorization_url(
    return_url: str = TRELLO_RETURN_URL,
    api_key: str = TRELLO_API_KEY,
    app_name: str = TRELLO_APP_NAME
) -> str:
    """Redirect-based authorization link; the token comes back on return_url."""
    query = urlencode({
        "key": api_key,
        "response_type": "token",
        "scope": "read,write",
        "expiration": "never",
        "name": app_name,
        "return_url": return_url,
    })
    return f"{TRELLO_AUTHORIZE_URL}?{query}"


class BoardLinkStore:
    """Owner -> board service token"""

    def __init__(self, uow_factory):
        self._uow = uow_factory

    async def get_token(self, owner: str) -> Optional[str]:
        async with self._uow() as uow:
            link = await uow.board_links.get(uow.session, owner)
            return link.token if link else None

    async def is_linked(self, owner: str) -> bool:
        return await self.get_token(owner) is not None

    async def link(self, owner: str, token: str) -> None:
        async with self._uow() as uow:
            await uow.board_links.upsert(uow.session, owner, token)
        logger.info("board_linked", owner=owner)

    async def unlink(self, owner: str) -> bool:
        async with self._uow() as uow:
            removed = await uow.board_links.delete(uow.session, owner)
        if removed:
            logger.info("board_unlinked", owner=owner)
        return removed


class BoardProvisioningAdapter(ABC):
    """Task board operations for one owner"""

    @abstractmethod
    async def create_board(self, title: str, desc: str) -> ProvisionedBoard:
        ...

    @abstractmethod
    async def create_lists(self, board_id: str, names: List[str]) -> Dict[str, str]:
        """Create lists in order; returns name -> list id."""

    @abstractmethod
    async def create_card(self, list_id: str, title: str, desc: str, due_date: Optional[str] = None) -> str:
        ...

    @abstractmethod
    async def create_checklist(self, card_id: str, items: List[str]) -> str:
        ...

    @abstractmethod
    async def move_card(self, card_id: str, target_list_id: str) -> None:
        ...

    @abstractmethod
    async def set_checklist_item_state(self, card_id: str, item_id: str, done: bool) -> None:
        ...

    @abstractmethod
    async def list_board(self, board_id: str) -> BoardSnapshot:
        ...

    @abstractmethod
    async def attach_url(self, card_id: str, url: str, name: str) -> None:
        ...


class TrelloBoardAdapter(BoardProvisioningAdapter):
    """
    Trello REST implementation.

    Usage:
        adapter = TrelloBoardAdapter(owner, BoardLinkStore(uow_factory))
        board = await adapter.create_board("Run a marathon", "16-week plan")
    """

    def __init__(
        self,
        owner: str,
        link_store: BoardLinkStore,
        api_key: str = TRELLO_API_KEY,
        api_base: str = TRELLO_API_BASE,
        timeout: float = STEP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.owner = owner
        self._link_store = link_store
        self._api_key = api_key
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def _request(self, method: str, path: str, params: Optional[dict] = None):
        return await call_with_retry(
            lambda: self._send(method, path, params),
            name=f"trello {method} {path}",
            timeout=self._timeout
        )

    async def _send(self, method: str, path: str, params: Optional[dict] = None):
        token = await self._link_store.get_token(self.owner)
        if not token:
            raise BoardNotLinked(self.owner)

        query = {"key": self._api_key, "token": token}
        query.update({k: v for k, v in (params or {}).items() if v is not None})

        try:
            async with httpx.AsyncClient(base_url=self._api_base, timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(method, path, params=query)
        except httpx.TransportError as e:
            raise TransientCollaboratorError(
                collaborator="board",
                message=f"Board service unreachable: {e}",
                details={"path": path}
            ) from e

        if response.status_code == 401:
            await self._link_store.unlink(self.owner)
            logger.warning("board_token_invalidated", owner=self.owner, path=path)
            raise BoardLinkExpired(self.owner)

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientCollaboratorError(
                collaborator="board",
                message=f"Board service returned {response.status_code}",
                details={"path": path, "status": response.status_code}
            )

        if response.status_code >= 400:
            raise CollaboratorError(
                collaborator="board",
                message=f"Board service rejected {method} {path}: {response.status_code}",
                details={"path": path, "status": response.status_code, "body": response.text[:200]}
            )

        return response.json() if response.content else None

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    async def create_board(self, title: str, desc: str) -> ProvisionedBoard:
        data = await self._request("POST", "/boards", {
            "name": title,
            "desc": desc,
            "defaultLists": "false",
        })
        board = ProvisionedBoard(board_id=data["id"], url=data.get("shortUrl") or data.get("url"))
        logger.info("board_created", owner=self.owner, board_id=board.board_id)
        return board

    async def create_lists(self, board_id: str, names: List[str]) -> Dict[str, str]:
        list_ids = {}
        for name in names:
            data = await self._request("POST", "/lists", {
                "name": name,
                "idBoard": board_id,
                "pos": "bottom",
            })
            list_ids[name] = data["id"]
        return list_ids

    async def create_card(self, list_id: str, title: str, desc: str, due_date: Optional[str] = None) -> str:
        data = await self._request("POST", "/cards", {
            "idList": list_id,
            "name": title,
            "desc": desc,
            "due": due_date,
            "pos": "bottom",
        })
        return data["id"]

    async def create_checklist(self, card_id: str, items: List[str]) -> str:
        checklist = await self._request("POST", f"/cards/{card_id}/checklists", {"name": "Tasks"})
        for item in items:
            await self._request("POST", f"/checklists/{checklist['id']}/checkItems", {
                "name": item,
                "pos": "bottom",
            })
        return checklist["id"]

    async def attach_url(self, card_id: str, url: str, name: str) -> None:
        await self._request("POST", f"/cards/{card_id}/attachments", {"url": url, "name": name})

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def move_card(self, card_id: str, target_list_id: str) -> None:
        await self._request("PUT", f"/cards/{card_id}", {"idList": target_list_id})
        logger.info("card_moved", owner=self.owner, card_id=card_id, list_id=target_list_id)

    async def set_checklist_item_state(self, card_id: str, item_id: str, done: bool) -> None:
        await self._request("PUT", f"/cards/{card_id}/checkItem/{item_id}", {
            "state": "complete" if done else "incomplete",
        })

    async def list_board(self, board_id: str) -> BoardSnapshot:
        board = await self._request("GET", f"/boards/{board_id}", {"fields": "name,url,shortUrl"})
        lists = await self._request("GET", f"/boards/{board_id}/lists", {
            "cards": "open",
            "card_fields": "id,name,desc,due,dueComplete,idList",
        })
        checklists = await self._request("GET", f"/boards/{board_id}/checklists")

        by_card: Dict[str, List[Checklist]] = {}
        for checklist in checklists or []:
            by_card.setdefault(checklist["idCard"], []).append(Checklist(
                id=checklist["id"],
                name=checklist.get("name", "Tasks"),
                items=[
                    ChecklistItem(id=item["id"], name=item["name"], state=item.get("state", "incomplete"))
                    for item in checklist.get("checkItems", [])
                ]
            ))

        return BoardSnapshot(
            board_id=board_id,
            url=(board or {}).get("shortUrl") or (board or {}).get("url"),
            lists=[
                BoardList(
                    id=board_list["id"],
                    name=board_list["name"],
                    cards=[
                        BoardCard(
                            id=card["id"],
                            name=card["name"],
                            desc=card.get("desc") or "",
                            due=card.get("due"),
                            due_complete=bool(card.get("dueComplete")),
                            list_id=card.get("idList") or board_list["id"],
                            checklists=by_card.get(card["id"], [])
                        )
                        for card in board_list.get("cards", [])
                    ]
                )
                for board_list in lists or []
            ]
        )
