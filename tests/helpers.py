"""Event payload builders and a scripted stand-in for the indexer endpoint."""

from typing import Any, Dict, List, Optional

import requests


class FakeResponse:
    def __init__(self, body: Any, status_code: int = 200):
        self._body = body
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self) -> Any:
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeIndexer:
    """Stands in for ``requests.Session``; replies are queued per call."""

    def __init__(self):
        self.replies: List[Any] = []
        self.calls: List[Dict[str, Any]] = []

    def reply(self, start=(), end=(), transfers=()) -> None:
        self.replies.append(FakeResponse({"data": {
            "LpManager_StartMinting": list(start),
            "LpManager_EndMinting": list(end),
            "LpNft_Transfer": list(transfers),
        }}))

    def respond(self, response: FakeResponse) -> None:
        self.replies.append(response)

    def fail(self, exc: Exception) -> None:
        self.replies.append(exc)

    def post(self, url: str, json: Optional[dict] = None, timeout: Optional[float] = None) -> FakeResponse:
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def start_minting(id="10-5", txid="0xabc", amount="1000000", deposit_id="7",
                  ts="2024-09-10T00:00:00", creator="0xuser") -> dict:
    return {"id": id, "txid": txid, "usdcAmount": amount, "depositId": deposit_id,
            "db_write_timestamp": ts, "creator": creator}


def end_minting(id="10-6", token_id="7", ts="2024-09-10T00:01:00", creator="0xuser") -> dict:
    return {"id": id, "depositIdIsTokenId": token_id, "db_write_timestamp": ts,
            "creator": creator, "_ustcPlusAmount": "5000000000000000000"}


def transfer(id="10-9", token_id="7", to="0xowner", sender="0x0000000000000000000000000000000000000000",
             ts="2024-09-10T00:02:00") -> dict:
    return {"id": id, "tokenId": token_id, "to": to, "from": sender, "db_write_timestamp": ts}
