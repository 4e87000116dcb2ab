"""HTTP clients for the partner services the reward jobs read from and pay through.

Every failure on the wire (timeout, transport error, non-2xx status, garbled
body) is raised as TransientExternalError. Callers treat it as "nothing
happened" and retry on the next cycle.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx
from django.conf import settings

from .exceptions import TransientExternalError
from .notifications import get_notifier
from .rules import RuleWindow


@dataclass(frozen=True)
class Member:
    user_id: str
    email: str = ""
    organization_id: str | None = None


@dataclass
class TokenDistributionRequest:
    pool_id: str
    campaign_id: int
    validity_window: tuple[datetime | None, datetime | None]
    quantity_per_winner: int
    user_ids: list[str] = field(default_factory=list)

    def as_payload(self) -> dict[str, Any]:
        valid_from, valid_until = self.validity_window
        return {
            "pool_id": self.pool_id,
            "campaign_id": self.campaign_id,
            "validity_window": {
                "from": valid_from.isoformat() if valid_from else None,
                "until": valid_until.isoformat() if valid_until else None,
            },
            "quantity_per_winner": self.quantity_per_winner,
            "user_ids": list(self.user_ids),
        }


@dataclass
class TokenDistributionResult:
    success: bool
    distribution_reference: str = ""
    error: str = ""


def _window_params(window: RuleWindow) -> dict[str, str]:
    if window.all_time:
        return {"all_time": "true"}
    params = {}
    if window.start is not None:
        params["start"] = window.start.isoformat()
    if window.end is not None:
        params["end"] = window.end.isoformat()
    return params


class PartnerClient:
    service_name = "partner"

    def __init__(self, base_url: str, timeout: float | None = None, transport: httpx.BaseTransport | None = None):
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout if timeout is not None else settings.PARTNER_HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as exc:
            raise TransientExternalError(f"{self.service_name} timed out on {path}") from exc
        except httpx.HTTPStatusError as exc:
            raise TransientExternalError(
                f"{self.service_name} returned {exc.response.status_code} on {path}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransientExternalError(f"{self.service_name} unreachable on {path}: {exc}") from exc
        except ValueError as exc:
            raise TransientExternalError(f"{self.service_name} sent an unreadable body on {path}") from exc
        if not isinstance(body, dict):
            raise TransientExternalError(f"{self.service_name} sent an unexpected body on {path}")
        return body

    def close(self) -> None:
        self._client.close()


class SegmentDirectoryClient(PartnerClient):
    service_name = "segment directory"

    def resolve_members(self, segment_ids: list[str], org_filter: str | None = None) -> list[Member]:
        payload: dict[str, Any] = {"segment_ids": list(segment_ids)}
        if org_filter:
            payload["organization_id"] = org_filter
        body = self._request("POST", "/api/v1/segments/members", json=payload)
        members: dict[str, Member] = {}
        for row in body.get("members") or []:
            user_id = str(row.get("user_id") or "")
            if not user_id:
                continue
            members[user_id] = Member(
                user_id=user_id,
                email=str(row.get("email") or ""),
                organization_id=row.get("organization_id"),
            )
        return [members[key] for key in sorted(members)]


class ActivityStoreClient(PartnerClient):
    service_name = "activity store"

    def count_qualifying_events(self, user_id: str, action_id: str, window: RuleWindow) -> int:
        params = {"user_id": user_id, "action_id": action_id, **_window_params(window)}
        body = self._request("GET", "/api/v1/activity/count", params=params)
        try:
            return int(body.get("count", 0))
        except (TypeError, ValueError) as exc:
            raise TransientExternalError(f"activity store sent a bad count for {user_id}") from exc

    def list_qualifying_events(self, user_id: str, action_id: str, window: RuleWindow) -> list[str]:
        params = {"user_id": user_id, "action_id": action_id, **_window_params(window)}
        body = self._request("GET", "/api/v1/activity/events", params=params)
        return [str(row["event_id"]) for row in body.get("events") or [] if row.get("event_id")]


class TokenDistributionClient(PartnerClient):
    service_name = "token distribution"

    def distribute(self, request: TokenDistributionRequest) -> TokenDistributionResult:
        body = self._request("POST", "/api/v1/distributions", json=request.as_payload())
        if not body.get("success"):
            return TokenDistributionResult(success=False, error=str(body.get("error") or "rejected"))
        return TokenDistributionResult(
            success=True,
            distribution_reference=str(body.get("distribution_reference") or ""),
        )


class CoinLedgerClient(PartnerClient):
    service_name = "coin ledger"

    def get_balance(self, source_id: str) -> int:
        body = self._request("GET", f"/api/v1/sources/{source_id}/balance")
        try:
            return int(body["balance"])
        except (KeyError, TypeError, ValueError) as exc:
            raise TransientExternalError(f"coin ledger sent a bad balance for {source_id}") from exc

    def create_transaction(self, user_id: str, amount: int, reason: str, reference: str) -> str:
        body = self._request(
            "POST",
            "/api/v1/transactions",
            json={"user_id": user_id, "amount": amount, "reason": reason, "reference": reference},
        )
        transaction_id = body.get("transaction_id")
        if not transaction_id:
            raise TransientExternalError(f"coin ledger returned no transaction id for {reference}")
        return str(transaction_id)


@dataclass
class Collaborators:
    segments: Any
    activity: Any
    tokens: Any
    coins: Any
    notifier: Any

    def close(self) -> None:
        for client in (self.segments, self.activity, self.tokens, self.coins):
            if isinstance(client, PartnerClient):
                client.close()


def get_collaborators() -> Collaborators:
    return Collaborators(
        segments=SegmentDirectoryClient(settings.SEGMENT_SERVICE_URL),
        activity=ActivityStoreClient(settings.ACTIVITY_SERVICE_URL),
        tokens=TokenDistributionClient(settings.TOKEN_SERVICE_URL),
        coins=CoinLedgerClient(settings.COIN_LEDGER_URL),
        notifier=get_notifier(),
    )
