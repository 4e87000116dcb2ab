import json
from datetime import datetime, timezone as dt_timezone

import httpx
from django.test import SimpleTestCase

from giveaways.clients import (
    ActivityStoreClient,
    CoinLedgerClient,
    SegmentDirectoryClient,
    TokenDistributionClient,
    TokenDistributionRequest,
)
from giveaways.exceptions import TransientExternalError
from giveaways.rules import RuleWindow


def client_for(cls, handler):
    return cls("http://partner.test", timeout=1, transport=httpx.MockTransport(handler))


class SegmentDirectoryClientTests(SimpleTestCase):
    def test_members_are_deduplicated_and_sorted(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "members": [
                        {"user_id": "u2", "email": "b@example.com"},
                        {"user_id": "u1", "email": "a@example.com", "organization_id": "org-1"},
                        {"user_id": "u2", "email": "b@example.com"},
                        {"email": "nobody@example.com"},
                    ]
                },
            )

        members = client_for(SegmentDirectoryClient, handler).resolve_members(["seg-1"], org_filter="org-1")

        self.assertEqual([m.user_id for m in members], ["u1", "u2"])
        self.assertEqual(members[0].organization_id, "org-1")
        self.assertEqual(seen["path"], "/api/v1/segments/members")
        self.assertEqual(seen["body"], {"segment_ids": ["seg-1"], "organization_id": "org-1"})

    def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with self.assertRaises(TransientExternalError):
            client_for(SegmentDirectoryClient, handler).resolve_members(["seg-1"])

    def test_server_error_is_transient(self):
        with self.assertRaises(TransientExternalError):
            client_for(SegmentDirectoryClient, lambda request: httpx.Response(503)).resolve_members(["seg-1"])

    def test_garbled_body_is_transient(self):
        handler = lambda request: httpx.Response(200, content=b"<html>")
        with self.assertRaises(TransientExternalError):
            client_for(SegmentDirectoryClient, handler).resolve_members(["seg-1"])


class ActivityStoreClientTests(SimpleTestCase):
    def test_count_sends_window(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"count": 7})

        window = RuleWindow(
            start=datetime(2024, 3, 1, tzinfo=dt_timezone.utc),
            end=datetime(2024, 3, 31, tzinfo=dt_timezone.utc),
        )
        count = client_for(ActivityStoreClient, handler).count_qualifying_events("u1", "daily_login", window)

        self.assertEqual(count, 7)
        self.assertEqual(seen["params"]["action_id"], "daily_login")
        self.assertEqual(seen["params"]["start"], "2024-03-01T00:00:00+00:00")
        self.assertNotIn("all_time", seen["params"])

    def test_events_for_all_time_window(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"events": [{"event_id": "e1"}, {"event_id": "e2"}, {}]})

        events = client_for(ActivityStoreClient, handler).list_qualifying_events(
            "u1", "daily_login", RuleWindow(all_time=True)
        )

        self.assertEqual(events, ["e1", "e2"])
        self.assertEqual(seen["params"]["all_time"], "true")


class TokenDistributionClientTests(SimpleTestCase):
    def _request(self):
        return TokenDistributionRequest(
            pool_id="pool-1",
            campaign_id=3,
            validity_window=(datetime(2024, 3, 1, tzinfo=dt_timezone.utc), None),
            quantity_per_winner=10,
            user_ids=["u1", "u2"],
        )

    def test_accepted_distribution(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "distribution_reference": "d-9"})

        result = client_for(TokenDistributionClient, handler).distribute(self._request())

        self.assertTrue(result.success)
        self.assertEqual(result.distribution_reference, "d-9")
        self.assertEqual(seen["body"]["user_ids"], ["u1", "u2"])
        self.assertEqual(seen["body"]["validity_window"]["until"], None)

    def test_rejected_distribution(self):
        handler = lambda request: httpx.Response(200, json={"success": False, "error": "pool closed"})

        result = client_for(TokenDistributionClient, handler).distribute(self._request())

        self.assertFalse(result.success)
        self.assertEqual(result.error, "pool closed")


class CoinLedgerClientTests(SimpleTestCase):
    def test_balance_and_transaction(self):
        def handler(request):
            if request.method == "GET":
                self.assertEqual(request.url.path, "/api/v1/sources/src-1/balance")
                return httpx.Response(200, json={"balance": "120"})
            body = json.loads(request.content)
            self.assertEqual(body["reference"], "campaign:1:winner:2")
            return httpx.Response(201, json={"transaction_id": "tx-1"})

        client = client_for(CoinLedgerClient, handler)

        self.assertEqual(client.get_balance("src-1"), 120)
        self.assertEqual(client.create_transaction("u1", 100, "reward", "campaign:1:winner:2"), "tx-1")

    def test_missing_transaction_id_is_transient(self):
        handler = lambda request: httpx.Response(200, json={})

        with self.assertRaises(TransientExternalError):
            client_for(CoinLedgerClient, handler).create_transaction("u1", 100, "reward", "ref")
