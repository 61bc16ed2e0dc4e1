"""LEX/Zoho clients against a local aiohttp server."""
import asyncio
from datetime import date

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from lexsync.exceptions import (
    UpstreamAuthError,
    UpstreamNotFound,
    UpstreamRejectedError,
    UpstreamTransientError,
)
from lexsync.integrations import LexClient, ZohoClient, ZohoTokenProvider
from lexsync.integrations.lex import parse_awb_listing
from lexsync.utils.backoff import fixed_delay
from lexsync.utils.retry import retry_async


def test_parse_awb_listing_strips_count_prefix_and_dedupes():
    raw = 'Customer Shipment Count 3[{"full_awb_number": "A1"}, {"full_awb_number": "A2"}, {"full_awb_number": "A1"}]'
    assert parse_awb_listing(raw) == ["A1", "A2"]
    assert parse_awb_listing({"data": [{"full_awb_number": " B1 "}, {"other": 1}]}) == ["B1"]
    assert parse_awb_listing("") == []
    with pytest.raises(UpstreamRejectedError):
        parse_awb_listing("Customer Shipment Count 1 <html>")


def _lex_app(seen: dict) -> web.Application:
    async def details(request):
        seen["auth"] = request.headers.get("Authorization")
        awb = request.query["AWB"]
        if awb.startswith("HTTP"):
            return web.Response(status=int(awb[4:]), text="upstream says no")
        if awb == "EMPTY":
            return web.json_response([])
        return web.json_response([{"AWB": awb, "Customer_ID": 7}])

    async def listing(request):
        seen["listing_body"] = await request.json()
        return web.Response(text='Customer Shipment Count 2[{"full_awb_number": "X1"}, {"full_awb_number": "X2"}]')

    async def update(request):
        seen["write_back"] = dict(request.query)
        return web.json_response({"status": "success"})

    async def customer(request):
        seen["customer_auth"] = request.headers.get("Authorization")
        return web.json_response([{"Customer_Id": request.query["Customer_Id"], "Zoho_Deal_ID": "D1"}])

    app = web.Application()
    app.router.add_get("/shipment/details", details)
    app.router.add_get("/shipment/zoho", listing)
    app.router.add_get("/shipment/update", update)
    app.router.add_get("/customer/details", customer)
    return app


@pytest.mark.asyncio
async def test_lex_client_calls_and_status_mapping():
    seen: dict = {}
    async with TestServer(_lex_app(seen)) as server:
        async with aiohttp.ClientSession() as session:
            client = LexClient(session, str(server.make_url("/")), token="lex-token", customer_token="cust-token")

            record = await client.get_shipment_details("AWB1")
            assert record == {"AWB": "AWB1", "Customer_ID": 7}
            assert seen["auth"] == "Bearer lex-token"

            awbs = await client.list_shipments(date(2024, 6, 14), date(2024, 6, 14))
            assert awbs == ["X1", "X2"]
            assert seen["listing_body"] == {"fromdate": "14-06-2024", "todate": "14-06-2024"}

            await client.write_back_shipment_id("AWB1", "5001")
            assert seen["write_back"] == {"AWB": "AWB1", "Zoho_Shipment_Id": "5001"}

            customer = await client.get_customer(7)
            assert customer["Zoho_Deal_ID"] == "D1"
            assert seen["customer_auth"] == "Bearer cust-token"

            with pytest.raises(UpstreamNotFound):
                await client.get_shipment_details("EMPTY")

            expected = {
                "HTTP503": UpstreamTransientError,
                "HTTP429": UpstreamTransientError,
                "HTTP401": UpstreamAuthError,
                "HTTP404": UpstreamNotFound,
                "HTTP400": UpstreamRejectedError,
            }
            for awb, error_type in expected.items():
                with pytest.raises(error_type) as info:
                    await client.get_shipment_details(awb)
                assert info.value.status == int(awb[4:])
                assert info.value.body == "upstream says no"


@pytest.mark.asyncio
async def test_connection_failure_is_transient():
    async with aiohttp.ClientSession() as session:
        client = LexClient(session, "http://127.0.0.1:9", token="t")
        with pytest.raises(UpstreamTransientError):
            await client.get_shipment_details("AWB1")


def _zoho_app(state: dict) -> web.Application:
    async def token(request):
        if state.get("token_outages", 0) > 0:
            state["token_outages"] -= 1
            return web.Response(status=503, text="service unavailable")
        state["refreshes"] += 1
        await asyncio.sleep(0.05)
        return web.json_response({"access_token": f"tok{state['refreshes']}", "expires_in": 3600})

    async def create(request):
        state["auth"].append(request.headers.get("Authorization"))
        body = await request.json()
        if body["data"][0].get("Name") == "BAD":
            return web.json_response({"data": [{"status": "error", "code": "INVALID_DATA", "message": "bad field"}]})
        return web.json_response({"data": [{"status": "success", "code": "SUCCESS", "details": {"id": "9001"}}]})

    async def get_one(request):
        auth = request.headers.get("Authorization")
        state["auth"].append(auth)
        if auth in state.get("revoked", ()):
            # Spread the rejections out so they land before and after the refresh
            state["rejected"] = state.get("rejected", 0) + 1
            await asyncio.sleep(0.01 * state["rejected"])
            return web.json_response({"code": "INVALID_TOKEN"}, status=401)
        if state["reject_next"]:
            state["reject_next"] = False
            return web.json_response({"code": "INVALID_TOKEN"}, status=401)
        return web.json_response({"data": [{"id": request.match_info["rid"], "Name": "AWB1"}]})

    async def search(request):
        if request.query["criteria"] == "(Name:equals:AWB1)":
            return web.json_response({"data": [{"id": "9001", "Name": "AWB1"}]})
        return web.Response(status=204)

    async def missing(request):
        return web.json_response({"code": "INVALID_URL_PATTERN"}, status=404)

    app = web.Application()
    app.router.add_post("/oauth/token", token)
    app.router.add_post("/Shipments", create)
    app.router.add_get("/Shipments/search", search)
    app.router.add_get("/Shipments/{rid}", get_one)
    app.router.add_get("/Deals/{rid}", missing)
    return app


@pytest.mark.asyncio
async def test_token_refresh_is_single_flight():
    state = {"refreshes": 0, "auth": [], "reject_next": False}
    async with TestServer(_zoho_app(state)) as server:
        async with aiohttp.ClientSession() as session:
            provider = ZohoTokenProvider(
                session,
                token_url=str(server.make_url("/oauth/token")),
                client_id="cid",
                client_secret="secret",
                refresh_token="refresh",
            )
            tokens = await asyncio.gather(*(provider.get_access_token() for _ in range(5)))
            assert tokens == ["tok1"] * 5
            assert state["refreshes"] == 1
            assert provider.refresh_count == 1


@pytest.mark.asyncio
async def test_token_expires_after_ttl():
    now = {"t": 0.0}
    state = {"refreshes": 0, "auth": [], "reject_next": False}
    async with TestServer(_zoho_app(state)) as server:
        async with aiohttp.ClientSession() as session:
            provider = ZohoTokenProvider(
                session,
                token_url=str(server.make_url("/oauth/token")),
                client_id="cid",
                client_secret="secret",
                refresh_token="refresh",
                ttl_seconds=3500,
                clock=lambda: now["t"],
            )
            assert await provider.get_access_token() == "tok1"
            now["t"] = 3499.0
            assert await provider.get_access_token() == "tok1"
            now["t"] = 3501.0
            assert await provider.get_access_token() == "tok2"


@pytest.mark.asyncio
async def test_zoho_client_writes_reads_and_retries_on_401():
    state = {"refreshes": 0, "auth": [], "reject_next": False}
    async with TestServer(_zoho_app(state)) as server:
        async with aiohttp.ClientSession() as session:
            provider = ZohoTokenProvider(
                session,
                token_url=str(server.make_url("/oauth/token")),
                client_id="cid",
                client_secret="secret",
                refresh_token="refresh",
            )
            client = ZohoClient(session, provider, str(server.make_url("/")), shipments_module="Shipments")

            assert await client.create_shipment({"Name": "AWB1"}) == "9001"
            assert state["auth"][-1] == "Zoho-oauthtoken tok1"

            with pytest.raises(UpstreamRejectedError) as info:
                await client.create_shipment({"Name": "BAD"})
            assert "INVALID_DATA" in str(info.value)

            state["reject_next"] = True
            record = await client.get_shipment("9001")
            assert record == {"id": "9001", "Name": "AWB1"}
            assert state["refreshes"] == 2
            assert state["auth"][-1] == "Zoho-oauthtoken tok2"

            assert (await client.find_shipment_by_awb("AWB1"))["id"] == "9001"
            assert await client.find_shipment_by_awb("NOPE") is None
            assert await client.get_deal("D404") is None


@pytest.mark.asyncio
async def test_concurrent_401s_on_revoked_token_refresh_once():
    state = {"refreshes": 0, "auth": [], "reject_next": False, "revoked": set()}
    async with TestServer(_zoho_app(state)) as server:
        async with aiohttp.ClientSession() as session:
            provider = ZohoTokenProvider(
                session,
                token_url=str(server.make_url("/oauth/token")),
                client_id="cid",
                client_secret="secret",
                refresh_token="refresh",
            )
            client = ZohoClient(session, provider, str(server.make_url("/")), shipments_module="Shipments")
            assert await provider.get_access_token() == "tok1"
            state["revoked"].add("Zoho-oauthtoken tok1")

            records = await asyncio.gather(*(client.get_shipment(str(n)) for n in range(10)))

            assert [r["id"] for r in records] == [str(n) for n in range(10)]
            assert state["rejected"] == 10
            assert state["refreshes"] == 2
            assert provider.refresh_count == 2
            assert await provider.get_access_token() == "tok2"


@pytest.mark.asyncio
async def test_invalidate_keeps_a_newer_token():
    state = {"refreshes": 0, "auth": [], "reject_next": False}
    async with TestServer(_zoho_app(state)) as server:
        async with aiohttp.ClientSession() as session:
            provider = ZohoTokenProvider(
                session,
                token_url=str(server.make_url("/oauth/token")),
                client_id="cid",
                client_secret="secret",
                refresh_token="refresh",
            )
            assert await provider.get_access_token() == "tok1"
            provider.invalidate("tok0")
            assert await provider.get_access_token() == "tok1"
            provider.invalidate("tok1")
            assert await provider.get_access_token() == "tok2"
            assert state["refreshes"] == 2


@pytest.mark.asyncio
async def test_token_endpoint_outage_is_retried(throttle, sleeps):
    state = {"refreshes": 0, "auth": [], "reject_next": False, "token_outages": 1}
    async with TestServer(_zoho_app(state)) as server:
        async with aiohttp.ClientSession() as session:
            provider = ZohoTokenProvider(
                session,
                token_url=str(server.make_url("/oauth/token")),
                client_id="cid",
                client_secret="secret",
                refresh_token="refresh",
            )
            client = ZohoClient(session, provider, str(server.make_url("/")), shipments_module="Shipments")

            with pytest.raises(UpstreamTransientError) as info:
                await provider.get_access_token()
            assert info.value.status == 503
            assert info.value.retryable

            state["token_outages"] = 1
            outcome = await retry_async(
                lambda: client.create_shipment({"Name": "AWB1"}),
                max_attempts=3,
                delay=fixed_delay(2.0),
                throttle=throttle,
                label="submit",
            )
            assert outcome.success
            assert outcome.value == "9001"
            assert outcome.attempts == 2
            assert sleeps == [2.0]
            assert state["auth"] == ["Zoho-oauthtoken tok1"]


@pytest.mark.asyncio
async def test_token_endpoint_rejection_is_an_auth_error():
    async def token(request):
        return web.json_response({"error": "invalid_code"}, status=400)

    app = web.Application()
    app.router.add_post("/oauth/token", token)
    async with TestServer(app) as server:
        async with aiohttp.ClientSession() as session:
            provider = ZohoTokenProvider(
                session,
                token_url=str(server.make_url("/oauth/token")),
                client_id="cid",
                client_secret="secret",
                refresh_token="refresh",
            )
            with pytest.raises(UpstreamAuthError) as info:
                await provider.get_access_token()
            assert info.value.status == 400
            assert not info.value.retryable
