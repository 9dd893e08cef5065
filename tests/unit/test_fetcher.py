"""
Fetcher: per-feed guarding and the trailing deal window.
"""
from datetime import timedelta

import pytest

from tradesync.broker.fetcher import PositionDealFetcher
from tradesync.exceptions import GatewayPermanentError, GatewayTimeoutError, MalformedPayloadError


@pytest.mark.asyncio
async def test_fetch_decodes_all_feeds(make_gateway, payloads, now):
    client = make_gateway(positions=[payloads.position()], deals=[payloads.deal()])
    fetched = await PositionDealFetcher(client).fetch("acc-1", "london", now=now)

    assert fetched.account_information.ok
    assert fetched.account_information.value.equity == 10250.0
    assert [p.symbol for p in fetched.positions.value] == ["EURUSD"]
    assert [d.symbol for d in fetched.deals.value] == ["GBPUSD"]

    _, region, start, end = client.get_history_deals.await_args.args
    assert region == "london"
    assert end == now
    assert end - start == timedelta(days=30)


@pytest.mark.asyncio
async def test_window_follows_configuration(make_gateway, now):
    client = make_gateway()
    await PositionDealFetcher(client, deals_window_days=7).fetch("acc-1", "london", now=now)
    _, _, start, end = client.get_history_deals.await_args.args
    assert end - start == timedelta(days=7)


@pytest.mark.asyncio
async def test_one_failed_feed_does_not_spoil_others(make_gateway, payloads, now):
    client = make_gateway(positions=[payloads.position()])
    client.get_history_deals.side_effect = MalformedPayloadError("non-JSON")
    client.get_account_information.side_effect = GatewayTimeoutError("slow")

    fetched = await PositionDealFetcher(client).fetch("acc-1", "london", now=now)

    assert fetched.positions.ok
    assert not fetched.deals.ok
    assert not fetched.account_information.ok
    assert fetched.any_ok


@pytest.mark.asyncio
async def test_wrong_shape_is_malformed(make_gateway, now):
    client = make_gateway(positions={"error": "oops"}, deals="<html/>", account_information=[])
    fetched = await PositionDealFetcher(client).fetch("acc-1", "london", now=now)
    assert not fetched.any_ok


@pytest.mark.asyncio
async def test_permanent_rejection_propagates(make_gateway, now):
    client = make_gateway()
    client.get_account_information.side_effect = GatewayPermanentError("forbidden", status=403)
    with pytest.raises(GatewayPermanentError):
        await PositionDealFetcher(client).fetch("acc-1", "london", now=now)
