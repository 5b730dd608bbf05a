from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp import test_utils

from market_viewer.datafeed.api_client import MarketApiClient, MarketApiError
from market_viewer.types import Candle, TradeResult

COIN = {
    'symbol': 'DOGE', 'name': 'Doge', 'price': 0.01,
    'pool_base': 10_000, 'pool_token': 1_000_000,
    'volume24h': 1234.5, 'change24h': 3.2,
}


@asynccontextmanager
async def serve(*routes, token=None):
    """Run a throwaway market API and yield a client pointed at it."""
    app = web.Application()
    app.add_routes(list(routes))
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        async with MarketApiClient(str(server.make_url("/")), token=token) as api:
            yield api
    finally:
        await server.close()


@pytest.mark.asyncio
async def test_list_coins_skips_unusable_entries():
    async def coins(request):
        return web.json_response({'coins': [COIN, {'name': 'no symbol'}, 'junk']})

    async with serve(web.get('/api/coins', coins)) as api:
        result = await api.list_coins()

    assert [c.symbol for c in result] == ['DOGE']
    assert result[0].volume24h == 1234.5


@pytest.mark.asyncio
async def test_get_coin_and_history():
    seen = {}

    async def get_coin(request):
        return web.json_response({'coin': COIN})

    async def history(request):
        seen['hours'] = request.query.get('hours')
        return web.json_response({'series': [
            {'time': '2024-01-01T00:00:00Z', 'open': 1, 'high': 2, 'low': 0.5, 'close': 1.5},
        ]})

    async with serve(
        web.get('/api/coins/{symbol}', get_coin),
        web.get('/api/coins/{symbol}/history', history),
    ) as api:
        coin = await api.get_coin('DOGE')
        series = await api.get_coin_history('DOGE', hours=6)

    assert coin.pool_token == 1_000_000.0
    assert seen['hours'] == '6'
    assert series == [Candle(1_704_067_200_000, 1.0, 2.0, 0.5, 1.5)]


@pytest.mark.asyncio
async def test_missing_coin_raises():
    async def get_coin(request):
        return web.json_response({'error': 'Coin not found'}, status=404)

    async with serve(web.get('/api/coins/{symbol}', get_coin)) as api:
        with pytest.raises(MarketApiError, match='Coin not found'):
            await api.get_coin('NOPE')


@pytest.mark.asyncio
async def test_invalid_json_raises():
    async def coins(request):
        return web.Response(text='<html>oops</html>', content_type='text/html')

    async with serve(web.get('/api/coins', coins)) as api:
        with pytest.raises(MarketApiError, match='invalid_json_response'):
            await api.list_coins()


@pytest.mark.asyncio
async def test_buy_posts_payload_with_token():
    seen = {}

    async def buy(request):
        seen['auth'] = request.headers.get('Authorization')
        seen['body'] = await request.json()
        return web.json_response({'ok': True, 'bought': {'tokenAmount': 987.6, 'usdSpent': 10}})

    async with serve(web.post('/api/trade/buy', buy), token='secret') as api:
        result = await api.buy('DOGE', 10.0)

    assert seen['auth'] == 'Bearer secret'
    assert seen['body'] == {'symbol': 'DOGE', 'usdAmount': 10.0}
    assert result == TradeResult(ok=True, token_amount=987.6, usd_amount=10.0)


@pytest.mark.asyncio
async def test_sell_reads_usd_gained():
    async def sell(request):
        body = await request.json()
        return web.json_response({'ok': True, 'sold': {'tokenAmount': body['tokenAmount'], 'usdGained': 0.5}})

    async with serve(web.post('/api/trade/sell', sell)) as api:
        result = await api.sell('DOGE', 50.0)

    assert result == TradeResult(ok=True, token_amount=50.0, usd_amount=0.5)


@pytest.mark.asyncio
async def test_rejected_trade_keeps_server_error():
    async def buy(request):
        return web.json_response({'error': 'Insufficient balance'}, status=400)

    async with serve(web.post('/api/trade/buy', buy)) as api:
        result = await api.buy('DOGE', 1e9)

    assert result == TradeResult(ok=False, error='Insufficient balance')


@pytest.mark.asyncio
async def test_unreachable_server():
    app = web.Application()
    server = test_utils.TestServer(app)
    await server.start_server()
    url = str(server.make_url("/"))
    await server.close()

    async with MarketApiClient(url, timeout=2.0) as api:
        with pytest.raises(MarketApiError):
            await api.list_coins()
        result = await api.buy('DOGE', 1.0)

    assert result.ok is False
    assert result.error
