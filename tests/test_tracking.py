"""Public page-view tracking."""

import pytest
from sqlalchemy import select

from raceup_api.db.session import async_session_maker
from raceup_api.models.page_view import PageView


@pytest.mark.asyncio
async def test_pageview_recorded_with_request_metadata(client):
    r = await client.post(
        "/api/track/pageview",
        json={"path": "/races/berlin", "referrer": "https://google.com"},
        headers={"User-Agent": "Mozilla/5.0 test", "CF-IPCountry": "de"},
    )
    assert r.status_code == 201
    assert r.json() == {"ok": True}

    async with async_session_maker() as session:
        views = (await session.execute(select(PageView))).scalars().all()
    assert len(views) == 1
    view = views[0]
    assert view.path == "/races/berlin"
    assert view.referrer == "https://google.com"
    assert view.user_agent == "Mozilla/5.0 test"
    assert view.country == "DE"


@pytest.mark.asyncio
async def test_pageview_needs_no_auth_and_optional_fields(client):
    r = await client.post("/api/track/pageview", json={"path": "/"})
    assert r.status_code == 201


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{}, {"path": ""}, {"path": "x" * 501}])
async def test_pageview_validation(client, body):
    r = await client.post("/api/track/pageview", json=body)
    assert r.status_code == 422
