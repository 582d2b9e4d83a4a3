import asyncio
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from bank.common import ServiceSettings, dispose_engines
from bank.payment_service.app.accounts import AccountErrorReason
from bank.payment_service.app.main import create_app

from conftest import ScriptedAccountService, make_card_number


def _run(coro):
    return asyncio.run(coro)


def _prepare_app(tmp_path, accounts: ScriptedAccountService | None = None) -> FastAPI:
    settings = ServiceSettings(
        app_name="Refund Service Test",
        enable_metrics=False,
        enable_tracing=False,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'refunds.db'}",
    )
    return create_app(settings, account_service=accounts or ScriptedAccountService())


async def _approved_payment(client: AsyncClient, amount: int = 1205) -> dict[str, Any]:
    response = await client.post("/payments", json={"amount": amount, "card_number": make_card_number()})
    assert response.status_code == 201
    payment = response.json()
    assert payment["status"] == "approved"
    return payment


def test_refund_valid_amount_and_read_it_back(tmp_path) -> None:
    app = _prepare_app(tmp_path)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                payment = await _approved_payment(client)

                created = await client.post(f"/payments/{payment['id']}/refunds", json={"amount": 42})
                assert created.status_code == 201
                refund = created.json()
                assert refund["amount"] == 42
                assert refund["payment_id"] == payment["id"]

                fetched = await client.get(f"/payments/{payment['id']}/refunds/{refund['id']}")
                assert fetched.status_code == 200
                assert fetched.json() == refund

    _run(body())
    _run(dispose_engines())


def test_partial_refunds_accumulate_up_to_the_payment_amount(tmp_path) -> None:
    app = _prepare_app(tmp_path)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                payment = await _approved_payment(client, amount=1000)
                uri = f"/payments/{payment['id']}/refunds"

                assert (await client.post(uri, json={"amount": 600})).status_code == 201
                assert (await client.post(uri, json={"amount": 400})).status_code == 201

                overflow = await client.post(uri, json={"amount": 1})
                assert overflow.status_code == 422
                assert overflow.json()["detail"] == "excessive refund amount requested"

                listing = await client.get(uri)
                assert listing.status_code == 200
                summary = listing.json()
                assert sorted(item["amount"] for item in summary["items"]) == [400, 600]
                assert summary["refunded_total"] == 1000
                assert summary["remaining"] == 0

    _run(body())
    _run(dispose_engines())


def test_reject_refund_larger_than_payment(tmp_path) -> None:
    app = _prepare_app(tmp_path)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                payment = await _approved_payment(client)
                response = await client.post(
                    f"/payments/{payment['id']}/refunds",
                    json={"amount": payment["amount"] + 1},
                )
                assert response.status_code == 422
                assert response.json()["detail"] == "excessive refund amount requested"

    _run(body())
    _run(dispose_engines())


def test_concurrent_full_refunds_only_one_succeeds(tmp_path) -> None:
    app = _prepare_app(tmp_path)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                payment = await _approved_payment(client, amount=1205)
                uri = f"/payments/{payment['id']}/refunds"

                first, second = await asyncio.gather(
                    client.post(uri, json={"amount": 1205}),
                    client.post(uri, json={"amount": 1205}),
                )
                assert sorted([first.status_code, second.status_code]) == [201, 422]
                accepted = first if first.status_code == 201 else second
                assert accepted.json()["amount"] == 1205

                listing = await client.get(uri)
                assert listing.json()["refunded_total"] == 1205

    _run(body())
    _run(dispose_engines())


def test_refunds_require_an_approved_payment(tmp_path) -> None:
    app = _prepare_app(tmp_path, ScriptedAccountService(hold_error=AccountErrorReason.INSUFFICIENT_FUNDS))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                declined = await client.post("/payments", json={"amount": 1205, "card_number": make_card_number()})
                assert declined.status_code == 402
                payment_id = declined.json()["id"]

                not_approved = await client.post(f"/payments/{payment_id}/refunds", json={"amount": 10})
                assert not_approved.status_code == 404
                assert not_approved.json()["detail"] == "has a status other than approved"

                missing = await client.post(
                    "/payments/0b8f3f4e-0a53-4c5e-9e41-8b1c3cb1a6d2/refunds",
                    json={"amount": 10},
                )
                assert missing.status_code == 404
                assert missing.json()["detail"] == "payment doesn't exist"

    _run(body())
    _run(dispose_engines())


def test_refund_lookup_is_scoped_to_its_payment(tmp_path) -> None:
    app = _prepare_app(tmp_path)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                payment = await _approved_payment(client)
                other = await _approved_payment(client)
                created = await client.post(f"/payments/{payment['id']}/refunds", json={"amount": 5})
                refund_id = created.json()["id"]

                wrong_payment = await client.get(f"/payments/{other['id']}/refunds/{refund_id}")
                assert wrong_payment.status_code == 404

                unknown = await client.get(
                    f"/payments/{payment['id']}/refunds/2d0a2c43-9f6c-4a3e-8f0e-6c2c1f0d9b7e"
                )
                assert unknown.status_code == 404

    _run(body())
    _run(dispose_engines())


def test_non_positive_refund_amounts_are_invalid(tmp_path) -> None:
    app = _prepare_app(tmp_path)

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                payment = await _approved_payment(client)
                for amount in (0, -5):
                    response = await client.post(f"/payments/{payment['id']}/refunds", json={"amount": amount})
                    assert response.status_code == 422

    _run(body())
    _run(dispose_engines())


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield
