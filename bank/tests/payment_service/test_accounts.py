import asyncio
import json

import httpx
import pytest

from bank.payment_service.app.accounts import (
    AccountErrorReason,
    AccountServiceError,
    DummyAccountService,
    Hold,
    HttpAccountService,
)


def _run(coro):
    return asyncio.run(coro)


def _http_service(handler) -> HttpAccountService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://accounts.test")
    return HttpAccountService(client)


@pytest.mark.parametrize(
    ("code", "reason"),
    [
        ("invalid_account_number", AccountErrorReason.INVALID_ACCOUNT_NUMBER),
        ("INSUFFICIENT_FUNDS", AccountErrorReason.INSUFFICIENT_FUNDS),
        (" invalid_amount ", AccountErrorReason.INVALID_AMOUNT),
        ("service_unavailable", AccountErrorReason.SERVICE_UNAVAILABLE),
        ("card_stolen", AccountErrorReason.UNKNOWN),
        (42, AccountErrorReason.UNKNOWN),
    ],
)
def test_error_codes_map_onto_known_reasons(code, reason: AccountErrorReason) -> None:
    assert AccountErrorReason.from_code(code) is reason


def test_hold_is_opaque() -> None:
    hold = Hold("abc-123")
    assert "abc-123" not in repr(hold)
    assert hold == Hold("abc-123")
    assert hold != Hold("other")
    assert len({hold, Hold("abc-123")}) == 1


class TestDummyAccountService:
    @pytest.mark.parametrize(
        ("account_number", "amount", "reason"),
        [
            (DummyAccountService.INVALID_ACCOUNT_NUMBER, 10, AccountErrorReason.INVALID_ACCOUNT_NUMBER),
            (DummyAccountService.UNAVAILABLE_ACCOUNT_NUMBER, 10, AccountErrorReason.SERVICE_UNAVAILABLE),
            ("12", -1, AccountErrorReason.INVALID_AMOUNT),
            ("12", DummyAccountService.MAX_VALID_AMOUNT + 1, AccountErrorReason.INSUFFICIENT_FUNDS),
        ],
    )
    def test_sentinels_fail_place_hold(self, account_number: str, amount: int, reason: AccountErrorReason) -> None:
        service = DummyAccountService()
        with pytest.raises(AccountServiceError) as excinfo:
            _run(service.place_hold(account_number, amount))
        assert excinfo.value.reason is reason
        assert service.outstanding_holds == 0

    def test_each_hold_resolves_exactly_once(self) -> None:
        service = DummyAccountService()

        async def body() -> None:
            withdrawn = await service.place_hold("12", DummyAccountService.MAX_VALID_AMOUNT)
            released = await service.place_hold("12", 1)
            assert service.outstanding_holds == 2

            await service.withdraw_funds(withdrawn)
            await service.release_hold(released)
            assert service.outstanding_holds == 0

            with pytest.raises(AccountServiceError) as excinfo:
                await service.release_hold(withdrawn)
            assert excinfo.value.reason is AccountErrorReason.UNKNOWN
            with pytest.raises(AccountServiceError):
                await service.withdraw_funds(released)

        _run(body())

    def test_unknown_hold_cannot_be_withdrawn(self) -> None:
        with pytest.raises(AccountServiceError) as excinfo:
            _run(DummyAccountService().withdraw_funds(Hold("never-placed")))
        assert excinfo.value.reason is AccountErrorReason.UNKNOWN


class TestHttpAccountService:
    def test_hold_then_withdraw(self) -> None:
        requests: list[tuple[str, str, object]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content) if request.content else None
            requests.append((request.method, request.url.path, body))
            if request.url.path == "/accounts/42/holds":
                return httpx.Response(201, json={"id": "hold-7"})
            return httpx.Response(204)

        async def body() -> None:
            service = _http_service(handler)
            hold = await service.place_hold("42", 1205)
            await service.withdraw_funds(hold)
            await service.close()

        _run(body())
        assert requests == [
            ("POST", "/accounts/42/holds", {"amount": 1205}),
            ("POST", "/holds/hold-7/withdraw", None),
        ]

    def test_release_targets_the_hold(self) -> None:
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json={"status": "released"})

        async def body() -> None:
            service = _http_service(handler)
            await service.release_hold(Hold("hold-9"))
            await service.close()

        _run(body())
        assert paths == ["/holds/hold-9/release"]

    @pytest.mark.parametrize(
        ("response", "reason"),
        [
            (httpx.Response(403, json={"error": "invalid_account_number"}), AccountErrorReason.INVALID_ACCOUNT_NUMBER),
            (httpx.Response(402, json={"error": "insufficient_funds"}), AccountErrorReason.INSUFFICIENT_FUNDS),
            (httpx.Response(400, json={"error": "invalid_amount"}), AccountErrorReason.INVALID_AMOUNT),
            (httpx.Response(409, json={"error": "frozen_account"}), AccountErrorReason.UNKNOWN),
            (httpx.Response(503, text="maintenance"), AccountErrorReason.SERVICE_UNAVAILABLE),
            (httpx.Response(500), AccountErrorReason.UNKNOWN),
            (httpx.Response(201, json={"status": "held"}), AccountErrorReason.UNKNOWN),
            (httpx.Response(201, text="not json"), AccountErrorReason.UNKNOWN),
        ],
    )
    def test_failures_are_classified(self, response: httpx.Response, reason: AccountErrorReason) -> None:
        async def body() -> None:
            service = _http_service(lambda request: response)
            try:
                with pytest.raises(AccountServiceError) as excinfo:
                    await service.place_hold("42", 10)
                assert excinfo.value.reason is reason
            finally:
                await service.close()

        _run(body())

    def test_transport_errors_mean_service_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async def body() -> None:
            service = _http_service(handler)
            try:
                with pytest.raises(AccountServiceError) as excinfo:
                    await service.withdraw_funds(Hold("hold-1"))
                assert excinfo.value.reason is AccountErrorReason.SERVICE_UNAVAILABLE
            finally:
                await service.close()

        _run(body())

    def test_undecodable_body_is_unknown(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"not gzip")

        async def body() -> None:
            service = _http_service(handler)
            try:
                with pytest.raises(AccountServiceError) as excinfo:
                    await service.withdraw_funds(Hold("hold-1"))
                assert excinfo.value.reason is AccountErrorReason.UNKNOWN
                assert isinstance(excinfo.value.__cause__, httpx.DecodingError)
            finally:
                await service.close()

        _run(body())
