"""Integration tests for the REST contexts using respx."""

from __future__ import annotations

import json

import httpx
import pytest
import respx
from pydantic import BaseModel
from support import decode_signature, envelope, rest_url

import klbfw
from klbfw import (
    APIError,
    AsyncRestContext,
    Config,
    HTTPError,
    JSONError,
    LoginRequiredError,
    NoClientIdError,
    NoRefreshTokenError,
    RequestBuildError,
    RestContext,
    Time,
    Token,
)
from klbfw.apikey import canonical_request

EXPIRED = {
    "result": "error",
    "error": "Access token has expired",
    "token": "invalid_request_token",
    "extra": "token_expired",
}


class Greeting(BaseModel):
    text: str


class TestParamPlacement:
    @respx.mock
    def test_get_sends_compact_json_in_underscore(self, config: Config) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["_"] == '{"name":"a b","n":1}'
            assert request.headers["Sec-Rest-Http"] == "false"
            assert "Authorization" not in request.headers
            assert request.content == b""
            return httpx.Response(
                200, json=envelope("hello"), headers={"X-Request-Id": "req-1"}
            )

        respx.get(rest_url("Misc/Debug:fixedString")).mock(side_effect=handler)

        with RestContext(config) as ctx:
            env = ctx.do_request("Misc/Debug:fixedString", "GET", {"name": "a b", "n": 1})

        assert env.raw() == "hello"
        assert env.request_id == "req-1"

    @respx.mock
    def test_get_without_params_sends_empty_object(self, config: Config) -> None:
        route = respx.get(rest_url("Misc:ping")).mock(
            return_value=httpx.Response(200, json=envelope("pong"))
        )
        with RestContext(config) as ctx:
            ctx.do_request("Misc:ping", "GET")
        assert route.calls.last.request.url.params["_"] == "{}"

    @respx.mock
    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH"])
    def test_bodied_methods_send_json_body(self, config: Config, method: str) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == method
            assert request.content == b'{"Name":"Ada","Tags":["x"]}'
            assert request.headers["Content-Type"] == "application/json"
            assert "_" not in request.url.params
            return httpx.Response(200, json=envelope({"User__": "usr-1"}))

        respx.route(method=method, url=rest_url("User")).mock(side_effect=handler)

        with RestContext(config) as ctx:
            env = ctx.do_request("User", method, {"Name": "Ada", "Tags": ["x"]})
        assert env.get_string("User__") == "usr-1"

    @respx.mock
    def test_delete_carries_no_parameters(self, config: Config) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert not request.url.params
            assert request.content == b""
            return httpx.Response(200, json=envelope())

        respx.delete(rest_url("User/usr-1")).mock(side_effect=handler)

        with RestContext(config) as ctx:
            ctx.do_request("User/usr-1", "DELETE", {"ignored": True})

    @respx.mock
    def test_models_and_times_in_params(self, config: Config) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body["greeting"] == {"text": "hi"}
            assert body["at"]["unix"] == 1597242491
            assert body["at"]["full"] == "1597242491747497"
            return httpx.Response(200, json=envelope())

        respx.post(rest_url("Event")).mock(side_effect=handler)

        with RestContext(config) as ctx:
            ctx.do_request(
                "Event",
                "POST",
                {"greeting": Greeting(text="hi"), "at": Time.from_unix(1597242491, 747497)},
            )

    @respx.mock
    @pytest.mark.parametrize("method", ["get", "TRACE", "CONNECT", ""])
    def test_unknown_verbs_are_rejected_before_sending(self, config: Config, method) -> None:
        with RestContext(config) as ctx, pytest.raises(RequestBuildError):
            ctx.do_request("Misc:ping", method)

    @respx.mock
    def test_unserializable_params(self, config: Config) -> None:
        with RestContext(config) as ctx, pytest.raises(JSONError):
            ctx.do_request("Misc:ping", "POST", {"what": object()})


class TestAuthentication:
    @respx.mock
    def test_bearer_token(self, config: Config, token: Token) -> None:
        route = respx.get(rest_url("User:get")).mock(
            return_value=httpx.Response(200, json=envelope({"User__": "usr-1"}))
        )
        with RestContext(config, token=token) as ctx:
            ctx.do_request("User:get", "GET")
        assert route.calls.last.request.headers["Authorization"] == "Bearer access-1"

    @respx.mock
    @pytest.mark.parametrize("method", ["GET", "POST", "DELETE"])
    def test_api_key_signature(self, config: Config, api_key, token, public_key, method) -> None:
        route = respx.route(method=method, url=rest_url("Order:create")).mock(
            return_value=httpx.Response(200, json=envelope())
        )
        with RestContext(config, token=token, api_key=api_key) as ctx:
            ctx.do_request("Order:create", method, {"qty": 2})

        request = route.calls.last.request
        params = request.url.params
        assert "Authorization" not in request.headers
        assert params["_key"] == "key-test-1"
        assert params["_time"].isdigit()
        assert len(params["_nonce"]) == 36

        message = canonical_request(
            method, "Order:create", params.multi_items(), request.content
        )
        public_key.verify(decode_signature(params["_sign"]), message)

    @respx.mock
    def test_forks_share_transport_and_swap_credentials(self, config, token, api_key) -> None:
        route = respx.get(rest_url("Misc:ping")).mock(
            return_value=httpx.Response(200, json=envelope())
        )
        with RestContext(config) as ctx:
            ctx.with_token(token).do_request("Misc:ping", "GET")
            ctx.with_api_key(api_key).do_request("Misc:ping", "GET")
            ctx.do_request("Misc:ping", "GET")

        first, second, third = (call.request for call in route.calls)
        assert first.headers["Authorization"] == "Bearer access-1"
        assert "_sign" in second.url.params
        assert "Authorization" not in third.headers and "_sign" not in third.url.params

    @respx.mock
    def test_closing_a_fork_keeps_the_parent_usable(self, config: Config, token: Token) -> None:
        route = respx.get(rest_url("Misc:ping")).mock(
            return_value=httpx.Response(200, json=envelope())
        )
        with RestContext(config) as ctx:
            with ctx.with_token(token) as fork:
                fork.do_request("Misc:ping", "GET")
            ctx.do_request("Misc:ping", "GET")
            ctx.with_debug(False).close()
            ctx.do_request("Misc:ping", "GET")

        assert route.call_count == 3


class TestResponses:
    @respx.mock
    def test_api_error(self, config: Config) -> None:
        respx.get(rest_url("User:get")).mock(
            return_value=httpx.Response(
                404,
                json={"result": "error", "error": "User not found", "code": 404},
                headers={"X-Request-Id": "req-404"},
            )
        )
        with RestContext(config) as ctx, pytest.raises(APIError) as exc_info:
            ctx.do_request("User:get", "GET")

        err = exc_info.value
        assert err.message == "User not found"
        assert err.is_not_found()
        assert err.request_id == "req-404"
        assert err.response.code == 404

    @respx.mock
    def test_error_envelope_with_200_status(self, config: Config) -> None:
        respx.get(rest_url("User:get")).mock(
            return_value=httpx.Response(
                200, json={"result": "error", "error": "Forbidden", "code": 403}
            )
        )
        with RestContext(config) as ctx, pytest.raises(APIError) as exc_info:
            ctx.do_request("User:get", "GET")
        assert exc_info.value.is_permission_denied()

    @respx.mock
    def test_login_redirect(self, config: Config) -> None:
        respx.get(rest_url("User:get")).mock(
            return_value=httpx.Response(
                200,
                json={
                    "result": "redirect",
                    "exception": "Exception\\Login",
                    "redirect_url": "https://example.com/login",
                },
            )
        )
        with RestContext(config) as ctx, pytest.raises(LoginRequiredError) as exc_info:
            ctx.do_request("User:get", "GET")
        assert exc_info.value.response.redirect_url == "https://example.com/login"

    @respx.mock
    def test_other_redirect_is_an_api_error(self, config: Config) -> None:
        respx.get(rest_url("User:get")).mock(
            return_value=httpx.Response(
                200,
                json={"result": "redirect", "exception": "Exception\\Moved", "redirect_url": "x"},
            )
        )
        with RestContext(config) as ctx, pytest.raises(APIError):
            ctx.do_request("User:get", "GET")

    @respx.mock
    def test_non_json_server_error(self, config: Config) -> None:
        respx.get(rest_url("Misc:ping")).mock(
            return_value=httpx.Response(502, text="<html>Bad Gateway</html>")
        )
        with RestContext(config) as ctx, pytest.raises(HTTPError) as exc_info:
            ctx.do_request("Misc:ping", "GET")
        assert exc_info.value.status == 502
        assert exc_info.value.body == "<html>Bad Gateway</html>"

    @respx.mock
    def test_non_json_success_is_a_json_error(self, config: Config) -> None:
        respx.get(rest_url("Misc:ping")).mock(return_value=httpx.Response(200, text="pong"))
        with RestContext(config) as ctx, pytest.raises(JSONError):
            ctx.do_request("Misc:ping", "GET")

    @respx.mock
    def test_transport_failure(self, config: Config) -> None:
        respx.get(rest_url("Misc:ping")).mock(side_effect=httpx.ConnectError("refused"))
        with RestContext(config) as ctx, pytest.raises(HTTPError) as exc_info:
            ctx.do_request("Misc:ping", "GET")
        assert exc_info.value.status is None
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @respx.mock
    def test_apply_into_model(self, config: Config) -> None:
        respx.get(rest_url("Misc:hello")).mock(
            return_value=httpx.Response(200, json=envelope({"text": "hi"}))
        )
        with RestContext(config) as ctx:
            assert ctx.apply("Misc:hello", "GET", into=Greeting) == Greeting(text="hi")

    def test_unsupported_scheme(self, mock_env_clear) -> None:
        with RestContext(Config(scheme="ftp", host="example.com")) as ctx:
            with pytest.raises(RequestBuildError):
                ctx.do_request("Misc:ping", "GET")


class TestTokenRenewal:
    @respx.mock
    def test_refresh_then_retry(self, config: Config, token: Token) -> None:
        seen_tokens: list[str] = []

        def business(request: httpx.Request) -> httpx.Response:
            seen_tokens.append(request.headers["Authorization"])
            if len(seen_tokens) == 1:
                return httpx.Response(200, json=EXPIRED)
            return httpx.Response(200, json=envelope({"User__": "usr-1"}))

        def refresh(request: httpx.Request) -> httpx.Response:
            assert "Authorization" not in request.headers
            assert json.loads(request.content) == {
                "grant_type": "refresh_token",
                "client_id": "client-abc",
                "refresh_token": "refresh-1",
                "noraw": "true",
            }
            return httpx.Response(
                200,
                json=envelope(
                    {"access_token": "access-2", "refresh_token": "refresh-2", "expires_in": 60}
                ),
            )

        respx.get(rest_url("User:get")).mock(side_effect=business)
        refresh_route = respx.post(rest_url("OAuth2:token")).mock(side_effect=refresh)

        with RestContext(config, token=token) as ctx:
            env = ctx.do_request("User:get", "GET")

        assert env.get_string("User__") == "usr-1"
        assert seen_tokens == ["Bearer access-1", "Bearer access-2"]
        assert refresh_route.call_count == 1
        assert token.access_token == "access-2"
        assert token.refresh_token == "refresh-2"
        assert token.expires_in == 60
        assert token.client_id == "client-abc"

    @respx.mock
    def test_refresh_happens_at_most_once(self, config: Config, token: Token) -> None:
        business = respx.get(rest_url("User:get")).mock(
            return_value=httpx.Response(200, json=EXPIRED)
        )
        refresh = respx.post(rest_url("OAuth2:token")).mock(
            return_value=httpx.Response(
                200, json=envelope({"access_token": "access-2", "refresh_token": "refresh-2"})
            )
        )

        with RestContext(config, token=token) as ctx, pytest.raises(APIError):
            ctx.do_request("User:get", "GET")

        assert business.call_count == 2
        assert refresh.call_count == 1

    @respx.mock
    def test_no_client_id(self, config: Config) -> None:
        respx.get(rest_url("User:get")).mock(return_value=httpx.Response(200, json=EXPIRED))
        token = Token(access_token="a", refresh_token="r")
        with RestContext(config, token=token) as ctx, pytest.raises(NoClientIdError):
            ctx.do_request("User:get", "GET")

    @respx.mock
    def test_no_refresh_token(self, config: Config) -> None:
        respx.get(rest_url("User:get")).mock(return_value=httpx.Response(200, json=EXPIRED))
        token = Token(access_token="a", client_id="c")
        with RestContext(config, token=token) as ctx, pytest.raises(NoRefreshTokenError):
            ctx.do_request("User:get", "GET")

    @respx.mock
    def test_expired_envelope_without_token_is_an_api_error(self, config: Config) -> None:
        respx.get(rest_url("User:get")).mock(return_value=httpx.Response(200, json=EXPIRED))
        with RestContext(config) as ctx, pytest.raises(APIError):
            ctx.do_request("User:get", "GET")


@respx.mock
def test_debug_line(config: Config, capsys: pytest.CaptureFixture[str]) -> None:
    respx.get(rest_url("Misc:ping")).mock(return_value=httpx.Response(200, json=envelope()))
    with RestContext(config) as ctx:
        ctx.do_request("Misc:ping", "GET")
        assert capsys.readouterr().err == ""
        ctx.with_debug(True).do_request("Misc:ping", "GET")

    line = capsys.readouterr().err
    assert line.startswith("klbfw: GET Misc:ping => ")
    assert line.endswith("s (status: 200)\n")


@respx.mock
def test_module_level_helpers(config: Config) -> None:
    respx.get(rest_url("Misc:hello")).mock(
        return_value=httpx.Response(200, json=envelope({"text": "hi"}))
    )
    assert klbfw.do_request("Misc:hello", "GET", config=config).raw() == {"text": "hi"}
    assert klbfw.apply("Misc:hello", "GET", into=Greeting, config=config).text == "hi"


def test_caller_supplied_client_is_not_closed(config: Config) -> None:
    client = httpx.Client()
    with RestContext(config, client=client):
        pass
    assert not client.is_closed
    client.close()


class TestAsyncContext:
    @respx.mock
    @pytest.mark.asyncio
    async def test_get(self, config: Config) -> None:
        route = respx.get(rest_url("Misc/Debug:fixedString")).mock(
            return_value=httpx.Response(
                200, json=envelope("fixed"), headers={"X-Request-Id": "req-a"}
            )
        )
        async with AsyncRestContext(config) as ctx:
            env = await ctx.do_request("Misc/Debug:fixedString", "GET", {"a": 1})

        assert env.raw() == "fixed"
        assert env.request_id == "req-a"
        assert route.calls.last.request.url.params["_"] == '{"a":1}'

    @respx.mock
    @pytest.mark.asyncio
    async def test_refresh_then_retry(self, config: Config, token: Token) -> None:
        business = respx.get(rest_url("User:get")).mock(
            side_effect=[
                httpx.Response(200, json=EXPIRED),
                httpx.Response(200, json=envelope({"User__": "usr-1"})),
            ]
        )
        respx.post(rest_url("OAuth2:token")).mock(
            return_value=httpx.Response(
                200, json=envelope({"access_token": "access-2", "refresh_token": "refresh-2"})
            )
        )

        async with AsyncRestContext(config, token=token) as ctx:
            user = await ctx.apply("User:get", "GET", into=dict)

        assert user == {"User__": "usr-1"}
        assert business.calls.last.request.headers["Authorization"] == "Bearer access-2"
        assert token.access_token == "access-2"

    @respx.mock
    @pytest.mark.asyncio
    async def test_api_error(self, config: Config) -> None:
        respx.post(rest_url("User")).mock(
            return_value=httpx.Response(
                400, json={"result": "error", "error": "Bad name", "code": 400}
            )
        )
        async with AsyncRestContext(config) as ctx:
            with pytest.raises(APIError, match="Bad name"):
                await ctx.do_request("User", "POST", {"Name": ""})
