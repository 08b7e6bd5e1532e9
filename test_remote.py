"""
Remote GraphQL client, driven through httpx.MockTransport.

Tests verify:
1. submit_upload / query_upload_status map ssmCommandId / ssmCommandStatus
2. Transport failures, non-2xx and GraphQL errors surface as
   UploadInitiationError / StatusQueryError / RemoteApiError
3. list_events skips malformed rows; list_cars_online passes rows through
4. The api key travels as x-api-key
"""

import asyncio
import json

import httpx
import pytest

from timekeeper.errors import RemoteApiError, StatusQueryError, UploadInitiationError
from timekeeper.remote import RemoteApi


def make_api(handler, **kw):
    return RemoteApi("http://appsync.local/", transport=httpx.MockTransport(handler), **kw)


def run(coro):
    return asyncio.run(coro)


def test_submit_upload_returns_command_id():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen["path"] = request.url.path
        seen["variables"] = body["variables"]
        seen["api_key"] = request.headers.get("x-api-key")
        return httpx.Response(200, json={"data": {"uploadModelToCar": {
            "carInstanceId": "i-1", "modelKey": "m", "ssmCommandId": "cmd-42"}}})

    async def main():
        api = make_api(handler, api_key="secret")
        try:
            return await api.submit_upload("i-1", "private/m.tar.gz")
        finally:
            await api.stop()

    assert run(main()) == {"command_id": "cmd-42"}
    assert seen["path"] == "/graphql"
    assert seen["variables"] == {"entry": {"carInstanceId": "i-1", "modelKey": "private/m.tar.gz"}}
    assert seen["api_key"] == "secret"


def test_submit_upload_without_command_id_maps_to_none():
    def handler(request):
        return httpx.Response(200, json={"data": {"uploadModelToCar": None}})

    async def main():
        api = make_api(handler)
        try:
            return await api.submit_upload("i-1", "m")
        finally:
            await api.stop()

    assert run(main()) == {"command_id": None}


@pytest.mark.parametrize("status, payload", [
    (500, {"text": "boom"}),
    (200, {"json": {"errors": [{"message": "Unauthorized"}]}}),
    (200, {"text": "<html>not json</html>"}),
])
def test_submit_upload_failures_are_initiation_errors(status, payload):
    async def main():
        api = make_api(lambda request: httpx.Response(status, **payload))
        try:
            await api.submit_upload("i-1", "m")
        finally:
            await api.stop()

    with pytest.raises(UploadInitiationError):
        run(main())


def test_query_upload_status():
    def handler(request):
        variables = json.loads(request.content)["variables"]
        assert variables == {"carInstanceId": "i-1", "ssmCommandId": "cmd-42"}
        return httpx.Response(200, json={"data": {"getUploadModelToCarStatus": {
            "carInstanceId": "i-1", "ssmCommandId": "cmd-42", "ssmCommandStatus": "InProgress"}}})

    async def main():
        api = make_api(handler)
        try:
            return await api.query_upload_status("i-1", "cmd-42")
        finally:
            await api.stop()

    assert run(main()) == {"status": "InProgress"}


def test_query_upload_status_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def main():
        api = make_api(handler)
        try:
            await api.query_upload_status("i-1", "cmd-42")
        finally:
            await api.stop()

    with pytest.raises(StatusQueryError) as exc:
        run(main())
    assert "ConnectError" in str(exc.value)


def test_list_events_skips_bad_rows():
    rows = [
        {"eventId": "e1", "eventName": "Finals", "raceTimeInSec": 240, "numberOfResets": 3},
        {"eventId": "e2", "eventName": "Broken", "raceTimeInSec": "soon", "numberOfResets": 0},
        {"eventId": "e3", "eventName": "Zero", "raceTimeInSec": 0, "numberOfResets": 0},
        {"eventId": "e4", "eventName": "Qualifier", "raceTimeInSec": "120"},
    ]

    async def main():
        api = make_api(lambda request: httpx.Response(200, json={"data": {"getAllEvents": rows}}))
        try:
            return await api.list_events()
        finally:
            await api.stop()

    events = run(main())
    assert [e.event_id for e in events] == ["e1", "e4"]
    assert events[0].race_time_in_sec == 240 and events[0].number_of_resets == 3
    assert events[1].race_time_in_sec == 120 and events[1].number_of_resets == 0


def test_list_events_graphql_error():
    async def main():
        api = make_api(lambda request: httpx.Response(200, json={"errors": [{"message": "nope"}]}))
        try:
            await api.list_events()
        finally:
            await api.stop()

    with pytest.raises(RemoteApiError, match="nope"):
        run(main())


def test_list_cars_online():
    cars = [
        {"InstanceId": "mi-1", "ComputerName": "car-01", "IPAddress": "10.0.0.5",
         "AgentVersion": "3.2", "eventId": "e1", "eventName": "Finals"},
        "garbage",
    ]

    async def main():
        api = make_api(lambda request: httpx.Response(200, json={"data": {"carsOnline": cars}}))
        try:
            return await api.list_cars_online()
        finally:
            await api.stop()

    result = run(main())
    assert len(result) == 1
    assert result[0]["ComputerName"] == "car-01"
