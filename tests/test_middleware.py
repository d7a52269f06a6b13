import logging

import pytest
from starlette.applications import Starlette
from starlette.responses import PlainTextResponse, Response
from starlette.routing import Route, request_response
from starlette.testclient import TestClient

from garbanzo import session
from garbanzo.config import load_config
from garbanzo.middleware import CONTEXT_KEY, AuthIDMiddleware, RequestLoggerMiddleware
from garbanzo.requestctx import get_auth_id

session.setup_session_store(load_config({"SESSION_SECRET": "secret"}))


async def whoami(request):
    return PlainTextResponse(get_auth_id(request.scope.get(CONTEXT_KEY, {})) or "")


async def login_as(request):
    sess = session.get_session(request)
    sess.values["authID"] = request.query_params["authID"]
    response = Response("ok")
    session.get_session_store().save(response, sess)
    return response


@pytest.fixture
def client():
    app = Starlette(
        routes=[
            Route("/_login", login_as),
            Route("/me", AuthIDMiddleware(request_response(whoami))),
            Route("/x", whoami),
        ]
    )
    return TestClient(RequestLoggerMiddleware(app), follow_redirects=False)


def test_missing_identity_redirects_to_login(client):
    response = client.get("/me")
    assert response.status_code == 307
    assert response.headers["location"] == "/login"


def test_identity_is_put_in_context(client):
    client.get("/_login", params={"authID": "a-42"})
    assert client.get("/me").text == "a-42"


def test_logger_records_request(client, caplog):
    with caplog.at_level(logging.INFO, logger="garbanzo.middleware"):
        client.get("/x", params={"a": "1"})
    info = caplog.records[-1].request_info
    assert info["method"] == "GET"
    assert info["path"] == "/x?a=1"
    assert info["status"] == 200
    assert info["bytes"] == 0
    assert info["duration_ms"] >= 0