import time

import jwt
import pytest
from flask import Flask, jsonify

from dataprovider.auth import AuthService, JWTClaims
from dataprovider.config import Settings


def make_settings(**overrides):
    return Settings(**overrides)


def guarded_server(settings):
    svc = AuthService(settings=settings)
    server = Flask(__name__)
    svc.init_app(server)

    @server.route("/whoami")
    def whoami():
        return jsonify(svc.current_meta().model_dump())

    @server.route("/health")
    def health():
        return {"status": "ok"}

    return server


def test_default_claims_used_when_disabled():
    svc = AuthService(settings=make_settings(disable_auth=True, jwt_secret="s", dev_tenant_id="dev"))
    claims = svc.current_claims()
    assert claims["sub"] == "devuser@example.com"
    assert claims["tenant_id"] == "dev"
    assert "exp" in claims


def test_decode_valid_token_and_meta():
    s = make_settings(jwt_secret="secret", disable_auth=False)
    svc = AuthService(settings=s)
    payload = {"sub": "ana@corp", "name": "Ana", "tenant_id": 42, "exp": int(time.time()) + 60}
    tok = jwt.encode(payload, s.jwt_secret, algorithm="HS256")
    model = JWTClaims.model_validate(svc._decode_jwt(tok))
    assert model.tenant_id == 42
    assert model.sub == "ana@corp"


def test_decode_invalid_token_raises():
    svc = AuthService(settings=make_settings(jwt_secret="secret"))
    with pytest.raises(jwt.PyJWTError):
        svc._decode_jwt("not-a-token")


def test_guard_rejects_missing_and_bad_tokens():
    client = guarded_server(make_settings(jwt_secret="secret", disable_auth=False)).test_client()
    assert client.get("/whoami").status_code == 401
    assert client.get("/whoami", headers={"Authorization": "Bearer nope"}).status_code == 401
    assert client.get("/health").status_code == 200


def test_guard_sets_request_meta_from_token():
    s = make_settings(jwt_secret="secret", disable_auth=False)
    client = guarded_server(s).test_client()
    tok = jwt.encode({"sub": "u9", "tenant_id": "t9", "exp": int(time.time()) + 60}, "secret", algorithm="HS256")

    rv = client.get("/whoami", headers={"Authorization": f"Bearer {tok}"})
    assert rv.status_code == 200
    assert rv.get_json() == {"tenant_id": "t9", "user_id": "u9"}


def test_expired_token_is_rejected():
    client = guarded_server(make_settings(jwt_secret="secret", disable_auth=False)).test_client()
    tok = jwt.encode({"sub": "u9", "exp": int(time.time()) - 10}, "secret", algorithm="HS256")
    assert client.get("/whoami", headers={"Authorization": f"Bearer {tok}"}).status_code == 401
