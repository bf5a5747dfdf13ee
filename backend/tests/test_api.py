import json
import httpx
from httpx import AsyncClient
from fastapi import status
from fastapi.testclient import TestClient
import pytest
from esave.config import settings
from esave.engine import Engine
from esave.main import create_app
from esave.models.savings import CalculatorConfig
from esave.services.clock import BlockClock
from esave.services.ledger import InMemoryLedger
from esave.services.oracle import HmacOracle, reading_payload

AUTH = {"X-Principal": "ST1TEST"}
METER = {"X-Principal": "ST9METER"}
ORACLE = HmacOracle("api-secret")

def _engine(height: int = 100) -> Engine:
    ledger = InMemoryLedger(issuers={".reward-distributor"})
    ledger.mint("ST1TEST", 1000)
    return Engine(
        authority="ST1TEST",
        clock=BlockClock(height),
        ledger=ledger,
        oracle=ORACLE,
        calculator_config=CalculatorConfig(oracle_contract="ST2ORACLE", registry_contract="ST3REG"),
    )

def _challenge(**overrides):
    payload = {
        "title": "Winter Saver",
        "description": "Cut usage by 15%",
        "start_block": 100,
        "end_block": 200,
        "reward_pool": 5000,
        "target_percentage": 1500,
    }
    payload.update(overrides)
    return payload

def _reading(participant: str, cid: int, kwh: int, seq: int = 0):
    sig = ORACLE.sign(reading_payload(participant, cid, kwh, seq)).hex()
    return {"participant": participant, "challenge_id": cid, "kwh_reading": kwh, "signature": sig}

def test_missing_principal_is_401():
    client = TestClient(create_app(_engine()))
    r = client.post("/challenges", json=_challenge())
    assert r.status_code == 401

def test_error_body_carries_code_and_kind():
    client = TestClient(create_app(_engine()))
    r = client.post("/challenges", headers={"X-Principal": "ST3FAKE"}, json=_challenge())
    assert r.status_code == status.HTTP_403_FORBIDDEN
    assert r.json()["detail"] == {"code": "NotAuthorized", "error": 100, "kind": "authorization"}

    r = client.post("/challenges", headers=AUTH, json=_challenge(title=""))
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "InvalidTitle"

def test_challenge_crud_and_membership():
    client = TestClient(create_app(_engine()))
    r = client.post("/challenges", headers=AUTH, json=_challenge())
    assert r.status_code == 201, r.text
    cid = r.json()["id"]

    r = client.post(f"/challenges/{cid}/join", headers={"X-Principal": "ST2USER"})
    assert r.status_code == 201
    assert r.json() == {"challenge_id": cid, "participant": "ST2USER", "joined_at": 100}

    r = client.post(f"/challenges/{cid}/join", headers={"X-Principal": "ST2USER"})
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "ParticipantAlreadyJoined"

    r = client.get(f"/challenges/{cid}", headers={"X-Principal": "ST2USER"})
    body = r.json()
    assert body["participant_count"] == 1
    assert body["is_participant"] is True
    assert body["runtime_state"] == "started"

    r = client.patch(f"/challenges/{cid}", headers=AUTH,
                     json={"title": "Renamed", "description": "d", "reward_pool": 1})
    assert r.status_code == 200 and r.json()["title"] == "Renamed"

    assert client.post(f"/challenges/{cid}/leave", headers={"X-Principal": "ST2USER"}).status_code == 204
    r = client.post(f"/challenges/{cid}/leave", headers={"X-Principal": "ST2USER"})
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "MembershipNotFound"

    assert client.get("/challenges/999", headers=AUTH).status_code == 404

def test_end_challenge_then_join_conflicts():
    client = TestClient(create_app(_engine()))
    cid = client.post("/challenges", headers=AUTH, json=_challenge()).json()["id"]
    assert client.post(f"/challenges/{cid}/end", headers=AUTH).status_code == 200
    r = client.post(f"/challenges/{cid}/join", headers={"X-Principal": "ST2USER"})
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "ChallengeNotActive"

def test_reading_with_bad_hex_or_signature():
    client = TestClient(create_app(_engine()))
    cid = client.post("/challenges", headers=AUTH, json=_challenge()).json()["id"]
    client.put("/savings/baselines", headers=AUTH,
               json={"participant": "ST2USER", "challenge_id": cid, "baseline_kwh": 1000})
    bad_hex = dict(_reading("ST2USER", cid, 800), signature="zz")
    assert client.post("/savings/readings", headers=METER, json=bad_hex).status_code == 422
    forged = dict(_reading("ST2USER", cid, 800), signature="00" * 32)
    r = client.post("/savings/readings", headers=METER, json=forged)
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "InvalidSignature"

def test_calculator_config_is_authority_only():
    client = TestClient(create_app(_engine()))
    r = client.put("/savings/config", headers=AUTH, json={"name": "update_fee", "value": 5})
    assert r.status_code == 200 and r.json()["update_fee"] == 5
    assert client.get("/savings/config").json()["update_fee"] == 5
    r = client.put("/savings/config", headers=METER, json={"name": "update_fee", "value": 1})
    assert r.status_code == 403
    assert client.put("/savings/config", headers=AUTH, json={"name": "nope", "value": 1}).status_code == 422

def test_clock_advance_moves_height():
    client = TestClient(create_app(_engine(height=7)))
    assert client.get("/clock").json() == {"height": 7}
    assert client.post("/clock/advance?blocks=3", headers=AUTH).json() == {"height": 10}

def test_clock_advance_refuses_anonymous_and_non_authority(monkeypatch):
    client = TestClient(create_app(_engine(height=100)))
    cid = client.post("/challenges", headers=AUTH, json=_challenge()).json()["id"]
    assert client.post("/clock/advance?blocks=1000").status_code == 401
    assert client.post("/clock/advance?blocks=1000", headers=METER).status_code == 403
    monkeypatch.setattr(settings, "environment", "staging")
    assert client.post("/clock/advance?blocks=1000", headers=AUTH).status_code == 403
    assert client.get("/clock").json() == {"height": 100}
    assert client.post(f"/challenges/{cid}/join", headers={"X-Principal": "ST2USER"}).status_code == 201

def test_reading_for_unencodable_participant_is_422():
    client = TestClient(create_app(_engine()))
    cid = client.post("/challenges", headers=AUTH, json=_challenge()).json()["id"]
    client.put("/savings/baselines", headers=AUTH,
               json={"participant": "ST2USER", "challenge_id": cid, "baseline_kwh": 1000})
    body = json.dumps({"participant": "\ud800", "challenge_id": cid, "kwh_reading": 500, "signature": "78"})
    r = client.post("/savings/readings", content=body, headers={**METER, "content-type": "application/json"})
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "InvalidInput"

def test_resent_reading_signature_is_refused():
    client = TestClient(create_app(_engine()))
    cid = client.post("/challenges", headers=AUTH, json=_challenge()).json()["id"]
    client.put("/savings/baselines", headers=AUTH,
               json={"participant": "ST2USER", "challenge_id": cid, "baseline_kwh": 1000})
    reading = _reading("ST2USER", cid, 400)
    assert client.post("/savings/readings", headers=METER, json=reading).status_code == 201
    for relay in ("ST5RELAY", "ST6RELAY"):
        r = client.post("/savings/readings", headers={"X-Principal": relay}, json=reading)
        assert r.status_code == 422
        assert r.json()["detail"]["code"] == "InvalidSignature"
    r = client.post("/savings/readings", headers=METER, json=_reading("ST2USER", cid, 300, seq=1))
    assert r.status_code == 201
    assert r.json()["period_total_kwh"] == 700

@pytest.mark.asyncio
async def test_full_reward_flow_over_http():
    app = create_app(_engine())
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        r = await ac.post("/challenges", headers=AUTH, json=_challenge())
        cid = r.json()["id"]
        for who, kwh in (("ST2USER", 800), ("ST3USER", 700)):
            assert (await ac.post(f"/challenges/{cid}/join", headers={"X-Principal": who})).status_code == 201
            r = await ac.put("/savings/baselines", headers=AUTH,
                             json={"participant": who, "challenge_id": cid, "baseline_kwh": 1000})
            assert r.status_code == 200, r.text
            r = await ac.post("/savings/readings", headers=METER, json=_reading(who, cid, kwh))
            assert r.status_code == 201, r.text
            assert r.json()["period_total_kwh"] == kwh
            r = await ac.put("/savings/eligibility", headers=AUTH,
                             json={"participant": who, "challenge_id": cid, "eligible": True})
            assert r.status_code == 200, r.text
            r = await ac.post(f"/savings/{cid}/participants/{who}/finalize", headers=METER)
            assert r.status_code == 200, r.text

        r = await ac.get(f"/savings/{cid}/participants/ST3USER/percentage")
        assert r.json() == {"savings_percentage": 3000}

        r = await ac.post(f"/rewards/{cid}/distribute", headers=AUTH)
        assert r.status_code == 404
        assert r.json()["detail"]["code"] == "ChallengeNotFound"

        r = await ac.post(f"/rewards/{cid}/fund", headers={"X-Principal": "ST7DONOR"}, json={"amount": 1000})
        assert r.status_code == 200 and r.json()["total_pool"] == 1000
        r = await ac.put(f"/rewards/{cid}/target", headers=AUTH, json={"target_percentage": 1500, "end_height": 150})
        assert r.status_code == 200

        r = await ac.post(f"/rewards/{cid}/distribute", headers=AUTH)
        assert r.status_code == 409
        assert r.json()["detail"]["code"] == "ChallengeNotEnded"

        await ac.post("/clock/advance?blocks=50", headers=AUTH)
        r = await ac.post(f"/rewards/{cid}/distribute", headers=AUTH)
        assert r.status_code == 200, r.text
        snap = r.json()
        assert snap["distributed"] is True
        assert [(x["participant"], x["amount"]) for x in snap["rewards"]] == [("ST3USER", 600), ("ST2USER", 400)]
        assert snap["dust"] == 0

        r = await ac.post(f"/rewards/{cid}/claim", headers={"X-Principal": "ST3USER"})
        assert r.json() == {"challenge_id": cid, "amount": 600}
        r = await ac.post(f"/rewards/{cid}/claim", headers={"X-Principal": "ST3USER"})
        assert r.status_code == 409
        assert r.json()["detail"]["code"] == "AlreadyDistributed"

        r = await ac.get(f"/rewards/{cid}/participants/ST3USER")
        assert r.json()["claimed"] is True
        assert app.state.engine.ledger.balance("ST3USER") == 600
