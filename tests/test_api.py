"""HTTP surface tests through FastAPI's TestClient."""

import asyncio
from datetime import date

from fastapi.testclient import TestClient

from silkspark.ai.backends import BackendResult
from silkspark.ai.config import AIConfig
from silkspark.ai.errors import BackendError, BackendRateLimited
from silkspark.ai.gateway import AIGateway
from silkspark.draw import resolve_selection, spread_seed, start_daily_draw
from silkspark.main import create_app

TAROT_PAYLOAD = {"cards": [{"id": "m17", "name": "The Star"}], "question": "What should I focus on?"}

BIRTH_CHART_PAYLOAD = {
    "name": "Ada",
    "birth_date": "1990-05-01",
    "planets": {
        "Sun": "Taurus",
        "Moon": "Pisces",
        "Mercury": "Aries",
        "Venus": "Gemini",
        "Mars": "Aquarius",
        "Jupiter": "Cancer",
        "Saturn": "Capricorn",
    },
    "elements": {"Wood": 20, "Fire": 15, "Earth": 30, "Metal": 10, "Water": 25},
}


class StubBackend:
    name = "stub"

    def __init__(self, text='{"coreMessage": "Hope returns", "interpretation": "The Star renews you."}', error=None):
        self.text = text
        self.error = error
        self.calls = 0

    async def generate(self, request):
        self.calls += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return BackendResult(text=self.text, provider=self.name, model="stub-1")


def make_client(backend=None, **config):
    backends = {"primary": backend} if backend is not None else {}
    gateway = AIGateway(AIConfig(backend_mode="primary", **config), backends=backends)
    return TestClient(create_app(gateway=gateway))


def test_health():
    """The health probe answers ok."""
    assert make_client().get("/health").json() == {"ok": True}


class TestDrawRoutes:
    def test_daily_flow(self):
        """A daily session reveals the same card the engine resolves, then closes."""
        client = make_client()
        r = client.post("/draw/daily", json={"user_id": "u1", "on": "2024-01-15"})
        assert r.status_code == 200
        session = r.json()
        expected = start_daily_draw("u1", date(2024, 1, 15))
        assert session["display_deck"] == list(expected.display_deck)
        assert session["selections_required"] == 1

        r = client.post(f"/draw/{session['session_id']}/select", json={"display_index": 3})
        assert r.status_code == 200
        body = r.json()
        draw = resolve_selection(expected.seed, 3, 7, "single")
        assert body["draw"]["card"]["id"] == draw.card.id
        assert body["draw"]["is_reversed"] == draw.is_reversed
        assert body["draw"]["card"]["image"].startswith("/cards/")
        assert body["remaining"] == 0

        r = client.post(f"/draw/{session['session_id']}/select", json={"display_index": 4})
        assert r.status_code == 404

    def test_spread_flow(self):
        """A spread assigns positions by pick order and rejects repeats and out-of-range slots."""
        client = make_client()
        session = client.post("/draw/spread", json={"user_id": "u1", "nonce": "abc"}).json()
        assert len(session["display_deck"]) == 9
        assert session["seed"] == spread_seed("u1", "abc")

        url = f"/draw/{session['session_id']}/select"
        first = client.post(url, json={"display_index": 8}).json()
        assert first["draw"]["position"] == "past"
        assert first["remaining"] == 2

        r = client.post(url, json={"display_index": 8})
        assert r.status_code == 400

        r = client.post(url, json={"display_index": 9})
        assert r.status_code == 400

        assert client.post(url, json={"display_index": 0}).json()["draw"]["position"] == "present"
        last = client.post(url, json={"display_index": 1}).json()
        assert last["draw"]["position"] == "future"
        assert last["remaining"] == 0

    def test_negative_index_is_rejected_by_schema(self):
        """Negative indices fail request validation."""
        client = make_client()
        session = client.post("/draw/daily", json={"user_id": "u1"}).json()
        r = client.post(f"/draw/{session['session_id']}/select", json={"display_index": -1})
        assert r.status_code == 422

    def test_stateless_spread_resolve(self):
        """A spread replays from its seed alone; bad seeds and duplicates are 400s."""
        client = make_client()
        seed = spread_seed("u1", "abc")
        r = client.post("/draw/spread/resolve", json={"seed": seed, "display_indices": [2, 0, 1]})
        assert r.status_code == 200
        draws = r.json()["draws"]
        assert [d["position"] for d in draws] == ["past", "present", "future"]
        assert draws[0]["card"]["id"] == resolve_selection(seed, 2).card.id

        r = client.post("/draw/spread/resolve", json={"seed": "not-a-seed", "display_indices": [0, 1, 2]})
        assert r.status_code == 400

        r = client.post("/draw/spread/resolve", json={"seed": seed, "display_indices": [1, 1, 2]})
        assert r.status_code == 400

    def test_stateless_resolve_stays_in_spread_deck(self):
        """Replay defaults to the nine-card display deck unless told otherwise."""
        client = make_client()
        seed = spread_seed("u1", "abc")
        r = client.post("/draw/spread/resolve", json={"seed": seed, "display_indices": [0, 1, 9]})
        assert r.status_code == 400
        r = client.post("/draw/spread/resolve", json={"seed": seed, "display_indices": [0, 1, 8]})
        assert r.status_code == 200
        r = client.post(
            "/draw/spread/resolve", json={"seed": seed, "display_indices": [0, 1, 20], "display_count": 78}
        )
        assert r.status_code == 200


class TestAIRoutes:
    def test_tarot_reading(self):
        """A tarot reading returns parsed fields and is cached for the repeat call."""
        client = make_client(StubBackend())
        r = client.post("/ai/tarot", json={"user_id": "u1", "payload": TAROT_PAYLOAD})
        assert r.status_code == 200
        body = r.json()
        assert body["text"] == "The Star renews you."
        assert body["structured_fields"]["coreMessage"] == "Hope returns"
        assert body["meta"]["is_fallback"] is False

        again = client.post("/ai/tarot", json={"user_id": "u1", "payload": TAROT_PAYLOAD}).json()
        assert again["meta"]["cached"] is True

    def test_invalid_payload(self):
        """Bad payloads and unknown kinds map to 400 INVALID_REQUEST."""
        client = make_client(StubBackend())
        r = client.post("/ai/tarot", json={"payload": {"cards": []}})
        assert r.status_code == 400
        assert r.json()["errorCode"] == "INVALID_REQUEST"

        assert client.post("/ai/horoscope", json={"payload": {}}).status_code == 400

    def test_rate_limited(self):
        """A provider rate limit maps to 429 with Retry-After."""
        client = make_client(StubBackend(error=BackendRateLimited()))
        r = client.post("/ai/tarot", json={"user_id": "u1", "payload": TAROT_PAYLOAD})
        assert r.status_code == 429
        assert r.json()["errorCode"] == "RATE_LIMIT_EXCEEDED"
        assert int(r.headers["Retry-After"]) > 0

    def test_daily_quota(self):
        """The user's second request past a limit of one is refused."""
        client = make_client(StubBackend(text="Glow."), daily_limit=1)
        assert client.post("/ai/daily_spark", json={"user_id": "u1", "payload": {"sign": "Leo"}}).status_code == 200
        r = client.post("/ai/daily_spark", json={"user_id": "u1", "payload": {"sign": "Aries"}})
        assert r.status_code == 429

    def test_provider_outage_still_answers(self):
        """A provider outage still answers 200 with canned copy."""
        client = make_client(StubBackend(error=BackendError("down")))
        r = client.post("/ai/daily_spark", json={"payload": {"sign": "Leo"}})
        assert r.status_code == 200
        assert r.json()["meta"]["is_fallback"] is True

    def test_birth_chart_report_and_cache_clear(self):
        """The birth-chart report is readable until the cache is cleared."""
        backend = StubBackend(text="**Core Essence**: Grounded and bright.")
        client = make_client(backend)

        assert client.get("/ai/report/u1").status_code == 404
        r = client.post("/ai/birth_chart", json={"user_id": "u1", "payload": BIRTH_CHART_PAYLOAD})
        assert r.status_code == 200
        assert r.json()["structured_fields"]["insights"]["sun_traits"] == "Grounded and bright."

        report = client.get("/ai/report/u1")
        assert report.status_code == 200
        assert report.json()["text"] == r.json()["text"]

        assert client.delete("/ai/cache").json() == {"ok": True}
        assert client.get("/ai/report/u1").status_code == 404
        client.post("/ai/birth_chart", json={"user_id": "u1", "payload": BIRTH_CHART_PAYLOAD})
        assert backend.calls == 2


def test_recommendations():
    """Recommendations rank products by tag matches."""
    client = make_client()
    r = client.post("/recommendations", json={"text": "Protect your heart and find love.", "limit": 1})
    assert r.status_code == 200
    assert [p["id"] for p in r.json()["products"]] == ["p2"]
