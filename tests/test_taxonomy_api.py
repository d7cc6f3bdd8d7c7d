import pytest


@pytest.mark.anyio
async def test_get_taxonomy(client):
    resp = await client.get("/v1/taxonomy")
    assert resp.status_code == 200
    data = resp.json()
    assert data["version"] == "3.0.0"
    assert data["defaultCategory"] == "subject"
    assert data["legacyAliases"]["cameraMove"] == "camera.movement"

    audio = next(category for category in data["categories"] if category["id"] == "audio")
    assert audio["attributes"] == ["audio.score", "audio.soundEffect", "audio.ambient"]
    assert audio["bg"].startswith("rgba(")


@pytest.mark.anyio
async def test_reload_taxonomy(client):
    resp = await client.post("/v1/taxonomy/reload")
    assert resp.status_code == 200
    assert resp.json()["categories"][0]["id"] == "shot"
