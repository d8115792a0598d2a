import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from pydantic import ValidationError

from vinscan.config import settings
from vinscan.models import MakeModelPrefill
from vinscan.prefill import (
    PrefillSequencer,
    fetch_make_model,
    prefill_make_model_from_vin,
)


@pytest.mark.asyncio
async def test_prefill_happy_path(mock_http_client, vpic_response):
    mock_http_client.get.return_value = vpic_response(
        {"Results": [{"Make": "FORD", "Model": "FOCUS ST"}]}
    )

    with patch("vinscan.prefill.http_client", mock_http_client):
        result = await prefill_make_model_from_vin("1fahp3f20cl123456")

    mock_http_client.get.assert_called_with(
        "https://vpic.nhtsa.dot.gov/api/vehicles/DecodeVinValues/1FAHP3F20CL123456?format=json"
    )
    assert result == MakeModelPrefill(make="Ford", model="Focus St", source="remote")


@pytest.mark.asyncio
async def test_prefill_partial_vin_skips_network(mock_http_client):
    with patch("vinscan.prefill.http_client", mock_http_client):
        result = await prefill_make_model_from_vin("1FAHP3F2")

    mock_http_client.get.assert_not_called()
    assert result == MakeModelPrefill(make="Ford", model="", source="local")


@pytest.mark.asyncio
async def test_prefill_unknown_wmi_partial_vin(mock_http_client):
    with patch("vinscan.prefill.http_client", mock_http_client):
        result = await prefill_make_model_from_vin("WBA")

    mock_http_client.get.assert_not_called()
    assert result.make == "Unknown"
    assert result.model == ""


@pytest.mark.asyncio
async def test_prefill_non_200_falls_back(mock_http_client, vpic_response):
    mock_http_client.get.return_value = vpic_response({"Results": []}, status_code=503)

    with patch("vinscan.prefill.http_client", mock_http_client):
        result = await prefill_make_model_from_vin("2HGFB2F50CH123456")

    assert result == MakeModelPrefill(make="Honda", model="", source="local")


@pytest.mark.asyncio
async def test_prefill_network_error_falls_back(mock_http_client):
    mock_http_client.get.side_effect = httpx.ConnectError("connection refused")

    with patch("vinscan.prefill.http_client", mock_http_client):
        result = await prefill_make_model_from_vin("2HGFB2F50CH123456")

    assert result == MakeModelPrefill(make="Honda", model="", source="local")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        RuntimeError("Cannot send a request, as the client has been closed."),
        httpx.InvalidURL("Invalid URL"),
    ],
)
async def test_prefill_unexpected_client_error_falls_back(mock_http_client, error):
    mock_http_client.get.side_effect = error

    with patch("vinscan.prefill.http_client", mock_http_client):
        result = await prefill_make_model_from_vin("1FAHP3F20CL123456")

    assert result == MakeModelPrefill(make="Ford", model="", source="local")


@pytest.mark.asyncio
async def test_prefill_timeout_falls_back(mock_http_client, monkeypatch):
    async def slow_get(url):
        await asyncio.sleep(1)

    mock_http_client.get = slow_get
    monkeypatch.setattr(settings, "prefill_timeout_seconds", 0.01)

    with patch("vinscan.prefill.http_client", mock_http_client):
        result = await prefill_make_model_from_vin("1FAHP3F20CL123456")

    assert result == MakeModelPrefill(make="Ford", model="", source="local")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"Results": []},
        {"Results": [{"Make": "", "Model": "FOCUS"}]},
        {"Results": [{"Model": "FOCUS"}]},
        {"Results": {"Make": "FORD"}},
        {"Message": "no results"},
        ["unexpected"],
    ],
)
async def test_fetch_make_model_malformed_payload(mock_http_client, vpic_response, payload):
    mock_http_client.get.return_value = vpic_response(payload)

    with patch("vinscan.prefill.http_client", mock_http_client):
        assert await fetch_make_model("1FAHP3F20CL123456") is None


@pytest.mark.asyncio
async def test_fetch_make_model_invalid_json(mock_http_client, vpic_response):
    response = vpic_response()
    response.json.side_effect = ValueError("Expecting value")
    mock_http_client.get.return_value = response

    with patch("vinscan.prefill.http_client", mock_http_client):
        assert await fetch_make_model("1FAHP3F20CL123456") is None


@pytest.mark.asyncio
async def test_prefill_remote_without_model(mock_http_client, vpic_response):
    mock_http_client.get.return_value = vpic_response(
        {"Results": [{"Make": "MAZDA", "Model": None}]}
    )

    with patch("vinscan.prefill.http_client", mock_http_client):
        result = await prefill_make_model_from_vin("JM1BL1SF5A1123456")

    assert result == MakeModelPrefill(make="Mazda", model="", source="remote")


@pytest.mark.asyncio
async def test_sequencer_skips_short_and_repeated_vins():
    prefill = AsyncMock(return_value=MakeModelPrefill(make="Ford", model=""))
    sequencer = PrefillSequencer(prefill=prefill)

    assert await sequencer.request("1F") is None
    first = await sequencer.request("1fa hp3")
    second = await sequencer.request("1FAHP3")

    assert first.make == "Ford"
    assert second is None
    prefill.assert_awaited_once_with("1FAHP3")


@pytest.mark.asyncio
async def test_sequencer_drops_stale_result():
    release_first = asyncio.Event()

    async def fake_prefill(vin):
        if vin == "1FAHP3F20CL123456":
            await release_first.wait()
            return MakeModelPrefill(make="Ford", model="Focus", source="remote")
        return MakeModelPrefill(make="Honda", model="", source="local")

    sequencer = PrefillSequencer(prefill=fake_prefill)
    first = asyncio.create_task(sequencer.request("1FAHP3F20CL123456"))
    await asyncio.sleep(0)

    second = await sequencer.request("2HGFB2F50CH123456")
    release_first.set()

    assert await first is None
    assert second.make == "Honda"
    assert sequencer.current_seq == 2


@pytest.mark.asyncio
async def test_sequencer_reset_marks_vin_as_prefilled():
    prefill = AsyncMock(return_value=MakeModelPrefill(make="Ford", model=""))
    sequencer = PrefillSequencer(prefill=prefill)

    sequencer.reset("1FAHP3F20CL123456")

    assert await sequencer.request("1FAHP3F20CL123456") is None
    prefill.assert_not_awaited()


def test_prefill_source_is_remote_or_local():
    assert MakeModelPrefill(make="Ford", model="").source == "local"
    with pytest.raises(ValidationError):
        MakeModelPrefill(make="Ford", model="", source="cache")
