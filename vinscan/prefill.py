import asyncio
import logging
from typing import Awaitable, Callable, Optional

import httpx

from .config import settings
from .models import MakeModelPrefill
from .ocr import VIN_LENGTH, normalize_vin, normalize_vin_light
from .vin import detect_likely_make_from_vin


http_client = httpx.AsyncClient()
logger = logging.getLogger(__name__)


def _title_case(value: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in value.split())


async def fetch_make_model(vin: str) -> Optional[dict]:
    """
    Ask the vPIC API for the make and model of a full VIN.

    Args:
        vin (str): A normalized 17-character VIN.

    Returns:
        dict: The first vPIC result, holding at least a non-empty 'Make'.
        None: On timeout, network error, non-200 status or an unusable payload.
    """
    vpic_url = f"{settings.vpic_base_url}/DecodeVinValues/{vin}?format=json"
    try:
        # the whole round trip is bounded, not only each socket operation
        response = await asyncio.wait_for(
            http_client.get(vpic_url), timeout=settings.prefill_timeout_seconds
        )
        if response.status_code != 200:
            logger.warning(
                f"vPIC returned status {response.status_code} for VIN: {vin}"
            )
            return None
        results = response.json().get("Results") or []
        first = results[0] if results else {}
        if not isinstance(first, dict) or not str(first.get("Make") or "").strip():
            logger.warning(f"vPIC returned no make for VIN: {vin}")
            return None
        return first
    except asyncio.TimeoutError:
        logger.warning(
            f"vPIC lookup timed out after {settings.prefill_timeout_seconds}s "
            f"for VIN: {vin}"
        )
    except (httpx.HTTPError, ValueError, AttributeError, KeyError, TypeError) as e:
        logger.warning(f"vPIC lookup failed for VIN: {vin} ({e!r})")
    except Exception:
        # closed client, bad base URL: the prefill still falls back to the local make
        logger.exception(f"Unexpected error during vPIC lookup for VIN: {vin}")
    return None


async def prefill_make_model_from_vin(vin: str) -> MakeModelPrefill:
    """
    Best-effort make and model for a VIN.

    The local WMI table always gives a make guess; for a full VIN the vPIC
    API is tried first and wins when it answers. Never raises.
    """
    normalized = normalize_vin(vin)
    local = MakeModelPrefill(
        make=detect_likely_make_from_vin(normalized), model="", source="local"
    )
    if len(normalized) != VIN_LENGTH:
        return local

    remote = await fetch_make_model(normalized)
    if remote is None:
        return local

    logger.info(f"Prefilled make/model for VIN: '{normalized}' via vPIC API")
    return MakeModelPrefill(
        make=_title_case(str(remote.get("Make") or "")),
        model=_title_case(str(remote.get("Model") or "")),
        source="remote",
    )


class PrefillSequencer:
    """
    Keeps only the newest prefill when lookups overlap.

    Each request takes the next sequence number; a result that comes back
    after a newer request started is dropped, so a slow lookup for an earlier
    VIN never overwrites the answer for the VIN being edited now.
    """

    def __init__(
        self,
        prefill: Callable[[str], Awaitable[MakeModelPrefill]] = prefill_make_model_from_vin,
    ):
        self._prefill = prefill
        self._seq = 0
        self._last_vin = ""

    @property
    def current_seq(self) -> int:
        return self._seq

    def reset(self, vin: str = "") -> None:
        """Forget pending lookups, treating `vin` as already prefilled."""
        self._seq += 1
        self._last_vin = normalize_vin_light(vin)

    async def request(self, vin: str) -> Optional[MakeModelPrefill]:
        normalized = normalize_vin_light(vin)
        if len(normalized) < 3 or normalized == self._last_vin:
            return None

        self._seq += 1
        seq = self._seq
        self._last_vin = normalized

        result = await self._prefill(normalized)
        if seq != self._seq:
            logger.debug(f"Dropping stale prefill #{seq} for VIN: '{normalized}'")
            return None
        return result
