from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class ManufacturerGroup(str, Enum):
    FORD = "ford"
    STELLANTIS = "stellantis"
    MAZDA = "mazda"
    HYUNDAI = "hyundai"
    HONDA = "honda"
    KIA = "kia"
    NISSAN = "nissan"
    TOYOTA = "toyota"
    UNKNOWN = "unknown"


class FordHold(BaseModel):
    model_config = ConfigDict(frozen=True)

    hold_code: str
    plant_name: str


class DecodedVinInfo(BaseModel):
    """Everything that can be read off a VIN without a network lookup."""

    model_config = ConfigDict(frozen=True)

    vin_normalized: str
    vin_length: int
    is_full_vin: bool
    manufacturer_group: ManufacturerGroup
    likely_make: str
    wmi: str
    vds: str
    vis: str
    assembly_char: str
    ford_hold: Optional[FordHold] = None


class MakeModelPrefill(BaseModel):
    model_config = ConfigDict(frozen=True)

    make: str
    model: str
    source: Literal["remote", "local"] = "local"


class VinRequest(BaseModel):
    vin: str


class DecodeResponse(DecodedVinInfo):
    has_ambiguous_chars: bool


class ExtractRequest(BaseModel):
    text_blocks: List[str]


class ExtractResponse(BaseModel):
    vin: Optional[str] = None
    has_ambiguous_chars: bool = False
    decoded: Optional[DecodedVinInfo] = None


class PrefillResponse(BaseModel):
    vin_requested: str
    make: str
    model: str
    source: Literal["remote", "local"]
    cached_result: bool


class VinDeleteRequest(BaseModel):
    vin: str

    @field_validator("vin")
    @classmethod
    def validate_vin(cls, vin):
        vin = vin.strip().upper()
        if len(vin) != 17 or not vin.isalnum():
            raise ValueError("VIN must contain 17 alphanumeric characters")
        return vin


class VinDeleteResponse(BaseModel):
    vin_requested: str
    delete_success: bool
