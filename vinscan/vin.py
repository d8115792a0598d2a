"""
Offline VIN decoding.

A VIN is read in three fixed segments: the World Manufacturer Identifier
(WMI, characters 1-3), the Vehicle Descriptor Section (VDS, 4-9) and the
Vehicle Identifier Section (VIS, 10-17). The WMI gives the manufacturer group
and a likely make; for Ford the 11th character also names the assembly plant.

Decoding is total: short or malformed input gives empty segments and an
unknown group instead of an error.
"""

import logging
from types import MappingProxyType
from typing import Optional

from .models import DecodedVinInfo, FordHold, ManufacturerGroup
from .ocr import VIN_LENGTH, normalize_vin


logger = logging.getLogger(__name__)

UNKNOWN_MAKE = "Unknown"

# Tested in this order; the first group with a matching prefix wins.
GROUP_PREFIXES = MappingProxyType(
    {
        ManufacturerGroup.FORD: (
            "1FA", "1FB", "1FC", "1FD", "1FM", "1FT", "1LN", "1LM",
            "2FA", "2FB", "2FM", "3FA", "3FE", "3FM", "5LM",
        ),
        ManufacturerGroup.STELLANTIS: (
            "1C3", "2C3", "3C3",  # Chrysler
            "1C4", "2C4", "3C4",  # Jeep / Chrysler MPV
            "1C6", "3C6",  # Ram
            "1B3", "2B3", "3B3",  # Dodge legacy
            "1J4", "1J8",  # Jeep legacy
            "ZFA",  # Fiat
        ),
        ManufacturerGroup.MAZDA: ("JM1", "JM3", "7MM"),
        ManufacturerGroup.HYUNDAI: ("KMH", "KMF", "5NP"),
        ManufacturerGroup.HONDA: ("1HG", "2HG", "JHM", "JHL", "5FN", "5J6", "19X"),
        ManufacturerGroup.KIA: ("KNA", "KND", "5XY", "5XX"),
        ManufacturerGroup.NISSAN: ("1N4", "1N6", "3N1", "3N6", "5N1", "JN1", "JN8"),
        ManufacturerGroup.TOYOTA: (
            "1NX", "2T1", "3TM", "4T1", "5TD", "5TF", "JTD", "JT3", "JT4",
        ),
    }
)

# Finer than the groups: one group sells under several brand names.
LIKELY_MAKES = MappingProxyType(
    {
        "1FA": "Ford", "1FB": "Ford", "1FC": "Ford", "1FD": "Ford",
        "1FM": "Ford", "1FT": "Ford", "2FA": "Ford", "2FB": "Ford",
        "2FM": "Ford", "3FA": "Ford", "3FE": "Ford", "3FM": "Ford",
        "1LN": "Lincoln", "1LM": "Lincoln", "5LM": "Lincoln",
        "1C3": "Chrysler", "2C3": "Chrysler", "3C3": "Chrysler",
        "1C4": "Jeep", "2C4": "Chrysler", "3C4": "Chrysler",
        "1C6": "Ram", "3C6": "Ram",
        "1B3": "Dodge", "2B3": "Dodge", "3B3": "Dodge",
        "1J4": "Jeep", "1J8": "Jeep",
        "ZFA": "Fiat",
        "JM1": "Mazda", "JM3": "Mazda", "7MM": "Mazda",
        "KMH": "Hyundai", "KMF": "Hyundai", "5NP": "Hyundai",
        "1HG": "Honda", "2HG": "Honda", "JHM": "Honda", "JHL": "Honda",
        "5FN": "Honda", "5J6": "Honda", "19X": "Honda",
        "JH4": "Acura", "19U": "Acura",
        "KNA": "Kia", "KND": "Kia", "5XY": "Kia", "5XX": "Kia",
        "1N4": "Nissan", "1N6": "Nissan", "3N1": "Nissan", "3N6": "Nissan",
        "5N1": "Nissan", "JN1": "Nissan", "JN8": "Nissan",
        "JNK": "Infiniti",
        "1NX": "Toyota", "2T1": "Toyota", "3TM": "Toyota", "4T1": "Toyota",
        "5TD": "Toyota", "5TF": "Toyota", "JTD": "Toyota", "JT3": "Toyota",
        "JT4": "Toyota",
        "JTH": "Lexus", "2T2": "Lexus",
    }
)

# Ford assembly plant by 11th VIN character, with the plant's hold code.
# Only the L (AP02A) and J (GN4UA) hold codes are confirmed. The other hold
# codes are placeholders in the same format; replace them with the codes from
# the Ford plant hold list before relying on them. Plant letters follow Ford's
# published 11th-character assignments.
FORD_HOLDS = MappingProxyType(
    {
        "B": FordHold(hold_code="OK01A", plant_name="Oakville Assembly"),
        "C": FordHold(hold_code="OT01A", plant_name="Ontario Truck Assembly"),
        "D": FordHold(hold_code="OH01A", plant_name="Ohio Assembly"),
        "E": FordHold(hold_code="KT01A", plant_name="Kentucky Truck Assembly"),
        "F": FordHold(hold_code="DT01A", plant_name="Dearborn Truck Assembly"),
        "G": FordHold(hold_code="CH01A", plant_name="Chicago Assembly"),
        "J": FordHold(hold_code="GN4UA", plant_name="China CAF Hangzhou Assembly"),
        "K": FordHold(hold_code="KC01A", plant_name="Kansas City Assembly"),
        "L": FordHold(hold_code="AP02A", plant_name="Michigan Assembly"),
        "R": FordHold(hold_code="HM01A", plant_name="Hermosillo Assembly"),
        "U": FordHold(hold_code="LV01A", plant_name="Louisville Assembly"),
    }
)


def detect_manufacturer_group_from_vin(vin: str) -> ManufacturerGroup:
    vin = normalize_vin(vin)
    if len(vin) < 3:
        return ManufacturerGroup.UNKNOWN

    wmi = vin[:3]
    for group, prefixes in GROUP_PREFIXES.items():
        if wmi.startswith(prefixes):
            return group

    return ManufacturerGroup.UNKNOWN


def detect_likely_make_from_vin(vin: str) -> str:
    vin = normalize_vin(vin)
    if len(vin) < 3:
        return UNKNOWN_MAKE
    return LIKELY_MAKES.get(vin[:3], UNKNOWN_MAKE)


def _assembly_char(vin: str) -> str:
    return vin[10] if len(vin) >= 11 else ""


def decode_ford_hold_from_vin(vin: str) -> Optional[FordHold]:
    """Ford plant and hold code for the VIN's assembly character, if known."""
    vin = normalize_vin(vin)
    if detect_manufacturer_group_from_vin(vin) != ManufacturerGroup.FORD:
        return None

    assembly_char = _assembly_char(vin)
    if not assembly_char:
        return None
    return FORD_HOLDS.get(assembly_char)


def decode_vin_info(vin: str) -> DecodedVinInfo:
    """
    Decode everything readable from a VIN without a network lookup.

    Args:
        vin (str): A VIN as typed or extracted. Need not be valid or complete.

    Returns:
        DecodedVinInfo: Segments, manufacturer group, likely make and, for
                        Ford, the assembly plant hold.
    """
    vin = normalize_vin(vin)
    info = DecodedVinInfo(
        vin_normalized=vin,
        vin_length=len(vin),
        is_full_vin=len(vin) == VIN_LENGTH,
        manufacturer_group=detect_manufacturer_group_from_vin(vin),
        likely_make=detect_likely_make_from_vin(vin),
        wmi=vin[0:3],
        vds=vin[3:9],
        vis=vin[9:17],
        assembly_char=_assembly_char(vin),
        ford_hold=decode_ford_hold_from_vin(vin),
    )
    logger.debug(
        f"Decoded VIN '{vin}': group={info.manufacturer_group.value}, "
        f"make={info.likely_make}"
    )
    return info
