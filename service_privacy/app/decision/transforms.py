"""
Applies a PET effect to a vehicle telemetry record.

Records are nested dicts shaped like::

    {"timestamp": ..., "vehicle": {"vin", "make", "model"},
     "location": {"latitude", "longitude", "heading", ...},
     "speed": {"value", "unit"}, "acceleration": {...},
     "engine": {"rpm", "temperature", "fuelLevel"}, "sensors": {...}}

Missing or malformed sections are left alone. The input record is never
modified.
"""

import copy
import hashlib
from datetime import datetime, timedelta
from typing import Dict, Any, Mapping, Optional

from ..rules.models import PetEffect


DELAY_MINUTES = 15


def _speed_category(speed: Optional[float]) -> Optional[str]:
    if speed is None:
        return None
    if speed > 100:
        return "High"
    if speed > 60:
        return "Medium"
    return "Low"


def _round_to(value: Any, step: int) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(round(value / step) * step)
    return value


def _round_coordinates(record: Dict[str, Any], digits: int) -> None:
    location = record.get("location")
    if not isinstance(location, dict):
        return
    for key in ("latitude", "longitude"):
        if isinstance(location.get(key), (int, float)):
            location[key] = round(location[key], digits)


def _section(record: Mapping[str, Any], key: str) -> Dict[str, Any]:
    value = record.get(key)
    return value if isinstance(value, dict) else {}


def _number(value: Any) -> Optional[float]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return None


def _pseudonym(value: str) -> str:
    return "[ANON_" + hashlib.sha256(value.encode("utf-8")).hexdigest()[:6] + "]"


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def apply_effect(record: Mapping[str, Any], effect: PetEffect) -> Dict[str, Any]:
    """Return a transformed copy of ``record`` according to ``effect``."""
    effect = PetEffect.parse(effect)
    timestamp = record.get("timestamp")
    speed = _number(_section(record, "speed").get("value"))

    if effect == PetEffect.BLOCK:
        return {
            "timestamp": timestamp,
            "status": "BLOCKED",
            "message": "Data access denied by privacy preference",
        }

    if effect == PetEffect.LOCAL_ONLY:
        temperature = _number(_section(record, "engine").get("temperature"))
        summary = {"speedCategory": _speed_category(speed)}
        if temperature is not None:
            summary["engineStatus"] = "Normal" if temperature < 100 else "Warning"
        return {
            "timestamp": timestamp,
            "status": "LOCAL_ONLY",
            "message": "Data processed locally, not transmitted",
            "localSummary": summary,
        }

    if effect == PetEffect.AGGREGATE:
        location = _section(record, "location")
        aggregated: Dict[str, Any] = {"timeWindow": "5 minute average"}
        if speed is not None:
            aggregated["avgSpeed"] = f"{_round_to(speed, 10)} km/h (10 km/h buckets)"
        if isinstance(location.get("latitude"), (int, float)) and isinstance(location.get("longitude"), (int, float)):
            aggregated["region"] = f"{round(location['latitude'], 1)}, {round(location['longitude'], 1)}"
        return {"timestamp": timestamp, "status": "AGGREGATED", "aggregatedData": aggregated}

    transformed = copy.deepcopy(dict(record))
    vehicle = transformed.get("vehicle") if isinstance(transformed.get("vehicle"), dict) else None

    if effect == PetEffect.ANONYMIZE:
        if vehicle is not None:
            if vehicle.get("vin"):
                vehicle["vin"] = _pseudonym(str(vehicle["vin"]))
            for key in ("make", "model"):
                if key in vehicle:
                    vehicle[key] = "[ANONYMIZED]"
        _round_coordinates(transformed, 2)
        transformed["_transformation"] = "ANONYMIZED"

    elif effect == PetEffect.GENERALIZE:
        _round_coordinates(transformed, 2)
        if isinstance(transformed.get("speed"), dict):
            transformed["speed"]["value"] = _round_to(transformed["speed"].get("value"), 10)
        if isinstance(transformed.get("location"), dict) and "heading" in transformed["location"]:
            transformed["location"]["heading"] = _round_to(transformed["location"]["heading"], 45)
        transformed["_transformation"] = "GENERALIZED (100m accuracy)"

    elif effect == PetEffect.REDUCE_PRECISION:
        _round_coordinates(transformed, 1)
        if isinstance(transformed.get("speed"), dict):
            transformed["speed"]["value"] = _round_to(transformed["speed"].get("value"), 1)
        transformed.pop("acceleration", None)
        transformed.pop("sensors", None)
        transformed["_transformation"] = "REDUCED_PRECISION"

    elif effect == PetEffect.MASK:
        if vehicle is not None and isinstance(vehicle.get("vin"), str):
            vin = vehicle["vin"]
            vehicle["vin"] = vin[:5] + "*****" + vin[10:]
        transformed["_transformation"] = "MASKED"

    elif effect == PetEffect.DELAY:
        transformed["_transformation"] = f"DELAYED ({DELAY_MINUTES} minute delay)"
        transformed["_originalTimestamp"] = timestamp
        parsed = _parse_timestamp(timestamp)
        if parsed is not None:
            delayed = parsed - timedelta(minutes=DELAY_MINUTES)
            transformed["timestamp"] = delayed.isoformat() if isinstance(timestamp, str) else delayed

    else:
        transformed["_transformation"] = "ALLOWED (Full Access)"

    return transformed
