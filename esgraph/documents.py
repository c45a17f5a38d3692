"""
Convert documents as stored in elastic into the shape of the typed fields of an entity.

Elastic is quite lenient in what it stores: any field can contain a single value or a list, geo points can be
given in several notations, and field names need not be valid GraphQL names.
"""

import logging
import re
from typing import Any, Mapping

from esgraph.models import FieldKind, TypedField

WKT_POINT = re.compile(r"^\s*POINT\s*\(\s*(-?[\d.]+)\s+(-?[\d.]+)\s*\)\s*$", re.IGNORECASE)


def source_values(doc: Mapping[str, Any], source: str) -> list[Any]:
    """
    Get all values at the dotted source path of this document, descending into lists of objects.
    Also looks for the literal dotted key, which elastic accepts as equivalent.
    """
    values: list[Any] = [doc]
    parts = [source] if source in doc else source.split(".")
    for part in parts:
        found = []
        for value in values:
            if isinstance(value, Mapping) and part in value:
                v = value[part]
                found.extend(v if isinstance(v, list) else [v])
        values = found
    return [v for v in values if v is not None]


GEOHASH_BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"


def decode_geohash(geohash: str) -> dict[str, float]:
    """Decode a geohash into the center of its cell"""
    lat_range, lon_range = [-90.0, 90.0], [-180.0, 180.0]
    even = True
    for char in geohash.lower():
        bits = GEOHASH_BASE32.index(char)
        for shift in range(4, -1, -1):
            interval = lon_range if even else lat_range
            middle = (interval[0] + interval[1]) / 2
            if bits >> shift & 1:
                interval[0] = middle
            else:
                interval[1] = middle
            even = not even
    return {"lat": (lat_range[0] + lat_range[1]) / 2, "lon": (lon_range[0] + lon_range[1]) / 2}


def _geo_point(value: Any) -> dict[str, float]:
    if isinstance(value, Mapping) and "lat" in value and "lon" in value:
        return {"lat": float(value["lat"]), "lon": float(value["lon"])}
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return {"lat": float(value[1]), "lon": float(value[0])}
    if isinstance(value, str):
        if m := WKT_POINT.match(value):
            return {"lat": float(m.group(2)), "lon": float(m.group(1))}
        if "," in value:
            lat, lon = value.split(",", 1)
            return {"lat": float(lat), "lon": float(lon)}
        if value:
            return decode_geohash(value)
    raise ValueError("unknown geo_point notation")


def geo_point(value: Any) -> dict[str, float] | None:
    """
    Normalize the elastic geo_point notations ({lat, lon}, "lat,lon", [lon, lat], WKT, geohash) to {lat, lon}.
    Returns None for values that are not a valid geo_point
    """
    try:
        return _geo_point(value)
    except (ValueError, TypeError):
        logging.debug(f"Cannot interpret geo_point value {value!r}")
        return None


def _shape_value(field: TypedField, value: Any) -> Any:
    if field.children is not None:
        return shape_document(field, value) if isinstance(value, Mapping) else None
    if field.kind == FieldKind.GEO_POINT:
        return geo_point(value)
    return value


def _shape_field(field: TypedField, value: Any) -> Any:
    # geo points can be given as a [lon, lat] pair, which is not a list of values
    is_pair = field.kind == FieldKind.GEO_POINT and isinstance(value, list) and len(value) == 2
    is_pair = is_pair and all(isinstance(x, (int, float)) for x in value)
    if value is None:
        return None
    if field.is_list:
        values = [value] if is_pair or not isinstance(value, list) else value
        return [_shape_value(field, v) for v in values]
    if isinstance(value, list) and not is_pair:
        if len(value) > 1:
            logging.debug(f"Field {field.path} has multiple values but is not plural, returning the first value")
        value = value[0] if value else None
    return None if value is None else _shape_value(field, value)


def shape_document(entity: TypedField, doc: Mapping[str, Any]) -> dict[str, Any]:
    """
    Shape a document (or nested object) to the fields of the entity: keys become the GraphQL field names,
    plural fields are always lists and other fields a single value
    """
    result: dict[str, Any] = {}
    if "_id" in doc and entity.path == "":
        result["_id"] = doc["_id"]
    for field in entity.children or ():
        key = field.path.rsplit(".", 1)[-1]
        result[field.name] = _shape_field(field, doc.get(key))
    return result
