"""
transfer/type_converter.py
--------------------------
Column type analysis across dialects.

Classifies any source→target type pairing as:
    SAFE   – Values carry over without loss (e.g. INT → BIGINT).
    LOSSY  – Values carry over but may be truncated or rounded
             (e.g. DOUBLE → INT, DATETIME → DATE).
    UNSAFE – Values are likely to be rejected or silently wrong
             (e.g. TEXT → INT).

and derives the target-dialect spelling of a source type for columns the
mapping resolver marks as CREATE.

Design Decision:
    Pure functions with no side effects.  Domain knowledge lives in data
    (category sets, alias and per-dialect spelling tables) rather than in a
    nested if/else tree.
"""
from __future__ import annotations

import re
from enum import Enum


class ConversionSafety(str, Enum):
    SAFE = "safe"
    LOSSY = "lossy"
    UNSAFE = "unsafe"


# ---------------------------------------------------------------------------
# Type category sets
# ---------------------------------------------------------------------------
_INTEGER_TYPES = frozenset(
    {"tinyint", "smallint", "mediumint", "int", "integer", "bigint",
     "int2", "int4", "int8", "serial", "bigserial", "smallserial"}
)
_APPROX_NUMERIC = frozenset({"float", "double", "real", "float4", "float8"})
_EXACT_NUMERIC = frozenset({"decimal", "numeric", "fixed", "money"})
_BOOLEAN_TYPES = frozenset({"bool", "boolean"})
_STRING_TYPES = frozenset(
    {"char", "varchar", "tinytext", "text", "mediumtext", "longtext", "enum",
     "set", "bpchar", "citext", "uuid"}
)
_DATETIME_TYPES = frozenset(
    {"date", "datetime", "timestamp", "timestamptz", "time", "timetz", "year"}
)
_BINARY_TYPES = frozenset(
    {"binary", "varbinary", "tinyblob", "blob", "mediumblob", "longblob", "bit", "bytea"}
)
_JSON_TYPE = frozenset({"json", "jsonb"})

_CAT_MAP = (
    ("int",    _INTEGER_TYPES),
    ("approx", _APPROX_NUMERIC),
    ("exact",  _EXACT_NUMERIC),
    ("bool",   _BOOLEAN_TYPES),
    ("str",    _STRING_TYPES),
    ("dt",     _DATETIME_TYPES),
    ("bin",    _BINARY_TYPES),
    ("json",   _JSON_TYPE),
)

# Multi-word SQL standard spellings → single keyword
_ALIASES = (
    ("character varying", "varchar"),
    ("double precision", "double"),
    ("timestamp with time zone", "timestamptz"),
    ("timestamp without time zone", "timestamp"),
    ("time with time zone", "timetz"),
    ("time without time zone", "time"),
    ("character", "char"),
)

# Integer widths, for widening/narrowing decisions
_INT_RANK = {
    "tinyint": 1, "smallint": 2, "int2": 2, "smallserial": 2, "mediumint": 3,
    "int": 4, "integer": 4, "int4": 4, "serial": 4,
    "bigint": 5, "int8": 5, "bigserial": 5,
}

# Base keyword → spelling in the target dialect (parameters are preserved)
_DIALECT_SPELLING: dict[str, dict[str, str]] = {
    "mysql": {
        "int2": "SMALLINT", "smallserial": "SMALLINT",
        "int4": "INT", "integer": "INT", "serial": "INT",
        "int8": "BIGINT", "bigserial": "BIGINT",
        "float4": "FLOAT", "float8": "DOUBLE", "money": "DECIMAL(19,4)",
        "bool": "TINYINT(1)", "boolean": "TINYINT(1)",
        "bpchar": "CHAR", "citext": "TEXT", "uuid": "CHAR(36)",
        "timestamptz": "DATETIME", "timetz": "TIME",
        "bytea": "LONGBLOB", "jsonb": "JSON",
    },
    "postgresql": {
        "tinyint": "SMALLINT", "mediumint": "INTEGER", "int": "INTEGER",
        "double": "DOUBLE PRECISION", "float": "REAL", "fixed": "NUMERIC",
        "datetime": "TIMESTAMP", "year": "SMALLINT",
        "tinytext": "TEXT", "mediumtext": "TEXT", "longtext": "TEXT",
        "enum": "TEXT", "set": "TEXT",
        "binary": "BYTEA", "varbinary": "BYTEA", "tinyblob": "BYTEA",
        "blob": "BYTEA", "mediumblob": "BYTEA", "longblob": "BYTEA",
    },
}

_PARAMS_RE = re.compile(r"\(([^)]*)\)")


def _normalise(dtype_string: str) -> str:
    lowered = " ".join(dtype_string.lower().split())
    for alias, keyword in _ALIASES:
        if lowered.startswith(alias):
            return keyword + lowered[len(alias):]
    return lowered


def get_base_type(dtype_string: str) -> str:
    """
    Extract the base SQL type keyword from a full type definition string.

    Examples::

        get_base_type("VARCHAR(255) NOT NULL")        →  "varchar"
        get_base_type("character varying(40)")        →  "varchar"
        get_base_type("INT UNSIGNED")                 →  "int"
        get_base_type("")                             →  ""
    """
    if not dtype_string:
        return ""
    normalised = _normalise(dtype_string)
    return normalised.split("(")[0].split()[0]


def _category(base_type: str) -> str:
    for cat, types in _CAT_MAP:
        if base_type in types:
            return cat
    return "other"


def classify_conversion(old_type: str, new_type: str) -> ConversionSafety:
    """
    Classify the safety of converting *old_type* data into *new_type*.

    Examples::

        classify_conversion("INT", "BIGINT")          → SAFE
        classify_conversion("int8", "INT")            → LOSSY
        classify_conversion("TEXT", "INT")            → UNSAFE
        classify_conversion("VARCHAR(255)", "TEXT")   → SAFE
    """
    old_base = get_base_type(old_type)
    new_base = get_base_type(new_type)

    if old_base == new_base:
        return ConversionSafety.SAFE

    old_cat = _category(old_base)
    new_cat = _category(new_base)

    # --- Anything → String ---
    if new_cat == "str":
        return ConversionSafety.LOSSY if old_cat == "bin" else ConversionSafety.SAFE

    # --- Integer → Integer ---
    if old_cat == "int" and new_cat == "int":
        if _INT_RANK.get(old_base, 0) <= _INT_RANK.get(new_base, 0):
            return ConversionSafety.SAFE
        return ConversionSafety.LOSSY

    # --- Numeric → Numeric ---
    if old_cat in ("int", "approx", "exact") and new_cat in ("int", "approx", "exact"):
        if new_cat == "int":
            return ConversionSafety.LOSSY
        if new_cat == "approx":
            return ConversionSafety.LOSSY
        return ConversionSafety.LOSSY if old_cat == "approx" else ConversionSafety.SAFE

    # --- Boolean ↔ Integer ---
    if old_cat == "bool" and new_cat in ("int", "exact"):
        return ConversionSafety.SAFE
    if old_cat == "int" and new_cat == "bool":
        return ConversionSafety.LOSSY

    # --- DateTime → DateTime ---
    if old_cat == "dt" and new_cat == "dt":
        if old_base == "date" and new_base in ("datetime", "timestamp", "timestamptz"):
            return ConversionSafety.SAFE
        if {old_base, new_base} <= {"datetime", "timestamp", "timestamptz"}:
            return ConversionSafety.SAFE
        return ConversionSafety.LOSSY

    # --- Binary → Binary ---
    if old_cat == "bin" and new_cat == "bin":
        return ConversionSafety.SAFE

    # --- String → Binary ---
    if old_cat == "str" and new_cat == "bin":
        return ConversionSafety.LOSSY

    # --- * → JSON ---
    if new_cat == "json":
        return ConversionSafety.SAFE

    return ConversionSafety.UNSAFE


def needs_conversion(old_type: str, new_type: str) -> bool:
    """Return True if source values must be converted for the target column."""
    return get_base_type(old_type) != get_base_type(new_type)


def target_type_for(source_type: str, dialect: str) -> str:
    """
    Spell *source_type* the way the *dialect* declares it.

    Length/precision parameters are preserved unless the dialect spelling
    carries its own (e.g. ``uuid`` → ``CHAR(36)``).

    Examples::

        target_type_for("int8", "mysql")                → "BIGINT"
        target_type_for("VARCHAR(40)", "postgresql")    → "VARCHAR(40)"
        target_type_for("DATETIME", "postgresql")       → "TIMESTAMP"
    """
    if not source_type:
        return ""
    base = get_base_type(source_type)
    spelling = _DIALECT_SPELLING.get(dialect, {}).get(base)
    match = _PARAMS_RE.search(source_type)
    if spelling is None:
        spelling = base.upper()
    elif "(" in spelling:
        return spelling
    if match and _category(base) not in ("bool", "int"):
        return f"{spelling}({match.group(1).replace(' ', '')})"
    return spelling
