"""
transfer/settings_store.py
--------------------------
Load and save transfer policy as a loose key/value map.

Design Decisions:
    * The persisted map is a compatibility format: every key is optional
      and every field is parsed on its own.  A malformed value raises an
      internal :class:`ConfigError` that is logged and replaced by the
      field's default, so one bad entry never fails the whole load.
    * The loose map is validated into :class:`TransferSettings` right here;
      nothing past this module sees raw settings.
    * Container resolution (and connection initialisation) runs before the
      per-source ``mappings`` block is applied, because binding mappings
      needs the live target catalog.
    * On disk the map is JSON, written atomically (write-then-rename).
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Iterable

from logger import get_logger
from models.mapping import ContainerMapping
from models.settings import DuplicateKeyStrategy, TransferSettings
from transfer.context import TransferContext
from transfer.errors import ConfigError, ResolutionError
from transfer.mapping_resolver import MappingResolver
from transfer.target import TargetContainerRef

log = get_logger(__name__)

KEY_CONTAINER = "container"
KEY_MAPPINGS = "mappings"

_TRUE_STRINGS = frozenset({"true", "yes", "on", "1"})
_FALSE_STRINGS = frozenset({"false", "no", "off", "0"})


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------

def _parse_bool(key: str, raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ConfigError(key, raw, "expected a boolean")


def _parse_positive_int(key: str, raw: Any) -> int:
    if isinstance(raw, bool):
        raise ConfigError(key, raw, "expected an integer")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str) and raw.strip().lstrip("+").isdigit():
        value = int(raw.strip())
    else:
        raise ConfigError(key, raw, "expected an integer")
    if value <= 0:
        raise ConfigError(key, raw, "must be greater than zero")
    return value


def _parse_strategy(key: str, raw: Any) -> DuplicateKeyStrategy | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, str):
        try:
            return DuplicateKeyStrategy(raw.strip().lower())
        except ValueError:
            pass
    raise ConfigError(key, raw, "unknown duplicate key method")


def _parse_path(key: str, raw: Any) -> str | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, str):
        return raw
    raise ConfigError(key, raw, "expected a node path string")


# persisted key → (model field, parser)
_FIELDS: tuple[tuple[str, str, Callable[[str, Any], Any]], ...] = (
    ("openNewConnections", "open_new_connections", _parse_bool),
    ("useTransactions", "use_transactions", _parse_bool),
    ("commitAfterRows", "commit_after_rows", _parse_positive_int),
    ("useMultiRowInsert", "use_multi_row_insert", _parse_bool),
    ("multiRowInsertBatch", "multi_row_insert_batch", _parse_positive_int),
    ("disableUsingBatches", "disable_batches", _parse_bool),
    ("onDuplicateKeyMethod", "on_duplicate_key_strategy", _parse_strategy),
    ("transferAutoGeneratedColumns", "transfer_auto_generated_columns", _parse_bool),
    ("disableReferentialIntegrity", "disable_referential_integrity", _parse_bool),
    ("truncateBeforeLoad", "truncate_before_load", _parse_bool),
    ("openTableOnFinish", "open_table_on_finish", _parse_bool),
)

_SUMMARY_LABELS: dict[str, str] = {
    "open_new_connections": "Open new connections",
    "use_transactions": "Use transactions",
    "commit_after_rows": "Commit after rows",
    "use_multi_row_insert": "Use multi-row insert",
    "multi_row_insert_batch": "Multi-row insert batch",
    "disable_batches": "Disable batches",
    "on_duplicate_key_strategy": "On duplicate key",
    "transfer_auto_generated_columns": "Transfer auto-generated columns",
    "disable_referential_integrity": "Disable referential integrity",
    "truncate_before_load": "Truncate before load",
}


def parse_settings(persisted: dict[str, Any]) -> TransferSettings:
    """Validate the policy part of a persisted map, field by field."""
    values: dict[str, Any] = {}
    for key, field_name, parser in _FIELDS:
        if key not in persisted:
            continue
        try:
            values[field_name] = parser(key, persisted[key])
        except ConfigError as exc:
            log.warning("%s; using default.", exc)
    return TransferSettings(**values)


class TransferSettingsStore:
    """
    Reads and writes the persisted settings map of a transfer.

    Example::

        store = TransferSettingsStore(resolver)
        settings, target = store.load(context, load_settings_file(path))
        ...
        save_settings_file(path, store.save(settings, target, resolver.mappings()))
    """

    def __init__(self, resolver: MappingResolver) -> None:
        self._resolver = resolver

    def load(
        self,
        context: TransferContext,
        persisted: dict[str, Any],
    ) -> tuple[TransferSettings, TargetContainerRef]:
        """
        Parse *persisted* into settings and a target container reference.

        Never raises for bad values.  Resolution failures are appended to
        ``context.errors``; a cancelled resolution leaves the reference
        unresolved.
        """
        if not isinstance(persisted, dict):
            log.warning("Persisted settings are not a map (%s); using defaults.", type(persisted).__name__)
            persisted = {}

        settings = parse_settings(persisted)

        path: str | None = None
        try:
            path = _parse_path(KEY_CONTAINER, persisted.get(KEY_CONTAINER))
        except ConfigError as exc:
            log.warning("%s; ignoring.", exc)
        target_ref = self._initial_target(context, path)

        if target_ref.path or target_ref.is_resolved:
            outcome = target_ref.resolve(context.metadata, context.connections, context.cancel_token)
            if outcome.cancelled:
                log.info("Target container resolution cancelled.")
            elif outcome.error is not None:
                error = outcome.error
                if not isinstance(error, ResolutionError):
                    error = ResolutionError(str(error))
                context.errors.append(error)
                log.error("Error getting target container: %s", error)

        mappings = persisted.get(KEY_MAPPINGS)
        if isinstance(mappings, dict):
            applied = self._resolver.apply_persisted(mappings, context.pipes, target_ref)
            log.debug("Applied %d persisted mapping(s).", applied)
        elif mappings is not None:
            log.warning("%s; ignoring.", ConfigError(KEY_MAPPINGS, mappings, "expected a map"))

        log.info("Loaded transfer settings (target: %s).", target_ref.path or "<none>")
        return settings, target_ref

    @staticmethod
    def _initial_target(context: TransferContext, path: str | None) -> TargetContainerRef:
        if path:
            return TargetContainerRef(path)
        if context.pipes:
            consumer = context.pipes[0].consumer
            handle = consumer.target_ref.handle
            if handle is not None:
                return TargetContainerRef(handle=handle)
            mapping = consumer.mapping
            if mapping is not None and mapping.target is not None and mapping.target.container_path:
                return TargetContainerRef(mapping.target.container_path)
        return TargetContainerRef()

    @staticmethod
    def save(
        settings: TransferSettings,
        target_ref: TargetContainerRef | None,
        mappings: Iterable[ContainerMapping],
    ) -> dict[str, Any]:
        """Serialise settings plus one sub-settings block per mapped source."""
        data: dict[str, Any] = {}
        if target_ref is not None and target_ref.path:
            data[KEY_CONTAINER] = target_ref.path
        for key, field_name, _ in _FIELDS:
            value = getattr(settings, field_name)
            if isinstance(value, DuplicateKeyStrategy):
                value = value.value
            data[key] = value

        blocks: dict[str, Any] = {}
        for mapping in mappings:
            if mapping.source is None:
                continue
            blocks[mapping.source.full_id] = mapping.to_dict()
        data[KEY_MAPPINGS] = blocks
        return data

    @staticmethod
    def summary(settings: TransferSettings) -> str:
        """Human-readable option list; commit interval only with transactions."""
        lines: list[str] = []
        for field_name, label in _SUMMARY_LABELS.items():
            if field_name == "commit_after_rows" and not settings.use_transactions:
                continue
            value = getattr(settings, field_name)
            if isinstance(value, bool):
                text = "Yes" if value else "No"
            elif isinstance(value, DuplicateKeyStrategy):
                text = value.value
            elif value is None:
                text = "default"
            else:
                text = str(value)
            lines.append(f"{label}: {text}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# File persistence
# ---------------------------------------------------------------------------

def load_settings_file(path: Path | str) -> dict[str, Any]:
    """
    Read a persisted settings map from JSON.

    Returns:
        The map; empty if the file is absent or unreadable.
    """
    path = Path(path)
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        log.error("%s", ConfigError(str(path), "<file>", f"unreadable settings: {exc}"))
        return {}
    if not isinstance(raw, dict):
        log.error("Settings file '%s' does not contain a map.", path)
        return {}
    return raw


def save_settings_file(path: Path | str, data: dict[str, Any]) -> None:
    """Write *data* as JSON atomically (write-then-rename)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, indent=4), encoding="utf-8")
    tmp.replace(path)
    log.debug("Saved transfer settings to '%s'.", path)
