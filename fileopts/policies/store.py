"""
FileOpts Policy Store — field key → collision-resolution mode.

Schema fields and custom fields live in the same key space; a FieldKey
knows which config key it maps to, so there is a single lookup path.
The store is a thin layer over a ConfigBackend and holds no locks.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from fileopts.engine.errors import FileOptsConfigError
from fileopts.engine.logging import log, log_policy_change
from fileopts.fields import CUSTOM_PREFIX, FieldKey, SchemaIntrospector
from fileopts.policies.backends import ConfigBackend
from fileopts.policies.models import REMOVE_SENTINEL, FieldPolicy, UploadMode

logger = logging.getLogger("fileopts.policies.store")

KeyLike = Union[FieldKey, str]


def _as_key(field_key: KeyLike) -> FieldKey:
    if isinstance(field_key, FieldKey):
        return field_key
    return FieldKey.parse(field_key)


class PolicyStore:
    """
    Reads and writes per-field upload modes.

    Unset fields resolve to RENAME. INHERIT may be stored; it is turned
    into the system default only by resolve_mode().
    """

    def __init__(
        self,
        backend: ConfigBackend,
        default_mode: UploadMode = UploadMode.RENAME,
    ):
        if not default_mode.is_concrete:
            raise FileOptsConfigError("System default mode must be rename, replace or reject")
        self._backend = backend
        self._default_mode = default_mode

    @property
    def default_mode(self) -> UploadMode:
        return self._default_mode

    @property
    def backend(self) -> ConfigBackend:
        return self._backend

    # -------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------

    def get_mode(self, field_key: KeyLike) -> UploadMode:
        """Stored mode for the field; RENAME when unset, unreadable or the key is malformed."""
        try:
            key = _as_key(field_key)
        except FileOptsConfigError as e:
            logger.warning(f"Ignoring malformed field key {field_key!r}: {e.message}")
            return UploadMode.RENAME
        raw = self._backend.get(key.config_key)
        if raw is None:
            return UploadMode.RENAME
        try:
            return UploadMode.parse(raw)
        except FileOptsConfigError:
            logger.warning(f"Ignoring invalid stored mode {raw!r} for {key.config_key}")
            return UploadMode.RENAME

    def resolve_mode(
        self,
        field_key: KeyLike,
        override: Optional[Any] = None,
    ) -> UploadMode:
        """
        Concrete mode for an upload: a non-INHERIT override wins, then the
        stored mode; INHERIT falls back to the system default.
        """
        if override is not None:
            mode = UploadMode.parse(override)
            if mode.is_concrete:
                return mode
        mode = self.get_mode(field_key)
        return mode if mode.is_concrete else self._default_mode

    # -------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------

    def set_mode(self, field_key: KeyLike, mode: Any) -> UploadMode:
        """
        Persist a mode. Values outside UploadMode raise FileOptsConfigError
        and nothing is stored.
        """
        key = _as_key(field_key)
        parsed = UploadMode.parse(mode)
        previous = self._backend.get(key.config_key)
        self._backend.set(key.config_key, int(parsed))
        log(log_policy_change(key.canonical, "set", mode=int(parsed), previous=previous))
        logger.info(f"Upload mode for {key.canonical} set to {parsed.name}")
        return parsed

    def register_custom_field(self, name: str) -> bool:
        """
        Add a custom field with mode RENAME.

        Returns:
            True if added, False if it already existed (left untouched).
        """
        key = FieldKey.custom(name)
        if self._backend.get(key.config_key) is not None:
            return False
        self._backend.set(key.config_key, int(UploadMode.RENAME))
        log(log_policy_change(key.canonical, "registered", mode=int(UploadMode.RENAME)))
        logger.info(f"Registered custom upload field '{name}'")
        return True

    def remove_custom_field(self, name: str) -> bool:
        """Delete a custom field. Returns False when it was not present."""
        key = FieldKey.custom(name)
        removed = self._backend.delete(key.config_key)
        if removed:
            log(log_policy_change(key.canonical, "removed"))
            logger.info(f"Removed custom upload field '{name}'")
        return removed

    def list_custom_fields(self) -> List[Tuple[str, UploadMode]]:
        """Custom fields with their modes, in insertion order."""
        result = []
        for config_key in self._backend.keys(CUSTOM_PREFIX + "."):
            key = FieldKey.from_config_key(config_key)
            result.append((key.field_name, self.get_mode(key)))
        return result

    # -------------------------------------------------------------------
    # Form-style submissions
    # -------------------------------------------------------------------

    def apply_custom_submission(self, values: Mapping[str, Any]) -> Dict[str, str]:
        """
        Apply submitted custom field values: REMOVE_SENTINEL deletes the
        entry, a valid mode stores it. Every value is checked before any
        write, so one bad value leaves the store unchanged.

        Returns:
            {name: "removed" | "set"}
        """
        plan: List[Tuple[str, Optional[UploadMode]]] = []
        for name, value in values.items():
            FieldKey.custom(name)
            if _is_remove_sentinel(value):
                plan.append((name, None))
            else:
                plan.append((name, UploadMode.parse(value)))

        outcome: Dict[str, str] = {}
        for name, mode in plan:
            if mode is None:
                self.remove_custom_field(name)
                outcome[name] = "removed"
            else:
                self.set_mode(FieldKey.custom(name), mode)
                outcome[name] = "set"
        return outcome

    def apply_field_submission(
        self,
        introspector: SchemaIntrospector,
        values: Mapping[str, Any],
    ) -> int:
        """
        Store modes for schema fields from form values keyed by
        FieldKey.form_name. Fields missing from *values* are left alone.

        Returns:
            Number of fields written.
        """
        plan: List[Tuple[FieldKey, UploadMode]] = []
        for definition in introspector.definitions():
            form_name = definition.key.form_name
            if form_name in values:
                plan.append((definition.key, UploadMode.parse(values[form_name])))

        for key, mode in plan:
            self.set_mode(key, mode)
        return len(plan)

    def list_field_policies(self, introspector: Optional[SchemaIntrospector] = None) -> List[FieldPolicy]:
        """Schema field policies (from the introspector) followed by custom ones."""
        policies: List[FieldPolicy] = []
        if introspector is not None:
            for definition in introspector.definitions():
                policies.append(FieldPolicy(definition.key, self.get_mode(definition.key)))
        for name, mode in self.list_custom_fields():
            policies.append(FieldPolicy(FieldKey.custom(name), mode))
        return policies

    def import_modes(self, modes: Iterable[Tuple[KeyLike, Any]]) -> int:
        """Bulk set_mode; validates everything first."""
        parsed = [(_as_key(k), UploadMode.parse(m)) for k, m in modes]
        for key, mode in parsed:
            self.set_mode(key, mode)
        return len(parsed)


def _is_remove_sentinel(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return int(value) == REMOVE_SENTINEL
    except (TypeError, ValueError):
        return False
