#!/usr/bin/env python3
"""Snapshot, apply and restore of overridden settings.

An OverrideSession wraps one unit of work:
- __enter__ snapshots the named settings, then applies the overrides
- __exit__ restores every snapshotted setting on every exit path
- Restore keeps going past individual failures and reports them together
- An exception from the wrapped work always reaches the caller unchanged

Example:
    >>> with OverrideSession(registry, [("enable_seqscan", "off")]):
    ...     plan = planner.plan(query)
    >>> registry.get("enable_seqscan")
    UNSET
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from planoverride.core.constants import ErrorCode, SettingPair
from planoverride.infrastructure.logger import Logger, get_logger
from planoverride.settings.registry import UNSET, SettingsNamespace, SettingState


@dataclass
class OverrideSnapshot:
    """Prior values of overridden settings, restored exactly once."""

    entries: Tuple[Tuple[str, SettingState], ...]
    consumed: bool = False

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.entries)


class RestoreError(Exception):
    """One or more settings could not be restored."""

    def __init__(self, failures: List[Tuple[str, BaseException]]):
        self.failures = failures
        self.error_code = ErrorCode.INTERNAL_ERROR
        names = ", ".join(name for name, _ in failures)
        super().__init__(f"Failed to restore {len(failures)} setting(s): {names}")


class OverrideSession:
    """Scoped override of named settings.

    Args:
        namespace: Ambient settings to modify
        settings: Ordered (name, value) overrides; a repeated name ends up
            with its last value
        logger: Logger for restore failures that cannot be raised
    """

    def __init__(
        self,
        namespace: SettingsNamespace,
        settings: Sequence[SettingPair],
        logger: Optional[Logger] = None,
    ):
        self.namespace = namespace
        self.settings = tuple(settings)
        self._logger = logger or get_logger()
        self._snapshot: Optional[OverrideSnapshot] = None

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.settings)

    def snapshot(self, names: Optional[Iterable[str]] = None) -> OverrideSnapshot:
        """Capture current explicit values.

        Args:
            names: Names to capture (defaults to this session's settings)

        Returns:
            Snapshot in the given order
        """
        names = self.names if names is None else tuple(names)
        return OverrideSnapshot(entries=tuple((name, self.namespace.get(name)) for name in names))

    def apply(self, settings: Optional[Sequence[SettingPair]] = None) -> None:
        """Assign override values in order.

        Raises:
            SettingError: On the first assignment the namespace rejects
        """
        for name, value in self.settings if settings is None else settings:
            self.namespace.set(name, value)

    def restore(self, snapshot: OverrideSnapshot) -> None:
        """Write captured values back in order.

        Every entry is attempted even if earlier ones fail.

        Raises:
            RuntimeError: If the snapshot was already restored
            RestoreError: If any entry could not be restored
        """
        if snapshot.consumed:
            raise RuntimeError("Override snapshot has already been restored")
        snapshot.consumed = True

        failures: List[Tuple[str, BaseException]] = []
        for name, value in snapshot.entries:
            try:
                if value is UNSET:
                    self.namespace.reset(name)
                else:
                    self.namespace.set(name, value)
            except Exception as e:
                failures.append((name, e))

        if failures:
            raise RestoreError(failures) from failures[0][1]

    def __enter__(self) -> "OverrideSession":
        self._snapshot = self.snapshot()
        try:
            self.apply()
        except BaseException as exc:
            self._restore_after_failure(exc)
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        snapshot, self._snapshot = self._snapshot, None
        if exc is None:
            self.restore(snapshot)
        else:
            self._restore_after(snapshot, exc)
        return False

    def _restore_after_failure(self, exc: BaseException) -> None:
        snapshot, self._snapshot = self._snapshot, None
        self._restore_after(snapshot, exc)

    def _restore_after(self, snapshot: OverrideSnapshot, exc: BaseException) -> None:
        # The original exception must win; a restore failure is only reported
        try:
            self.restore(snapshot)
        except RestoreError as restore_error:
            self._logger.error(
                "Failed to restore settings after error",
                settings=", ".join(name for name, _ in restore_error.failures),
                error=exc,
            )
            exc.add_note(f"planoverride: {restore_error}")
