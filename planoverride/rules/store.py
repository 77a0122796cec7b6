#!/usr/bin/env python3
"""Rule storage backends.

This module provides the stores the rule cache loads from:
- RuleStore: Abstract base class defining the storage interface
- MemoryRuleStore: In-process storage for tests and embedding
- YamlRuleStore: A YAML file with a top-level ``rules:`` list
- SqlRuleStore: An ``override_rules`` table accessed through SQLAlchemy

Every store hands out enabled rules ordered by descending priority, returns
an empty list when its backing storage does not exist yet, and drops
malformed settings with a warning instead of rejecting the whole rule.

Example:
    >>> store = YamlRuleStore("/etc/planoverride/rules.yaml")
    >>> store.add_by_pattern("SELECT%FROM orders%", {"enable_seqscan": "off"})
    1
    >>> [rule.text_pattern for rule in store.list_enabled_rules()]
    ['SELECT%FROM orders%']
"""

import copy
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    create_engine,
    delete,
    func,
    inspect,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from planoverride.core.constants import ConfigKey, ErrorCode
from planoverride.core.validators import ValidationError, validate_rule_record
from planoverride.infrastructure.logger import Logger, get_logger
from planoverride.rules.models import RawSettings, Rule

RULES_TABLE = "override_rules"


class RuleStoreError(Exception):
    """Error raised when a rule store cannot be read or written."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.DEPENDENCY_ERROR):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class RuleStore(ABC):
    """Abstract base class for rule storage.

    Subclasses implement record access; ordering, filtering and record
    conversion are shared here.
    """

    def __init__(self, logger: Optional[Logger] = None):
        """Initialize store.

        Args:
            logger: Logger for dropped settings and records
        """
        self._logger = logger or get_logger()

    @abstractmethod
    def list_records(self) -> List[Dict[str, Any]]:
        """Return every stored rule record, enabled or not, in id order."""
        ...

    @abstractmethod
    def add_rule(self, record: Dict[str, Any]) -> int:
        """Store a new rule record.

        Args:
            record: Rule record (query_id and/or query_pattern, gucs, ...)

        Returns:
            Id of the new rule

        Raises:
            ValidationError: If the record names no match method
        """
        ...

    @abstractmethod
    def remove_rule(self, rule_id: int) -> bool:
        """Remove a rule by id. Returns True if it existed."""
        ...

    @abstractmethod
    def set_enabled(self, rule_id: int, enabled: bool) -> bool:
        """Enable or disable a rule by id. Returns True if it existed."""
        ...

    def list_rules(self) -> List[Rule]:
        """Return every rule, enabled or not, in id order."""
        return self._to_rules(self.list_records())

    def list_enabled_rules(self) -> List[Rule]:
        """Return enabled rules ordered by descending priority.

        Rules of equal priority keep their stored order.

        Raises:
            RuleStoreError: If the backing storage exists but cannot be read
        """
        rules = [rule for rule in self.list_rules() if rule.enabled]
        return sorted(rules, key=lambda r: r.priority, reverse=True)

    def add_by_identity(
        self, identity_key: int, settings: RawSettings, description: Optional[str] = None
    ) -> int:
        """Add a rule matching requests by identity key.

        Args:
            identity_key: Non-zero request fingerprint
            settings: Settings payload (mapping or list of pairs)
            description: Optional free-form description

        Returns:
            Id of the new rule
        """
        return self.add_rule(
            {
                ConfigKey.RULE_IDENTITY_KEY: identity_key,
                ConfigKey.RULE_SETTINGS: settings,
                ConfigKey.RULE_DESCRIPTION: description,
            }
        )

    def add_by_pattern(
        self, pattern: str, settings: RawSettings, description: Optional[str] = None
    ) -> int:
        """Add a rule matching request text by LIKE-style pattern.

        Args:
            pattern: Pattern using ``%`` and ``_``
            settings: Settings payload (mapping or list of pairs)
            description: Optional free-form description

        Returns:
            Id of the new rule
        """
        return self.add_rule(
            {
                ConfigKey.RULE_PATTERN: pattern,
                ConfigKey.RULE_SETTINGS: settings,
                ConfigKey.RULE_DESCRIPTION: description,
            }
        )

    def _prepare_record(self, record: Dict[str, Any], rule_id: int) -> Dict[str, Any]:
        validate_rule_record(record)
        prepared = copy.deepcopy(record)
        prepared[ConfigKey.RULE_ID] = rule_id
        prepared.setdefault(ConfigKey.RULE_PRIORITY, 0)
        prepared.setdefault(ConfigKey.RULE_ENABLED, True)
        return prepared

    def _to_rules(self, records: List[Dict[str, Any]]) -> List[Rule]:
        rules = []
        for record in records:
            if not isinstance(record, dict):
                self._logger.warning("Skipping rule record that is not a mapping", record=repr(record))
                continue
            try:
                rules.append(Rule.from_record(record, self._logger))
            except ValidationError as e:
                self._logger.warning(
                    "Skipping malformed rule record", rule_id=record.get(ConfigKey.RULE_ID), error=e
                )
        return rules


class MemoryRuleStore(RuleStore):
    """In-memory rule storage."""

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None, logger: Optional[Logger] = None):
        """Initialize store.

        Seed records are taken as already stored: they are not validated, so
        a seeded rule without identity key or pattern is kept (and never
        matches), the same as a hand-edited YAML file.

        Args:
            records: Initial rule records
            logger: Logger for dropped settings and records
        """
        super().__init__(logger)
        self._records: List[Dict[str, Any]] = []
        self._next_id = 1
        for record in records or []:
            seeded = copy.deepcopy(record)
            if seeded.get(ConfigKey.RULE_ID) is None:
                seeded[ConfigKey.RULE_ID] = self._next_id
            self._records.append(seeded)
            rule_id = seeded[ConfigKey.RULE_ID]
            if isinstance(rule_id, int) and not isinstance(rule_id, bool):
                self._next_id = max(self._next_id, rule_id + 1)

    def list_records(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._records)

    def add_rule(self, record: Dict[str, Any]) -> int:
        prepared = self._prepare_record(record, self._next_id)
        self._records.append(prepared)
        self._next_id += 1
        return prepared[ConfigKey.RULE_ID]

    def remove_rule(self, rule_id: int) -> bool:
        for i, record in enumerate(self._records):
            if record[ConfigKey.RULE_ID] == rule_id:
                self._records.pop(i)
                return True
        return False

    def set_enabled(self, rule_id: int, enabled: bool) -> bool:
        for record in self._records:
            if record[ConfigKey.RULE_ID] == rule_id:
                record[ConfigKey.RULE_ENABLED] = enabled
                return True
        return False

    def __len__(self) -> int:
        return len(self._records)


class YamlRuleStore(RuleStore):
    """Rule storage in a YAML file.

    File layout::

        rules:
          - id: 1
            query_pattern: "SELECT%FROM orders%"
            gucs: {enable_seqscan: off, work_mem: 64MB}
            priority: 10

    A missing file holds zero rules.
    """

    def __init__(self, path: Union[str, Path], logger: Optional[Logger] = None):
        super().__init__(logger)
        self.path = Path(path).expanduser()

    def exists(self) -> bool:
        return self.path.is_file()

    def list_records(self) -> List[Dict[str, Any]]:
        """Read records from the file.

        Raises:
            RuleStoreError: If the file exists but is unreadable or malformed
        """
        if not self.exists():
            self._logger.debug("Rule file does not exist", path=str(self.path))
            return []

        try:
            with open(self.path, "r") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise RuleStoreError(f"YAML parse error in {self.path}: {e}", ErrorCode.INVALID_INPUT)
        except OSError as e:
            raise RuleStoreError(f"Failed to read rule file {self.path}: {e}")

        if data is None:
            return []

        if not isinstance(data, dict):
            raise RuleStoreError(
                f"Rule file must contain a YAML dictionary: {self.path}", ErrorCode.INVALID_INPUT
            )

        records = data.get("rules") or []
        if not isinstance(records, list):
            raise RuleStoreError(f"'rules' must be a list in {self.path}", ErrorCode.INVALID_INPUT)

        return records

    def _write(self, records: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self.path, "w") as f:
                yaml.safe_dump({"rules": records}, f, sort_keys=False)
        except OSError as e:
            raise RuleStoreError(f"Failed to write rule file {self.path}: {e}")

    def add_rule(self, record: Dict[str, Any]) -> int:
        records = self.list_records()
        ids = [r.get(ConfigKey.RULE_ID) for r in records if isinstance(r, dict)]
        next_id = max([i for i in ids if isinstance(i, int)], default=0) + 1
        prepared = self._prepare_record(record, next_id)
        # Drop unset optional fields to keep the file readable
        prepared = {k: v for k, v in prepared.items() if v is not None}
        settings = prepared[ConfigKey.RULE_SETTINGS]
        if isinstance(settings, (list, tuple)):
            # safe_dump cannot represent tuples
            prepared[ConfigKey.RULE_SETTINGS] = [
                list(pair) if isinstance(pair, tuple) else pair for pair in settings
            ]
        records.append(prepared)
        self._write(records)
        return next_id

    def remove_rule(self, rule_id: int) -> bool:
        records = self.list_records()
        kept = [r for r in records if not (isinstance(r, dict) and r.get(ConfigKey.RULE_ID) == rule_id)]
        if len(kept) == len(records):
            return False
        self._write(kept)
        return True

    def set_enabled(self, rule_id: int, enabled: bool) -> bool:
        records = self.list_records()
        for record in records:
            if isinstance(record, dict) and record.get(ConfigKey.RULE_ID) == rule_id:
                record[ConfigKey.RULE_ENABLED] = enabled
                self._write(records)
                return True
        return False


def build_rules_table(metadata: MetaData, schema: Optional[str] = None) -> Table:
    """Define the ``override_rules`` table.

    Args:
        metadata: SQLAlchemy metadata to attach the table to
        schema: Optional database schema

    Returns:
        Table definition
    """
    return Table(
        RULES_TABLE,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("query_id", BigInteger, nullable=True),
        Column("query_pattern", Text, nullable=True),
        Column("description", Text, nullable=True),
        Column("gucs", JSON, nullable=False),
        Column("enabled", Boolean, nullable=False, default=True),
        Column("priority", Integer, nullable=False, default=0),
        Column("created_at", DateTime(timezone=True), server_default=func.now()),
        CheckConstraint(
            "query_id IS NOT NULL OR query_pattern IS NOT NULL", name="chk_match_method"
        ),
        Index("idx_override_rules_query_id", "query_id"),
        schema=schema,
    )


class SqlRuleStore(RuleStore):
    """Rule storage in a relational table via SQLAlchemy Core.

    A database without the rules table holds zero rules; call
    ``create_schema()`` to create it.

    Args:
        url_or_engine: Database URL or an existing Engine to share
        schema: Optional schema holding the table
    """

    def __init__(
        self,
        url_or_engine: Union[str, Engine],
        schema: Optional[str] = None,
        logger: Optional[Logger] = None,
    ):
        super().__init__(logger)
        if isinstance(url_or_engine, Engine):
            self._engine = url_or_engine
            self._owns_engine = False
        else:
            self._engine = create_engine(url_or_engine)
            self._owns_engine = True
        self.schema = schema
        self._metadata = MetaData()
        self.table = build_rules_table(self._metadata, schema)

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_schema(self) -> None:
        """Create the rules table if it does not exist."""
        try:
            self._metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise RuleStoreError(f"Failed to create {RULES_TABLE}: {e}")
        self._logger.info("Rules table initialized", table=RULES_TABLE, schema=self.schema)

    def close(self) -> None:
        """Dispose of the engine if this store created it."""
        if self._owns_engine:
            self._engine.dispose()

    def table_exists(self) -> bool:
        try:
            return inspect(self._engine).has_table(RULES_TABLE, schema=self.schema)
        except SQLAlchemyError as e:
            raise RuleStoreError(f"Failed to inspect database: {e}")

    def _row_to_record(self, row: Any) -> Dict[str, Any]:
        return {
            ConfigKey.RULE_ID: row.id,
            ConfigKey.RULE_IDENTITY_KEY: row.query_id,
            ConfigKey.RULE_PATTERN: row.query_pattern,
            ConfigKey.RULE_SETTINGS: row.gucs,
            ConfigKey.RULE_PRIORITY: row.priority,
            ConfigKey.RULE_ENABLED: row.enabled,
            ConfigKey.RULE_DESCRIPTION: row.description,
        }

    def _fetch(self, statement: Any) -> List[Dict[str, Any]]:
        if not self.table_exists():
            self._logger.debug("Rules table does not exist", table=RULES_TABLE)
            return []
        try:
            with self._engine.connect() as conn:
                return [self._row_to_record(row) for row in conn.execute(statement)]
        except SQLAlchemyError as e:
            raise RuleStoreError(f"Failed to load rules: {e}")

    def list_records(self) -> List[Dict[str, Any]]:
        return self._fetch(select(self.table).order_by(self.table.c.id))

    def list_enabled_rules(self) -> List[Rule]:
        statement = (
            select(self.table)
            .where(self.table.c.enabled.is_(True))
            .order_by(self.table.c.priority.desc(), self.table.c.id)
        )
        return self._to_rules(self._fetch(statement))

    def add_rule(self, record: Dict[str, Any]) -> int:
        validate_rule_record(record)
        values = {
            "query_id": record.get(ConfigKey.RULE_IDENTITY_KEY),
            "query_pattern": record.get(ConfigKey.RULE_PATTERN),
            "gucs": record[ConfigKey.RULE_SETTINGS],
            "description": record.get(ConfigKey.RULE_DESCRIPTION),
            "priority": record.get(ConfigKey.RULE_PRIORITY, 0),
            "enabled": record.get(ConfigKey.RULE_ENABLED, True),
        }
        try:
            with self._engine.begin() as conn:
                result = conn.execute(insert(self.table).values(**values))
                return result.inserted_primary_key[0]
        except SQLAlchemyError as e:
            raise RuleStoreError(f"Failed to add rule: {e}")

    def remove_rule(self, rule_id: int) -> bool:
        return self._modify(delete(self.table).where(self.table.c.id == rule_id))

    def set_enabled(self, rule_id: int, enabled: bool) -> bool:
        return self._modify(
            update(self.table).where(self.table.c.id == rule_id).values(enabled=enabled)
        )

    def _modify(self, statement: Any) -> bool:
        try:
            with self._engine.begin() as conn:
                return conn.execute(statement).rowcount > 0
        except SQLAlchemyError as e:
            raise RuleStoreError(f"Failed to update rules: {e}")


def create_store(store_config: Dict[str, Any], logger: Optional[Logger] = None) -> RuleStore:
    """Build a rule store from the ``store`` configuration section.

    Args:
        store_config: Dict with ``type`` and ``path`` or ``url``
        logger: Logger passed to the store

    Returns:
        Configured store

    Raises:
        RuleStoreError: If the configuration does not describe a usable store
    """
    store_type = store_config.get(ConfigKey.STORE_TYPE, "yaml")

    if store_type == "memory":
        return MemoryRuleStore(logger=logger)

    if store_type == "yaml":
        path = store_config.get(ConfigKey.STORE_PATH)
        if not path:
            raise RuleStoreError("YAML rule store requires a 'path'", ErrorCode.INVALID_INPUT)
        return YamlRuleStore(path, logger=logger)

    if store_type == "sql":
        url = store_config.get(ConfigKey.STORE_URL)
        if not url:
            raise RuleStoreError("SQL rule store requires a 'url'", ErrorCode.INVALID_INPUT)
        return SqlRuleStore(url, schema=store_config.get("schema"), logger=logger)

    raise RuleStoreError(f"Unknown rule store type: {store_type}", ErrorCode.INVALID_INPUT)
