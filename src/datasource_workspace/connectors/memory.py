"""
In-memory connector.

Useful for scaffolding workspaces and for exercising the invocation machinery
without a database. Tables and views are declared in the connection settings::

    db:
      connector: memory
      owner: app
      tables:
        - name: customer
          columns:
            - {name: id, type: integer, id: true}
            - {name: email, type: varchar, nullable: false}
        - name: order
          foreignKeys:
            - {column: customer_id, references: customer.id}
        - name: active_customer
          type: view

Migrated models are added to the same catalogue, so discovery reflects what
``automigrate``/``autoupdate`` created. Setting ``offline: true`` makes every
connection attempt fail, which is how workspaces rehearse an unreachable
database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Sequence

from ..core.logging import get_logger
from .base import BaseConnector, ConnectorError

DEFAULT_OWNER = "public"

_TYPE_MAP = {
    "char": "String",
    "varchar": "String",
    "text": "String",
    "string": "String",
    "uuid": "String",
    "int": "Number",
    "integer": "Number",
    "bigint": "Number",
    "smallint": "Number",
    "number": "Number",
    "numeric": "Number",
    "decimal": "Number",
    "float": "Number",
    "double": "Number",
    "real": "Number",
    "bool": "Boolean",
    "boolean": "Boolean",
    "date": "Date",
    "datetime": "Date",
    "timestamp": "Date",
    "json": "Object",
    "object": "Object",
    "array": "Array",
}


@dataclass(slots=True)
class TableDescriptor:
    """A table or view known to the memory connector."""

    name: str
    owner: str
    kind: str = "table"
    columns: List[Dict[str, Any]] = field(default_factory=list)
    foreign_keys: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def qualified_name(self) -> str:
        return f"{self.owner}.{self.name}"

    def summary(self) -> Dict[str, Any]:
        return {"type": self.kind, "name": self.name, "owner": self.owner}


class MemoryConnector(BaseConnector):
    """Connector backed by Python dictionaries."""

    connector_id = "memory"

    def __init__(self, settings: Mapping[str, Any]) -> None:
        super().__init__(settings)
        self.owner = str(self.settings.get("owner") or self.settings.get("schema") or DEFAULT_OWNER)
        self.logger = get_logger(__name__, extra={"connection": self.name, "connector": self.connector_id})
        self.tables: MutableMapping[str, TableDescriptor] = {}
        self.collections: MutableMapping[str, List[Dict[str, Any]]] = {}
        for entry in self.settings.get("tables") or []:
            table = _table_from_settings(entry, default_owner=self.owner)
            self.tables[table.qualified_name] = table

    def _open(self) -> None:
        if self.settings.get("offline"):
            raise ConnectorError(f"Data source '{self.name}' is offline.", code="ECONNREFUSED", details={"owner": self.owner})

    # ------------------------------------------------------------------ migrations

    def automigrate(self, models: Optional[str | Sequence[str]] = None) -> None:
        """
        Drop and recreate the collections backing the given models.

        **This destroys existing data** for every migrated model.
        """

        for name in self._resolve_models(models):
            self.collections[name] = []
            self._register_model_table(name)
            self.logger.info("Collection recreated", extra={"model": name})

    def autoupdate(self, models: Optional[str | Sequence[str]] = None) -> None:
        """Create missing collections; existing data is left untouched."""

        for name in self._resolve_models(models):
            if name not in self.collections:
                self.collections[name] = []
                self.logger.info("Collection created", extra={"model": name})
            self._register_model_table(name)

    def _register_model_table(self, name: str) -> None:
        model = self.models[name]
        table_name = str(model.options.get("table") or name)
        columns = [
            {
                "name": prop_name,
                "type": str(spec.get("type", "string")) if isinstance(spec, Mapping) else str(spec),
                "nullable": not (isinstance(spec, Mapping) and spec.get("required")),
                "id": bool(isinstance(spec, Mapping) and spec.get("id")),
            }
            for prop_name, spec in model.properties.items()
        ]
        table = TableDescriptor(name=table_name, owner=self.owner, columns=columns)
        self.tables[table.qualified_name] = table

    # ------------------------------------------------------------------ discovery

    def discover_model_definitions(self, options: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        opts = dict(options or {})
        owner = opts.get("owner") or opts.get("schema")
        include_views = bool(opts.get("views", False))
        include_all = bool(opts.get("all", False))

        rows = []
        for table in sorted(self.tables.values(), key=lambda item: (item.owner, item.name)):
            if table.kind == "view" and not include_views:
                continue
            if owner and not include_all and table.owner != owner:
                continue
            rows.append(table.summary())

        offset = int(opts.get("offset") or 0)
        limit = opts.get("limit")
        if offset:
            rows = rows[offset:]
        if limit is not None:
            rows = rows[: int(limit)]
        return rows

    def discover_schemas(self, name: str, options: Optional[Mapping[str, Any]] = None) -> Dict[str, Dict[str, Any]]:
        opts = dict(options or {})
        owner = opts.get("owner") or opts.get("schema")
        table = self._find_table(name, owner)

        schemas: Dict[str, Dict[str, Any]] = {table.qualified_name: self._schema_for(table, relations=bool(opts.get("relations")))}
        if opts.get("relations"):
            for fk in table.foreign_keys:
                target = self._find_table(fk["table"], fk["owner"])
                schemas.setdefault(target.qualified_name, self._schema_for(target, relations=False))
        return schemas

    def _find_table(self, name: str, owner: Optional[str]) -> TableDescriptor:
        if owner:
            table = self.tables.get(f"{owner}.{name}")
            if table is not None:
                return table
        else:
            matches = [table for table in self.tables.values() if table.name == name]
            if matches:
                return sorted(matches, key=lambda item: item.owner != self.owner)[0]
        raise ConnectorError(f"Table '{name}' was not found in '{self.name}'.", code="ER_NO_SUCH_TABLE", details={"table": name, "owner": owner})

    def _schema_for(self, table: TableDescriptor, *, relations: bool) -> Dict[str, Any]:
        properties: Dict[str, Any] = {}
        for column in table.columns:
            column_type = str(column.get("type", "string"))
            nullable = bool(column.get("nullable", True))
            entry: Dict[str, Any] = {
                "type": _TYPE_MAP.get(column_type.lower(), "String"),
                "required": not nullable,
                self.connector_id: {"columnName": column["name"], "dataType": column_type, "nullable": "Y" if nullable else "N"},
            }
            if column.get("id"):
                entry["id"] = True
            properties[_camel_case(column["name"])] = entry

        schema: Dict[str, Any] = {
            "name": _pascal_case(table.name),
            "options": {"idInjection": False, self.connector_id: {"schema": table.owner, "table": table.name}},
            "properties": properties,
        }
        if relations and table.foreign_keys:
            schema["options"]["relations"] = {
                _camel_case(fk["table"]): {
                    "model": _pascal_case(fk["table"]),
                    "type": "belongsTo",
                    "foreignKey": _camel_case(fk["column"]),
                }
                for fk in table.foreign_keys
            }
        return schema


def _table_from_settings(entry: Any, *, default_owner: str) -> TableDescriptor:
    if isinstance(entry, str):
        return TableDescriptor(name=entry, owner=default_owner)
    if not isinstance(entry, Mapping) or not entry.get("name"):
        raise ConnectorError(f"Invalid table declaration: {entry!r}", code="ER_INVALID_SETTINGS")
    owner = str(entry.get("owner") or entry.get("schema") or default_owner)
    foreign_keys = []
    for fk in entry.get("foreignKeys") or []:
        target = str(fk.get("references", ""))
        parts = target.split(".")
        if len(parts) == 2:
            target_owner, target_table = owner, parts[0]
        elif len(parts) == 3:
            target_owner, target_table = parts[0], parts[1]
        else:
            raise ConnectorError(f"Foreign key reference must look like 'table.column' or 'owner.table.column', got '{target}'.", code="ER_INVALID_SETTINGS")
        foreign_keys.append({"column": str(fk["column"]), "owner": target_owner, "table": target_table})
    return TableDescriptor(
        name=str(entry["name"]),
        owner=owner,
        kind="view" if str(entry.get("type", "table")).lower() == "view" else "table",
        columns=[column if isinstance(column, dict) else {"name": str(column)} for column in entry.get("columns") or []],
        foreign_keys=foreign_keys,
    )


def _camel_case(value: str) -> str:
    head, *tail = [part for part in value.replace("-", "_").split("_") if part] or [value]
    return head.lower() + "".join(part.capitalize() for part in tail)


def _pascal_case(value: str) -> str:
    camel = _camel_case(value)
    return camel[:1].upper() + camel[1:]


__all__ = ["MemoryConnector", "TableDescriptor"]
