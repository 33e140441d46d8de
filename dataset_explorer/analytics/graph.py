"""Relationship graph over dataset tables and the two path searches on it.

``find_path`` walks FK edges in both directions and is used to route
cross-table filters. ``find_ancestor_chain`` only climbs from child to parent
and is used to pick the entity counted in parent mode.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Iterable, Mapping

from .errors import NoRelationshipPathError
from .models import HopDirection, PathSegment, TableMetadata


@dataclass(frozen=True)
class Hop:
    from_table: str
    to_table: str
    foreign_key: str
    referenced_column: str
    direction: HopDirection

    @property
    def local_column(self) -> str:
        """Key column on ``from_table``."""
        return self.foreign_key if self.direction == "forward" else self.referenced_column

    @property
    def remote_column(self) -> str:
        """Key column on ``to_table`` matching ``local_column``."""
        return self.referenced_column if self.direction == "forward" else self.foreign_key

    def to_segment(self) -> PathSegment:
        return PathSegment(
            from_table=self.from_table,
            via_column=self.local_column,
            to_table=self.to_table,
            referenced_column=self.remote_column,
        )


class RelationshipGraph:
    """Adjacency lists of FK edges, built once per request."""

    def __init__(self, tables: Iterable[TableMetadata]) -> None:
        self._tables: dict[str, TableMetadata] = {}
        self._outgoing: dict[str, list[Hop]] = {}
        self._incoming: dict[str, list[Hop]] = {}

        for table in tables:
            self._tables[table.table_name] = table
            self._outgoing.setdefault(table.table_name, [])
            self._incoming.setdefault(table.table_name, [])

        for table in self._tables.values():
            for rel in table.relationships:
                self._outgoing[table.table_name].append(Hop(
                    from_table=table.table_name,
                    to_table=rel.referenced_table,
                    foreign_key=rel.foreign_key,
                    referenced_column=rel.referenced_column,
                    direction="forward",
                ))
                if rel.referenced_table == table.table_name:
                    continue
                self._incoming.setdefault(rel.referenced_table, []).append(Hop(
                    from_table=rel.referenced_table,
                    to_table=table.table_name,
                    foreign_key=rel.foreign_key,
                    referenced_column=rel.referenced_column,
                    direction="backward",
                ))

    def table(self, table_name: str) -> TableMetadata | None:
        return self._tables.get(table_name)

    @property
    def tables(self) -> Mapping[str, TableMetadata]:
        return self._tables

    def neighbours(self, table_name: str, *, forward_only: bool = False) -> list[Hop]:
        hops = list(self._outgoing.get(table_name, ()))
        if not forward_only:
            hops.extend(self._incoming.get(table_name, ()))
        return hops

    def find_path(self, from_table: str, to_table: str) -> list[Hop] | None:
        if from_table == to_table:
            return None
        return self._bfs(from_table, to_table, forward_only=False)

    def find_ancestor_chain(self, base_table: str, target_table: str) -> list[PathSegment]:
        prefix = f"No relationship from {base_table} to {target_table}"
        if target_table not in self._tables:
            raise NoRelationshipPathError(f"{prefix}: {target_table} is not a table in this dataset")
        if base_table == target_table:
            raise NoRelationshipPathError(f"{prefix}: a table cannot be counted by itself")
        hops = self._bfs(base_table, target_table, forward_only=True)
        if hops is None:
            raise NoRelationshipPathError(
                f"{prefix}: {target_table} is not reachable by following foreign keys to parent tables"
            )
        return [hop.to_segment() for hop in hops]

    def _bfs(self, start: str, target: str, *, forward_only: bool) -> list[Hop] | None:
        if start not in self._tables:
            return None
        visited = {start}
        queue: deque[tuple[str, list[Hop]]] = deque([(start, [])])
        while queue:
            current, path = queue.popleft()
            for hop in self.neighbours(current, forward_only=forward_only):
                nxt = hop.to_table
                if nxt in visited:
                    continue
                if nxt == target:
                    return path + [hop]
                # Tables without metadata are dead ends.
                if nxt not in self._tables:
                    continue
                visited.add(nxt)
                queue.append((nxt, path + [hop]))
        return None


def as_graph(tables: RelationshipGraph | Iterable[TableMetadata]) -> RelationshipGraph:
    if isinstance(tables, RelationshipGraph):
        return tables
    if isinstance(tables, Mapping):
        return RelationshipGraph(tables.values())
    return RelationshipGraph(tables)


def find_path(
    from_table: str,
    to_table: str,
    tables: RelationshipGraph | Iterable[TableMetadata],
) -> list[Hop] | None:
    return as_graph(tables).find_path(from_table, to_table)


def find_ancestor_chain(
    base_table: str,
    target_table: str,
    tables: RelationshipGraph | Iterable[TableMetadata],
) -> list[PathSegment]:
    return as_graph(tables).find_ancestor_chain(base_table, target_table)
