# sqlalchemy_network/network.py
# Copyright (C) 2022 the sqlalchemy-network authors and contributors
# <see AUTHORS file>
#
# This module is part of sqlalchemy-network and is released under
# the MIT License: https://www.opensource.org/licenses/mit-license.php

"""Reciprocal ("network") relationships.

A network relationship stores each link between two objects of the same
class as a single row, and makes that row visible from both ends.  Given::

    class Person(Base):
        __tablename__ = "people"

        id = mapped_column(Integer, primary_key=True)
        name = mapped_column(String(50))

    declare_network(Person, "friends")

the class gains three attributes:

* ``Person.friends_out`` - a dynamic many-to-many collection of the people
  this person links to; rows hold this person in ``person_id``.
* ``Person.friends_in`` - the people linking to this person; rows hold this
  person in ``person_id_target``.
* ``Person.friends`` - a union accessor over both, so that after
  ``jane.friends_out.append(jack)`` each of ``jane.friends`` and
  ``jack.friends`` contains the other.

The join table defaults to ``people_people``, built from the class's table
name; it is taken from the class's :class:`_schema.MetaData` if present,
else defined there with two non-null integer columns.

With ``through``, links are rows of an intermediate mapped class, which may
carry columns of its own::

    class Invite(Base):
        __tablename__ = "invites"

        id = mapped_column(Integer, primary_key=True)
        person_id = mapped_column(ForeignKey("people.id"))
        person_id_target = mapped_column(ForeignKey("people.id"))
        is_accepted = mapped_column(Boolean, default=False)

    declare_network(
        Person, "colleagues", through=Invite, conditions={"is_accepted": True}
    )

This declares read-only ``invites_out`` / ``invites_in`` collections of
:class:`Invite` objects, ``colleagues_out`` / ``colleagues_in`` collections
of the people across accepted invites, and the union accessors ``invites``
and ``colleagues``.

"""
from __future__ import annotations

import collections.abc
import re
from typing import Any
from typing import Callable
from typing import Mapping
from typing import NamedTuple
from typing import Optional
from typing import Type
from typing import TypeVar
from typing import Union

from sqlalchemy import and_
from sqlalchemy import Column
from sqlalchemy import ForeignKey
from sqlalchemy import inspect
from sqlalchemy import Integer
from sqlalchemy import Table
from sqlalchemy.orm import Mapper
from sqlalchemy.orm import relationship
from sqlalchemy.sql.elements import ClauseElement
from sqlalchemy.sql.elements import ColumnElement

from . import exc
from . import log
from .accessor import _install
from .accessor import declare_union
from .accessor import UnionAccessor

_T = TypeVar("_T", bound=Any)

_ConditionsArg = Union[
    ClauseElement,
    Mapping[str, Any],
    Callable[[], Union[ClauseElement, Mapping[str, Any]]],
]


class NetworkConfig(NamedTuple):
    """The configuration of a declared network relationship."""

    name: str
    foreign_key: str
    association_foreign_key: str
    join_table: Optional[str]
    through: Optional[Type[Any]]
    conditions: Optional[_ConditionsArg]


class NetworkAccessor(UnionAccessor[_T]):
    """The union accessor of a network relationship, combining its inbound
    and outbound halves.

    The relationship's :class:`.NetworkConfig` is available as
    :attr:`.NetworkAccessor.config`, e.g.
    ``inspect(Person).all_orm_descriptors["friends"].config``.

    """

    def __init__(self, config: NetworkConfig):
        super().__init__("%s_in" % config.name, "%s_out" % config.name)
        self.config = config


def _underscore(name: str) -> str:
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", name)
    return name.lower()


@log.class_logger
class _NetworkDeclaration:
    def __init__(
        self,
        cls: Type[Any],
        name: str,
        through: Union[None, str, Type[Any]],
        join_table: Union[None, str, Table],
        foreign_key: Optional[str],
        association_foreign_key: Optional[str],
        conditions: Optional[_ConditionsArg],
    ):
        mapper = inspect(cls, raiseerr=False)
        if not isinstance(mapper, Mapper):
            raise exc.ConfigurationError(
                "Can't declare network relationship %r on %r; class is "
                "not mapped" % (name, cls)
            )
        if len(mapper.primary_key) != 1:
            raise exc.ConfigurationError(
                "Network relationship %r requires %s to have a single "
                "column primary key" % (name, cls.__name__)
            )
        for key in ("%s_out" % name, "%s_in" % name):
            if mapper.has_property(key):
                raise exc.ConfigurationError(
                    "Network relationship %r can't be declared on %s; "
                    "mapped attribute %r already exists.  Network "
                    "relationships can't be redeclared"
                    % (name, cls.__name__, key)
                )
        if through is not None and join_table is not None:
            raise exc.ConfigurationError(
                "Network relationship %r: 'through' and 'join_table' are "
                "mutually exclusive" % (name,)
            )
        if not (
            conditions is None
            or isinstance(conditions, (ClauseElement, collections.abc.Mapping))
            or callable(conditions)
        ):
            raise exc.ConfigurationError(
                "Network relationship %r: conditions must be a SQL "
                "expression, a mapping of column names to values, or a "
                "callable returning either; got %r" % (name, conditions)
            )

        self.cls = cls
        self.mapper = mapper
        self.name = name
        self.pk = mapper.primary_key[0]
        if foreign_key is None:
            foreign_key = "%s_id" % _underscore(cls.__name__)
        if association_foreign_key is None:
            association_foreign_key = "%s_target" % foreign_key
        self.foreign_key = foreign_key
        self.association_foreign_key = association_foreign_key
        self.through = through
        self.join_table = join_table
        self.conditions = conditions

    def _join_condition(
        self, target_column: ColumnElement[Any], table: Table
    ) -> Any:
        """Build the "secondaryjoin" from the target's primary key to
        ``target_column``, ANDed with the declared conditions."""
        pk = self.pk
        conditions = self.conditions
        if conditions is None:
            return pk == target_column
        elif callable(conditions) and not isinstance(
            conditions, ClauseElement
        ):
            # resolved when mappers are configured
            return lambda: and_(
                pk == target_column,
                self._coerce_conditions(conditions(), table),
            )
        return and_(
            pk == target_column, self._coerce_conditions(conditions, table)
        )

    def _coerce_conditions(self, conditions: Any, table: Table) -> Any:
        if isinstance(conditions, ClauseElement):
            return conditions
        elif isinstance(conditions, collections.abc.Mapping):
            for key in conditions:
                if key not in table.c:
                    raise exc.ConfigurationError(
                        "Network relationship %r: table %r has no column "
                        "%r named in conditions" % (self.name, table.name, key)
                    )
            return and_(
                *[table.c[key] == value for key, value in conditions.items()]
            )
        raise exc.ConfigurationError(
            "Network relationship %r: conditions callable returned %r"
            % (self.name, conditions)
        )

    def _key_columns(self, table: Table) -> Any:
        for key in (self.foreign_key, self.association_foreign_key):
            if key not in table.c:
                raise exc.ConfigurationError(
                    "Network relationship %r: table %r has no column %r"
                    % (self.name, table.name, key)
                )
        return table.c[self.foreign_key], table.c[self.association_foreign_key]

    def _resolve_join_table(self) -> Table:
        join_table = self.join_table
        if isinstance(join_table, Table):
            return join_table

        local_table = self.mapper.local_table
        if join_table is None:
            join_table = "%s_%s" % (local_table.name, local_table.name)

        metadata = local_table.metadata
        table = metadata.tables.get(join_table)
        if table is None:
            if self._should_log_info():
                self.logger.info(
                    "defining join table %r for network relationship %s.%s",
                    join_table,
                    self.cls.__name__,
                    self.name,
                )
            table = Table(
                join_table,
                metadata,
                Column(
                    self.foreign_key,
                    Integer,
                    ForeignKey(self.pk),
                    nullable=False,
                ),
                Column(
                    self.association_foreign_key,
                    Integer,
                    ForeignKey(self.pk),
                    nullable=False,
                ),
            )
        return table

    def _resolve_through(self) -> Mapper[Any]:
        through = self.through
        if isinstance(through, str):
            for candidate in self.mapper.registry.mappers:
                if through in (
                    candidate.class_.__name__,
                    getattr(candidate.local_table, "name", None),
                ):
                    return candidate
            raise exc.ConfigurationError(
                "Network relationship %r: can't resolve intermediate class "
                "%r in the registry of %s"
                % (self.name, through, self.cls.__name__)
            )

        through_mapper = inspect(through, raiseerr=False)
        if not isinstance(through_mapper, Mapper):
            raise exc.ConfigurationError(
                "Network relationship %r: intermediate class %r is not "
                "mapped" % (self.name, through)
            )
        return through_mapper

    def declare_direct(self) -> NetworkConfig:
        table = self._resolve_join_table()
        fk_col, afk_col = self._key_columns(table)
        out_join = self._join_condition(afk_col, table)
        in_join = self._join_condition(fk_col, table)
        name = self.name
        out_key, in_key = "%s_out" % name, "%s_in" % name

        self.mapper.add_property(
            out_key,
            relationship(
                self.mapper,
                secondary=table,
                primaryjoin=self.pk == fk_col,
                secondaryjoin=out_join,
                foreign_keys=[fk_col, afk_col],
                back_populates=in_key,
                lazy="dynamic",
            ),
        )
        self.mapper.add_property(
            in_key,
            relationship(
                self.mapper,
                secondary=table,
                primaryjoin=self.pk == afk_col,
                secondaryjoin=in_join,
                foreign_keys=[fk_col, afk_col],
                back_populates=out_key,
                lazy="dynamic",
            ),
        )
        return NetworkConfig(
            name,
            self.foreign_key,
            self.association_foreign_key,
            table.name,
            None,
            self.conditions,
        )

    def declare_through(self) -> NetworkConfig:
        through_mapper = self._resolve_through()
        table = through_mapper.local_table
        if not isinstance(table, Table):
            raise exc.ConfigurationError(
                "Network relationship %r: intermediate class %s must be "
                "mapped to a Table" % (self.name, through_mapper.class_)
            )
        fk_col, afk_col = self._key_columns(table)
        out_join = self._join_condition(afk_col, table)
        in_join = self._join_condition(fk_col, table)
        through_name = table.name
        name = self.name
        mapper = self.mapper

        # a second network through the same class shares these
        for key, column in (
            ("%s_out" % through_name, fk_col),
            ("%s_in" % through_name, afk_col),
        ):
            if not mapper.has_property(key):
                mapper.add_property(
                    key,
                    relationship(
                        through_mapper,
                        primaryjoin=self.pk == column,
                        foreign_keys=[column],
                        viewonly=True,
                        lazy="dynamic",
                    ),
                )

        mapper.add_property(
            "%s_out" % name,
            relationship(
                mapper,
                secondary=table,
                primaryjoin=self.pk == fk_col,
                secondaryjoin=out_join,
                foreign_keys=[fk_col, afk_col],
                viewonly=True,
                lazy="dynamic",
            ),
        )
        mapper.add_property(
            "%s_in" % name,
            relationship(
                mapper,
                secondary=table,
                primaryjoin=self.pk == afk_col,
                secondaryjoin=in_join,
                foreign_keys=[fk_col, afk_col],
                viewonly=True,
                lazy="dynamic",
            ),
        )

        declare_union(
            self.cls,
            through_name,
            ["%s_in" % through_name, "%s_out" % through_name],
        )
        return NetworkConfig(
            name,
            self.foreign_key,
            self.association_foreign_key,
            None,
            through_mapper.class_,
            self.conditions,
        )

    def declare(self) -> NetworkAccessor[Any]:
        if self.through is None:
            config = self.declare_direct()
        else:
            config = self.declare_through()

        accessor: NetworkAccessor[Any] = NetworkAccessor(config)
        _install(self.cls, self.name, accessor)

        if self._should_log_info():
            self.logger.info(
                "declared network relationship %s.%s (%s)",
                self.cls.__name__,
                self.name,
                "join table %s" % config.join_table
                if config.through is None
                else "through %s" % config.through.__name__,
            )
        return accessor


def declare_network(
    cls: Type[Any],
    name: str,
    *,
    through: Union[None, str, Type[Any]] = None,
    join_table: Union[None, str, Table] = None,
    foreign_key: Optional[str] = None,
    association_foreign_key: Optional[str] = None,
    conditions: Optional[_ConditionsArg] = None,
) -> NetworkAccessor[Any]:
    """Declare a reciprocal relationship ``name`` on the mapped class
    ``cls``.

    :param cls: a mapped class with a single column primary key.

    :param name: the relationship name.  ``<name>_out``, ``<name>_in`` and
     the union accessor ``<name>`` are added to the class.

    :param through: an intermediate mapped class, or the name of one
     (class name or table name) in the registry of ``cls``.  If omitted,
     a plain join table is used.  The intermediate collections are named
     after its table, e.g. ``invites_out``, ``invites_in`` and ``invites``.

    :param join_table: a :class:`_schema.Table` or table name for the plain
     join table; defaults to ``<table>_<table>``, e.g. ``people_people``.
     Not allowed together with ``through``.

    :param foreign_key: the column holding the origin of a link; defaults
     to the underscored class name plus ``_id``, e.g. ``person_id``.

    :param association_foreign_key: the column holding the target of a
     link; defaults to ``foreign_key`` plus ``_target``.

    :param conditions: additional criteria against the join table or
     intermediate table, limiting which rows count as links: a SQL
     expression, a mapping of column name to value, or a callable
     returning either, which is invoked when mappers are configured.

    A declaration is final; declaring the same name again on the class
    raises :class:`.ConfigurationError`.  No SQL is emitted.

    """
    return _NetworkDeclaration(
        cls,
        name,
        through,
        join_table,
        foreign_key,
        association_foreign_key,
        conditions,
    ).declare()
