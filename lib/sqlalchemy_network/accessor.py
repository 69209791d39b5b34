# sqlalchemy_network/accessor.py
# Copyright (C) 2022 the sqlalchemy-network authors and contributors
# <see AUTHORS file>
#
# This module is part of sqlalchemy-network and is released under
# the MIT License: https://www.opensource.org/licenses/mit-license.php

"""Union accessors.

A union accessor presents the union of several collection attributes of
an object as a single :class:`.UnionCollection`::

    class Channel(Base):
        __tablename__ = "channels"

        id = mapped_column(Integer, primary_key=True)
        premium_shows = relationship(
            "Show",
            primaryjoin="and_(Show.channel_id == Channel.id, "
            "Show.package == 'premium')",
            lazy="dynamic",
        )
        mega_shows = relationship(
            "Show",
            primaryjoin="and_(Show.channel_id == Channel.id, "
            "Show.package == 'mega')",
            lazy="dynamic",
        )

        pay_shows = union_accessor("premium_shows", "mega_shows")

Each access to ``channel.pay_shows`` reads the member attributes anew and
returns a fresh :class:`.UnionCollection` over them; nothing is cached on
the instance.  Members may be relationships, other union accessors, or any
attribute returning a collection.

"""
from __future__ import annotations

from typing import Any
from typing import Dict
from typing import Generic
from typing import NoReturn
from typing import Optional
from typing import Sequence
from typing import Type
from typing import TypeVar

from sqlalchemy import inspect
from sqlalchemy.orm import InspectionAttrExtensionType
from sqlalchemy.orm import InspectionAttrInfo
from sqlalchemy.orm import Mapper

from . import exc
from . import log
from .union import UnionCollection

_T = TypeVar("_T", bound=Any)


class NetworkExtensionType(InspectionAttrExtensionType):
    UNION_ACCESSOR = "UNION_ACCESSOR"
    """Symbol indicating an :class:`.InspectionAttr` that's
    of type :class:`.UnionAccessor`.

    Is assigned to the :attr:`.InspectionAttr.extension_type`
    attribute.

    """


def union_accessor(
    *members: str, info: Optional[Dict[Any, Any]] = None
) -> UnionAccessor[Any]:
    """Return a Python property presenting the named member attributes of
    an instance as one :class:`.UnionCollection`.

    :param \\*members: names of the attributes to combine, in the order
     their contents appear in the union and in which finds search them.

    :param info: optional, will be assigned to
     :attr:`.UnionAccessor.info` if present.

    """
    return UnionAccessor(*members, info=info)


@log.class_logger
class UnionAccessor(InspectionAttrInfo, Generic[_T]):
    """A descriptor that presents several collection attributes as one
    :class:`.UnionCollection`."""

    is_attribute = True
    extension_type = NetworkExtensionType.UNION_ACCESSOR

    key: Optional[str]
    owning_class: Optional[Type[Any]]

    def __init__(self, *members: str, info: Optional[Dict[Any, Any]] = None):
        if not members:
            raise exc.ConfigurationError(
                "A union accessor requires at least one member attribute"
            )
        for name in members:
            if not isinstance(name, str):
                raise exc.ConfigurationError(
                    "Union accessor members are attribute names; got %r"
                    % (name,)
                )
        self.members = tuple(members)
        self.key = None
        self.owning_class = None
        if info:
            self.info = info

    def __set_name__(self, owner: Type[Any], name: str) -> None:
        if self.owning_class is None:
            self.owning_class = owner
            self.key = name

    def __get__(self, instance: Any, owner: Any) -> Any:
        if instance is None:
            return self
        if self._should_log_debug():
            self.logger.debug(
                "%s.%s: union of %s",
                type(instance).__name__,
                self.key,
                ", ".join(self.members),
            )
        return UnionCollection(
            *[getattr(instance, name) for name in self.members]
        )

    def __set__(self, instance: Any, value: Any) -> NoReturn:
        raise AttributeError(
            "union accessor %r is read-only; modify one of its members "
            "(%s) instead" % (self.key, ", ".join(self.members))
        )

    def __delete__(self, instance: Any) -> NoReturn:
        raise AttributeError("union accessor %r is read-only" % (self.key,))

    def __repr__(self) -> str:
        return "%s(%s)" % (
            self.__class__.__name__,
            ", ".join(repr(name) for name in self.members),
        )


def _install(cls: Type[Any], name: str, accessor: UnionAccessor[Any]) -> None:
    mapper = inspect(cls, raiseerr=False)
    if isinstance(mapper, Mapper) and mapper.has_property(name):
        raise exc.ConfigurationError(
            "Can't install union accessor %r on %s; a mapped attribute of "
            "that name already exists" % (name, cls.__name__)
        )
    accessor.__set_name__(cls, name)
    setattr(cls, name, accessor)


def declare_union(
    cls: Type[Any],
    name: str,
    members: Sequence[str],
    info: Optional[Dict[Any, Any]] = None,
) -> UnionAccessor[Any]:
    """Install a union accessor ``name`` on an existing class.

    Equivalent to assigning ``union_accessor(*members)`` to ``name`` in the
    class body.  A previous union accessor of the same name is replaced.

    E.g.::

        declare_union(Person, "associates", ["friends", "colleagues"])

    """
    accessor = union_accessor(*members, info=info)
    _install(cls, name, accessor)
    return accessor


def union_accessors(cls: Type[Any]) -> Dict[str, UnionAccessor[Any]]:
    """Return the union accessors of a class, keyed on name.

    Accessors inherited from superclasses are included unless overridden.

    """
    accessors: Dict[str, UnionAccessor[Any]] = {}
    for supercls in reversed(cls.__mro__):
        for key, value in vars(supercls).items():
            if isinstance(value, UnionAccessor):
                accessors[key] = value
            else:
                accessors.pop(key, None)
    return accessors
