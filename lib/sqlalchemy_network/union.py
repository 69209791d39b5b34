# sqlalchemy_network/union.py
# Copyright (C) 2022 the sqlalchemy-network authors and contributors
# <see AUTHORS file>
#
# This module is part of sqlalchemy-network and is released under
# the MIT License: https://www.opensource.org/licenses/mit-license.php

"""Set-union views across ORM collections.

A :class:`.UnionCollection` is built from zero or more member sets and
behaves as a read-only sequence holding the unique objects of all of them::

    union = UnionCollection(
        session.query(Person).filter(Person.id <= 1),  # set 0
        session.query(Person).filter(Person.id.between(10, 15)),  # set 1
        session.query(Person).filter(Person.id >= 20),  # set 2
    )

Nothing is loaded until the union is observed as a sequence; at that point
every member set is read once, duplicates are dropped, and the result is
kept for the lifetime of the union.

Finds are forwarded to the member sets instead, without loading the union:

* ``union.find(FIRST, *criteria, order_by=None, **filter_by)`` searches the
  sets in order and returns the first match, or ``None``.
* ``union.find(ALL, *criteria, order_by=None, **filter_by)`` searches every
  set and returns a new, equally lazy :class:`.UnionCollection` of the
  matches, which can be searched further.
* ``union.find(ident, ...)`` looks up objects by primary key across all
  sets, raising :class:`.RecordNotFound` unless every identifier is located.
* :meth:`.UnionCollection.find_by` and :meth:`.UnionCollection.find_all_by`
  are keyword-only shortcuts for the first two.

Given the union above, ``union.find(ALL, Person.name.like("s%"))`` searches
sets 0, 1 and 2, ``union.find(30)`` returns the person with id 30 from set 2,
and ``union.find(9)`` raises, as that id is excluded by every member set.

"""
from __future__ import annotations

import enum
from typing import Any
from typing import Generic
from typing import Iterator
from typing import List
from typing import Literal
from typing import Optional
from typing import overload
from typing import Sequence
from typing import Tuple
from typing import TypeVar
from typing import Union

from sqlalchemy import exc as sa_exc
from sqlalchemy import util

from . import exc
from . import log
from .members import _CriterionArg
from .members import _OrderByArg
from .members import as_member
from .members import FindCriteria
from .members import identity_tuple
from .members import MemberSet

_T = TypeVar("_T", bound=Any)


class FindMode(enum.Enum):
    """Selects the kind of search performed by
    :meth:`.UnionCollection.find`."""

    FIRST = "first"
    """Return the first match, searching member sets in order."""

    ALL = "all"
    """Return all matches as a new :class:`.UnionCollection`."""


FIRST, ALL = tuple(FindMode)


class UnionMember(MemberSet):
    """Adapts a :class:`.UnionCollection` nested inside another one."""

    __slots__ = ("union",)

    def __init__(self, union: UnionCollection[Any]):
        self.union = union

    def __repr__(self) -> str:
        return "%s(%r)" % (self.__class__.__name__, self.union)

    def is_empty(self) -> bool:
        return self.union.is_empty()

    def find_first(self, criteria: FindCriteria) -> Optional[Any]:
        return self.union._find_first(criteria)

    def find_all(self, criteria: FindCriteria) -> UnionCollection[Any]:
        return self.union._find_all(criteria)

    def get(self, ident: Tuple[Any, ...]) -> Optional[Any]:
        for member in self.union._nonempty_members():
            obj = member.get(ident)
            if obj is not None:
                return obj
        return None

    def __iter__(self) -> Iterator[Any]:
        return iter(self.union)


def _adapt(source: Any) -> MemberSet:
    if isinstance(source, UnionCollection):
        return UnionMember(source)
    return as_member(source)


@log.class_logger
class UnionCollection(Generic[_T]):
    """A lazy, deduplicating union of ORM collections.

    Member sets may be :class:`_orm.Query` objects (typically the
    :class:`_orm.AppenderQuery` of a ``lazy="dynamic"`` relationship),
    other :class:`.UnionCollection` objects, or iterables of already-loaded
    objects.  ``None`` members are ignored.

    Operations other than the finder methods and the sequence protocol are
    not available; asking for one raises :class:`.UnsupportedOperation`.

    """

    _materialized: Optional[List[_T]]

    def __init__(self, *sets: Any):
        sets = tuple(s for s in sets if s is not None)
        self._sets = sets
        self._members = tuple(_adapt(s) for s in sets)
        self._materialized = None

    @property
    def sets(self) -> Tuple[Any, ...]:
        """The member sets, in order, as given to the constructor."""
        return self._sets

    @overload
    def find(
        self,
        __mode: Literal[FindMode.FIRST],
        *criteria: _CriterionArg,
        order_by: Union[None, _OrderByArg, Sequence[_OrderByArg]] = ...,
        **filter_by: Any,
    ) -> Optional[_T]:
        ...

    @overload
    def find(
        self,
        __mode: Literal[FindMode.ALL],
        *criteria: _CriterionArg,
        order_by: Union[None, _OrderByArg, Sequence[_OrderByArg]] = ...,
        **filter_by: Any,
    ) -> UnionCollection[_T]:
        ...

    @overload
    def find(self, __ident: Any) -> _T:
        ...

    @overload
    def find(self, __ident: Any, __ident2: Any, *idents: Any) -> List[_T]:
        ...

    def find(
        self,
        *args: Any,
        order_by: Union[None, _OrderByArg, Sequence[_OrderByArg]] = None,
        **filter_by: Any,
    ) -> Any:
        """Search the member sets.

        The first positional argument selects the search:

        * :data:`.FIRST` - the remaining positional arguments are SQL
          criteria, as accepted by :meth:`_orm.Query.filter`, and keyword
          arguments are equality criteria as accepted by
          :meth:`_orm.Query.filter_by`.  Member sets are searched in the
          order given to the constructor; the first match wins, even if a
          later set holds a "better" one under ``order_by``.
        * :data:`.ALL` - criteria as above; every member set is searched and
          the per-set results are returned as a new
          :class:`.UnionCollection`.
        * anything else - all positional arguments are primary key
          identities, scalars or tuples.  A single identity returns the
          object itself; several return a list with one object per
          identity requested, in order.  :class:`.RecordNotFound` is raised
          unless every identity is located in some member set.

        Empty member sets are skipped.  Errors raised by a member set's
        query propagate unchanged.

        """
        if not args:
            raise sa_exc.ArgumentError(
                "find() requires FIRST, ALL, or at least one identifier"
            )
        mode, rest = args[0], args[1:]
        if mode is FindMode.FIRST:
            return self._find_first(FindCriteria(rest, filter_by, order_by))
        elif mode is FindMode.ALL:
            return self._find_all(FindCriteria(rest, filter_by, order_by))
        elif filter_by or order_by is not None:
            raise sa_exc.ArgumentError(
                "Identifier lookup doesn't accept criteria; use "
                "find(FIRST, ...) or find(ALL, ...)"
            )
        return self._find_from_ids(args)

    def first(
        self,
        *criteria: _CriterionArg,
        order_by: Union[None, _OrderByArg, Sequence[_OrderByArg]] = None,
        **filter_by: Any,
    ) -> Optional[_T]:
        """Same as ``find(FIRST, *criteria, ...)``."""
        return self._find_first(FindCriteria(criteria, filter_by, order_by))

    def find_by(self, **attrs: Any) -> Optional[_T]:
        """Return the first object with the given attribute values.

        E.g.::

            show = channel.pay_shows.find_by(name="Mad Men")

        """
        return self._find_first(FindCriteria((), attrs))

    def find_all_by(self, **attrs: Any) -> UnionCollection[_T]:
        """Return a :class:`.UnionCollection` of the objects with the given
        attribute values."""
        return self._find_all(FindCriteria((), attrs))

    def get(self, ident: Any) -> _T:
        """Same as ``find(ident)``."""
        return self._find_from_ids((ident,))  # type: ignore[no-any-return]

    def to_list(self) -> List[_T]:
        """Return the unique objects of all member sets as a new list."""
        return list(self._load())

    def is_empty(self) -> bool:
        """Return True if every member set is empty.

        Unlike ``len()`` and ``bool()``, this doesn't load the union.

        """
        if self._materialized is not None:
            return not self._materialized
        return all(member.is_empty() for member in self._members)

    def _nonempty_members(self) -> List[MemberSet]:
        return [member for member in self._members if not member.is_empty()]

    def _find_first(self, criteria: FindCriteria) -> Optional[_T]:
        for index, member in enumerate(self._members):
            if member.is_empty():
                continue
            result = member.find_first(criteria.copy())
            if result is not None:
                if self._should_log_debug():
                    self.logger.debug(
                        "find FIRST %r matched in member set %d of %d",
                        criteria,
                        index,
                        len(self._members),
                    )
                return result  # type: ignore[no-any-return]
        return None

    def _find_all(self, criteria: FindCriteria) -> UnionCollection[_T]:
        results = [
            member.find_all(criteria.copy())
            for member in self._nonempty_members()
        ]
        if self._should_log_debug():
            self.logger.debug(
                "find ALL %r across %d of %d member sets",
                criteria,
                len(results),
                len(self._members),
            )
        return UnionCollection(*results)

    def _find_from_ids(self, idents: Sequence[Any]) -> Any:
        found = {}
        members = None
        for ident in idents:
            key = identity_tuple(ident)
            if key in found:
                continue
            if members is None:
                members = self._nonempty_members()
            for member in members:
                # a miss in one set isn't an error; the count is
                # checked once every identity was tried
                obj = member.get(key)
                if obj is not None:
                    found[key] = obj
                    break

        missing = util.unique_list(
            ident for ident in idents if identity_tuple(ident) not in found
        )
        if missing:
            raise exc.RecordNotFound(idents, missing)

        if len(idents) == 1:
            return found[identity_tuple(idents[0])]
        return [found[identity_tuple(ident)] for ident in idents]

    def _load(self) -> List[_T]:
        if self._materialized is None:
            loaded = util.OrderedIdentitySet()
            for member in self._members:
                for obj in member:
                    loaded.add(obj)
            self._materialized = list(loaded)
            if self._should_log_debug():
                self.logger.debug(
                    "loaded %d unique objects from %d member sets",
                    len(self._materialized),
                    len(self._members),
                )
        return self._materialized

    def __iter__(self) -> Iterator[_T]:
        return iter(self._load())

    def __reversed__(self) -> Iterator[_T]:
        return reversed(self._load())

    def __len__(self) -> int:
        return len(self._load())

    def __bool__(self) -> bool:
        return bool(self._load())

    def __contains__(self, item: Any) -> bool:
        return item in self._load()

    @overload
    def __getitem__(self, index: int) -> _T:
        ...

    @overload
    def __getitem__(self, index: slice) -> List[_T]:
        ...

    def __getitem__(self, index: Union[int, slice]) -> Union[_T, List[_T]]:
        return self._load()[index]

    def count(self, item: Any) -> int:
        return self._load().count(item)

    def index(self, item: Any, *args: int) -> int:
        return self._load().index(item, *args)

    def __getattr__(self, key: str) -> Any:
        raise exc.UnsupportedOperation(
            "%r object has no operation %r; available are find(), first(), "
            "find_by(), find_all_by(), get(), to_list(), is_empty() and "
            "the sequence protocol" % (self.__class__.__name__, key)
        )

    def __repr__(self) -> str:
        if self._materialized is None:
            return "<%s of %d member sets, not loaded>" % (
                self.__class__.__name__,
                len(self._members),
            )
        return "<%s of %d member sets, %d objects>" % (
            self.__class__.__name__,
            len(self._members),
            len(self._materialized),
        )
