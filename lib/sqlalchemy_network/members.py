# sqlalchemy_network/members.py
# Copyright (C) 2022 the sqlalchemy-network authors and contributors
# <see AUTHORS file>
#
# This module is part of sqlalchemy-network and is released under
# the MIT License: https://www.opensource.org/licenses/mit-license.php

"""Member set adapters.

A :class:`.UnionCollection` never talks to its member sets directly; each
one is wrapped in a :class:`.MemberSet` which gives every supported kind of
source the same small capability: an emptiness probe, "first match" and
"all matches" finds driven by a :class:`.FindCriteria`, an identity lookup,
and iteration.

Supported sources are ORM :class:`_orm.Query` objects (including the
:class:`_orm.AppenderQuery` of a ``lazy="dynamic"`` relationship), which
are searched in SQL, and already-loaded iterables of mapped objects, which
are searched in Python.

"""
from __future__ import annotations

import collections.abc
import operator
from typing import Any
from typing import Callable
from typing import Dict
from typing import Iterable
from typing import Iterator
from typing import List
from typing import Mapping
from typing import Optional
from typing import Sequence
from typing import Tuple
from typing import TypeVar
from typing import Union

from sqlalchemy import exc as sa_exc
from sqlalchemy import inspect
from sqlalchemy import select
from sqlalchemy import text
from sqlalchemy.orm import Query
from sqlalchemy.orm.attributes import QueryableAttribute
from sqlalchemy.sql import visitors
from sqlalchemy.sql.elements import ClauseElement

from . import exc

_T = TypeVar("_T", bound=Any)

_CriterionArg = Union[str, ClauseElement]
_OrderByArg = Union[str, ClauseElement, QueryableAttribute[Any]]

_NO_ATTR = object()


def _clone(element: Any) -> Any:
    if isinstance(element, ClauseElement):
        return visitors.cloned_traverse(element, {}, {})
    return element


def identity_tuple(ident: Any) -> Tuple[Any, ...]:
    """Normalize a scalar or tuple identifier to a primary key tuple."""
    key = ident if isinstance(ident, tuple) else (ident,)
    try:
        hash(key)
    except TypeError as err:
        raise sa_exc.ArgumentError(
            "Identifier %r is not a primary key value; pass identifiers "
            "as separate arguments, and composite keys as tuples" % (ident,)
        ) from err
    return key


class FindCriteria:
    """The arguments of a single find, as a plain value.

    Holds positional SQL criteria (strings are coerced to :func:`.text`),
    ``filter_by()``-style attribute equality and ORDER BY terms.  Criteria
    may be consumed in place by whatever they are applied to, so a
    :class:`.UnionCollection` hands every member set its own
    :meth:`.FindCriteria.copy`.

    """

    __slots__ = ("criteria", "filter_by", "order_by")

    criteria: Tuple[ClauseElement, ...]
    filter_by: Dict[str, Any]
    order_by: Tuple[_OrderByArg, ...]

    def __init__(
        self,
        criteria: Sequence[_CriterionArg] = (),
        filter_by: Optional[Mapping[str, Any]] = None,
        order_by: Union[None, _OrderByArg, Sequence[_OrderByArg]] = None,
    ):
        self.criteria = tuple(
            text(criterion) if isinstance(criterion, str) else criterion
            for criterion in criteria
        )
        self.filter_by = dict(filter_by) if filter_by else {}
        if order_by is None:
            self.order_by = ()
        elif isinstance(order_by, (list, tuple)):
            self.order_by = tuple(order_by)
        else:
            self.order_by = (order_by,)

    def copy(self) -> FindCriteria:
        """Return a structural clone of this :class:`.FindCriteria`.

        SQL expression trees are cloned, the keyword mapping is copied; no
        part of the clone is shared with the original.

        """
        clone = self.__class__.__new__(self.__class__)
        clone.criteria = tuple(_clone(elem) for elem in self.criteria)
        clone.filter_by = dict(self.filter_by)
        clone.order_by = tuple(_clone(elem) for elem in self.order_by)
        return clone

    def __bool__(self) -> bool:
        return bool(self.criteria or self.filter_by or self.order_by)

    def __repr__(self) -> str:
        return "FindCriteria(criteria=%r, filter_by=%r, order_by=%r)" % (
            self.criteria,
            self.filter_by,
            self.order_by,
        )

    def apply(self, query: Query[_T]) -> Query[_T]:
        """Apply to a :class:`_orm.Query`, returning a new one."""
        if self.criteria:
            query = query.filter(*self.criteria)
        if self.filter_by:
            query = query.filter_by(**self.filter_by)
        if self.order_by:
            query = query.order_by(
                *[
                    text(term) if isinstance(term, str) else term
                    for term in self.order_by
                ]
            )
        return query

    def evaluate(self, items: Iterable[_T]) -> List[_T]:
        """Apply to already-loaded objects, returning the matching ones."""
        if self.criteria:
            raise exc.UnsupportedOperation(
                "SQL criteria %s can't be evaluated against an "
                "already-loaded collection; use keyword (filter_by) "
                "criteria, or pass a Query as the member set"
                % (", ".join(str(c) for c in self.criteria),)
            )
        filter_by = self.filter_by
        if filter_by:
            items = list(items)
            for key in filter_by:
                if items and not any(hasattr(obj, key) for obj in items):
                    raise exc.UnsupportedOperation(
                        "None of the loaded objects has an attribute %r "
                        "named in filter_by criteria" % (key,)
                    )
        matched = [
            obj
            for obj in items
            if all(
                getattr(obj, key, _NO_ATTR) == value
                for key, value in filter_by.items()
            )
        ]
        # list.sort() is stable; sort by the least significant term first
        for term in reversed(self.order_by):
            matched.sort(key=_sort_key(term))
        return matched


def _sort_key(term: _OrderByArg) -> Callable[[Any], Any]:
    if isinstance(term, str):
        return operator.attrgetter(term)
    elif isinstance(term, QueryableAttribute):
        return operator.attrgetter(term.key)
    raise exc.UnsupportedOperation(
        "ORDER BY term %s can't be evaluated against an already-loaded "
        "collection; use an attribute name or a mapped attribute" % (term,)
    )


class MemberSet:
    """The queryable-collection capability a :class:`.UnionCollection`
    requires of each of its members."""

    __slots__ = ()

    def is_empty(self) -> bool:
        raise NotImplementedError()

    def find_first(self, criteria: FindCriteria) -> Optional[Any]:
        raise NotImplementedError()

    def find_all(self, criteria: FindCriteria) -> Any:
        """Return a new source holding the matches, suitable as a member
        of another :class:`.UnionCollection`."""
        raise NotImplementedError()

    def get(self, ident: Tuple[Any, ...]) -> Optional[Any]:
        """Return the object with the given primary key identity, or
        ``None`` if it isn't part of this set."""
        raise NotImplementedError()

    def __iter__(self) -> Iterator[Any]:
        raise NotImplementedError()


class QueryMember(MemberSet):
    """A member set searched with SQL."""

    __slots__ = ("query",)

    def __init__(self, query: Query[Any]):
        self.query = query

    def __repr__(self) -> str:
        return "%s(%s)" % (self.__class__.__name__, self.query)

    def is_empty(self) -> bool:
        # for a dynamic relationship this autoflushes, and is None
        # while the parent object has no identity
        session = self.query.session
        if session is None:
            return not list(self.query)
        return not session.scalar(select(self.query.exists()))

    def find_first(self, criteria: FindCriteria) -> Optional[Any]:
        return criteria.apply(self.query).first()

    def find_all(self, criteria: FindCriteria) -> Query[Any]:
        return criteria.apply(self.query)

    def get(self, ident: Tuple[Any, ...]) -> Optional[Any]:
        descriptions = self.query.column_descriptions
        entity = descriptions[0]["entity"] if descriptions else None
        if entity is None or len(descriptions) != 1:
            raise exc.UnsupportedOperation(
                "Identity lookup requires a Query against a single "
                "mapped entity; got %s" % (self.query,)
            )
        primary_key = inspect(entity).primary_key
        if len(primary_key) != len(ident):
            raise sa_exc.InvalidRequestError(
                "Incorrect number of values in identifier formed from "
                "argument %r; primary key for %s is %s"
                % (ident, entity, ", ".join(str(c) for c in primary_key))
            )
        return self.query.filter(
            *[column == value for column, value in zip(primary_key, ident)]
        ).first()

    def __iter__(self) -> Iterator[Any]:
        return iter(self.query)


class SequenceMember(MemberSet):
    """A member set of already-loaded objects, searched in Python.

    One-shot iterables are read into a list the first time the member is
    used, not when it is adapted.

    """

    __slots__ = ("_source", "_items")

    def __init__(self, source: Iterable[Any]):
        self._source = source
        self._items: Optional[Sequence[Any]] = None

    def __repr__(self) -> str:
        return "%s(%r)" % (self.__class__.__name__, self._source)

    @property
    def items(self) -> Sequence[Any]:
        if self._items is None:
            if isinstance(self._source, collections.abc.Sequence):
                self._items = self._source
            else:
                self._items = list(self._source)
        return self._items

    def is_empty(self) -> bool:
        return len(self.items) == 0

    def find_first(self, criteria: FindCriteria) -> Optional[Any]:
        matched = criteria.evaluate(self.items)
        return matched[0] if matched else None

    def find_all(self, criteria: FindCriteria) -> List[Any]:
        return criteria.evaluate(self.items)

    def get(self, ident: Tuple[Any, ...]) -> Optional[Any]:
        for obj in self.items:
            state = inspect(obj, raiseerr=False)
            if state is not None and getattr(state, "identity", None) == ident:
                return obj
        return None

    def __iter__(self) -> Iterator[Any]:
        return iter(self.items)


def as_member(source: Any) -> MemberSet:
    """Adapt ``source`` to a :class:`.MemberSet`."""
    if isinstance(source, MemberSet):
        return source
    elif isinstance(source, Query):
        return QueryMember(source)
    elif isinstance(source, (str, bytes, collections.abc.Mapping)):
        raise sa_exc.ArgumentError(
            "%r is not a collection of mapped objects" % (source,)
        )
    elif isinstance(source, collections.abc.Iterable):
        return SequenceMember(source)
    raise sa_exc.ArgumentError(
        "Can't use %r as a member set; expected a Query, a "
        "UnionCollection or an iterable of mapped objects" % (source,)
    )
