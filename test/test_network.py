from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import exc as sa_exc
from sqlalchemy import ForeignKey
from sqlalchemy import func
from sqlalchemy import inspect
from sqlalchemy import Integer
from sqlalchemy import select
from sqlalchemy import Table
from sqlalchemy import testing
from sqlalchemy.orm.attributes import get_history
from sqlalchemy.orm.interfaces import MANYTOMANY
from sqlalchemy.orm.interfaces import ONETOMANY
from sqlalchemy.testing import eq_
from sqlalchemy.testing import expect_raises
from sqlalchemy.testing import expect_raises_message
from sqlalchemy.testing import fixtures
from sqlalchemy.testing import in_
from sqlalchemy.testing import is_
from sqlalchemy.testing import is_false
from sqlalchemy.testing import is_none
from sqlalchemy.testing import is_true
from sqlalchemy.testing.fixtures import fixture_session
from sqlalchemy_network import declare_network
from sqlalchemy_network import exc
from sqlalchemy_network import NetworkAccessor
from sqlalchemy_network import NetworkConfig
from sqlalchemy_network import union_accessors
from sqlalchemy_network import UnionAccessor
from sqlalchemy_network.network import _underscore
from test._fixtures import PeopleFixtureTest


def _names(collection):
    return sorted(person.name for person in collection)


class DeclaredAttributesTest(PeopleFixtureTest):
    def test_relationships(self):
        Person, Invite = self.classes("Person", "Invite")
        rels = inspect(Person).relationships

        for name in ("connections", "friends"):
            for key in ("%s_out" % name, "%s_in" % name):
                is_(rels[key].direction, MANYTOMANY)
                is_false(rels[key].viewonly)
                is_(rels[key].mapper.class_, Person)

        for name in ("contacts", "acquaintances", "colleagues"):
            for key in ("%s_out" % name, "%s_in" % name):
                is_(rels[key].direction, MANYTOMANY)
                is_true(rels[key].viewonly)
                is_(rels[key].secondary, Invite.__table__)

        for key in ("invites_out", "invites_in"):
            is_(rels[key].direction, ONETOMANY)
            is_true(rels[key].viewonly)
            is_(rels[key].mapper.class_, Invite)

    def test_back_populates(self):
        Person = self.classes.Person
        rels = inspect(Person).relationships

        eq_(rels["connections_out"].back_populates, "connections_in")
        eq_(rels["connections_in"].back_populates, "connections_out")
        is_none(rels["colleagues_out"].back_populates)

    def test_default_join_table(self):
        Person = self.classes.Person
        table = Person.metadata.tables["people_people"]

        eq_([c.name for c in table.c], ["person_id", "person_id_target"])
        eq_([c.nullable for c in table.c], [False, False])
        eq_(len(table.primary_key), 0)
        for col in table.c:
            (fk,) = col.foreign_keys
            is_(fk.column, Person.__table__.c.id)

    def test_named_join_table(self):
        Person = self.classes.Person
        table = Person.metadata.tables["friends"]

        eq_([c.name for c in table.c], ["person_id", "person_id_friend"])

    def test_configs(self):
        Person, Invite = self.classes("Person", "Invite")
        descriptors = inspect(Person).all_orm_descriptors

        eq_(
            descriptors["connections"].config,
            NetworkConfig(
                "connections",
                "person_id",
                "person_id_target",
                "people_people",
                None,
                None,
            ),
        )
        eq_(
            descriptors["friends"].config,
            NetworkConfig(
                "friends",
                "person_id",
                "person_id_friend",
                "friends",
                None,
                None,
            ),
        )
        eq_(
            descriptors["colleagues"].config,
            NetworkConfig(
                "colleagues",
                "person_id",
                "person_id_target",
                None,
                Invite,
                {"is_accepted": True},
            ),
        )
        is_(descriptors["contacts"].config.through, Invite)
        is_(descriptors["acquaintances"].config.through, Invite)

    def test_accessors(self):
        Person = self.classes.Person
        accessors = union_accessors(Person)

        eq_(
            sorted(accessors),
            [
                "acquaintances",
                "associates",
                "colleagues",
                "connections",
                "contacts",
                "friends",
                "invites",
            ],
        )
        is_(type(accessors["connections"]), NetworkAccessor)
        eq_(
            accessors["connections"].members,
            ("connections_in", "connections_out"),
        )
        is_(type(accessors["invites"]), UnionAccessor)
        eq_(accessors["invites"].members, ("invites_in", "invites_out"))
        eq_(accessors["associates"].members, ("friends", "colleagues"))


class DirectNetworkTest(PeopleFixtureTest):
    def test_both_directions(self):
        Person = self.classes.Person
        sess = fixture_session()
        alex, bob, carol, dave = [sess.get(Person, i) for i in (1, 2, 3, 4)]

        eq_(_names(alex.connections_out), ["Bob"])
        eq_(_names(alex.connections_in), ["Carol"])
        eq_(_names(alex.connections), ["Bob", "Carol"])
        eq_(_names(bob.connections), ["Alex"])
        eq_(_names(carol.connections), ["Alex"])
        is_true(dave.connections.is_empty())
        eq_(len(dave.connections), 0)

    def test_custom_keys(self):
        Person = self.classes.Person
        sess = fixture_session()
        alex, eve = sess.get(Person, 1), sess.get(Person, 5)

        eq_(_names(alex.friends), ["Dave", "Eve"])
        eq_(_names(eve.friends), ["Alex"])
        eq_(_names(eve.friends_out), ["Alex"])
        eq_(_names(eve.friends_in), [])

    def test_append_is_reciprocal(self):
        Person = self.classes.Person
        sess = fixture_session()
        alex, dave = sess.get(Person, 1), sess.get(Person, 4)
        people_people = Person.metadata.tables["people_people"]

        alex.connections_out.append(dave)
        eq_(get_history(dave, "connections_in").added, [alex])

        in_(alex, dave.connections)
        in_(dave, alex.connections)
        eq_(_names(dave.connections_in), ["Alex"])
        eq_(
            sess.scalar(
                select(func.count())
                .select_from(people_people)
                .where(
                    people_people.c.person_id == 1,
                    people_people.c.person_id_target == 4,
                )
            ),
            1,
        )

    def test_remove(self):
        Person = self.classes.Person
        sess = fixture_session()
        alex, bob = sess.get(Person, 1), sess.get(Person, 2)

        bob.connections_in.remove(alex)
        eq_(_names(alex.connections), ["Carol"])
        is_true(bob.connections.is_empty())

    def test_transient(self):
        Person = self.classes.Person
        p1, p2 = Person(name="Fay"), Person(name="Gus")

        p1.connections_out.append(p2)

        eq_(_names(p1.connections), ["Gus"])
        eq_(_names(p2.connections), ["Fay"])
        is_true(Person(name="Hal").connections.is_empty())

    def test_find(self):
        Person = self.classes.Person
        sess = fixture_session()
        alex = sess.get(Person, 1)

        eq_(alex.connections.find_by(name="Bob").id, 2)
        eq_(len(alex.connections.find_all_by(name="Carol")), 1)
        eq_(alex.connections.find(3).name, "Carol")
        with expect_raises(exc.RecordNotFound):
            alex.connections.find(4)


class ThroughNetworkTest(PeopleFixtureTest):
    def test_intermediate_records(self):
        Person = self.classes.Person
        sess = fixture_session()
        alex = sess.get(Person, 1)

        eq_(sorted(i.id for i in alex.invites_out), [1, 4])
        eq_(sorted(i.id for i in alex.invites_in), [2, 3])
        eq_(len(alex.invites), 4)
        eq_(alex.invites.find_by(message="lunch?").id, 1)

    def test_unconditional(self):
        Person = self.classes.Person
        sess = fixture_session()
        alex, carol = sess.get(Person, 1), sess.get(Person, 3)

        eq_(_names(alex.contacts_out), ["Carol", "Eve"])
        eq_(_names(alex.contacts_in), ["Bob", "Dave"])
        eq_(_names(alex.contacts), ["Bob", "Carol", "Dave", "Eve"])
        eq_(_names(carol.contacts), ["Alex"])

    def test_mapping_conditions(self):
        Person = self.classes.Person
        sess = fixture_session()
        alex, bob = sess.get(Person, 1), sess.get(Person, 2)

        eq_(_names(alex.colleagues), ["Carol", "Dave"])
        is_true(bob.colleagues.is_empty())

    def test_callable_conditions(self):
        Person = self.classes.Person
        sess = fixture_session()
        alex, eve = sess.get(Person, 1), sess.get(Person, 5)

        eq_(_names(alex.acquaintances), ["Carol", "Dave"])
        is_true(eve.acquaintances.is_empty())

    def test_conditions_follow_data(self):
        Person, Invite = self.classes("Person", "Invite")
        sess = fixture_session()
        alex, bob = sess.get(Person, 1), sess.get(Person, 2)

        eq_(_names(alex.colleagues), ["Carol", "Dave"])

        sess.get(Invite, 2).is_accepted = True

        eq_(_names(alex.colleagues), ["Bob", "Carol", "Dave"])
        eq_(_names(bob.colleagues), ["Alex"])
        eq_(_names(bob.acquaintances), ["Alex"])

        sess.get(Invite, 3).is_accepted = False
        eq_(_names(alex.colleagues), ["Bob", "Carol"])

    def test_find_with_conditions(self):
        Person = self.classes.Person
        sess = fixture_session()
        alex = sess.get(Person, 1)

        eq_(len(alex.contacts.find_all_by(name="Bob")), 1)
        eq_(len(alex.colleagues.find_all_by(name="Bob")), 0)
        eq_(alex.colleagues.find_by(name="Carol").id, 3)
        eq_(alex.colleagues.find(4).name, "Dave")
        with expect_raises_message(exc.RecordNotFound, r"not found: \(2\)"):
            alex.colleagues.find(3, 2)

    def test_new_invite(self):
        Person, Invite = self.classes("Person", "Invite")
        sess = fixture_session()
        bob, eve = sess.get(Person, 2), sess.get(Person, 5)

        sess.add(Invite(person=eve, person_target=bob, is_accepted=True))

        eq_(_names(bob.colleagues), ["Eve"])
        eq_(_names(eve.colleagues), ["Bob"])
        eq_(len(eve.invites), 2)


class NestedUnionTest(PeopleFixtureTest):
    def test_associates(self):
        Person = self.classes.Person
        sess = fixture_session()
        alex = sess.get(Person, 1)

        associates = alex.associates
        eq_(len(associates), 3)
        eq_([p.name for p in associates], ["Eve", "Dave", "Carol"])

    def test_associates_find(self):
        Person = self.classes.Person
        sess = fixture_session()
        alex, carol = sess.get(Person, 1), sess.get(Person, 3)

        eq_(alex.associates.find(4).name, "Dave")
        eq_(alex.associates.find_by(name="Carol").id, 3)
        eq_(_names(alex.associates.find_all_by(name="Dave")), ["Dave"])
        eq_(len(alex.associates.find_all_by(name="Dave")), 1)
        eq_(_names(carol.associates), ["Alex"])
        with expect_raises(exc.RecordNotFound):
            alex.associates.find(2)


class _NetworkModels:
    def _models(self, decl_base):
        class Person(decl_base):
            __tablename__ = "people"

            id = Column(Integer, primary_key=True)

        class Invite(decl_base):
            __tablename__ = "invites"

            id = Column(Integer, primary_key=True)
            person_id = Column(ForeignKey("people.id"))
            person_id_target = Column(ForeignKey("people.id"))
            is_accepted = Column(Boolean)

        return Person, Invite


class DeclarationTest(_NetworkModels, fixtures.TestBase):
    def test_underscore(self):
        eq_(_underscore("Person"), "person")
        eq_(_underscore("GraphNode"), "graph_node")
        eq_(_underscore("HTTPRequest"), "http_request")

    def test_defaults(self, decl_base):
        class GraphNode(decl_base):
            __tablename__ = "graph_nodes"

            id = Column(Integer, primary_key=True)

        accessor = declare_network(GraphNode, "links")
        eq_(
            accessor.config,
            NetworkConfig(
                "links",
                "graph_node_id",
                "graph_node_id_target",
                "graph_nodes_graph_nodes",
                None,
                None,
            ),
        )
        is_(GraphNode.links, accessor)

        table = decl_base.metadata.tables["graph_nodes_graph_nodes"]
        eq_(
            [c.name for c in table.c],
            ["graph_node_id", "graph_node_id_target"],
        )

        rels = inspect(GraphNode).relationships
        is_(rels["links_out"].secondary, table)
        is_(rels["links_in"].secondary, table)
        is_(rels["links_out"].direction, MANYTOMANY)

    def test_existing_join_table(self, decl_base):
        class GraphNode(decl_base):
            __tablename__ = "graph_nodes"

            id = Column(Integer, primary_key=True)

        links = Table(
            "links",
            decl_base.metadata,
            Column("graph_node_id", ForeignKey("graph_nodes.id")),
            Column("graph_node_id_target", ForeignKey("graph_nodes.id")),
            Column("weight", Integer),
        )

        declare_network(GraphNode, "links", join_table="links")
        is_(decl_base.metadata.tables["links"], links)
        is_(inspect(GraphNode).relationships["links_out"].secondary, links)

    def test_join_table_object(self, decl_base):
        class GraphNode(decl_base):
            __tablename__ = "graph_nodes"

            id = Column(Integer, primary_key=True)

        edges = Table(
            "edges",
            decl_base.metadata,
            Column("src", ForeignKey("graph_nodes.id")),
            Column("dest", ForeignKey("graph_nodes.id")),
        )

        accessor = declare_network(
            GraphNode,
            "edges",
            join_table=edges,
            foreign_key="src",
            association_foreign_key="dest",
        )
        eq_(accessor.config.join_table, "edges")
        is_(inspect(GraphNode).relationships["edges_in"].secondary, edges)

    def test_through_by_table_name(self, decl_base):
        Person, Invite = self._models(decl_base)

        accessor = declare_network(Person, "contacts", through="invites")
        is_(accessor.config.through, Invite)
        is_(Person.invites.owning_class, Person)

    def test_second_network_reuses_intermediate(self, decl_base):
        Person, Invite = self._models(decl_base)

        declare_network(Person, "contacts", through=Invite)
        invites_out = inspect(Person).attrs["invites_out"]

        declare_network(
            Person,
            "colleagues",
            through=Invite,
            conditions={"is_accepted": True},
        )
        is_(inspect(Person).attrs["invites_out"], invites_out)

    def test_callable_conditions_are_deferred(self, decl_base):
        Person, Invite = self._models(decl_base)
        called = []

        def conditions():
            called.append(True)
            return {"is_accepted": True}

        declare_network(
            Person, "colleagues", through=Invite, conditions=conditions
        )
        eq_(called, [])

        inspect(Person).relationships
        is_true(called)


class DeclarationErrorTest(_NetworkModels, fixtures.TestBase):
    def test_unmapped(self):
        class Person:
            pass

        with expect_raises_message(
            exc.ConfigurationError, "class is not mapped"
        ):
            declare_network(Person, "friends")

    def test_composite_primary_key(self, decl_base):
        class Pair(decl_base):
            __tablename__ = "pairs"

            a = Column(Integer, primary_key=True)
            b = Column(Integer, primary_key=True)

        with expect_raises_message(
            exc.ConfigurationError,
            "requires Pair to have a single column primary key",
        ):
            declare_network(Pair, "links")

    def test_through_and_join_table(self, decl_base):
        Person, Invite = self._models(decl_base)

        with expect_raises_message(
            exc.ConfigurationError, "mutually exclusive"
        ):
            declare_network(
                Person, "contacts", through=Invite, join_table="invites"
            )

    def test_unresolvable_through(self, decl_base):
        Person, Invite = self._models(decl_base)

        with expect_raises_message(
            exc.ConfigurationError,
            "can't resolve intermediate class 'Nope' in the registry of "
            "Person",
        ):
            declare_network(Person, "contacts", through="Nope")

    def test_unmapped_through(self, decl_base):
        Person, Invite = self._models(decl_base)

        class Nope:
            pass

        with expect_raises_message(
            exc.ConfigurationError, "intermediate class .* is not mapped"
        ):
            declare_network(Person, "contacts", through=Nope)

    def test_missing_key_column(self, decl_base):
        Person, Invite = self._models(decl_base)

        with expect_raises_message(
            exc.ConfigurationError, "table 'invites' has no column 'nope_id'"
        ):
            declare_network(
                Person, "contacts", through=Invite, foreign_key="nope_id"
            )
        is_false(inspect(Person).has_property("invites_out"))

    def test_bad_conditions_type(self, decl_base):
        Person, Invite = self._models(decl_base)

        with expect_raises_message(
            exc.ConfigurationError, "conditions must be a SQL expression"
        ):
            declare_network(Person, "contacts", through=Invite, conditions=5)

    def test_unknown_condition_column(self, decl_base):
        Person, Invite = self._models(decl_base)

        with expect_raises_message(
            exc.ConfigurationError,
            "table 'invites' has no column 'nope' named in conditions",
        ):
            declare_network(
                Person, "contacts", through=Invite, conditions={"nope": 1}
            )

    @testing.combinations(
        ({}, {}),
        ({}, {"foreign_key": "person_id_target"}),
        ({"through": "Invite"}, {"through": "Invite"}),
        ({"through": "Invite"}, {}),
        argnames="first, second",
    )
    def test_redeclare_network(self, decl_base, first, second):
        Person, Invite = self._models(decl_base)

        accessor = declare_network(Person, "contacts", **first)
        contacts_out = inspect(Person).attrs["contacts_out"]

        with expect_raises_message(
            exc.ConfigurationError,
            "Network relationship 'contacts' can't be declared on Person; "
            "mapped attribute 'contacts_out' already exists",
        ):
            declare_network(Person, "contacts", **second)

        is_(Person.contacts, accessor)
        is_(inspect(Person).attrs["contacts_out"], contacts_out)
        eq_(union_accessors(Person)["contacts"].config, accessor.config)

    def test_name_taken_by_mapped_attribute(self, decl_base):
        class GraphNode(decl_base):
            __tablename__ = "graph_nodes"

            id = Column(Integer, primary_key=True)
            links_in = Column(Integer)

        with expect_raises_message(
            exc.ConfigurationError, "mapped attribute 'links_in' already"
        ):
            declare_network(GraphNode, "links")
        is_false(inspect(GraphNode).has_property("links_out"))

    def test_is_argument_error(self, decl_base):
        Person, Invite = self._models(decl_base)

        with expect_raises(sa_exc.ArgumentError):
            declare_network(Person, "contacts", through="Nope")
