#
# Copyright (c) 2001 Bizar Software Pty Ltd (http://www.bizarsoftware.com.au/)
# This module is free software, and you may redistribute it and/or modify
# under the same terms as Python, so long as this copyright message and
# disclaimer are retained in their original form.
#
# IN NO EVENT SHALL BIZAR SOFTWARE PTY LTD BE LIABLE TO ANY PARTY FOR
# DIRECT, INDIRECT, SPECIAL, INCIDENTAL, OR CONSEQUENTIAL DAMAGES ARISING
# OUT OF THE USE OF THIS CODE, EVEN IF THE AUTHOR HAS BEEN ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.
#
# BIZAR SOFTWARE PTY LTD SPECIFICALLY DISCLAIMS ANY WARRANTIES, INCLUDING,
# BUT NOT LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS
# FOR A PARTICULAR PURPOSE.  THE CODE PROVIDED HEREUNDER IS ON AN "AS IS"
# BASIS, AND THERE IS NO OBLIGATION WHATSOEVER TO PROVIDE MAINTENANCE,
# SUPPORT, UPDATES, ENHANCEMENTS, OR MODIFICATIONS.

import logging
import os
import shutil

from doreen import configuration, schema
from doreen.exceptions import InvalidFilter, NotAuthorised, NotFound, \
    StoreError, UsageError
from doreen.fieldhandlers import JsonHandler
from doreen.schema import FIELD_CHILDREN, FIELD_DESCRIPTION, \
    FIELD_KEYWORDS, FIELD_PARENTS, FIELD_PRIORITY, FIELD_PROJECT, \
    FIELD_STATUS, FIELD_TITLE, FIELD_TYPE, FIELD_UIDASSIGN, \
    PRIORITY_HIGH, PRIORITY_LOWEST, PRIORITY_NORMAL, STATUS_CLOSED, \
    STATUS_IN_PROGRESS, STATUS_OPEN
from doreen.searchfilter import SearchFilter, SearchOrder
from doreen.security import ACCESS_CREATE, ACCESS_CRUD, ACCESS_READ, \
    ACCESS_UPDATE
from doreen.ticket import PopulationLevel
from doreen.tracker import Tracker
from doreen.user import FLUSER_DISABLED, Group

config = configuration.CoreConfig()
config.DATABASE = "db"
config.RDBMS_NAME = "doreentest"
config.RDBMS_HOST = "localhost"
config.RDBMS_USER = "doreentest"
config.RDBMS_PASSWORD = "doreentest"
# uncomment the following to have excessive debug output from test cases
#config.LOGGING_FILENAME = "/tmp/logfile"
#config.LOGGING_LEVEL = "DEBUG"
config.init_logging()

TASK_DETAILS = (FIELD_TITLE, FIELD_DESCRIPTION, FIELD_STATUS,
    FIELD_PRIORITY, FIELD_UIDASSIGN, FIELD_KEYWORDS, FIELD_PARENTS,
    FIELD_CHILDREN, FIELD_PROJECT)
TASK_LIST = (FIELD_TITLE, FIELD_STATUS, FIELD_PRIORITY, FIELD_UIDASSIGN)
BUG_DETAILS = (FIELD_TITLE, FIELD_DESCRIPTION, FIELD_STATUS, FIELD_PRIORITY)
BUG_LIST = (FIELD_TITLE, FIELD_STATUS)


def makeRegistry(aliases=None, extra_fields=()):
    ''' A SchemaRegistry with the core fields, a Task (ID 1) and a Bug
        (ID 2) type, built without a database.
    '''
    fields = [schema.TicketField(i, name, tblname, ordering=ordering,
            search_boost=schema.DEFAULT_SEARCH_BOOST.get(i))
        for i, name, tblname, ordering in schema.CORE_FIELDS]
    fields.extend(extra_fields)
    types = [schema.TicketType(1, 'Task', TASK_DETAILS, TASK_LIST),
        schema.TicketType(2, 'Bug', BUG_DETAILS, BUG_LIST)]
    return schema.SchemaRegistry(fields, types, aliases,
        config.SEARCH_DRILLDOWN_FIELDS)


def setupSchema(tracker, create):
    """Install the core fields plus two ticket types; with 'create' also
    add users and ACLs. Returns a dict of the IDs created.
    """
    tracker.install()
    db = tracker.db
    ids = {}
    ids['task'] = db.create_type('Task', TASK_DETAILS, TASK_LIST)
    ids['bug'] = db.create_type('Bug', BUG_DETAILS, BUG_LIST)
    tracker.reload_schema()
    if create:
        ids['admin'] = db.create_user('admin', 'Administrator',
            'admin@example.com', groups=[Group.ADMINS])
        ids['alice'] = db.create_user('alice', 'Alice Editor',
            'alice@example.com', groups=[Group.EDITORS])
        ids['bob'] = db.create_user('bob', 'Bob Guru', 'bob@example.com',
            groups=[Group.GURUS])
        ids['carol'] = db.create_user('carol', 'Carol Nobody',
            'carol@example.com')
        ids['dave'] = db.create_user('dave', 'Dave Gone',
            'dave@example.com', fl=FLUSER_DISABLED, groups=[Group.EDITORS])
        ids['acl_a'] = tracker.access.create_acl('Editors only',
            {Group.EDITORS: ACCESS_CRUD}).aid
        ids['acl_b'] = tracker.access.create_acl('Gurus only',
            {Group.GURUS: ACCESS_CRUD}).aid
        ids['acl_public'] = tracker.access.create_acl(None,
            {Group.ALLUSERS: ACCESS_READ, Group.EDITORS: ACCESS_CRUD}).aid
    return ids


class MyTestCase(object):
    # backend name, set by the opener mixins
    backend = None

    def tearDown(self):
        if hasattr(self, 'tracker'):
            self.tracker.close()
        if os.path.exists(config.DATABASE):
            shutil.rmtree(config.DATABASE)

    def open_tracker(self):
        config.RDBMS_BACKEND = self.backend
        self.tracker = Tracker(config)
        self.db = self.tracker.db


if 'LOGGING_LEVEL' in os.environ:
    logger = logging.getLogger('doreen.hyperdb')
    logger.setLevel(os.environ['LOGGING_LEVEL'])


class commonDBTest(MyTestCase):
    def setUp(self):
        # remove previous test, ignore errors
        if os.path.exists(config.DATABASE):
            shutil.rmtree(config.DATABASE)
        self.open_tracker()
        self.ids = setupSchema(self.tracker, 1)

    def newTicket(self, title, type_id=None, aid=None, uid=None, **values):
        ''' Create a ticket as 'uid' (default admin); field values are
            given by field name.
        '''
        values['title'] = title
        return self.tracker.create_ticket(uid or self.ids['admin'],
            type_id or self.ids['task'], aid or self.ids['acl_a'], values)

    def recordSQL(self):
        ''' Record every statement sent to the store from now on.
        '''
        statements = []
        sql = self.db.sql

        def recording_sql(statement, args=None, cursor=None, stage=None):
            statements.append(statement)
            return sql(statement, args, cursor, stage)
        self.db.sql = recording_sql
        return statements


class DBTest(commonDBTest):

    # installation and schema

    def testInstallTwice(self):
        fields = len(self.db.get_field_rows())
        self.tracker.install()
        self.assertEqual(len(self.db.get_field_rows()), fields)

    def testSchemaLoaded(self):
        t = self.tracker.schema.get_type(self.ids['task'])
        self.assertEqual(t.name, 'Task')
        names = [f.name for f in self.tracker.schema.visible_fields(
            [self.ids['task']])]
        self.assertEqual(names, ['title', 'priority', 'assignee', 'status',
            'created', 'changed'])

    def testReopenKeepsSchema(self):
        self.tracker.close()
        self.open_tracker()
        self.assertEqual(self.tracker.schema.get_type(self.ids['bug']).name,
            'Bug')
        self.assertEqual(self.tracker.schema.find(FIELD_TITLE).search_boost,
            5)

    # tickets

    def testCreateAndGetOne(self):
        nid = self.newTicket('Printer on fire', status=STATUS_OPEN,
            priority=PRIORITY_HIGH, description='It smells.',
            keywords='printer, hardware')
        t = self.tracker.get_one(nid, self.ids['alice'])
        self.assertEqual(t.id, nid)
        self.assertEqual(t.fetched, PopulationLevel.DETAILS)
        self.assertEqual(t.get_value(FIELD_TITLE), 'Printer on fire')
        self.assertEqual(t.get_value(FIELD_DESCRIPTION), 'It smells.')
        self.assertEqual(t.get_value(FIELD_STATUS), STATUS_OPEN)
        self.assertEqual(t.get_value(FIELD_PRIORITY), PRIORITY_HIGH)
        self.assertEqual(t.get_value(FIELD_KEYWORDS), 'hardware,printer')
        self.assertEqual(len(t.word_ids[FIELD_KEYWORDS]), 2)
        self.assertEqual(t.get_value(FIELD_TYPE), self.ids['task'])
        self.assertEqual(t.owner_uid, self.ids['admin'])
        self.assertFalse(t.is_template())

    def testCreateUnknownField(self):
        self.assertRaises(UsageError, self.newTicket, 'x', nonsense=1)

    def testCreateFieldNotInType(self):
        self.assertRaises(UsageError, self.newTicket, 'x',
            type_id=self.ids['bug'], assignee=self.ids['alice'])

    def testCreateInvalidStatus(self):
        self.assertRaises(UsageError, self.newTicket, 'x', status=12345)

    def testCreateNeedsCreateAccess(self):
        self.assertRaises(NotAuthorised, self.newTicket, 'x',
            uid=self.ids['bob'])
        nid = self.newTicket('mine', uid=self.ids['alice'])
        self.assertEqual(self.tracker.get_one(nid, self.ids['alice']).owner_uid,
            self.ids['alice'])

    def testFailedCreateLeavesNothing(self):
        before = self.tracker.search(self.ids['admin']).total
        self.assertRaises(UsageError, self.newTicket, 'x',
            children=[1])
        self.assertEqual(self.tracker.search(self.ids['admin']).total,
            before)

    def testUpdateTicket(self):
        nid = self.newTicket('Paper jam', status=STATUS_OPEN)
        self.tracker.update_ticket(nid, self.ids['alice'],
            {'status': STATUS_CLOSED})
        t = self.tracker.get_one(nid, self.ids['alice'])
        self.assertEqual(t.get_value(FIELD_STATUS), STATUS_CLOSED)
        self.assertEqual(t.lastmod_uid, self.ids['alice'])
        self.assertRaises(NotFound, self.tracker.update_ticket, nid,
            self.ids['bob'], {'status': STATUS_OPEN})

    def testClearValue(self):
        nid = self.newTicket('Paper jam', description='Tray 2')
        self.tracker.update_ticket(nid, self.ids['alice'],
            {'description': None})
        t = self.tracker.get_one(nid, self.ids['alice'])
        self.assertEqual(t.get_value(FIELD_DESCRIPTION), None)
        self.assertNotIn(FIELD_DESCRIPTION, t.row_ids)
        # required fields cannot be cleared
        self.assertRaises(UsageError, self.tracker.update_ticket, nid,
            self.ids['alice'], {'title': ''})

    def testParentsAndChildren(self):
        parent = self.newTicket('Parent')
        child1 = self.newTicket('Child 1', parents=[parent])
        child2 = self.newTicket('Child 2', parents=[parent])
        t = self.tracker.get_one(parent, self.ids['admin'])
        self.assertEqual(t.get_value(FIELD_CHILDREN), [child1, child2])
        t = self.tracker.get_one(child2, self.ids['admin'])
        self.assertEqual(t.get_value(FIELD_PARENTS), [parent])

    def testGetOneMissing(self):
        self.assertRaises(NotFound, self.tracker.get_one, 99999,
            self.ids['admin'])
        self.assertRaises(NotFound, self.tracker.get_one, 'abc',
            self.ids['admin'])

    def testGetOneForbiddenIsNotFound(self):
        nid = self.newTicket('Secret', aid=self.ids['acl_b'])
        self.assertRaises(NotFound, self.tracker.get_one, nid,
            self.ids['alice'])
        self.assertEqual(self.tracker.get_one(nid, self.ids['bob']).id, nid)
        # needs UPDATE, the public ACL only gives READ to all users
        nid = self.newTicket('Public', aid=self.ids['acl_public'])
        self.tracker.get_one(nid, self.ids['carol'])
        self.assertRaises(NotFound, self.tracker.get_one, nid,
            self.ids['carol'], ACCESS_UPDATE)

    def testGuestReads(self):
        guests = self.tracker.access.create_acl('Public', {
            Group.ALLUSERS: ACCESS_READ, Group.GUESTS: ACCESS_READ}).aid
        visible = self.newTicket('Open to guests', aid=guests)
        users_only = self.newTicket('Users only', aid=self.ids['acl_public'])
        results = self.tracker.search(None)
        self.assertEqual(results.ticket_ids, [visible])
        self.assertEqual(self.tracker.get_one(visible, None).id, visible)
        self.assertRaises(NotFound, self.tracker.get_one, users_only, None)
        # unknown users are guests too
        self.assertEqual(self.tracker.search(4711).ticket_ids, [visible])
        results = self.tracker.search(self.ids['carol'])
        self.assertEqual(sorted(results.ticket_ids), [visible, users_only])

    def testAssertAccess(self):
        nid = self.newTicket('Secret', aid=self.ids['acl_b'])
        t = self.tracker.assembler.fetch_stage1([nid])[nid]
        access = self.tracker.access
        self.assertRaises(NotAuthorised, access.assert_access, t,
            self.ids['alice'])
        access.assert_access(t, self.ids['bob'], ACCESS_CRUD)
        access.assert_access(t, self.ids['admin'], ACCESS_CRUD)
        # disabled users are guests
        self.assertRaises(NotAuthorised, access.assert_access, t,
            self.ids['dave'])

    def testNukeTickets(self):
        parent = self.newTicket('Parent')
        child = self.newTicket('Child', parents=[parent])
        self.assertRaises(NotAuthorised, self.tracker.nuke_tickets, [parent],
            self.ids['carol'])
        self.tracker.nuke_tickets([parent], self.ids['alice'])
        self.assertRaises(NotFound, self.tracker.get_one, parent,
            self.ids['admin'])
        t = self.tracker.get_one(child, self.ids['admin'])
        self.assertEqual(t.get_value(FIELD_PARENTS), None)

    # access

    def testUsers(self):
        access = self.tracker.access
        alice = access.get_user(self.ids['alice'])
        self.assertTrue(alice.is_member(Group.EDITORS))
        self.assertTrue(alice.is_member(Group.ALLUSERS))
        self.assertFalse(alice.is_admin())
        self.assertTrue(access.get_user(self.ids['admin']).is_admin())
        self.assertTrue(access.get_user(self.ids['dave']).is_guest())
        self.assertTrue(access.get_user(424242).is_guest())
        self.assertTrue(access.get_user(None).is_guest())
        self.assertEqual(access.get_user(None).groups,
            frozenset([Group.GUESTS]))

    def testResolve(self):
        access = self.tracker.access
        self.assertEqual(access.resolve(self.ids['alice']), frozenset([
            self.ids['acl_a'], self.ids['acl_public']]))
        self.assertEqual(access.resolve(self.ids['alice'], ACCESS_CREATE),
            frozenset([self.ids['acl_a'], self.ids['acl_public']]))
        self.assertEqual(access.resolve(self.ids['carol']),
            frozenset([self.ids['acl_public']]))
        self.assertEqual(access.resolve(self.ids['carol'], ACCESS_UPDATE),
            frozenset())
        self.assertEqual(access.resolve(None), frozenset())
        self.assertEqual(access.resolve(self.ids['admin']), frozenset([
            self.ids['acl_a'], self.ids['acl_b'], self.ids['acl_public']]))

    def testAclNames(self):
        acl = self.tracker.access.find_acl(self.ids['acl_public'])
        self.assertEqual(acl.name, 'All users: R; Editors: CRUD')
        self.assertEqual(acl.describe(), [
            'Members of "All users" can read',
            'Members of "Editors" can create, read, update, delete'])

    def testCreateAclValidates(self):
        access = self.tracker.access
        self.assertRaises(UsageError, access.create_acl, 'bad', {999: 1})
        self.assertRaises(UsageError, access.create_acl, 'bad',
            {Group.EDITORS: 0x100})
        self.assertRaises(UsageError, access.create_acl, '',
            {Group.EDITORS: ACCESS_READ})

    def testUpdateAcl(self):
        access = self.tracker.access
        nid = self.newTicket('Secret', aid=self.ids['acl_b'])
        self.assertRaises(NotFound, self.tracker.get_one, nid,
            self.ids['alice'])
        access.update_acl(self.ids['acl_b'], None, {
            Group.GURUS: ACCESS_CRUD, Group.EDITORS: ACCESS_READ})
        self.assertEqual(self.tracker.get_one(nid, self.ids['alice']).id, nid)
        self.assertEqual(access.find_acl(self.ids['acl_b']).name,
            'Gurus: CRUD; Editors: R')

    def testUsersWithAccess(self):
        users = self.tracker.access.get_users_with_access(self.ids['acl_a'])
        # dave is disabled but still a member
        self.assertEqual(sorted(users), sorted([self.ids['alice'],
            self.ids['dave']]))
        self.assertEqual(users[self.ids['alice']], ACCESS_CRUD)
        self.assertRaises(NotFound,
            self.tracker.access.get_users_with_access, 4711)

    def testSystemAcl(self):
        access = self.tracker.access
        access.create_sys_acl(-1, {Group.ALLUSERS: ACCESS_READ})
        access.assert_access_to_acl(self.ids['carol'], -1, ACCESS_READ)
        self.assertRaises(NotAuthorised, access.assert_access_to_acl,
            self.ids['carol'], -1, ACCESS_UPDATE)
        self.assertRaises(NotAuthorised, access.assert_access_to_acl, None,
            -1, ACCESS_READ)
        self.assertRaises(UsageError, access.assert_access_to_acl,
            self.ids['carol'], -2, ACCESS_READ)

    # searching

    def testSearchOnlyReadableAcls(self):
        t1 = self.newTicket('Task one', aid=self.ids['acl_a'])
        t2 = self.newTicket('Task two', aid=self.ids['acl_b'])
        self.newTicket('A bug', type_id=self.ids['bug'])
        results = self.tracker.search(self.ids['alice'],
            type_ids=[self.ids['task']])
        self.assertEqual(results.ticket_ids, [t1])
        self.assertEqual(results.total, 1)
        results = self.tracker.search(self.ids['bob'],
            type_ids=[self.ids['task']])
        self.assertEqual(results.ticket_ids, [t2])
        results = self.tracker.search(self.ids['admin'],
            type_ids=[self.ids['task']], sort='id')
        self.assertEqual(sorted(results.ticket_ids), [t1, t2])

    def testSearchNoAclsNoQuery(self):
        self.newTicket('Task one')
        statements = self.recordSQL()
        results = self.tracker.search(self.ids['bob'],
            type_ids=[self.ids['bug']], with_drilldown=True)
        self.assertEqual(results.ticket_ids, [])
        self.assertEqual(results.total, 0)
        # bob has ACLs, just no bugs
        self.assertTrue([s for s in statements if 'tickets' in s])

        del statements[:]
        results = self.tracker.search(None, fulltext='task')
        self.assertEqual((results.ticket_ids, results.total), ([], 0))
        self.assertEqual([s for s in statements if 'tickets' in s], [])

    def testPages(self):
        ids = [self.newTicket('Ticket %s' % n) for n in range(25)]
        size = config.SEARCH_PAGE_SIZE
        config.SEARCH_PAGE_SIZE = 10
        try:
            pages = []
            for page, count in ((1, 10), (2, 10), (3, 5), (4, 0)):
                results = self.tracker.search(self.ids['alice'], page=page)
                self.assertEqual(len(results.ticket_ids), count)
                self.assertEqual(results.total, 25)
                self.assertEqual(results.page_count(), 3)
                pages.extend(results.ticket_ids)
        finally:
            config.SEARCH_PAGE_SIZE = size
        self.assertEqual(len(set(pages)), 25)
        self.assertEqual(sorted(pages), ids)
        plan = self.tracker.builder.build([SearchFilter.from_acl_ids(
            [self.ids['acl_a']])])
        self.assertEqual(self.tracker.executor.all_ids(plan), pages)

    def testInvalidPage(self):
        self.newTicket('Ticket')
        self.assertRaises(UsageError, self.tracker.search, self.ids['alice'],
            page=0)
        self.assertRaises(UsageError, self.tracker.search, self.ids['alice'],
            page='x')

    def testDrillDown(self):
        expected = set()
        for n, (status, prio) in enumerate([
                (STATUS_OPEN, PRIORITY_HIGH),
                (STATUS_OPEN, PRIORITY_NORMAL),
                (STATUS_IN_PROGRESS, PRIORITY_HIGH),
                (STATUS_IN_PROGRESS, PRIORITY_LOWEST),
                (STATUS_CLOSED, PRIORITY_HIGH),
                (None, PRIORITY_HIGH),
                (STATUS_OPEN, None)]):
            values = {}
            if status is not None:
                values['status'] = status
            if prio is not None:
                values['priority'] = prio
            nid = self.newTicket('Ticket %d' % n, **values)
            if status in (STATUS_OPEN, STATUS_IN_PROGRESS) and \
                    prio == PRIORITY_HIGH:
                expected.add(nid)
        results = self.tracker.search(self.ids['alice'], drill_down={
            FIELD_STATUS: [STATUS_OPEN, STATUS_IN_PROGRESS],
            FIELD_PRIORITY: [PRIORITY_HIGH]})
        self.assertEqual(set(results.ticket_ids), expected)
        self.assertEqual(results.total, 2)

    def testDrillDownUnknownField(self):
        self.assertRaises(InvalidFilter, self.tracker.search,
            self.ids['alice'], drill_down={4711: [1]})
        self.assertRaises(InvalidFilter, self.tracker.search,
            self.ids['alice'], drill_down={FIELD_STATUS: []})

    def testDrillDownCounts(self):
        self.newTicket('One', status=STATUS_OPEN, assignee=self.ids['alice'])
        self.newTicket('Two', status=STATUS_OPEN, assignee=self.ids['bob'])
        self.newTicket('Three', status=STATUS_CLOSED,
            assignee=self.ids['alice'])
        self.newTicket('Bug', type_id=self.ids['bug'], status=STATUS_OPEN)
        results = self.tracker.search(self.ids['alice'], with_drilldown=True)
        counts = results.drill_down_counts
        self.assertEqual(counts[FIELD_TYPE], {self.ids['task']: 3,
            self.ids['bug']: 1})
        self.assertEqual(counts[FIELD_STATUS], {STATUS_OPEN: 3,
            STATUS_CLOSED: 1})
        self.assertEqual(counts[FIELD_UIDASSIGN], {self.ids['alice']: 2,
            self.ids['bob']: 1})
        self.assertEqual(results.types, [self.ids['task'], self.ids['bug']])

        # the field's own constraint is left out of its counts
        results = self.tracker.search(self.ids['alice'], with_drilldown=True,
            drill_down={FIELD_STATUS: [STATUS_OPEN]})
        counts = results.drill_down_counts
        self.assertEqual(results.total, 3)
        self.assertEqual(counts[FIELD_STATUS], {STATUS_OPEN: 3,
            STATUS_CLOSED: 1})
        self.assertEqual(counts[FIELD_UIDASSIGN], {self.ids['alice']: 1,
            self.ids['bob']: 1})

    def testScoreSortNeedsFulltext(self):
        self.newTicket('Ticket')
        statements = self.recordSQL()
        self.assertRaises(InvalidFilter, self.tracker.search,
            self.ids['alice'], sort='score')
        self.assertEqual(statements, [])
        self.assertRaises(InvalidFilter, self.tracker.search,
            self.ids['alice'], sort='nonsense')
        self.assertRaises(InvalidFilter, self.tracker.search,
            self.ids['alice'], sort='keywords')
        self.assertEqual(statements, [])

    def testPopulateSkipsDeleted(self):
        ids = [self.newTicket('Ticket %d' % n) for n in range(6)]
        plan = self.tracker.builder.build([], 'id')
        found, total = self.tracker.executor.execute(plan, 1, 10)
        self.assertEqual(total, 6)
        # deleted after the IDs were fetched
        self.db.nuke_tickets([ids[4]])
        tickets = self.tracker.assembler.populate_many(found)
        self.assertEqual(list(tickets.keys()),
            [i for i in found if i != ids[4]])
        tickets = self.tracker.assembler.populate_many([ids[4], ids[5]])
        self.assertEqual(list(tickets.keys()), [ids[5]])

    def testPopulateTwice(self):
        parent = self.newTicket('Parent', keywords='a b')
        ids = [parent] + [self.newTicket('Child %d' % n, parents=[parent],
            status=STATUS_OPEN) for n in range(3)]
        assembler = self.tracker.assembler
        for level in PopulationLevel.values:
            first = assembler.populate_many(ids, level)
            second = assembler.populate_many(ids, level)
            self.assertEqual(list(first.keys()), list(second.keys()))
            for nid in ids:
                self.assertIsNot(first[nid], second[nid])
                self.assertEqual(first[nid].as_dict(),
                    second[nid].as_dict())

    def testPopulateLevels(self):
        nid = self.newTicket('Ticket', description='long text',
            status=STATUS_OPEN)
        t = self.tracker.assembler.populate_many([nid],
            PopulationLevel.LIST)[nid]
        self.assertEqual(t.fetched, PopulationLevel.LIST)
        self.assertEqual(t.get_value(FIELD_STATUS), STATUS_OPEN)
        self.assertNotIn(FIELD_DESCRIPTION, t.field_data)
        self.tracker.assembler.populate([t], PopulationLevel.DETAILS)
        self.assertEqual(t.fetched, PopulationLevel.DETAILS)
        self.assertEqual(t.get_value(FIELD_DESCRIPTION), 'long text')
        self.assertRaises(UsageError, self.tracker.assembler.populate_many,
            [nid], 7)

    def testSortStable(self):
        for n in range(12):
            self.newTicket('Ticket %d' % n, priority=(PRIORITY_HIGH,
                PRIORITY_NORMAL, PRIORITY_LOWEST)[n % 3])
        first = self.tracker.search(self.ids['alice'], sort='!priority')
        second = self.tracker.search(self.ids['alice'], sort='!priority')
        self.assertEqual(first.ticket_ids, second.ticket_ids)
        tickets = first.tickets
        prios = [tickets[i].get_value(FIELD_PRIORITY)
            for i in first.ticket_ids]
        self.assertEqual(prios, sorted(prios, reverse=True))
        # equal priorities come in ticket ID order
        for prio in set(prios):
            same = [i for i in first.ticket_ids
                if tickets[i].get_value(FIELD_PRIORITY) == prio]
            self.assertEqual(same, sorted(same))

        reverse = self.tracker.search(self.ids['alice'], sort='priority')
        prios = [reverse.tickets[i].get_value(FIELD_PRIORITY)
            for i in reverse.ticket_ids]
        self.assertEqual(prios, sorted(prios))

    def testSortEmptyLast(self):
        empty = self.newTicket('No priority')
        self.newTicket('High', priority=PRIORITY_HIGH)
        self.newTicket('Low', priority=PRIORITY_LOWEST)
        for sort in ('priority', '!priority'):
            results = self.tracker.search(self.ids['alice'], sort=sort)
            self.assertEqual(results.ticket_ids[-1], empty)

    def testSortByTitle(self):
        b = self.newTicket('beta')
        a = self.newTicket('alpha')
        c = self.newTicket('gamma')
        results = self.tracker.search(self.ids['alice'], sort='title')
        self.assertEqual(results.ticket_ids, [a, b, c])
        results = self.tracker.search(self.ids['alice'], sort='!title')
        self.assertEqual(results.ticket_ids, [c, b, a])

    def testFulltext(self):
        t1 = self.newTicket('Printer on fire', description='The printer '
            'in room 5 is burning')
        t2 = self.newTicket('Paper jam', description='Printer says no')
        self.newTicket('Coffee machine')
        results = self.tracker.search(self.ids['alice'], fulltext='printer')
        # the title matches weigh more than the description
        self.assertEqual(results.ticket_ids, [t1, t2])
        self.assertEqual(results.highlights, ['printer'])
        results = self.tracker.search(self.ids['alice'],
            fulltext='PRINTER fire')
        self.assertEqual(results.ticket_ids, [t1])
        results = self.tracker.search(self.ids['alice'],
            fulltext='"paper jam"', sort='!score')
        self.assertEqual(results.ticket_ids, [t2])
        results = self.tracker.search(self.ids['alice'], fulltext='the')
        self.assertEqual(results.total, 0)

    def testFulltextSpecialCharacters(self):
        t1 = self.newTicket('100% done')
        self.newTicket('1000 done')
        self.newTicket('a_b')
        results = self.tracker.search(self.ids['alice'], fulltext='100%')
        self.assertEqual(results.ticket_ids, [t1])
        results = self.tracker.search(self.ids['alice'], fulltext='a_b')
        self.assertEqual(results.total, 1)

    def testFulltextQuery(self):
        nid = self.newTicket('Printer')
        secret = self.newTicket('Printer', aid=self.ids['acl_b'])
        access = self.tracker.access.get_access(self.ids['alice'])
        results = access.find_by_fulltext_query('#%d' % nid)
        self.assertEqual(results.ticket_ids, [nid])
        self.assertRaises(NotFound, access.find_by_fulltext_query,
            '#%d' % secret)
        self.assertRaises(UsageError, access.find_by_fulltext_query, 'pr')
        results = access.find_by_fulltext_query('printer')
        self.assertEqual(results.ticket_ids, [nid])

    def testFulltextQueryMostRelevantFirst(self):
        weak = self.newTicket('Coffee machine',
            description='next to the printer')
        strong = self.newTicket('Printer broken')
        access = self.tracker.access.get_access(self.ids['alice'])
        results = access.find_by_fulltext_query('printer')
        self.assertEqual(results.ticket_ids, [strong, weak])
        self.assertEqual(results.order.direction, SearchOrder.DESC)
        results = access.find_by_fulltext_query('printer', sort='score')
        self.assertEqual(results.ticket_ids, [weak, strong])

    def testTemplates(self):
        nid = self.newTicket('Normal')
        template = self.tracker.create_ticket(self.ids['admin'],
            self.ids['task'], self.ids['acl_a'], {'title': 'Bug template'},
            template='Bug report')
        results = self.tracker.search(self.ids['alice'])
        self.assertEqual(results.ticket_ids, [nid])
        results = self.tracker.access.get_access(
            self.ids['alice']).find_templates()
        self.assertEqual(results.ticket_ids, [template])
        self.assertTrue(results.tickets[template].is_template())
        results = self.tracker.access.get_access(
            self.ids['carol']).find_templates()
        self.assertEqual(results.total, 0)

    def testTemplatesByName(self):
        create = self.tracker.create_ticket
        zulu = create(self.ids['admin'], self.ids['task'], self.ids['acl_a'],
            {'title': 'Z'}, template='Zulu')
        alpha = create(self.ids['admin'], self.ids['task'], self.ids['acl_a'],
            {'title': 'A'}, template='Alpha')
        mike = create(self.ids['admin'], self.ids['task'], self.ids['acl_a'],
            {'title': 'M'}, template='Mike')
        results = self.tracker.access.get_access(
            self.ids['alice']).find_templates()
        self.assertEqual(results.ticket_ids, [alpha, mike, zulu])

    def testFilters(self):
        ids = [self.newTicket('Ticket %d' % n, priority=n + 1)
            for n in range(8)]
        find = self.tracker.find_many
        results = find([SearchFilter.from_field_value_range(FIELD_PRIORITY,
            3, 5)], 'id')
        self.assertEqual(sorted(results.ticket_ids), ids[2:5])
        results = find([SearchFilter.from_field_value_range(FIELD_PRIORITY,
            maxval=2)], 'id')
        self.assertEqual(sorted(results.ticket_ids), ids[:2])
        results = find([SearchFilter.from_field_value_list(FIELD_PRIORITY,
            [1, 8])], 'id')
        self.assertEqual(sorted(results.ticket_ids), [ids[0], ids[7]])
        results = find([SearchFilter.from_ticket_ids(ids[:4]),
            SearchFilter.exclude_ticket_ids([ids[1]])], 'id')
        self.assertEqual(sorted(results.ticket_ids), [ids[0], ids[2],
            ids[3]])
        results = find([SearchFilter.limit(3)], '!id')
        self.assertEqual(results.total, 3)
        self.assertEqual(results.ticket_ids, sorted(ids, reverse=True)[:3])
        results = find([SearchFilter.strict_match('ticket 3',
            [FIELD_TITLE])])
        self.assertEqual(results.ticket_ids, [ids[3]])
        results = find([SearchFilter.from_ticket_ids([])])
        self.assertEqual(results.total, 0)

    def testFilterNoValue(self):
        empty = self.newTicket('No priority')
        self.newTicket('High', priority=PRIORITY_HIGH)
        results = self.tracker.find_many([SearchFilter.from_field_value_list(
            FIELD_PRIORITY, [None])])
        self.assertEqual(results.ticket_ids, [empty])
        results = self.tracker.find_many([SearchFilter.from_field_value_list(
            FIELD_PROJECT, [None])])
        self.assertEqual(results.total, 2)

    # plugin fields

    def setupContactType(self):
        address = schema.TicketField(200, 'address', 'ticket_json',
            fl=schema.FIELDFL_STD_DATA_OLD_NEW |
            schema.FIELDFL_CUSTOM_SERIALIZATION, ordering=15, search_boost=2)
        self.db.create_field(address)
        contact = self.db.create_type('Contact', (FIELD_TITLE, 200),
            (FIELD_TITLE, 200))
        self.tracker.reload_schema()
        self.tracker.register_field_handler(200, JsonHandler(keys={
            'street': 'Street', 'city': 'City'}))
        return contact

    def testJsonField(self):
        contact = self.setupContactType()
        nid = self.newTicket('Jane Doe', type_id=contact,
            address={'street': 'Main St 1', 'city': 'Springfield'})
        self.newTicket('John Doe', type_id=contact)
        t = self.tracker.get_one(nid, self.ids['alice'])
        self.assertEqual(t.get_value(200), {'street': 'Main St 1',
            'city': 'Springfield'})
        results = self.tracker.search(self.ids['alice'],
            fulltext='springfield')
        self.assertEqual(results.ticket_ids, [nid])
        # key names are not part of the searchable text
        for word in ('city', 'street'):
            results = self.tracker.search(self.ids['alice'], fulltext=word)
            self.assertEqual(results.total, 0, word)
        other = self.newTicket('Hans M\u00fcller', type_id=contact,
            address={'city': 'Z\u00fcrich'})
        results = self.tracker.search(self.ids['alice'],
            fulltext='Z\u00fcrich')
        self.assertEqual(results.ticket_ids, [other])
        self.assertEqual(self.tracker.get_one(other, self.ids['alice'])
            .get_value(200), {'city': 'Z\u00fcrich'})
        self.assertRaises(UsageError, self.newTicket, 'Bad',
            type_id=contact, address={'country': 'Nowhere'})

    def testCustomFieldWithoutHandler(self):
        contact = self.setupContactType()
        self.newTicket('Jane Doe', type_id=contact)
        self.tracker.handlers = self.tracker.handlers.__class__(
            self.tracker.schema)
        self.tracker._make_pipeline()
        self.assertRaises(UsageError, self.tracker.search, self.ids['alice'])

    def testFieldAlias(self):
        state = schema.TicketField(300, 'state', 'ticket_ints',
            fl=schema.FIELDFL_STD_DATA_OLD_NEW | schema.FIELDFL_TYPE_INT |
            schema.FIELDFL_SORTABLE, ordering=81)
        self.db.create_field(state)
        self.db.create_alias(300, FIELD_STATUS)
        self.tracker.reload_schema()
        t1 = self.newTicket('One', status=STATUS_OPEN)
        self.newTicket('Two', status=STATUS_CLOSED)
        results = self.tracker.search(self.ids['alice'],
            drill_down={300: [STATUS_OPEN]})
        self.assertEqual(results.ticket_ids, [t1])
        # both constraints end up on the status field
        results = self.tracker.search(self.ids['alice'],
            drill_down={300: [STATUS_OPEN], FIELD_STATUS: [STATUS_CLOSED]})
        self.assertEqual(results.total, 2)
        self.assertEqual(self.tracker.schema.canonical_field(300).name,
            'status')

    # store

    def testStoreError(self):
        try:
            self.db.sql('SELECT nonsense FROM nowhere', stage='count')
        except StoreError as e:
            self.assertEqual(e.stage, 'count')
            self.assertIn('during count', str(e))
        else:
            self.fail('expected a StoreError')
        self.db.rollback()

    def testStoreErrorDebug(self):
        config.DEBUG = True
        try:
            with self.assertRaises(StoreError) as cm:
                self.db.sql('SELECT nonsense FROM nowhere', stage='count')
        finally:
            config.DEBUG = False
        self.assertIn('nowhere', str(cm.exception))
        self.db.rollback()

    def testRunTransactionRollsBack(self):
        groups = self.db.get_group_names()

        def failing():
            self.db.insert_row('usergroups', {'gname': 'Temporary'}, 'gid')
            raise UsageError('changed my mind')
        self.assertRaises(UsageError, self.db.run_transaction, failing)
        self.assertEqual(self.db.get_group_names(), groups)

    # formatting

    def testApiResult(self):
        t1 = self.newTicket('Printer on fire', status=STATUS_OPEN,
            priority=PRIORITY_HIGH, keywords='hardware')
        results = self.tracker.search(self.ids['alice'], fulltext='printer',
            with_drilldown=True)
        api = self.tracker.formatter.make_api_result(results)
        self.assertEqual(api['cTotal'], 1)
        self.assertEqual(api['cPerPage'], config.SEARCH_PAGE_SIZE)
        self.assertEqual(api['cPages'], 1)
        self.assertEqual(api['llHighlights'], ['printer'])
        row = api['results'][0]
        self.assertEqual(row['ticket_id'], t1)
        self.assertEqual(row['type'], 'Task')
        self.assertEqual(row['title'], 'Printer on fire')
        self.assertEqual(row['status'], STATUS_OPEN)
        self.assertEqual(api['aDrillDownCounts']['status'], [
            {'value': STATUS_OPEN, 'label': 'Open', 'count': 1}])
        current = [o for o in api['sortby'] if o['current']]
        self.assertEqual([o['param'] for o in current], ['score'])

        html = self.tracker.formatter.format_html(results)
        self.assertIn('<b class="highlight">Printer</b> on fire', html)
        self.assertIn('data-ticket="%d"' % t1, html)

# vim: set filetype=python sts=4 sw=4 et si :
