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
#
""" Relational database (SQL) backend common code.

Basics:

- tickets live in the "tickets" table, one row per ticket, with the
  columns every ticket has (type, ACL, template name, creation data)
- all other field values live in per-value-type tables (ticket_ints,
  ticket_texts, ...) with one row per (ticket_id, field_id) or, for
  array fields, one row per value
- users, groups, memberships and ACLs have their own tables; so do the
  ticket type and ticket field definitions
- dates are stored as 'YYYY-MM-DD HH:MM:SS' strings so that they sort
  the same way on every backend

Database-specific changes are pushed out to the overridable sql_*
methods and the class attributes (arg, dbtype, the column types), since
everything else is generic. In particular the two extension points the
search code needs, sql_group_concat() and sql_fulltext_predicate(), are
implemented per backend.

Every error the DB-API driver raises while executing a statement is
converted into a StoreError carrying the pipeline stage.
"""
__docformat__ = 'restructuredtext'

import datetime
import logging

from doreen import schema
from doreen.exceptions import StoreError, UsageError
from doreen.schema import FIELDFL_ARRAY, FIELDFL_ARRAY_REVERSE, \
    FIELDFL_WORDLIST
from doreen.searchfilter import drilldown_fields

# the tables holding field values; plugins may add their own through
# the tblname of their fields
VALUE_TABLES = ('ticket_ints', 'ticket_texts', 'ticket_categories',
    'ticket_parents', 'ticket_json')


def connection_dict(config, dbnamestr=None):
    """ Used by Postgresql and MySQL to detemine the keyword args for
    opening the database connection."""
    d = {}
    if dbnamestr:
        d[dbnamestr] = config.RDBMS_NAME
    for name in ('host', 'port', 'password', 'user', 'read_default_group',
                 'read_default_file'):
        cvar = 'RDBMS_'+name.upper()
        if config[cvar] is not None:
            d[name] = config[cvar]
    return d


def date_stamp(when=None):
    """Return the stored form of a date: 'YYYY-MM-DD HH:MM:SS'."""
    if when is None:
        when = datetime.datetime.now()
    if isinstance(when, str):
        return when
    return when.strftime('%Y-%m-%d %H:%M:%S')


class IdListOptimizer:
    ''' Turn ticket IDs into a WHERE fragment. Runs of consecutive IDs
        become BETWEEN ranges so that the statement doesn't carry one
        huge IN list.
    '''
    def __init__(self, ids=()):
        self.ranges = []
        self.singles = []
        start = end = None
        for i in sorted(set(ids)):
            if end is not None and i == end + 1:
                end = i
                continue
            self._add(start, end)
            start = end = i
        self._add(start, end)

    def _add(self, start, end):
        if start is None:
            return
        if start == end:
            self.singles.append(start)
        else:
            self.ranges.append((start, end))

    def where(self, column, arg):
        """Return (sql, args); no IDs at all match nothing."""
        w = []
        args = []
        for low, high in self.ranges:
            w.append('%s BETWEEN %s AND %s' % (column, arg, arg))
            args.extend((low, high))
        if self.singles:
            w.append('%s IN (%s)' % (column,
                ','.join([arg] * len(self.singles))))
            args.extend(self.singles)
        if not w:
            return '(1=0)', []
        return '(%s)' % ' OR '.join(w), args

    def __repr__(self):
        return '<IdListOptimizer ranges=%r singles=%r>' % (self.ranges,
            self.singles)


class Database:
    """ Wrapper around an SQL database that holds Doreen tickets.

        - some functionality is specific to the actual SQL database, hence
          the sql_* methods that are NotImplemented
        - the read methods return dicts keyed by column name so that the
          callers don't depend on the driver's row type
    """
    # char to use for positional arguments
    arg = '?'

    dbtype = None

    # column type of auto-numbered primary keys
    serial_column = 'INTEGER PRIMARY KEY'
    text_column = 'TEXT'

    # DB-API exception base class of the driver
    driver_error = Exception

    def __init__(self, config):
        """ Open the database and create the tables if they are missing.
        """
        self.config = config
        self.dir = config.DATABASE
        self.conn = None
        self.cursor = None
        self._logger = None

        # open a connection to the database, creating the "conn" attribute
        self.open_connection()

    def __repr__(self):
        return '<doreen %s 0x%x>' % (self.dbtype, id(self))

    def log_debug(self, msg, *args):
        self.get_logger().debug(msg, *args)

    def log_info(self, msg, *args):
        self.get_logger().info(msg, *args)

    def get_logger(self):
        """The 'doreen.hyperdb' logger, looked up once per database."""
        if self._logger is None:
            self._logger = logging.getLogger('doreen.hyperdb')
        return self._logger

    #
    # Connection and schema
    #
    def sql_open_connection(self):
        """ Open a connection and return (conn, cursor).
        """
        raise NotImplementedError

    def open_connection(self):
        """ Open a connection to the database, creating the tables if
            necessary.
        """
        self.conn, self.cursor = self.sql_open_connection()
        if not self.schema_exists():
            self.log_info('creating the ticket tables')
            self.create_tables()
            self.sql_commit()

    def schema_exists(self):
        self.sql('SELECT table_name FROM information_schema.tables '
            'WHERE table_name = %s' % self.arg, ('tickets',), stage='schema')
        return self.sql_fetchone() is not None

    def table_definitions(self):
        ''' Return the CREATE TABLE statements of all core tables.
        '''
        serial = self.serial_column
        text = self.text_column
        tables = [
            'CREATE TABLE users (uid %s, login VARCHAR(255) NOT NULL, '
                'longname VARCHAR(255), email VARCHAR(255), '
                'fl INTEGER NOT NULL DEFAULT 0)' % serial,
            'CREATE TABLE usergroups (gid %s, gname VARCHAR(255) NOT NULL)'
                % serial,
            'CREATE TABLE memberships (uid INTEGER NOT NULL, '
                'gid INTEGER NOT NULL)',
            'CREATE TABLE acls (aid %s, name VARCHAR(255) NOT NULL)' % serial,
            'CREATE TABLE acl_entries (i %s, aid INTEGER NOT NULL, '
                'gid INTEGER NOT NULL, permissions INTEGER NOT NULL)'
                % serial,
            'CREATE TABLE ticket_types (i %s, name VARCHAR(255) NOT NULL, '
                'details_fields %s, list_fields %s, workflow_id INTEGER)'
                % (serial, text, text),
            'CREATE TABLE ticket_fields (i INTEGER PRIMARY KEY, '
                'name VARCHAR(255) NOT NULL, tblname VARCHAR(255), '
                'parent INTEGER, ordering INTEGER, fl INTEGER, '
                'search_boost INTEGER)',
            'CREATE TABLE ticket_field_aliases (alias_id INTEGER PRIMARY KEY, '
                'canonical_id INTEGER NOT NULL)',
            'CREATE TABLE tickets (i %s, template VARCHAR(255), '
                'type_id INTEGER NOT NULL, project_id INTEGER, '
                'aid INTEGER NOT NULL, owner_uid INTEGER, '
                'created_dt VARCHAR(30), lastmod_uid INTEGER, '
                'lastmod_dt VARCHAR(30), created_from INTEGER)' % serial,
            'CREATE TABLE ticket_ints (i %s, ticket_id INTEGER NOT NULL, '
                'field_id INTEGER NOT NULL, value INTEGER)' % serial,
            'CREATE TABLE ticket_texts (i %s, ticket_id INTEGER NOT NULL, '
                'field_id INTEGER NOT NULL, value %s)' % (serial, text),
            'CREATE TABLE ticket_categories (i %s, ticket_id INTEGER NOT NULL, '
                'field_id INTEGER NOT NULL, value INTEGER)' % serial,
            'CREATE TABLE ticket_parents (i %s, ticket_id INTEGER NOT NULL, '
                'field_id INTEGER NOT NULL, value INTEGER)' % serial,
            'CREATE TABLE ticket_json (i %s, ticket_id INTEGER NOT NULL, '
                'field_id INTEGER NOT NULL, data %s, search_text %s)'
                % (serial, text, text),
            'CREATE TABLE keyword_defs (i %s, keyword VARCHAR(255) NOT NULL)'
                % serial,
        ]
        indexes = [
            'CREATE INDEX memberships_uid_idx ON memberships(uid)',
            'CREATE INDEX acl_entries_aid_idx ON acl_entries(aid)',
            'CREATE INDEX tickets_aid_idx ON tickets(aid)',
            'CREATE INDEX tickets_type_idx ON tickets(type_id)',
        ]
        for table in VALUE_TABLES:
            indexes.append('CREATE INDEX %s_ticket_idx ON %s(ticket_id, '
                'field_id)' % (table, table))
        indexes.append('CREATE INDEX ticket_parents_value_idx ON '
            'ticket_parents(value)')
        return tables + indexes

    def create_tables(self):
        for sql in self.table_definitions():
            self.sql(sql, stage='schema')

    #
    # Statement execution
    #
    def sql(self, sql, args=None, cursor=None, stage=None):
        """ Execute the sql with the optional args.

            Driver errors are raised as StoreError for 'stage'.
        """
        self.log_debug('SQL %r %r', sql, args)
        if cursor is None:
            cursor = self.cursor
        try:
            if args:
                cursor.execute(sql, args)
            else:
                cursor.execute(sql)
        except self.driver_error as message:
            self.get_logger().error('%s failed: %s', stage or 'SQL', message)
            message = str(message)
            if self.config.DEBUG:
                message = '%s; SQL %r %r' % (message, sql, args)
            raise StoreError(message, stage)

    def sql_fetchone(self):
        """ Fetch a single row. If there's nothing to fetch, return None.
        """
        return self.cursor.fetchone()

    def sql_fetchall(self):
        """ Fetch all rows. If there's nothing to fetch, return [].
        """
        return self.cursor.fetchall()

    def sql_fetch_dicts(self, sql, args=None, stage=None):
        ''' Execute the query and return its rows as dicts keyed by the
            lower-cased column names.
        '''
        self.sql(sql, args, stage=stage)
        names = [d[0].lower() for d in self.cursor.description]
        return [dict(zip(names, row)) for row in self.sql_fetchall()]

    def sql_count(self, sql, args=None, stage=None):
        """Execute a 'SELECT COUNT(...)' query and return the integer."""
        self.sql(sql, args, stage=stage)
        row = self.sql_fetchone()
        if row is None:
            return 0
        return int(row[0] or 0)

    def sql_new_cursor(self, name='default', conn=None):
        """ Create a cursor for a long result set. Backends may return a
            server-side cursor named 'name'.
        """
        if conn is None:
            conn = self.conn
        return conn.cursor()

    def search_stringquote(self, value):
        """ Quote a search string to escape magic search characters
            '%' and '_', also need to quote '\' (first)
            Then put '%' around resulting string for LIKE (or ILIKE) operator
        """
        v = value.replace('\\', '\\\\')
        v = v.replace('%', '\\%')
        v = v.replace('_', '\\_')
        return '%' + v + '%'

    #
    # Dialect extension points
    #
    def sql_group_concat(self, expr, order_by=None):
        ''' Return an aggregate expression that joins the values of 'expr'
            with ',' (in 'order_by' order where the backend can do that).
        '''
        raise NotImplementedError

    def sql_fulltext_predicate(self, column, word):
        ''' Return (sql, args) of a case-insensitive "column contains word"
            predicate.
        '''
        return '%s LIKE %s' % (column, self.arg), [
            self.search_stringquote(word)]

    def sql_insert(self, sql, args, idcol, stage=None):
        ''' Execute an INSERT into a table with an auto-numbered 'idcol'
            and return the ID of the new row.
        '''
        self.sql(sql, args, stage=stage)
        return self.cursor.lastrowid

    def sql_sync_sequence(self, table, idcol):
        ''' Called after rows with explicit IDs were inserted into a table
            with an auto-numbered key.
        '''
        pass

    def insert_row(self, table, row, idcol='i', stage=None):
        ''' Insert a row given as dict and return its ID ('idcol' None
            for tables without one).
        '''
        cols = list(row.keys())
        s = ','.join([self.arg for x in cols])
        sql = 'INSERT INTO %s (%s) VALUES (%s)' % (table, ','.join(cols), s)
        args = [row[c] for c in cols]
        if idcol is not None and idcol not in row:
            return self.sql_insert(sql, args, idcol, stage)
        self.sql(sql, args, stage=stage)
        if idcol is None:
            return None
        self.sql_sync_sequence(table, idcol)
        return row[idcol]

    #
    # Transactions
    #
    def sql_commit(self):
        """ Actually commit to the database.
        """
        logging.getLogger('doreen.hyperdb.backend').info('commit')

        self.conn.commit()

        # open a new cursor for subsequent work
        self.cursor = self.conn.cursor()

    def commit(self):
        """ Commit the current transaction.
        """
        try:
            self.sql_commit()
        except self.driver_error as message:
            raise StoreError(str(message), 'commit')

    def sql_rollback(self):
        self.conn.rollback()

    def rollback(self):
        """ Reverse all actions from the current transaction.
        """
        logging.getLogger('doreen.hyperdb.backend').info('rollback')

        self.sql_rollback()

    def sql_close(self):
        logging.getLogger('doreen.hyperdb.backend').info('close')
        self.conn.close()

    def close(self):
        """ Close off the connection.
        """
        self.sql_close()

    def run_transaction(self, method, *args, **kw):
        ''' Call method(*args, **kw) and commit; roll back and re-raise if
            it fails.
        '''
        try:
            result = method(*args, **kw)
        except Exception:
            self.rollback()
            raise
        self.commit()
        return result

    #
    # Users, groups and ACLs
    #
    def get_user_row(self, uid):
        a = self.arg
        rows = self.sql_fetch_dicts('SELECT uid, login, longname, email, fl '
            'FROM users WHERE uid=%s' % a, (uid,), stage='acl')
        if not rows:
            return None
        return rows[0]

    def get_user_groups(self, uid):
        self.sql('SELECT gid FROM memberships WHERE uid=%s' % self.arg,
            (uid,), stage='acl')
        return [row[0] for row in self.sql_fetchall()]

    def get_group_names(self):
        """Return {gid: name} of all stored groups."""
        self.sql('SELECT gid, gname FROM usergroups', stage='acl')
        return dict([(row[0], row[1]) for row in self.sql_fetchall()])

    def get_group_members(self):
        ''' Return {gid: [uid, ...]} for all stored groups, including
            the ones without members.
        '''
        members = dict([(gid, []) for gid in self.get_group_names()])
        self.sql('SELECT gid, uid FROM memberships ORDER BY uid',
            stage='acl')
        # don't unpack the rows as sqlite3's Row can't be unpacked
        for row in self.sql_fetchall():
            members.setdefault(row[0], []).append(row[1])
        return members

    def get_acl_entries(self, gids=None):
        ''' Return the ACL entries as dicts (aid, name, gid, permissions),
            optionally only those of the given groups.
        '''
        sql = 'SELECT acls.aid AS aid, acls.name AS name, ' \
            'acl_entries.gid AS gid, acl_entries.permissions AS permissions ' \
            'FROM acls JOIN acl_entries ON acl_entries.aid = acls.aid'
        args = []
        if gids is not None:
            if not gids:
                return []
            s = ','.join([self.arg for x in gids])
            sql += ' WHERE acl_entries.gid IN (%s)' % s
            args = list(gids)
        sql += ' ORDER BY acls.aid, acl_entries.gid'
        return self.sql_fetch_dicts(sql, args, stage='acl')

    def create_user(self, login, longname='', email='', fl=0, groups=(),
            uid=None):
        def create():
            row = {'login': login, 'longname': longname, 'email': email,
                'fl': fl}
            if uid is not None:
                row['uid'] = uid
            new_uid = self.insert_row('users', row, 'uid')
            for gid in groups:
                self.insert_row('memberships', {'uid': new_uid, 'gid': gid},
                    None)
            return new_uid
        return self.run_transaction(create)

    def create_group(self, name, gid=None):
        row = {'gname': name}
        if gid is not None:
            row['gid'] = gid
        return self.run_transaction(self.insert_row, 'usergroups', row, 'gid')

    def add_member(self, uid, gid):
        self.run_transaction(self.insert_row, 'memberships',
            {'uid': uid, 'gid': gid}, None)

    def _write_acl_entries(self, aid, permissions):
        for gid, fl in sorted(permissions.items()):
            self.insert_row('acl_entries', {'aid': aid, 'gid': gid,
                'permissions': fl})

    def create_acl(self, name, permissions):
        def create():
            aid = self.insert_row('acls', {'name': name}, 'aid')
            self._write_acl_entries(aid, permissions)
            return aid
        return self.run_transaction(create)

    def update_acl(self, aid, name, permissions):
        ''' Replace the name and all entries of the ACL in one transaction.
        '''
        a = self.arg
        def update():
            self.sql('UPDATE acls SET name=%s WHERE aid=%s' % (a, a),
                (name, aid))
            self.sql('DELETE FROM acl_entries WHERE aid=%s' % a, (aid,))
            self._write_acl_entries(aid, permissions)
        self.run_transaction(update)

    #
    # Ticket types and fields
    #
    def get_field_rows(self):
        return self.sql_fetch_dicts('SELECT i, name, tblname, fl, ordering, '
            'parent, search_boost FROM ticket_fields ORDER BY i',
            stage='schema')

    def get_type_rows(self):
        return self.sql_fetch_dicts('SELECT i, name, details_fields, '
            'list_fields, workflow_id FROM ticket_types ORDER BY i',
            stage='schema')

    def get_alias_rows(self):
        return self.sql_fetch_dicts('SELECT alias_id, canonical_id FROM '
            'ticket_field_aliases', stage='schema')

    def create_field(self, field):
        """Store a schema.TicketField."""
        self.run_transaction(self.insert_row, 'ticket_fields', {
            'i': field.id, 'name': field.name, 'tblname': field.tblname,
            'parent': field.parent, 'ordering': field.ordering,
            'fl': field.fl, 'search_boost': field.search_boost}, None)

    def create_core_fields(self):
        ''' Store the fields every installation has, with the default
            search boosts for title and description.
        '''
        def create():
            for field_id, name, tblname, ordering in schema.CORE_FIELDS:
                f = schema.TicketField(field_id, name, tblname,
                    ordering=ordering,
                    search_boost=schema.DEFAULT_SEARCH_BOOST.get(field_id))
                self.insert_row('ticket_fields', {'i': f.id, 'name': f.name,
                    'tblname': f.tblname, 'parent': f.parent,
                    'ordering': f.ordering, 'fl': f.fl,
                    'search_boost': f.search_boost}, None)
        self.run_transaction(create)

    def create_alias(self, alias_id, canonical_id):
        self.run_transaction(self.insert_row, 'ticket_field_aliases',
            {'alias_id': alias_id, 'canonical_id': canonical_id}, None)

    def create_type(self, name, details_fields, list_fields,
            workflow_id=None):
        return self.run_transaction(self.insert_row, 'ticket_types', {
            'name': name,
            'details_fields': ','.join(map(str, details_fields)),
            'list_fields': ','.join(map(str, list_fields)),
            'workflow_id': workflow_id})

    #
    # Tickets
    #
    def insert_ticket(self, type_id, aid, owner_uid, template=None,
            project_id=None, created_dt=None, created_from=None):
        ''' Insert the tickets row (without committing) and return the new
            ticket ID.
        '''
        now = date_stamp(created_dt)
        return self.insert_row('tickets', {'template': template,
            'type_id': type_id, 'project_id': project_id, 'aid': aid,
            'owner_uid': owner_uid, 'created_dt': now,
            'lastmod_uid': owner_uid, 'lastmod_dt': now,
            'created_from': created_from})

    def touch_ticket(self, ticket_id, uid, when=None):
        a = self.arg
        self.sql('UPDATE tickets SET lastmod_uid=%s, lastmod_dt=%s '
            'WHERE i=%s' % (a, a, a), (uid, date_stamp(when), ticket_id))

    def keyword_id(self, keyword):
        """Return the keyword_defs ID of the keyword, creating it."""
        a = self.arg
        self.sql('SELECT i FROM keyword_defs WHERE keyword=%s' % a,
            (keyword,))
        row = self.sql_fetchone()
        if row is not None:
            return row[0]
        return self.insert_row('keyword_defs', {'keyword': keyword})

    def set_field_value(self, ticket_id, field, value):
        ''' Replace the stored value of a field (a TicketField) for one
            ticket. Does not commit.

            Array fields take a list and get one row per value; word-list
            fields take a list of keyword strings.
        '''
        a = self.arg
        if field.core_column is not None:
            self.sql('UPDATE tickets SET %s=%s WHERE i=%s' % (
                field.core_column, a, a), (value, ticket_id))
            return
        if field.fl & FIELDFL_ARRAY_REVERSE:
            raise UsageError('field %r is computed from field %s and cannot '
                'be written' % (field.name, field.id - 1))
        if not field.tblname:
            raise UsageError('field %r has no storage' % field.name)
        self.sql('DELETE FROM %s WHERE ticket_id=%s AND field_id=%s' % (
            field.tblname, a, a), (ticket_id, field.id))
        if value is None:
            return
        if field.fl & FIELDFL_WORDLIST:
            values = [self.keyword_id(w) for w in value]
        elif field.fl & FIELDFL_ARRAY:
            values = list(value)
        else:
            values = [value]
        for v in values:
            self.insert_row(field.tblname, {'ticket_id': ticket_id,
                'field_id': field.id, 'value': v})

    def set_json_value(self, ticket_id, field_id, data, search_text=None):
        ''' Replace the JSON document of a field; 'search_text' is what
            fulltext queries match instead of the document.
        '''
        a = self.arg
        self.sql('DELETE FROM ticket_json WHERE ticket_id=%s AND field_id=%s'
            % (a, a), (ticket_id, field_id))
        if data is not None:
            self.insert_row('ticket_json', {'ticket_id': ticket_id,
                'field_id': field_id, 'data': data,
                'search_text': search_text})

    def value_tables(self):
        tables = list(VALUE_TABLES)
        for row in self.get_field_rows():
            if row['tblname'] and row['tblname'] not in tables:
                tables.append(row['tblname'])
        return tables

    def nuke_tickets(self, ticket_ids):
        ''' Delete tickets for good, with all their field values and the
            links other tickets have to them, in one transaction.
        '''
        if not ticket_ids:
            return
        a = self.arg
        tables = self.value_tables()
        ids = IdListOptimizer(ticket_ids)
        def nuke():
            for table in tables:
                w, args = ids.where('ticket_id', a)
                self.sql('DELETE FROM %s WHERE %s' % (table, w), args,
                    stage='nuke')
            w, args = ids.where('value', a)
            self.sql('DELETE FROM ticket_parents WHERE %s' % w, args,
                stage='nuke')
            w, args = ids.where('created_from', a)
            self.sql('UPDATE tickets SET created_from=NULL WHERE %s' % w,
                args, stage='nuke')
            w, args = ids.where('i', a)
            self.sql('DELETE FROM tickets WHERE %s' % w, args, stage='nuke')
        self.run_transaction(nuke)
        self.log_info('nuked %d tickets', len(set(ticket_ids)))


class QueryExecutor:
    ''' Run a searchfilter.QueryPlan against the database.

        A page costs two statements sharing the same FROM/WHERE: one for
        the total count and one for the page of ticket IDs. Nothing
        beyond the requested page is fetched.
    '''
    def __init__(self, db):
        self.db = db

    def count(self, plan):
        sql, args = plan.from_clause()
        total = self.db.sql_count('SELECT COUNT(*) ' + sql, args,
            stage='count')
        if plan.limit is not None:
            total = min(total, plan.limit)
        return total

    def select_ids(self, plan, limit=None, offset=0, cursor=None):
        sql, args = plan.from_clause(extra_joins=plan.order_joins)
        sql = 'SELECT tickets.i %s ORDER BY %s' % (sql, plan.order_by)
        if limit is not None:
            sql += ' LIMIT %s OFFSET %s' % (self.db.arg, self.db.arg)
            args = args + [limit, offset]
        if cursor is None:
            self.db.sql(sql, args, stage='search')
            return [int(row[0]) for row in self.db.sql_fetchall()]
        self.db.sql(sql, args, cursor=cursor, stage='search')
        try:
            return [int(row[0]) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def execute(self, plan, page=1, page_size=None):
        ''' Return (ticket_ids, total) for the 1-based page.

            A page beyond the last one yields no IDs and the same total.
        '''
        if page_size is None:
            page_size = self.db.config.SEARCH_PAGE_SIZE
        try:
            page = int(page)
        except (TypeError, ValueError):
            raise UsageError('Invalid page number %r' % (page,))
        if page < 1:
            raise UsageError('Invalid page number %r' % (page,))
        total = self.count(plan)
        offset = (page - 1) * page_size
        if offset >= total:
            return [], total
        limit = min(page_size, total - offset)
        return self.select_ids(plan, limit, offset), total

    def all_ids(self, plan):
        ''' Every matching ticket ID in result order. The result may be
            long, so it is read through its own (server-side where the
            backend has one) cursor.
        '''
        cursor = self.db.sql_new_cursor('all_ids')
        return self.select_ids(plan, plan.limit, 0, cursor)

    def type_counts(self, plan):
        sql, args = plan.from_clause(exclude=schema.FIELD_TYPE)
        self.db.sql('SELECT tickets.type_id, COUNT(*) %s GROUP BY '
            'tickets.type_id' % sql, args, stage='drill-down')
        return dict([(int(row[0]), int(row[1]))
            for row in self.db.sql_fetchall()])

    def field_counts(self, plan, field):
        ''' Count the matching tickets per value of the field, with every
            drill-down constraint applied except the field's own.
        '''
        if field.core_column is not None:
            sql, args = plan.from_clause(exclude=field.id)
            sql = 'SELECT tickets.%s, COUNT(*) %s GROUP BY tickets.%s' % (
                field.core_column, sql, field.core_column)
        else:
            join = 'JOIN %s dd ON (dd.ticket_id = tickets.i AND ' \
                'dd.field_id = %d)' % (field.tblname, field.id)
            sql, args = plan.from_clause(exclude=field.id,
                extra_joins=[join])
            sql = 'SELECT dd.value, COUNT(DISTINCT tickets.i) %s GROUP BY ' \
                'dd.value' % sql
        self.db.sql(sql, args, stage='drill-down')
        return dict([(row[0], int(row[1])) for row in self.db.sql_fetchall()
            if row[0] is not None])

    def drill_down_counts(self, plan, registry):
        ''' Return {field_id: {value: count}} for the ticket types and for
            the drill-down fields visible in the types found.
        '''
        counts = {schema.FIELD_TYPE: self.type_counts(plan)}
        for f in drilldown_fields(registry, counts[schema.FIELD_TYPE]):
            counts[f.id] = self.field_counts(plan, f)
        return counts

# vim: set et sts=4 sw=4 :
