# Copyright (c) 2003 Martynas Sklyzmantas, Andrey Lebedev <andrey@micro.lt>
#
# This module is free software, and you may redistribute it and/or modify
# under the same terms as Python, so long as this copyright message and
# disclaimer are retained in their original form.
#
'''PostgreSQL backend through psycopg2.

New IDs come back from INSERT ... RETURNING. Long ID lists are read
through a named (server-side) cursor unless RDBMS_SERVERSIDE_CURSOR is
off.
'''
__docformat__ = 'restructuredtext'

import logging
import os
import shutil

import psycopg2
from psycopg2 import extensions

from doreen.backends import rdbms_common
from doreen.exceptions import StoreError

isolation_levels = {
    'read uncommitted': extensions.ISOLATION_LEVEL_READ_UNCOMMITTED,
    'read committed': extensions.ISOLATION_LEVEL_READ_COMMITTED,
    'repeatable read': extensions.ISOLATION_LEVEL_REPEATABLE_READ,
    'serializable': extensions.ISOLATION_LEVEL_SERIALIZABLE,
}


def connection_dict(config, dbnamestr=None):
    ''' The read_default_* settings only mean something to MySQL. '''
    d = rdbms_common.connection_dict(config, dbnamestr)
    for name in ('read_default_file', 'read_default_group'):
        d.pop(name, None)
    return d


# server messages that mean "try again" for CREATE and DROP DATABASE
_retry_messages = (
    'is being accessed by other users',
    'could not serialize access due to concurrent update',
)


def db_command(config, command, database='postgres', attempts=10):
    '''Run a database-level command, such as CREATE DATABASE, through the
    maintenance database "postgres" that initdb creates.

    Commands that collide with other sessions are retried up to
    'attempts' times.
    '''
    params = connection_dict(config)
    params['database'] = database
    try:
        conn = psycopg2.connect(**params)
    except psycopg2.OperationalError as message:
        raise StoreError(str(message), 'connect')
    # CREATE/DROP DATABASE refuse to run inside a transaction
    conn.autocommit = True
    try:
        cursor = conn.cursor()
        for _ in range(attempts):
            try:
                cursor.execute(command)
                return
            except psycopg2.DatabaseError as err:
                first_line = str(err).split('\n')[0]
                if 'FATAL' in first_line or not any(
                        m in first_line for m in _retry_messages):
                    raise StoreError(first_line, 'schema')
    finally:
        conn.close()
    raise StoreError('%d attempts to %r failed' % (attempts, command),
        'schema')


def db_create(config):
    command = "CREATE DATABASE \"%s\" WITH ENCODING='UTF8'" % \
        config.RDBMS_NAME
    logging.getLogger('doreen.hyperdb').info(command)
    db_command(config, command)


def db_nuke(config):
    """Drop the database with everything in it."""
    command = 'DROP DATABASE IF EXISTS "%s"' % config.RDBMS_NAME
    logging.getLogger('doreen.hyperdb').info(command)
    db_command(config, command)
    if os.path.exists(config.DATABASE):
        shutil.rmtree(config.DATABASE)


def db_exists(config):
    """True if we can connect to the RDBMS_NAME database."""
    try:
        psycopg2.connect(**connection_dict(config, 'database')).close()
    except psycopg2.OperationalError:
        return False
    return True


class Database(rdbms_common.Database):
    """Store on a PostgreSQL server."""

    arg = '%s'

    dbtype = "postgres"

    serial_column = 'SERIAL PRIMARY KEY'

    driver_error = psycopg2.Error

    def sql_open_connection(self):
        db = connection_dict(self.config, 'database')
        self.log_info('open database %r', db['database'])
        try:
            conn = psycopg2.connect(**db)
        except psycopg2.OperationalError as message:
            raise StoreError(str(message), 'connect')

        conn.set_session(isolation_level=
            isolation_levels[self.config.RDBMS_ISOLATION_LEVEL])
        return (conn, conn.cursor())

    def sql_new_cursor(self, name='default', conn=None):
        if conn is None:
            conn = self.conn
        if self.config.RDBMS_SERVERSIDE_CURSOR:
            return conn.cursor(name=name)
        return conn.cursor()

    def open_connection(self):
        if not db_exists(self.config):
            db_create(self.config)
        rdbms_common.Database.open_connection(self)

    def schema_exists(self):
        self.sql('SELECT table_name FROM information_schema.tables WHERE '
            "table_schema = current_schema() AND table_name = %s",
            ('tickets',), stage='schema')
        return self.sql_fetchone() is not None

    def sql_group_concat(self, expr, order_by=None):
        order = ''
        if order_by:
            order = ' ORDER BY %s' % order_by
        return "string_agg(CAST(%s AS TEXT), ','%s)" % (expr, order)

    def sql_fulltext_predicate(self, column, word):
        return 'CAST(%s AS TEXT) ILIKE %%s' % column, [
            self.search_stringquote(word)]

    def sql_insert(self, sql, args, idcol, stage=None):
        self.sql('%s RETURNING %s' % (sql, idcol), args, stage=stage)
        return self.sql_fetchone()[0]

    def sql_sync_sequence(self, table, idcol):
        # keep the SERIAL sequence ahead of explicitly inserted IDs
        self.sql("SELECT setval(pg_get_serial_sequence('%s', '%s'), "
            "(SELECT MAX(%s) FROM %s))" % (table, idcol, idcol, table))

    def __repr__(self):
        return '<doreen postgresql 0x%x>' % id(self)

# vim: set et sts=4 sw=4 :
