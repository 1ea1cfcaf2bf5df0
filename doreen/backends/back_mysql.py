#
# Copyright (c) 2003 Martynas Sklyzmantas, Andrey Lebedev <andrey@micro.lt>
#
# This module is free software, and you may redistribute it and/or modify
# under the same terms as Python, so long as this copyright message and
# disclaimer are retained in their original form.
#

'''MySQL backend through the mysqlclient driver (MySQLdb).

Auto-numbered keys use AUTO_INCREMENT; the new ID is the cursor's
lastrowid, as with SQLite. All tables use the InnoDB engine so that the
multi-table writes are transactional.
'''
__docformat__ = 'restructuredtext'

import logging
import os
import shutil

import MySQLdb

from doreen.backends import rdbms_common
from doreen.exceptions import StoreError

logger = logging.getLogger('doreen.hyperdb')

def connection_dict(config, dbnamestr=None):
    ''' MySQLdb spells the password "passwd" and wants an integer port.
    '''
    d = rdbms_common.connection_dict(config, dbnamestr)
    if 'password' in d:
        d['passwd'] = d.pop('password')
    if 'port' in d:
        d['port'] = int(d['port'])
    d['charset'] = 'utf8mb4'
    return d

def _server_command(config, command):
    ''' Run a statement on the server without selecting a database. '''
    logger.info(command)
    conn = MySQLdb.connect(**connection_dict(config))
    try:
        conn.cursor().execute(command)
        conn.commit()
    finally:
        conn.close()

def db_exists(config):
    """True if the RDBMS_NAME database is present on the server."""
    conn = MySQLdb.connect(**connection_dict(config))
    try:
        conn.select_db(config.RDBMS_NAME)
    except MySQLdb.OperationalError:
        return False
    finally:
        conn.close()
    return True

def db_create(config):
    _server_command(config, 'CREATE DATABASE %s CHARACTER SET utf8mb4'
        % config.RDBMS_NAME)

def db_nuke(config):
    """Drop the database with everything in it."""
    if db_exists(config):
        _server_command(config, 'DROP DATABASE %s' % config.RDBMS_NAME)
    if os.path.exists(config.DATABASE):
        shutil.rmtree(config.DATABASE)


class Database(rdbms_common.Database):
    """Store on a MySQL server, tables in the InnoDB engine."""

    arg = '%s'

    dbtype = "mysql"

    serial_column = 'INTEGER AUTO_INCREMENT PRIMARY KEY'

    table_engine = 'InnoDB'

    driver_error = MySQLdb.Error

    def sql_open_connection(self):
        kwargs = connection_dict(self.config, 'db')
        self.log_info('open database %r', kwargs['db'])
        try:
            conn = MySQLdb.connect(**kwargs)
        except MySQLdb.OperationalError as message:
            raise StoreError(str(message), 'connect')
        cursor = conn.cursor()
        cursor.execute("SET SESSION TRANSACTION ISOLATION LEVEL %s"
            % self.config.RDBMS_ISOLATION_LEVEL.upper())
        self._begin(cursor)
        return (conn, cursor)

    def _begin(self, cursor):
        cursor.execute("SET AUTOCOMMIT=0")
        cursor.execute("START TRANSACTION")

    def open_connection(self):
        # unlike SQLite the server does not create a missing database
        if not db_exists(self.config):
            db_create(self.config)
        rdbms_common.Database.open_connection(self)

    def schema_exists(self):
        self.sql('SELECT table_name FROM information_schema.tables WHERE '
            'table_schema = DATABASE() AND table_name = %s', ('tickets',),
            stage='schema')
        return self.sql_fetchone() is not None

    def table_definitions(self):
        return ['%s ENGINE=%s' % (sql, self.table_engine)
            if sql.startswith('CREATE TABLE') else sql
            for sql in rdbms_common.Database.table_definitions(self)]

    def sql_group_concat(self, expr, order_by=None):
        order = ''
        if order_by:
            order = ' ORDER BY %s' % order_by
        return "GROUP_CONCAT(%s%s SEPARATOR ',')" % (expr, order)

    def sql_commit(self):
        logging.getLogger('doreen.hyperdb.backend').info('commit')
        self.conn.commit()
        self.cursor = self.conn.cursor()
        self._begin(self.cursor)

    def sql_close(self):
        logging.getLogger('doreen.hyperdb.backend').info('close')
        try:
            self.conn.close()
        except (MySQLdb.OperationalError, MySQLdb.ProgrammingError) as error:
            # mysqlclient complains about closing a closed handle, either
            # as server gone away (2006) or as a programming error
            if "2006" not in str(error) and 'closed' not in str(error):
                raise

    def __repr__(self):
        return '<doreen mysql 0x%x>' % id(self)

# vim: set et sts=4 sw=4 :
