"""Tickets in memory and the assembler that populates them.

Population happens in two stages. Stage 1 reads the tickets table (the
columns every ticket has) for all requested tickets in one query. Stage
2 reads the values of the fields visible at the requested population
level, again in one query for all tickets: simple fields through a LEFT
JOIN per field, array and word-list fields through group-concat
sub-selects, and custom-serialization fields through the SQL their
handlers supply.
"""
__docformat__ = 'restructuredtext'

from collections import OrderedDict

from doreen import schema
from doreen.backends.rdbms_common import IdListOptimizer
from doreen.exceptions import UsageError
from doreen.fieldhandlers import split_ints
from doreen.schema import FIELDFL_ARRAY, FIELDFL_ARRAY_REVERSE, \
    FIELDFL_CHANGELOGONLY, FIELDFL_CUSTOM_SERIALIZATION, \
    FIELDFL_MAPPED_FROM_PROJECT, FIELDFL_WORDLIST

import logging
logger = logging.getLogger('doreen.ticket')

# stage-1 columns, in select order
STAGE1_COLUMNS = ('i', 'template', 'type_id', 'project_id', 'aid',
    'owner_uid', 'created_dt', 'lastmod_uid', 'lastmod_dt', 'created_from')


class PopulationLevel:
    ''' How much of a ticket has been loaded.

        LIST: stage 1 plus the fields of the types' list views.
        DETAILS: stage 1 plus every field the types declare.
    '''
    NONE = 0
    LIST = 1
    DETAILS = 2

    values = (LIST, DETAILS)


class Ticket:
    ''' One ticket. The stage-1 data are attributes; field values are in
        'field_data', keyed by field ID.

        - row_ids: field ID -> ID of the row the value came from
        - word_ids: field ID -> keyword IDs of word-list fields
        - fetched: the PopulationLevel the ticket was loaded with
    '''
    def __init__(self, id, template=None, type_id=None, project_id=None,
            aid=None, owner_uid=None, created_dt=None, lastmod_uid=None,
            lastmod_dt=None, created_from=None):
        self.id = int(id)
        self.template = template
        self.type_id = type_id
        self.project_id = project_id
        self.aid = aid
        self.owner_uid = owner_uid
        self.created_dt = created_dt
        self.lastmod_uid = lastmod_uid
        self.lastmod_dt = lastmod_dt
        self.created_from = created_from
        self.field_data = {}
        self.row_ids = {}
        self.word_ids = {}
        self.fetched = PopulationLevel.NONE

    def __repr__(self):
        return '<Ticket %s type=%s aid=%s>' % (self.id, self.type_id,
            self.aid)

    def is_template(self):
        return self.template is not None

    def get_value(self, field_id):
        ''' Return the value of a field; core fields are read from the
            stage-1 attributes.
        '''
        column = schema.CORE_COLUMNS.get(field_id)
        if column is not None:
            return getattr(self, column)
        return self.field_data.get(field_id)

    def as_dict(self):
        ''' Everything the ticket holds, for comparisons and debugging.
        '''
        d = dict([(c, getattr(self, c)) for c in STAGE1_COLUMNS if c != 'i'])
        d['id'] = self.id
        d['field_data'] = dict(self.field_data)
        d['row_ids'] = dict(self.row_ids)
        d['word_ids'] = dict(self.word_ids)
        d['fetched'] = self.fetched
        return d


class TicketAssembler:
    ''' Builds Ticket objects from the store.

        Two queries per call, whatever the number of tickets. Tickets that
        are missing from the store (deleted since their IDs were found)
        are left out of the result without an error.
    '''
    def __init__(self, db, registry, handlers):
        self.db = db
        self.schema = registry
        self.handlers = handlers

    def populate_many(self, ticket_ids, level=PopulationLevel.LIST,
            visible_fields=None):
        ''' Return an OrderedDict ticket ID -> Ticket in the order of
            'ticket_ids'. Fresh objects are built on every call.

            'visible_fields' overrides the fields stage 2 loads; by
            default they come from the types of the tickets found.
        '''
        if level not in PopulationLevel.values:
            raise UsageError('Invalid population level %r' % (level,))
        tickets = self.fetch_stage1(ticket_ids)
        if tickets:
            self.fetch_stage2(tickets, level, visible_fields)
        result = OrderedDict()
        for ticket_id in ticket_ids:
            t = tickets.get(int(ticket_id))
            if t is not None:
                result[t.id] = t
        dropped = len(set(ticket_ids)) - len(result)
        if dropped:
            logger.info('%d of %d tickets no longer exist', dropped,
                len(set(ticket_ids)))
        return result

    def populate(self, tickets, level=PopulationLevel.DETAILS,
            visible_fields=None):
        ''' Load stage-2 data into existing Ticket objects that have not
            been loaded at 'level' yet. Returns the tickets that still
            exist.
        '''
        todo = dict([(t.id, t) for t in tickets if t.fetched < level])
        if todo:
            for t in todo.values():
                t.field_data = {}
                t.row_ids = {}
                t.word_ids = {}
            self.fetch_stage2(todo, level, visible_fields)
        return [t for t in tickets if t.fetched >= level]

    # stage 1

    def fetch_stage1(self, ticket_ids):
        ''' Return {ticket ID: Ticket} with the tickets table columns.
        '''
        if not ticket_ids:
            return {}
        ids = IdListOptimizer([int(i) for i in ticket_ids])
        w, args = ids.where('tickets.i', self.db.arg)
        sql = 'SELECT %s FROM tickets WHERE %s' % (', '.join(['tickets.%s'
            % c for c in STAGE1_COLUMNS]), w)
        self.db.sql(sql, args, stage='stage-1')
        tickets = {}
        for row in self.db.sql_fetchall():
            t = Ticket(*[row[n] for n in range(len(STAGE1_COLUMNS))])
            tickets[t.id] = t
        return tickets

    # stage 2

    def stage2_fields(self, tickets, level, visible_fields=None):
        if visible_fields is None:
            type_ids = set([t.type_id for t in tickets.values()])
            if level == PopulationLevel.DETAILS:
                visible_fields = self.schema.visible_fields(type_ids,
                    schema.Scope.DETAILS, include_hidden=True,
                    include_children=True)
            else:
                visible_fields = self.schema.visible_fields(type_ids,
                    schema.Scope.LIST)
        fields = []
        for f in visible_fields:
            f = self.schema.canonical_field(f.id) or f
            if f.core_column is not None or f.fl & FIELDFL_CHANGELOGONLY:
                continue
            if f.fl & FIELDFL_MAPPED_FROM_PROJECT:
                fields.append(f)
            elif f.fl & FIELDFL_CUSTOM_SERIALIZATION or f.tblname:
                fields.append(f)
        return fields

    def field_sql(self, f, columns, joins):
        ''' Add the select columns and joins that load field 'f'.
        '''
        db = self.db
        if f.fl & FIELDFL_CUSTOM_SERIALIZATION:
            c, j = self.handlers.find(f.id).make_fetch_sql(db)
            columns.extend(c)
            joins.extend(j)
        elif f.fl & FIELDFL_WORDLIST:
            columns.append('(SELECT %s FROM %s v JOIN keyword_defs k ON '
                '(k.i = v.value) WHERE v.ticket_id = tickets.i AND '
                'v.field_id = %d) AS %s' % (db.sql_group_concat('k.keyword',
                'k.keyword'), f.tblname, f.id, f.column))
            columns.append('(SELECT %s FROM %s v WHERE v.ticket_id = '
                'tickets.i AND v.field_id = %d) AS %s_wordids' % (
                db.sql_group_concat('v.value', 'v.value'), f.tblname, f.id,
                f.column))
        elif f.fl & FIELDFL_ARRAY_REVERSE:
            # the forward field has the ID one lower and points here
            columns.append('(SELECT %s FROM %s v WHERE v.value = tickets.i '
                'AND v.field_id = %d) AS %s' % (db.sql_group_concat(
                'v.ticket_id', 'v.ticket_id'), f.tblname, f.id - 1, f.column))
        elif f.fl & FIELDFL_ARRAY:
            columns.append('(SELECT %s FROM %s v WHERE v.ticket_id = '
                'tickets.i AND v.field_id = %d) AS %s' % (
                db.sql_group_concat('v.value', 'v.value'), f.tblname, f.id,
                f.column))
        else:
            alias = 'tbl_' + f.name
            joins.append('LEFT JOIN %s %s ON (%s.ticket_id = tickets.i AND '
                '%s.field_id = %d)' % (f.tblname, alias, alias, alias, f.id))
            columns.append('%s.value AS %s' % (alias, f.column))
            columns.append('%s.i AS %s_rowid' % (alias, f.column))

    def fetch_stage2(self, tickets, level, visible_fields=None):
        ''' Load the field values of the tickets ({ID: Ticket}) in one
            query and mark them fetched. Tickets that vanished since stage
            1 are removed from the dict.
        '''
        fields = self.stage2_fields(tickets, level, visible_fields)
        columns = ['tickets.i AS ticket_id']
        joins = []
        for f in fields:
            if not f.fl & FIELDFL_MAPPED_FROM_PROJECT:
                self.field_sql(f, columns, joins)
        ids = IdListOptimizer(list(tickets.keys()))
        w, args = ids.where('tickets.i', self.db.arg)
        sql = 'SELECT %s FROM tickets %s WHERE %s' % (', '.join(columns),
            ' '.join(joins), w)
        seen = set()
        for row in self.db.sql_fetch_dicts(sql, args, stage='stage-2'):
            t = tickets.get(int(row['ticket_id']))
            if t is None:
                continue
            seen.add(t.id)
            for f in fields:
                self.decode_field(t, f, row)
            t.fetched = max(t.fetched, level)
        for ticket_id in list(tickets.keys()):
            if ticket_id not in seen:
                del tickets[ticket_id]

    def decode_field(self, t, f, row):
        if f.fl & FIELDFL_MAPPED_FROM_PROJECT:
            t.field_data[f.id] = t.project_id
        elif f.fl & FIELDFL_CUSTOM_SERIALIZATION:
            self.handlers.find(f.id).decode_row(t, row)
        elif f.fl & FIELDFL_WORDLIST:
            # an empty word list means the field is not set
            value = row[f.column]
            if value:
                t.field_data[f.id] = ','.join(sorted(value.split(',')))
                t.word_ids[f.id] = sorted(split_ints(
                    row[f.column + '_wordids']))
        elif f.fl & (FIELDFL_ARRAY | FIELDFL_ARRAY_REVERSE):
            values = sorted(split_ints(row[f.column]))
            if values:
                t.field_data[f.id] = values
        else:
            value = row[f.column]
            if value is not None:
                t.field_data[f.id] = value
                t.row_ids[f.id] = row[f.column + '_rowid']

# vim: set et sts=4 sw=4 :
