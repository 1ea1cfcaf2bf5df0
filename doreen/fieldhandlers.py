"""Field handlers: per-field (de)serialization and formatting.

Every ticket field ID resolves to one FieldHandler through the
FieldHandlerRegistry. Handlers know how a field's value is fetched from
the store (only needed for fields with FIELDFL_CUSTOM_SERIALIZATION),
how it is decoded, validated, serialized for JSON and formatted as
plain text or HTML, and how the field takes part in fulltext queries.
Fields without a registered handler get a PassthroughHandler.
"""
__docformat__ = 'restructuredtext'

import json
import re
from html import escape

from doreen import schema
from doreen.exceptions import UsageError
from doreen.schema import FIELDFL_CUSTOM_SERIALIZATION, \
    FIELDFL_REQUIRED_IN_POST_PUT

import logging
logger = logging.getLogger('doreen.fieldhandlers')


def split_ints(value):
    """Split a comma-separated group-concat result into ints."""
    if value is None or value == '':
        return []
    if isinstance(value, (list, tuple)):
        return [int(v) for v in value]
    return [int(v) for v in str(value).split(',') if v != '']


def highlight(html_text, words):
    ''' Wrap every occurrence of the words in already-escaped HTML in
        <b class="highlight">. Longer words win over their prefixes.
    '''
    if not words or not html_text:
        return html_text
    words = sorted(set([escape(w, quote=False) for w in words if w]),
        key=lambda w: (-len(w), w))
    rx = re.compile('|'.join([re.escape(w) for w in words]), re.I)
    return rx.sub(lambda m: '<b class="highlight">%s</b>' % m.group(0),
        html_text)


class FieldHandler:
    ''' Base class; handles one field ID.

        The default implementation treats the value as an opaque string.
        Subclasses override the capabilities they need.
    '''
    label = None
    # highlight fulltext words in HTML output of searchable fields
    highlight_search_terms = True

    def __init__(self, field=None, field_id=None, schema=None):
        self.field = field
        self.field_id = field.id if field is not None else field_id
        self.schema = schema

    def __repr__(self):
        return '<%s for field %s>' % (self.__class__.__name__, self.field_id)

    def bind(self, field, schema=None):
        self.field = field
        self.field_id = field.id
        self.schema = schema
        return self

    def get_label(self):
        if self.label:
            return self.label
        if self.field is not None:
            return self.field.name.replace('_', ' ').capitalize()
        return 'Field %s' % self.field_id

    # storage

    def make_fetch_sql(self, db):
        ''' Return (columns, joins) for the assembler's stage-2 query.

            Only called for fields with FIELDFL_CUSTOM_SERIALIZATION. The
            columns must include the field's column alias and
            '<alias>_rowid'; the joins must reference 'tickets.i'.
        '''
        raise NotImplementedError('field %s has custom serialization but '
            'its handler does not provide fetch SQL' % self.field_id)

    def decode_row(self, ticket, row):
        """Companion to make_fetch_sql(): fill the ticket from the row."""
        raise NotImplementedError

    def fulltext_subquery(self, db, word):
        ''' Return (sql, args) selecting 'ticket_id' of the tickets whose
            value of this field matches the word, or None if the field
            cannot be searched.
        '''
        if self.field is None or not self.field.tblname:
            return None
        a = db.arg
        predicate, args = db.sql_fulltext_predicate('t.value', word)
        sql = 'select t.ticket_id from %s t where t.field_id=%s and %s' % (
            self.field.tblname, a, predicate)
        return sql, [self.field_id] + args

    # writing

    def validate_before_write(self, old_value, new_value):
        ''' Check and normalise a value before it is stored. Returns the
            value to write.
        '''
        if new_value == '' and self.field is not None and \
                self.field.tblname == 'ticket_ints':
            new_value = None
        if new_value in (None, '') and self.field is not None and \
                self.field.fl & FIELDFL_REQUIRED_IN_POST_PUT:
            raise UsageError('Missing value for required field %r'
                % self.field.name)
        return new_value

    def store(self, db, ticket_id, value):
        """Write a validated value; the caller commits."""
        db.set_field_value(ticket_id, self.field, value)

    # formatting

    def serialize(self, value):
        """Return a JSON-compatible representation of the value."""
        return value

    def format_plain(self, value):
        if value is None:
            return ''
        if isinstance(value, (list, tuple)):
            return ', '.join([str(v) for v in value])
        return str(value)

    def format_html(self, value, highlights=()):
        html_text = escape(self.format_plain(value), quote=False)
        if highlights and self.highlight_search_terms and \
                self.field is not None and \
                self.field.search_boost is not None:
            html_text = highlight(html_text, highlights)
        return html_text

    def format_drilldown_value(self, value):
        """Label of one drill-down bucket."""
        return self.format_plain(value)


class PassthroughHandler(FieldHandler):
    """Fallback for fields nobody registered a handler for."""


class TextHandler(FieldHandler):
    pass


class TitleHandler(TextHandler):
    label = 'Title'


class DescriptionHandler(TextHandler):
    label = 'Description'


class IntegerHandler(FieldHandler):
    highlight_search_terms = False

    def validate_before_write(self, old_value, new_value):
        new_value = FieldHandler.validate_before_write(self, old_value,
            new_value)
        if new_value is None or new_value == '':
            return None
        try:
            return int(new_value)
        except (TypeError, ValueError):
            raise UsageError('Field %r needs an integer, not %r'
                % (self.field.name, new_value))

    def serialize(self, value):
        if value is None or value == '':
            return None
        return int(value)

    def format_plain(self, value):
        if value is None or value == '':
            return ''
        return '{:,}'.format(int(value))


class SelectFromSetHandler(IntegerHandler):
    ''' Integer fields whose values come from a fixed set. 'values' maps
        each permitted integer to its display name.
    '''
    values = {}

    def validate_before_write(self, old_value, new_value):
        new_value = IntegerHandler.validate_before_write(self, old_value,
            new_value)
        if new_value is not None and new_value not in self.values:
            raise UsageError('Invalid value %r for field %r'
                % (new_value, self.field.name))
        return new_value

    def format_plain(self, value):
        if value is None or value == '':
            return ''
        return self.values.get(int(value), str(value))


class StatusHandler(SelectFromSetHandler):
    label = 'Status'
    values = {
        schema.STATUS_OPEN: 'Open',
        schema.STATUS_REMINDER: 'Reminder',
        schema.STATUS_CLOSED: 'Closed',
        schema.STATUS_NEW: 'New',
        schema.STATUS_RESOLVED: 'Resolved',
        schema.STATUS_REOPENED: 'Reopened',
        schema.STATUS_IN_PROGRESS: 'In progress',
    }


class PriorityHandler(SelectFromSetHandler):
    label = 'Priority'
    values = dict([(p, str(p)) for p in range(schema.PRIORITY_LOWEST,
        schema.PRIORITY_HIGHEST + 1)])


class UserIDHandler(IntegerHandler):
    ''' User ID fields. Formats as '#uid'; the names are not looked up
        because formatting must not touch the store.
    '''
    def format_plain(self, value):
        if value is None or value == '':
            return ''
        return 'user #%s' % int(value)


class AssigneeHandler(UserIDHandler):
    label = 'Assignee'


class TicketTypeHandler(IntegerHandler):
    label = 'Type'

    def format_plain(self, value):
        if value is None:
            return ''
        if self.schema is not None:
            t = self.schema.get_type(int(value))
            if t is not None:
                return t.name
        return str(value)


class DateHandler(FieldHandler):
    ''' Dates are stored as 'YYYY-MM-DD HH:MM:SS' strings. Lists show the
        minutes only.
    '''
    highlight_search_terms = False

    def serialize(self, value):
        if value is None:
            return None
        if hasattr(value, 'isoformat'):
            return value.isoformat(' ')
        return str(value)

    def format_plain(self, value):
        value = self.serialize(value)
        if not value:
            return ''
        return value[:16]


class KeywordsHandler(FieldHandler):
    ''' Word-list field. The assembler delivers the keywords as one
        comma-separated string (and the keyword IDs separately).
    '''
    label = 'Keywords'

    def serialize(self, value):
        if not value:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        return [w for w in value.split(',') if w]

    def format_plain(self, value):
        return ', '.join(self.serialize(value))

    def validate_before_write(self, old_value, new_value):
        if isinstance(new_value, str):
            new_value = [w.strip() for w in re.split(r'[,\s]+', new_value)
                if w.strip()]
        return FieldHandler.validate_before_write(self, old_value,
            new_value or None)


class TicketLinksHandler(FieldHandler):
    ''' Parents and children: lists of ticket IDs.
    '''
    highlight_search_terms = False

    def serialize(self, value):
        return split_ints(value)

    def format_plain(self, value):
        return ', '.join(['#%d' % i for i in split_ints(value)])


class ParentsHandler(TicketLinksHandler):
    label = 'Parents'


class ChildrenHandler(TicketLinksHandler):
    label = 'Children'


class JsonHandler(FieldHandler):
    ''' Stores a dict with a fixed set of string keys as one JSON
        document per ticket in the ticket_json table.

        The field must have FIELDFL_CUSTOM_SERIALIZATION; the assembler
        then asks this handler for the fetch SQL and the decoding.
    '''
    # key -> label; subclasses or registrations set this
    keys = {}

    def __init__(self, field=None, field_id=None, schema=None, keys=None):
        FieldHandler.__init__(self, field, field_id, schema)
        if keys is not None:
            self.keys = dict(keys)

    def _alias(self):
        return 'tbl_' + self.field.name

    def make_fetch_sql(self, db):
        alias = self._alias()
        joins = ['LEFT JOIN ticket_json %s ON (%s.ticket_id = tickets.i '
            'AND %s.field_id = %d)' % (alias, alias, alias, self.field_id)]
        columns = ['%s.data AS %s' % (alias, self.field.column),
            '%s.i AS %s_rowid' % (alias, self.field.column)]
        return columns, joins

    def decode_row(self, ticket, row):
        data = row[self.field.column]
        if data is None:
            return
        ticket.field_data[self.field_id] = json.loads(data)
        ticket.row_ids[self.field_id] = row[self.field.column + '_rowid']

    def fulltext_subquery(self, db, word):
        # the words of the values, not the JSON document with its keys
        a = db.arg
        predicate, args = db.sql_fulltext_predicate('t.search_text', word)
        sql = 'select t.ticket_id from ticket_json t where t.field_id=%s ' \
            'and %s' % (a, predicate)
        return sql, [self.field_id] + args

    def make_searchable(self, value):
        """The text fulltext queries match: the values, in key order."""
        if not value:
            return None
        return ' '.join([str(value[k]) for k in self.keys if value.get(k)])

    def validate_before_write(self, old_value, new_value):
        if isinstance(new_value, str):
            try:
                new_value = json.loads(new_value)
            except ValueError:
                raise UsageError('Field %r needs a JSON object'
                    % self.field.name)
        if new_value is not None:
            if not isinstance(new_value, dict):
                raise UsageError('Field %r needs a JSON object'
                    % self.field.name)
            unknown = set(new_value) - set(self.keys)
            if unknown:
                raise UsageError('Unknown keys %s for field %r' % (
                    ', '.join(sorted(unknown)), self.field.name))
        return FieldHandler.validate_before_write(self, old_value,
            new_value or None)

    def store(self, db, ticket_id, value):
        data = None
        if value:
            data = json.dumps(value, sort_keys=True, ensure_ascii=False)
        db.set_json_value(ticket_id, self.field_id, data,
            self.make_searchable(value))

    def serialize(self, value):
        return dict(value or {})

    def format_plain(self, value):
        if not value:
            return ''
        return '; '.join(['%s: %s' % (label, value[key])
            for key, label in self.keys.items() if value.get(key)])


# handlers for the core fields
CORE_HANDLERS = {
    schema.FIELD_TITLE: TitleHandler,
    schema.FIELD_DESCRIPTION: DescriptionHandler,
    schema.FIELD_STATUS: StatusHandler,
    schema.FIELD_PRIORITY: PriorityHandler,
    schema.FIELD_UIDASSIGN: AssigneeHandler,
    schema.FIELD_CREATED_UID: UserIDHandler,
    schema.FIELD_LASTMOD_UID: UserIDHandler,
    schema.FIELD_KEYWORDS: KeywordsHandler,
    schema.FIELD_PARENTS: ParentsHandler,
    schema.FIELD_CHILDREN: ChildrenHandler,
    schema.FIELD_TYPE: TicketTypeHandler,
    schema.FIELD_PROJECT: IntegerHandler,
    schema.FIELD_CATEGORY: IntegerHandler,
    schema.FIELD_CREATED_DT: DateHandler,
    schema.FIELD_LASTMOD_DT: DateHandler,
}


class FieldHandlerRegistry:
    ''' Maps field IDs to handlers.

        register() accepts either a FieldHandler instance or a factory (a
        FieldHandler subclass or any callable taking the TicketField).
        Factories are only called on the first find() for their field.
        Everything must be registered before the first search runs.
    '''
    def __init__(self, schema):
        self.schema = schema
        self._registered = {}
        self._handlers = {}
        for field_id, factory in CORE_HANDLERS.items():
            self._registered[field_id] = factory

    def register(self, field_id, handler):
        if field_id in self._handlers:
            del self._handlers[field_id]
        self._registered[field_id] = handler
        logger.debug('registered handler %r for field %s', handler, field_id)

    def is_registered(self, field_id):
        return field_id in self._registered

    def find(self, field_id):
        ''' Return the handler for the field ID; unknown field IDs get a
            PassthroughHandler.
        '''
        handler = self._handlers.get(field_id)
        if handler is not None:
            return handler
        field = self.schema.find(field_id)
        spec = self._registered.get(field_id)
        if spec is None:
            handler = PassthroughHandler(field, field_id, self.schema)
        elif isinstance(spec, FieldHandler):
            if field is not None:
                spec.bind(field, self.schema)
            handler = spec
        elif field is None:
            logger.warning('handler registered for unknown field %s',
                field_id)
            handler = PassthroughHandler(None, field_id, self.schema)
        else:
            handler = spec(field)
            if handler.schema is None:
                handler.schema = self.schema
        if field is not None and field.fl & FIELDFL_CUSTOM_SERIALIZATION \
                and isinstance(handler, PassthroughHandler):
            raise UsageError('field %r needs custom serialization but has '
                'no handler' % field.name)
        self._handlers[field_id] = handler
        return handler

    def rebind(self, schema):
        """Return a registry for a reloaded schema, keeping registrations."""
        new = self.__class__(schema)
        new._registered = dict(self._registered)
        return new

# vim: set et sts=4 sw=4 :
