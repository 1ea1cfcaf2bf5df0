"""Ticket fields, ticket types and the registry that maps one to the other.

Ticket data is sparse: every ticket type declares which fields it uses,
and field values are stored in per-value-type tables keyed by ticket ID
and field ID. The SchemaRegistry is the read-only description of that
layout. It is loaded once and replaced as a whole by reload().
"""
__docformat__ = 'restructuredtext'

import re

from doreen.exceptions import UsageError

import logging
logger = logging.getLogger('doreen.schema')

#
# Field IDs. Core fields are negative; plugin fields use their own ranges.
#
FIELD_TITLE = -1
FIELD_DESCRIPTION = -2
FIELD_PROJECT = -3
FIELD_KEYWORDS = -4
FIELD_CATEGORY = -5
FIELD_VERSION = -6
FIELD_PRIORITY = -7
FIELD_SEVERITY = -8
FIELD_STATUS = -9
FIELD_UIDASSIGN = -12
FIELD_CHANGELOG = -13
FIELD_COMMENT = -14
FIELD_OLDCOMMENT = -15
FIELD_ATTACHMENT = -16
FIELD_CHILDREN = -33
FIELD_PARENTS = -34

FIELD_LASTMOD_UID = -93
FIELD_CREATED_UID = -94
FIELD_LASTMOD_DT = -95
FIELD_CREATED_DT = -96
FIELD_TYPE = -97
FIELD_SCORE = -98

STATUS_OPEN = -1
STATUS_REMINDER = -2
STATUS_CLOSED = -3
STATUS_NEW = -4
STATUS_RESOLVED = -9
STATUS_REOPENED = -11
STATUS_IN_PROGRESS = -15

PRIORITY_LOWEST = 1
PRIORITY_NORMAL = 5
PRIORITY_HIGH = 8
PRIORITY_HIGHEST = 10

#
# Field flags
#
FIELDFL_STD_CORE = 1 << 0
FIELDFL_STD_DATA_OLD_NEW = 1 << 1
FIELDFL_REQUIRED_IN_POST_PUT = 1 << 2
FIELDFL_VIRTUAL_IGNORE_POST_PUT = 1 << 3
FIELDFL_ARRAY = 1 << 4
FIELDFL_ARRAY_HAS_REVERSE = 1 << 5
FIELDFL_ARRAY_REVERSE = 1 << 6
FIELDFL_FIXED_CREATEONLY = 1 << 7
FIELDFL_CHANGELOGONLY = 1 << 8
FIELDFL_VISIBILITY_CONFIG = 1 << 9
FIELDFL_DETAILSONLY = 1 << 10
FIELDFL_HIDDEN = 1 << 11
FIELDFL_SORTABLE = 1 << 12
FIELDFL_DESCENDING = 1 << 13
FIELDFL_EMPTYTICKETEVENT = 1 << 14
FIELDFL_EMPTYSYSEVENT = 1 << 15
FIELDFL_SHOW_CUSTOM_DATA = 1 << 16
FIELDFL_WORDLIST = 1 << 17
FIELDFL_TYPE_INT = 1 << 18
FIELDFL_TYPE_TEXT_NATURAL = 1 << 19
FIELDFL_TYPE_TEXT_LITERAL = 1 << 20
FIELDFL_ARRAY_COUNT = 1 << 21
FIELDFL_SUGGEST_FULL_VALUE = 1 << 22
FIELDFL_TYPE_DATE = 1 << 23
FIELDFL_SUPPORTS_SUBTOTALS = 1 << 24
FIELDFL_CUSTOM_SERIALIZATION = 1 << 25
FIELDFL_MAPPED_FROM_PROJECT = 1 << 26
FIELDFL_DRILLDOWN = 1 << 27

_data = FIELDFL_STD_DATA_OLD_NEW | FIELDFL_VISIBILITY_CONFIG
_changelog = FIELDFL_CHANGELOGONLY | FIELDFL_VIRTUAL_IGNORE_POST_PUT

# Flags for the fields every installation has. Stored field rows with a
# NULL flags column get these.
CORE_FIELD_FLAGS = {
    FIELD_TYPE: FIELDFL_STD_CORE,
    FIELD_CREATED_DT: FIELDFL_STD_CORE | FIELDFL_TYPE_DATE | FIELDFL_SORTABLE
        | FIELDFL_DESCENDING,
    FIELD_LASTMOD_DT: FIELDFL_STD_CORE | FIELDFL_TYPE_DATE | FIELDFL_SORTABLE
        | FIELDFL_DESCENDING,
    FIELD_CREATED_UID: FIELDFL_STD_CORE | FIELDFL_HIDDEN,
    FIELD_LASTMOD_UID: FIELDFL_STD_CORE | FIELDFL_HIDDEN,
    FIELD_PROJECT: FIELDFL_STD_CORE | FIELDFL_VISIBILITY_CONFIG
        | FIELDFL_TYPE_INT | FIELDFL_SORTABLE,
    FIELD_TITLE: _data | FIELDFL_REQUIRED_IN_POST_PUT
        | FIELDFL_TYPE_TEXT_NATURAL | FIELDFL_SORTABLE
        | FIELDFL_SUGGEST_FULL_VALUE,
    FIELD_DESCRIPTION: _data | FIELDFL_TYPE_TEXT_NATURAL,
    FIELD_PARENTS: _data | FIELDFL_ARRAY | FIELDFL_ARRAY_HAS_REVERSE,
    FIELD_CHILDREN: _data | FIELDFL_ARRAY_REVERSE,
    FIELD_KEYWORDS: _data | FIELDFL_REQUIRED_IN_POST_PUT | FIELDFL_ARRAY
        | FIELDFL_WORDLIST,
    FIELD_CATEGORY: _data | FIELDFL_TYPE_INT | FIELDFL_SORTABLE,
    FIELD_PRIORITY: _data | FIELDFL_REQUIRED_IN_POST_PUT | FIELDFL_TYPE_INT
        | FIELDFL_SORTABLE | FIELDFL_DESCENDING,
    FIELD_UIDASSIGN: _data | FIELDFL_REQUIRED_IN_POST_PUT | FIELDFL_TYPE_INT
        | FIELDFL_SORTABLE,
    FIELD_STATUS: _data | FIELDFL_REQUIRED_IN_POST_PUT | FIELDFL_TYPE_INT
        | FIELDFL_SORTABLE,
    FIELD_CHANGELOG: FIELDFL_VISIBILITY_CONFIG | FIELDFL_TYPE_TEXT_NATURAL
        | FIELDFL_DETAILSONLY | _changelog,
    FIELD_COMMENT: _data | FIELDFL_TYPE_TEXT_NATURAL | FIELDFL_DETAILSONLY
        | _changelog,
    FIELD_OLDCOMMENT: _changelog | FIELDFL_HIDDEN,
    FIELD_ATTACHMENT: _data | FIELDFL_TYPE_TEXT_NATURAL | FIELDFL_DETAILSONLY
        | _changelog,
}

# (id, name, table, ordering) of the fields created by a fresh install
CORE_FIELDS = (
    (FIELD_TYPE, 'type', None, 0),
    (FIELD_CREATED_DT, 'created', None, 900),
    (FIELD_LASTMOD_DT, 'changed', None, 910),
    (FIELD_CREATED_UID, 'created_uid', None, 920),
    (FIELD_LASTMOD_UID, 'lastmod_uid', None, 930),
    (FIELD_PROJECT, 'project', None, 5),
    (FIELD_TITLE, 'title', 'ticket_texts', 10),
    (FIELD_DESCRIPTION, 'description', 'ticket_texts', 20),
    (FIELD_PARENTS, 'parents', 'ticket_parents', 30),
    (FIELD_CHILDREN, 'children', 'ticket_parents', 31),
    (FIELD_KEYWORDS, 'keywords', 'ticket_ints', 40),
    (FIELD_CATEGORY, 'category', 'ticket_categories', 50),
    (FIELD_PRIORITY, 'priority', 'ticket_ints', 60),
    (FIELD_UIDASSIGN, 'assignee', 'ticket_ints', 70),
    (FIELD_STATUS, 'status', 'ticket_ints', 80),
    (FIELD_CHANGELOG, 'changelog', None, 1000),
    (FIELD_COMMENT, 'comment', 'ticket_texts', 1010),
    (FIELD_ATTACHMENT, 'attachment', None, 1020),
)

# columns of the tickets table that hold the STD_CORE fields
CORE_COLUMNS = {
    FIELD_TYPE: 'type_id',
    FIELD_PROJECT: 'project_id',
    FIELD_CREATED_DT: 'created_dt',
    FIELD_LASTMOD_DT: 'lastmod_dt',
    FIELD_CREATED_UID: 'owner_uid',
    FIELD_LASTMOD_UID: 'lastmod_uid',
}

# included in every visible-fields list regardless of type
ALWAYS_INCLUDED = (FIELD_CREATED_DT, FIELD_LASTMOD_DT, FIELD_CREATED_UID,
    FIELD_LASTMOD_UID)

DEFAULT_SEARCH_BOOST = {
    FIELD_TITLE: 5,
    FIELD_DESCRIPTION: 1,
}

_identifier = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


def check_identifier(kind, name):
    ''' Field and table names end up in SQL as aliases and table names,
        so they are restricted to plain identifiers.
    '''
    if not name or not _identifier.match(name):
        raise UsageError('Invalid %s name %r' % (kind, name))
    return name


def parse_id_list(value):
    """Parse '-1,-2,5' (or an iterable of ints) into a tuple of ints."""
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple([int(v) for v in value.split(',') if v.strip()])
    return tuple([int(v) for v in value])


class Scope:
    """Which of a type's field lists visible_fields() consults."""
    LIST = 'list'
    DETAILS = 'details'
    ALL = 'all'

    values = (LIST, DETAILS, ALL)


class TicketField:
    ''' One named unit of ticket data.

        - id: globally unique field ID
        - name: identifier used as the field's key in results
        - tblname: storage table or None for core and virtual fields
        - fl: FIELDFL_* bits
        - ordering: display weight; lower comes first
        - parent: parent field ID for child fields (shown with the parent)
        - search_boost: non-None makes the field searchable in fulltext
    '''
    def __init__(self, id, name, tblname=None, fl=None, ordering=0,
            parent=None, search_boost=None):
        self.id = int(id)
        self.name = check_identifier('field', name)
        if tblname is not None:
            check_identifier('table', tblname)
        self.tblname = tblname
        if fl is None:
            fl = CORE_FIELD_FLAGS.get(self.id)
        if fl is None:
            raise UsageError('ticket field %s (%r) has no field flags'
                % (id, name))
        self.fl = fl
        self.ordering = ordering or 0
        self.parent = parent or None
        self.search_boost = search_boost

    def __repr__(self):
        return '<TicketField %s %r>' % (self.id, self.name)

    def has(self, flag):
        return bool(self.fl & flag)

    @property
    def column(self):
        """Column alias the assembler selects this field's value as."""
        return 'f_' + self.name.lower()

    @property
    def core_column(self):
        """The tickets table column of a STD_CORE field, else None."""
        return CORE_COLUMNS.get(self.id)

    def sort_key(self):
        return (self.ordering, self.id)


class TicketType:
    ''' A named bundle of fields with a list-view and a details-view field
        list and the workflow that drives its status field.
    '''
    def __init__(self, id, name, details_fields, list_fields,
            workflow_id=None):
        self.id = int(id)
        self.name = name
        self.details_fields = parse_id_list(details_fields)
        self.list_fields = parse_id_list(list_fields)
        self.workflow_id = workflow_id

    def __repr__(self):
        return '<TicketType %s %r>' % (self.id, self.name)

    def field_ids(self, scope):
        if scope == Scope.LIST:
            return frozenset(self.list_fields)
        if scope == Scope.DETAILS:
            return frozenset(self.details_fields)
        if scope == Scope.ALL:
            return frozenset(self.details_fields + self.list_fields)
        raise UsageError('Invalid field scope %r' % (scope,))

    def compact_details(self):
        return set(self.details_fields) == set((FIELD_TITLE,
            FIELD_DESCRIPTION))


class SchemaRegistry:
    ''' Read-only view of all ticket fields and types.

        The registry is built once (from the store with load(), or
        directly from TicketField and TicketType objects) and never
        changes. reload() returns a new registry.

        Field aliasing: 'aliases' maps an alias field ID to the canonical
        field ID whose storage it shares. Aliases filter, sort and
        aggregate on the canonical field and collapse into it in
        visible-field lists.
    '''
    def __init__(self, fields, types, aliases=None, drilldown_ids=()):
        by_id = {}
        by_name = {}
        for f in sorted(fields, key=TicketField.sort_key):
            if f.id in by_id:
                raise UsageError('Duplicate ticket field ID %s' % f.id)
            if f.name in by_name:
                raise UsageError('Duplicate ticket field name %r' % f.name)
            by_id[f.id] = f
            by_name[f.name] = f
        self._fields = by_id
        self._by_name = by_name
        self._types = dict([(t.id, t) for t in types])

        self._aliases = {}
        for alias, canonical in (aliases or {}).items():
            if alias not in by_id or canonical not in by_id:
                raise UsageError('Invalid field alias %s -> %s'
                    % (alias, canonical))
            self._aliases[alias] = canonical
        # resolve chains so every alias points straight at its target
        for alias in list(self._aliases):
            seen = set([alias])
            target = self._aliases[alias]
            while target in self._aliases:
                if target in seen:
                    raise UsageError('Circular field alias at %s' % alias)
                seen.add(target)
                target = self._aliases[target]
            self._aliases[alias] = target

        self._drilldown_ids = tuple([self.canonical(i) for i in drilldown_ids
            if i in by_id and i != FIELD_TYPE])
        for f in self._fields.values():
            if f.fl & FIELDFL_DRILLDOWN and f.id not in self._drilldown_ids \
                    and f.id not in self._aliases:
                self._drilldown_ids = self._drilldown_ids + (f.id,)

        logger.debug('schema: %d fields, %d types, %d aliases',
            len(self._fields), len(self._types), len(self._aliases))

    @classmethod
    def load(cls, db, drilldown_ids=()):
        """Build a registry from the ticket_fields and ticket_types tables."""
        fields = [TicketField(row['i'], row['name'], row['tblname'],
                row['fl'], row['ordering'], row['parent'],
                row['search_boost'])
            for row in db.get_field_rows()]
        types = [TicketType(row['i'], row['name'], row['details_fields'],
                row['list_fields'], row['workflow_id'])
            for row in db.get_type_rows()]
        aliases = dict([(row['alias_id'], row['canonical_id'])
            for row in db.get_alias_rows()])
        return cls(fields, types, aliases, drilldown_ids)

    def reload(self, db):
        return self.__class__.load(db, self._drilldown_ids)

    # fields

    def find(self, field_id):
        """Return the TicketField for field_id or None."""
        return self._fields.get(field_id)

    def find_by_name(self, name):
        return self._by_name.get(name)

    def fields(self):
        """All fields, in display order."""
        return list(self._fields.values())

    def canonical(self, field_id):
        return self._aliases.get(field_id, field_id)

    def canonical_field(self, field_id):
        return self.find(self.canonical(field_id))

    def aliases(self):
        return dict(self._aliases)

    def searchable_fields(self):
        ''' Fields with a search boost, excluding changelog-only fields.
        '''
        result = []
        for f in self._fields.values():
            if f.search_boost is None or f.fl & FIELDFL_CHANGELOGONLY:
                continue
            if f.fl & FIELDFL_TYPE_INT:
                raise UsageError('field %r cannot have a search boost if it '
                    'is an integer field' % f.name)
            if f.id in self._aliases:
                continue
            result.append(f)
        return result

    def drilldown_ids(self):
        """Field IDs aggregated in search results, besides FIELD_TYPE."""
        return self._drilldown_ids

    # types

    def get_type(self, type_id):
        return self._types.get(type_id)

    def types(self, type_ids=None):
        if type_ids is None:
            return sorted(self._types.values(), key=lambda t: t.id)
        return [self._types[i] for i in sorted(set(type_ids))
            if i in self._types]

    def visible_fields(self, type_ids, scope=Scope.LIST,
            include_hidden=False, include_children=False,
            include_core=True):
        ''' Return the ordered list of fields shown for tickets of the
            given types.

            The field sets of all types are merged and ordered by each
            field's ordering weight (then ID). Alias fields are replaced
            by their canonical field, so no storage column appears twice.
        '''
        if scope not in Scope.values:
            raise UsageError('Invalid field scope %r' % (scope,))
        visible = {}
        if include_core:
            for field_id in ALWAYS_INCLUDED:
                f = self._fields.get(field_id)
                if f is None:
                    continue
                if f.fl & FIELDFL_HIDDEN and not include_hidden:
                    continue
                visible[f.id] = f
        for t in self.types(type_ids):
            check = t.field_ids(scope)
            for f in self._fields.values():
                if f.fl & FIELDFL_HIDDEN and not include_hidden:
                    continue
                if f.parent:
                    if include_children and f.parent in check:
                        visible[f.id] = f
                elif f.id in check:
                    visible[f.id] = f
        merged = {}
        for f in visible.values():
            c = self.canonical_field(f.id)
            merged[c.id] = c
        return sorted(merged.values(), key=TicketField.sort_key)

    def sortable_fields(self, type_ids):
        return [f for f in self.visible_fields(type_ids)
            if f.fl & FIELDFL_SORTABLE]

# vim: set et sts=4 sw=4 :
