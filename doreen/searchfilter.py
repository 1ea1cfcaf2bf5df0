"""Search filters, sort orders and the builder that turns them into SQL.

A search is a list of SearchFilter objects (ANDed together), an optional
set of drill-down constraints and a SearchOrder. SearchFilterBuilder
composes them into a QueryPlan: the FROM/JOIN/WHERE fragments plus their
positional arguments, and the ORDER BY clause. The plan is executed by
the QueryExecutor of the backend.

Every value that comes from a caller is passed to the store as a bound
argument. Only integers taken from the schema (field IDs, search boosts)
and identifiers checked by schema.check_identifier() appear in the SQL
text itself.
"""
__docformat__ = 'restructuredtext'

import re

from doreen import schema
from doreen.exceptions import InvalidFilter
from doreen.schema import FIELD_SCORE, FIELD_TYPE, FIELDFL_ARRAY, \
    FIELDFL_ARRAY_REVERSE, FIELDFL_DESCENDING, FIELDFL_SORTABLE, \
    FIELDFL_TYPE_TEXT_NATURAL

import logging
logger = logging.getLogger('doreen.search')

STOPWORDS = [
    "A", "AND", "ARE", "AS", "AT", "BE", "BUT", "BY",
    "FOR", "IF", "IN", "INTO", "IS", "IT",
    "NO", "NOT", "OF", "ON", "OR", "SUCH",
    "THAT", "THE", "THEIR", "THEN", "THERE", "THESE",
    "THEY", "THIS", "TO", "WAS", "WILL", "WITH"
]

# Words shorter or longer than this are not matched; longer ones are
# gibberish (encoded text or somesuch).
MINLENGTH = 2
MAXLENGTH = 25

_email = re.compile(r'.+@.+\..+')
_words = re.compile(r'"([^"]*)"|(\S+)')


def precook(text):
    ''' Normalise a fulltext query before it is split into words.

        An e-mail address would otherwise be split at the punctuation by
        most search engines, so a query that looks like one and has no
        quotes of its own is quoted as a whole.
    '''
    text = text.strip()
    if '"' not in text and _email.match(text):
        text = '"%s"' % text
    return text


def split_words(text, stopwords=()):
    ''' Split a precooked query into the words to match.

        Quoted phrases are kept together. Stop-words (compared upper-case)
        and words outside MINLENGTH..MAXLENGTH are dropped. The order of
        first appearance is kept and duplicates are removed.
    '''
    stop = set(STOPWORDS)
    for word in stopwords:
        stop.add(word.upper())
    result = []
    for m in _words.finditer(text):
        phrase, word = m.groups()
        if phrase is not None:
            word = phrase.strip()
            if not word:
                continue
        elif word.upper() in stop:
            continue
        if len(word) < MINLENGTH or len(word) > MAXLENGTH:
            continue
        if word not in result:
            result.append(word)
    return result


def make_highlights(words):
    """Highlight terms: longest first so that prefixes don't win."""
    return sorted(words, key=lambda w: (-len(w), w))


class SearchFilter:
    ''' One criterion of a search. Build instances with the class
        methods, not the constructor.
    '''
    TEMPLATES = 1
    NONTEMPLATES = 2
    FULLTEXT = 3
    STRICTMATCH = 4
    ACLIDS = 5
    TICKETIDS = 6
    TICKETTYPEIDS = 7
    FIELDVALUELIST = 8
    FIELDVALUERANGE = 9
    EXCLUDETICKETIDS = 10
    LIMIT = 11

    def __init__(self, kind, field_id=None, values=None, text=None,
            minval=None, maxval=None, field_ids=None):
        self.kind = kind
        self.field_id = field_id
        self.values = values
        self.text = text
        self.minval = minval
        self.maxval = maxval
        self.field_ids = field_ids

    def __repr__(self):
        return '<SearchFilter %s>' % self.describe()

    @classmethod
    def templates(cls):
        return cls(cls.TEMPLATES)

    @classmethod
    def non_templates(cls):
        return cls(cls.NONTEMPLATES)

    @classmethod
    def fulltext(cls, text):
        return cls(cls.FULLTEXT, text=precook(text))

    @classmethod
    def strict_match(cls, text, field_ids):
        ''' Match the text literally (not split into words) in the given
            fields only.
        '''
        return cls(cls.STRICTMATCH, text=text,
            field_ids=[int(i) for i in field_ids])

    @classmethod
    def from_acl_ids(cls, aids):
        return cls(cls.ACLIDS, values=list(aids))

    @classmethod
    def from_ticket_ids(cls, ticket_ids):
        return cls(cls.TICKETIDS, values=list(ticket_ids))

    @classmethod
    def from_ticket_types(cls, type_ids):
        return cls(cls.TICKETTYPEIDS, values=list(type_ids))

    @classmethod
    def from_field_value_list(cls, field_id, values):
        ''' Field value is one of 'values'; None in the list matches
            tickets that have no value for the field.
        '''
        return cls(cls.FIELDVALUELIST, field_id=int(field_id),
            values=list(values))

    @classmethod
    def from_field_value_range(cls, field_id, minval=None, maxval=None):
        """Inclusive range; either end may be None."""
        return cls(cls.FIELDVALUERANGE, field_id=int(field_id),
            minval=minval, maxval=maxval)

    @classmethod
    def exclude_ticket_ids(cls, ticket_ids):
        return cls(cls.EXCLUDETICKETIDS, values=list(ticket_ids))

    @classmethod
    def limit(cls, count):
        return cls(cls.LIMIT, values=[int(count)])

    def describe(self):
        k = self.kind
        if k == self.TEMPLATES:
            return 'templates only'
        if k == self.NONTEMPLATES:
            return 'no templates'
        if k == self.FULLTEXT:
            return 'fulltext %r' % self.text
        if k == self.STRICTMATCH:
            return 'literal %r in fields %s' % (self.text,
                ','.join(map(str, self.field_ids)))
        if k == self.ACLIDS:
            return 'ACL IDs %s' % ','.join(map(str, self.values))
        if k == self.TICKETIDS:
            return 'ticket IDs %s' % ','.join(map(str, self.values))
        if k == self.TICKETTYPEIDS:
            return 'ticket types %s' % ','.join(map(str, self.values))
        if k == self.FIELDVALUELIST:
            return 'field %s in %r' % (self.field_id, self.values)
        if k == self.FIELDVALUERANGE:
            return 'field %s between %r and %r' % (self.field_id,
                self.minval, self.maxval)
        if k == self.EXCLUDETICKETIDS:
            return 'not ticket IDs %s' % ','.join(map(str, self.values))
        if k == self.LIMIT:
            return 'at most %s results' % self.values[0]
        return 'filter kind %s' % k


def find_fulltext(filters):
    """Return the first FULLTEXT filter in the list, or None."""
    for f in filters or ():
        if f.kind == SearchFilter.FULLTEXT:
            return f
    return None


class SearchOrder:
    ''' How search results are sorted.

        Parameter strings name the order, ascending; a leading '!' makes
        it descending:

        - 'score': fulltext relevance (needs a fulltext filter)
        - 'template': template name
        - 'id': ticket ID
        - any sortable field name, including 'created' and 'changed'

        Ticket ID always follows as the tie-break, so pages are stable.
        Orders built without a parameter (the defaults, the sort options
        offered for a result set) take the natural direction of their
        kind, see default_direction().
    '''
    SCORE = 1
    FIELD = 2
    TEMPLATE = 3
    ID = 4

    ASC = 0
    DESC = 1

    _names = {
        'score': SCORE,
        'template': TEMPLATE,
        'id': ID,
    }
    _labels = {
        SCORE: 'Relevance',
        TEMPLATE: 'Template',
        ID: 'ID',
    }

    def __init__(self, kind, direction=None, field=None):
        self.kind = kind
        self.field = field
        if direction is None:
            direction = self.default_direction()
        if direction not in (self.ASC, self.DESC):
            raise InvalidFilter('Invalid sort direction %r' % (direction,))
        self.direction = direction

    def __repr__(self):
        return '<SearchOrder %s>' % self.get_param()

    def __eq__(self, other):
        if not isinstance(other, SearchOrder):
            return NotImplemented
        return (self.kind, self.direction, self.field_id) == (other.kind,
            other.direction, other.field_id)

    def __ne__(self, other):
        return not self == other

    @property
    def field_id(self):
        if self.kind == self.SCORE:
            return FIELD_SCORE
        if self.field is not None:
            return self.field.id
        return None

    def default_direction(self):
        if self.kind == self.FIELD:
            if self.field.fl & FIELDFL_DESCENDING:
                return self.DESC
            return self.ASC
        return self.DESC

    @classmethod
    def from_param(cls, param, registry):
        ''' Parse a sort parameter like '!created'.

            Raises InvalidFilter for unknown names and for fields that
            cannot be sorted by.
        '''
        if not param:
            raise InvalidFilter('Empty sort parameter')
        direction = cls.ASC
        name = param
        if param.startswith('!'):
            direction = cls.DESC
            name = param[1:]
        kind = cls._names.get(name)
        field = None
        if kind is None:
            field = registry.find_by_name(name)
            if field is None:
                raise InvalidFilter('Invalid sort parameter %r' % param)
            field = registry.canonical_field(field.id)
            if not field.fl & FIELDFL_SORTABLE:
                raise InvalidFilter('Cannot sort by field %r' % name)
            if field.fl & (FIELDFL_ARRAY | FIELDFL_ARRAY_REVERSE):
                raise InvalidFilter('Cannot sort by multi-value field %r'
                    % name)
            kind = cls.FIELD
        return cls(kind, direction, field)

    @classmethod
    def from_filters(cls, filters, registry):
        ''' The default order: relevance if there is a fulltext filter,
            newest first otherwise.
        '''
        if find_fulltext(filters) is not None:
            return cls(cls.SCORE)
        field = registry.find(schema.FIELD_CREATED_DT)
        if field is None:
            return cls(cls.ID)
        return cls(cls.FIELD, field=field)

    @classmethod
    def get_all(cls, registry, type_ids, fulltext=False):
        ''' All orders offered for a result set with the given types: the
            sortable visible fields, plus relevance with a fulltext query.
        '''
        orders = []
        if fulltext:
            orders.append(cls(cls.SCORE))
        for f in registry.sortable_fields(type_ids):
            if f.fl & (FIELDFL_ARRAY | FIELDFL_ARRAY_REVERSE):
                continue
            orders.append(cls(cls.FIELD, field=f))
        return orders

    def get_name(self):
        if self.kind == self.FIELD:
            return self.field.name
        for name, kind in self._names.items():
            if kind == self.kind:
                return name

    def get_param(self):
        """The parameter string from_param() parses back into this order."""
        if self.direction == self.DESC:
            return '!' + self.get_name()
        return self.get_name()

    def get_label(self):
        if self.kind == self.FIELD:
            return self.field.name.replace('_', ' ').capitalize()
        return self._labels[self.kind]

    def get_type(self):
        if self.kind == self.FIELD and \
                self.field.fl & FIELDFL_TYPE_TEXT_NATURAL:
            return 'text'
        return 'num'

    def reversed(self):
        return self.__class__(self.kind, 1 - self.direction, self.field)

    def to_json(self):
        return {
            'param': self.get_name(),
            'name': self.get_label(),
            'direction': self.direction,
            'type': self.get_type(),
        }


class QueryPlan:
    ''' The composed, not yet executed, SQL of a search.

        - joins: list of (sql, args) joined to 'tickets' in order
        - where: list of (sql, args) ANDed together
        - drill_down: canonical field ID -> tuple of permitted values
        - drill_where: canonical field ID -> index into 'where' of the
          fragment its drill-down added, so that drill-down counting can
          leave it out
        - order_joins, order_by: the sort clause
        - words, highlights: fulltext words matched and shown
        - limit: cap from a LIMIT filter, or None
    '''
    def __init__(self):
        self.joins = []
        self.where = []
        self.drill_down = {}
        self.drill_where = {}
        self.order = None
        self.order_joins = []
        self.order_by = 'tickets.i'
        self.words = []
        self.highlights = []
        self.fulltext = None
        self.score = False
        self.limit = None

    def __repr__(self):
        sql, args = self.from_clause()
        return '<QueryPlan %r %r>' % (sql, args)

    def from_clause(self, exclude=None, extra_joins=()):
        ''' Return (sql, args) of the FROM ... WHERE part of the query.

            'exclude' is a drill-down field ID whose own constraint is left
            out. 'extra_joins' are argument-less joins added after the
            plan's joins.
        '''
        sql = ['FROM tickets']
        args = []
        for join, join_args in self.joins:
            sql.append(join)
            args.extend(join_args)
        sql.extend(extra_joins)
        skip = None
        if exclude is not None:
            skip = self.drill_where.get(exclude)
        where = []
        for n, (w, w_args) in enumerate(self.where):
            if n == skip:
                continue
            where.append(w)
            args.extend(w_args)
        if where:
            sql.append('WHERE ' + ' AND '.join(where))
        return ' '.join(sql), args


class SearchFilterBuilder:
    ''' Compose filters, drill-down constraints and a sort order into a
        QueryPlan.

        All validation happens here, before anything is sent to the
        store: unknown fields, unsortable sort orders and relevance
        sorting without a fulltext filter raise InvalidFilter.
    '''
    def __init__(self, db, registry, handlers, stopwords=()):
        self.db = db
        self.schema = registry
        self.handlers = handlers
        self.stopwords = list(stopwords or ())

    def build(self, filters, sort=None, drill_down=None):
        ''' Return the QueryPlan, or None if the filters cannot match any
            ticket (e.g. an empty list of ACL IDs). The sort order and
            drill-down constraints are validated in either case.
        '''
        filters = list(filters or [])
        order, drill_down = self.validate(filters, sort, drill_down)

        plan = QueryPlan()
        plan.order = order
        a = self.db.arg
        kinds = set([f.kind for f in filters])
        if SearchFilter.TEMPLATES not in kinds and \
                SearchFilter.NONTEMPLATES not in kinds:
            filters.append(SearchFilter.non_templates())

        for f in filters:
            k = f.kind
            if k == SearchFilter.TEMPLATES:
                plan.where.append(('tickets.template IS NOT NULL', []))
            elif k == SearchFilter.NONTEMPLATES:
                plan.where.append(('tickets.template IS NULL', []))
            elif k in (SearchFilter.ACLIDS, SearchFilter.TICKETIDS,
                    SearchFilter.TICKETTYPEIDS):
                # we can't match anything if the list is empty
                if not f.values:
                    logger.debug('%s: no results possible', f.describe())
                    return None
                column = {
                    SearchFilter.ACLIDS: 'tickets.aid',
                    SearchFilter.TICKETIDS: 'tickets.i',
                    SearchFilter.TICKETTYPEIDS: 'tickets.type_id',
                }[k]
                s = ','.join([a for x in f.values])
                plan.where.append(('%s IN (%s)' % (column, s),
                    [int(v) for v in f.values]))
            elif k == SearchFilter.EXCLUDETICKETIDS:
                if f.values:
                    s = ','.join([a for x in f.values])
                    plan.where.append(('tickets.i NOT IN (%s)' % s,
                        [int(v) for v in f.values]))
            elif k == SearchFilter.FIELDVALUELIST:
                field = self.filter_field(f.field_id)
                if not f.values:
                    return None
                plan.where.append(self.value_list_sql(field, f.values))
            elif k == SearchFilter.FIELDVALUERANGE:
                field = self.filter_field(f.field_id)
                w = self.value_range_sql(field, f.minval, f.maxval)
                if w is not None:
                    plan.where.append(w)
            elif k == SearchFilter.FULLTEXT:
                if plan.fulltext is not None:
                    raise InvalidFilter('Only one fulltext filter is allowed')
                if not self.add_fulltext(plan, f.text):
                    return None
            elif k == SearchFilter.STRICTMATCH:
                w = self.strict_match_sql(f.text, f.field_ids)
                if w is None:
                    return None
                plan.where.append(w)
            elif k == SearchFilter.LIMIT:
                plan.limit = f.values[0]
            else:
                raise InvalidFilter('Invalid search filter kind %r' % (k,))

        for field_id, values in drill_down.items():
            plan.drill_down[field_id] = values
            plan.drill_where[field_id] = len(plan.where)
            plan.where.append(self.value_list_sql(self.schema.find(field_id),
                values))

        self.add_order(plan, order)
        logger.debug('plan for %s: %r', ', '.join([f.describe()
            for f in filters]), plan)
        return plan

    # validation

    def validate(self, filters, sort=None, drill_down=None):
        ''' Check the sort order and the drill-down constraints without
            touching the store. Returns (SearchOrder, drill-down dict).
        '''
        for f in filters or ():
            if f.kind in (SearchFilter.FIELDVALUELIST,
                    SearchFilter.FIELDVALUERANGE):
                self.filter_field(f.field_id)
        return self.make_order(filters, sort), \
            self.check_drill_down(drill_down)

    def make_order(self, filters, sort):
        if sort is None:
            return SearchOrder.from_filters(filters, self.schema)
        if isinstance(sort, SearchOrder):
            order = sort
        else:
            order = SearchOrder.from_param(sort, self.schema)
        if order.kind == SearchOrder.SCORE and find_fulltext(filters) is None:
            raise InvalidFilter('Sorting by relevance requires a fulltext '
                'query')
        return order

    def filter_field(self, field_id):
        ''' Return the canonical field to filter 'field_id' on, raising
            InvalidFilter for unknown fields and fields without storage.
        '''
        field = self.schema.find(field_id)
        if field is None:
            raise InvalidFilter('Invalid field ID %r in search filter'
                % (field_id,))
        field = self.schema.canonical_field(field.id)
        if field.core_column is None and field.tblname is None:
            raise InvalidFilter('Cannot filter by field %r' % field.name)
        return field

    def check_drill_down(self, drill_down):
        ''' Validate {field_id: values} drill-down constraints and return
            them keyed by canonical field ID. Constraints on aliases of
            the same field are merged.
        '''
        result = {}
        for field_id, values in (drill_down or {}).items():
            try:
                field_id = int(field_id)
            except (TypeError, ValueError):
                raise InvalidFilter('Invalid drill-down field ID %r'
                    % (field_id,))
            field = self.filter_field(field_id)
            if isinstance(values, (str, int)):
                values = [values]
            values = tuple(values)
            if not values:
                raise InvalidFilter('Empty drill-down value list for field '
                    '%r' % field.name)
            result[field.id] = tuple(sorted(set(values + result.get(field.id,
                ())), key=str))
        return result

    # SQL fragments

    def value_list_sql(self, field, values):
        ''' Return (sql, args) for "field value is one of 'values'" (OR).
            A None in values also matches tickets without a value.
        '''
        a = self.db.arg
        values = list(values)
        null = None in values
        values = [v for v in values if v is not None]
        s = ','.join([a for x in values])
        column = field.core_column
        if column is not None:
            w = []
            if values:
                w.append('tickets.%s IN (%s)' % (column, s))
            if null:
                w.append('tickets.%s IS NULL' % column)
            return '(%s)' % ' OR '.join(w), values
        w = []
        if values:
            w.append('EXISTS (SELECT 1 FROM %s v WHERE v.ticket_id = '
                'tickets.i AND v.field_id = %d AND v.value IN (%s))' % (
                field.tblname, field.id, s))
        if null:
            w.append('NOT EXISTS (SELECT 1 FROM %s v WHERE v.ticket_id = '
                'tickets.i AND v.field_id = %d)' % (field.tblname, field.id))
        return '(%s)' % ' OR '.join(w), values

    def value_range_sql(self, field, minval, maxval):
        a = self.db.arg
        w = []
        args = []
        if field.core_column is not None:
            column = 'tickets.%s' % field.core_column
        else:
            column = 'v.value'
        if minval is not None:
            w.append('%s >= %s' % (column, a))
            args.append(minval)
        if maxval is not None:
            w.append('%s <= %s' % (column, a))
            args.append(maxval)
        if not w:
            return None
        if field.core_column is not None:
            return '(%s)' % ' AND '.join(w), args
        return 'EXISTS (SELECT 1 FROM %s v WHERE v.ticket_id = tickets.i ' \
            'AND v.field_id = %d AND %s)' % (field.tblname, field.id,
            ' AND '.join(w)), args

    def word_subqueries(self, word, fields):
        ''' Return [(sql, args, boost)] of the per-field subqueries that
            select the IDs of tickets matching one word.
        '''
        result = []
        for f in fields:
            q = self.handlers.find(f.id).fulltext_subquery(self.db, word)
            if q is None:
                continue
            sql, args = q
            result.append((sql, args, int(f.search_boost or 1)))
        return result

    def add_fulltext(self, plan, text):
        ''' Add the fulltext constraint and the relevance score.

            Every word must match in at least one searchable field. The
            score of a ticket is the sum of the search boosts of all
            (word, field) pairs that match.
        '''
        words = split_words(text, self.stopwords)
        plan.fulltext = text
        plan.words = words
        plan.highlights = make_highlights(words)
        if not words:
            logger.debug('fulltext %r has no words to match', text)
            return False
        fields = self.schema.searchable_fields()
        scored = []
        scored_args = []
        for word in words:
            subs = self.word_subqueries(word, fields)
            if not subs:
                return False
            sql = ' UNION '.join([s for s, args, boost in subs])
            args = []
            for s, sub_args, boost in subs:
                args.extend(sub_args)
                scored.append('SELECT m.ticket_id, %d AS boost FROM (%s) m'
                    % (boost, s))
                scored_args.extend(sub_args)
            plan.where.append(('tickets.i IN (%s)' % sql, args))
        plan.joins.append(('JOIN (SELECT ticket_id, SUM(boost) AS score '
            'FROM (%s) matches GROUP BY ticket_id) search_scores ON '
            '(search_scores.ticket_id = tickets.i)' % ' UNION ALL '.join(
            scored), scored_args))
        plan.score = True
        return True

    def strict_match_sql(self, text, field_ids):
        fields = []
        for field_id in field_ids:
            field = self.schema.find(field_id)
            if field is None:
                raise InvalidFilter('Invalid field ID %r in search filter'
                    % (field_id,))
            fields.append(self.schema.canonical_field(field.id))
        subs = self.word_subqueries(text, fields)
        if not subs:
            return None
        args = []
        for s, sub_args, boost in subs:
            args.extend(sub_args)
        return 'tickets.i IN (%s)' % ' UNION '.join([s for s, sub_args, boost
            in subs]), args

    def add_order(self, plan, order):
        ''' Set the ORDER BY of the plan. Ticket ID is always the last sort
            key; NULL field values sort last in either direction.
        '''
        desc = ''
        if order.direction == SearchOrder.DESC:
            desc = ' DESC'
        if order.kind == SearchOrder.SCORE:
            plan.order_by = 'search_scores.score%s, tickets.i' % desc
        elif order.kind == SearchOrder.ID:
            plan.order_by = 'tickets.i%s' % desc
        elif order.kind == SearchOrder.TEMPLATE:
            plan.order_by = 'tickets.template%s, tickets.i' % desc
        elif order.field.core_column is not None:
            column = 'tickets.' + order.field.core_column
            plan.order_by = '(CASE WHEN %s IS NULL THEN 1 ELSE 0 END), ' \
                '%s%s, tickets.i' % (column, column, desc)
        elif order.field.tblname:
            f = order.field
            alias = 'sort_' + f.name
            plan.order_joins = ['LEFT JOIN %s %s ON (%s.ticket_id = '
                'tickets.i AND %s.field_id = %d)' % (f.tblname, alias, alias,
                alias, f.id)]
            plan.order_by = '(CASE WHEN %s.value IS NULL THEN 1 ELSE 0 END), ' \
                '%s.value%s, tickets.i' % (alias, alias, desc)
        else:
            raise InvalidFilter('Cannot sort by field %r' % order.field.name)


def drilldown_fields(registry, type_ids):
    ''' The fields whose values are counted for a result set with the given
        types: the configured drill-down fields that are visible (details
        view, including child fields) in at least one of the types.
    '''
    visible = set([f.id for f in registry.visible_fields(type_ids,
        schema.Scope.DETAILS, include_children=True)])
    return [registry.find(i) for i in registry.drilldown_ids()
        if i in visible and i != FIELD_TYPE]

# vim: set et sts=4 sw=4 :
