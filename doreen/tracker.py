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

"""Top-level tracker interface.

Open a tracker with:

    >>> from doreen import tracker
    >>> t = tracker.open('path to tracker home')
    >>> results = t.search(uid, fulltext='printer')

The Tracker owns the database connection, the schema, the field handler
registry and the access resolver, and runs the search pipeline.
"""
__docformat__ = 'restructuredtext'

from doreen import backends, configuration
from doreen.backends.rdbms_common import QueryExecutor
from doreen.exceptions import NotAuthorised, NotFound, UsageError
from doreen.fieldhandlers import FieldHandlerRegistry
from doreen.findresults import FindResults
from doreen.formatter import ResultFormatter
from doreen.schema import FIELD_TYPE, SchemaRegistry, Scope
from doreen.searchfilter import SearchFilter, SearchFilterBuilder
from doreen.security import ACCESS_CREATE, ACCESS_DELETE, ACCESS_READ, \
    ACCESS_UPDATE, AccessResolver
from doreen.ticket import PopulationLevel, TicketAssembler
from doreen.user import Group

import logging
logger = logging.getLogger('doreen.search')


class Tracker:
    def __init__(self, config):
        """Open the tracker's database and load its schema.

        Parameters:
            config:
                a configuration.CoreConfig
        """
        self.config = config
        self.backend = backends.get_backend(config.RDBMS_BACKEND)
        self.db = self.backend.Database(config)
        self.schema = SchemaRegistry.load(self.db,
            config.SEARCH_DRILLDOWN_FIELDS)
        self.handlers = FieldHandlerRegistry(self.schema)
        self.access = AccessResolver(self)
        self._make_pipeline()

    def _make_pipeline(self):
        self.builder = SearchFilterBuilder(self.db, self.schema,
            self.handlers, self.config.SEARCH_STOPWORDS)
        self.executor = QueryExecutor(self.db)
        self.assembler = TicketAssembler(self.db, self.schema, self.handlers)
        self.formatter = ResultFormatter(self.schema, self.handlers)

    def exists(self):
        return self.backend.db_exists(self.config)

    def nuke(self):
        self.close()
        self.backend.db_nuke(self.config)

    def close(self):
        self.db.close()

    def install(self):
        ''' Create the core fields and the reserved groups in an empty
            database, then reload the schema. Does nothing if the fields
            exist already.
        '''
        if self.db.get_field_rows():
            return
        logger.info('installing core fields and groups')
        self.db.create_core_fields()
        for gid, name in sorted(Group.RESERVED_NAMES.items()):
            if gid > 0:
                self.db.create_group(name, gid)
        self.reload_schema()

    # schema and handlers

    def reload_schema(self):
        ''' Replace the schema by a freshly loaded one. Handler
            registrations are kept.
        '''
        self.schema = self.schema.reload(self.db)
        self.handlers = self.handlers.rebind(self.schema)
        self._make_pipeline()

    def register_field_handler(self, field_id, handler):
        ''' Register a FieldHandler instance or factory for a field ID.
            Must happen before the first search that needs the field.
        '''
        self.handlers.register(field_id, handler)

    # searching

    def find_many(self, filters, sort=None, page=None, drill_down=None,
            with_drilldown=False, level=PopulationLevel.LIST,
            page_size=None):
        ''' Run a search with the given SearchFilters and return the page
            as FindResults with the tickets populated at 'level'.

            Filters are not restricted by access; callers go through
            security.Access.find_tickets() or search() for that.
        '''
        if page is None:
            page = 1
        if page_size is None:
            page_size = self.config.SEARCH_PAGE_SIZE
        plan = self.builder.build(filters, sort, drill_down)
        if plan is None:
            order, drill_down = self.builder.validate(filters, sort,
                drill_down)
            logger.debug('search cannot match anything')
            return FindResults.empty(page, page_size, order)
        ticket_ids, total = self.executor.execute(plan, page, page_size)
        counts = {}
        if with_drilldown:
            counts = self.executor.drill_down_counts(plan, self.schema)
        tickets = self.assembler.populate_many(ticket_ids, level)
        if counts:
            types = list(counts[FIELD_TYPE].keys())
        else:
            types = [t.type_id for t in tickets.values()]
        logger.info('search: %d results, page %s with %d tickets', total,
            page, len(ticket_ids))
        return FindResults(total, ticket_ids, tickets, types, counts,
            plan.highlights, page, page_size, plan.order, plan.fulltext)

    def search(self, user_id, fulltext=None, type_ids=None, drill_down=None,
            sort=None, page=1, with_drilldown=False):
        ''' The search entry point of the request layer.

            Returns FindResults with only the tickets the user may read.
            Bad sort orders and drill-down fields raise InvalidFilter
            before anything is read from the store.
        '''
        filters = []
        if fulltext:
            filters.append(SearchFilter.fulltext(fulltext))
        if type_ids is not None:
            filters.append(SearchFilter.from_ticket_types(type_ids))
        self.builder.validate(filters, sort, drill_down)
        access = self.access.get_access(user_id)
        return access.find_tickets(filters, ACCESS_READ, sort, page,
            drill_down, with_drilldown)

    def get_one(self, ticket_id, user_id, bits=ACCESS_READ):
        ''' Return the fully populated ticket.

            A ticket the user lacks 'bits' for is reported as NotFound,
            the same as a ticket that does not exist.
        '''
        user = self.access.get_user(user_id)
        try:
            ticket_id = int(ticket_id)
        except (TypeError, ValueError):
            raise NotFound('Invalid ticket ID %r' % (ticket_id,))
        ticket = self.assembler.fetch_stage1([ticket_id]).get(ticket_id)
        if ticket is None:
            raise NotFound('Invalid ticket ID %s' % ticket_id)
        try:
            self.access.assert_access(ticket, user, bits)
        except NotAuthorised:
            raise NotFound('Invalid ticket ID %s' % ticket_id)
        if not self.assembler.populate([ticket], PopulationLevel.DETAILS):
            raise NotFound('Invalid ticket ID %s' % ticket_id)
        return ticket

    # writing

    def _field_values(self, ticket_type, values):
        ''' Resolve {field ID or name: value} into [(TicketField,
            handler, value)] for a ticket type.
        '''
        allowed = ticket_type.field_ids(Scope.ALL)
        result = []
        for key, value in (values or {}).items():
            if isinstance(key, str):
                field = self.schema.find_by_name(key)
            else:
                field = self.schema.find(key)
            if field is None:
                raise UsageError('Invalid field %r' % (key,))
            if field.id not in allowed and (field.parent is None or
                    field.parent not in allowed):
                raise UsageError('Field %r is not used by ticket type %r'
                    % (field.name, ticket_type.name))
            # aliases write the storage of their canonical field
            field = self.schema.canonical_field(field.id)
            result.append((field, self.handlers.find(field.id), value))
        return result

    def create_ticket(self, user_id, type_id, aid, values=None,
            template=None, project_id=None, created_from=None,
            created_dt=None):
        ''' Create a ticket (or a template if 'template' is a name) and
            return its ID. The user needs CREATE access to the ACL.
        '''
        user = self.access.get_user(user_id)
        self.access.assert_access_to_acl(user, aid, ACCESS_CREATE)
        ticket_type = self.schema.get_type(type_id)
        if ticket_type is None:
            raise UsageError('Invalid ticket type %r' % (type_id,))
        writes = []
        for field, handler, value in self._field_values(ticket_type,
                values):
            writes.append((handler, handler.validate_before_write(None,
                value)))

        def create():
            ticket_id = self.db.insert_ticket(type_id, aid, user.uid,
                template, project_id, created_dt, created_from)
            for handler, value in writes:
                handler.store(self.db, ticket_id, value)
            return ticket_id
        ticket_id = self.db.run_transaction(create)
        logger.info('user %s created ticket %s', user.uid, ticket_id)
        return ticket_id

    def update_ticket(self, ticket_id, user_id, values):
        ''' Change field values of a ticket the user may update.
        '''
        ticket = self.get_one(ticket_id, user_id, ACCESS_UPDATE)
        user = self.access.get_user(user_id)
        ticket_type = self.schema.get_type(ticket.type_id)
        writes = []
        for field, handler, value in self._field_values(ticket_type,
                values):
            writes.append((handler, handler.validate_before_write(
                ticket.get_value(field.id), value)))

        def update():
            for handler, value in writes:
                handler.store(self.db, ticket.id, value)
            self.db.touch_ticket(ticket.id, user.uid)
        self.db.run_transaction(update)

    def nuke_tickets(self, ticket_ids, user_id):
        ''' Delete tickets for good. The user needs DELETE access to every
            one of them.
        '''
        user = self.access.get_user(user_id)
        tickets = self.assembler.fetch_stage1(ticket_ids)
        self.access.assert_access_many(tickets.values(), user, ACCESS_DELETE)
        self.db.nuke_tickets(list(tickets.keys()))


def open(tracker_home):
    """Open the tracker whose config.ini is in tracker_home."""
    config = configuration.CoreConfig(tracker_home)
    return Tracker(config)

# vim: set filetype=python sts=4 sw=4 et si :
