"""Turn FindResults into API results and HTML list fragments.

Everything here works on data that is already loaded: the populated
tickets, the drill-down counts and the in-memory schema. Nothing is
read from the store.
"""
__docformat__ = 'restructuredtext'

from html import escape
from urllib.parse import urlencode

from doreen import schema
from doreen.schema import FIELD_TYPE, Scope
from doreen.searchfilter import SearchOrder

# pages linked on either side of the current page
PAGE_WINDOW = 5

# sort direction icons for the list header, by SearchOrder direction
SORT_ICONS = {
    SearchOrder.ASC: '&#9650;',
    SearchOrder.DESC: '&#9660;',
}


class ResultFormatter:
    def __init__(self, registry, handlers):
        self.schema = registry
        self.handlers = handlers

    def list_fields(self, results):
        """The columns of a result list, in display order."""
        return self.schema.visible_fields(results.types, Scope.LIST)

    # JSON

    def ticket_to_json(self, ticket, fields):
        ''' Return the API record of one ticket. Field values are keyed by
            field name, in display order.
        '''
        d = {
            'ticket_id': ticket.id,
            'type_id': ticket.type_id,
            'type': self.handlers.find(FIELD_TYPE).format_plain(
                ticket.type_id),
            'template': ticket.template,
            'aid': ticket.aid,
            'created_dt': ticket.created_dt,
            'lastmod_dt': ticket.lastmod_dt,
            'owner_uid': ticket.owner_uid,
            'lastmod_uid': ticket.lastmod_uid,
        }
        for f in fields:
            if f.name in d or f.id == FIELD_TYPE:
                continue
            d[f.name] = self.handlers.find(f.id).serialize(
                ticket.get_value(f.id))
        return d

    def drill_down_to_json(self, results):
        ''' Return {field name: [{value, label, count}, ...]} with the
            biggest buckets first.
        '''
        result = {}
        for field_id, counts in results.drill_down_counts.items():
            field = self.schema.find(field_id)
            if field is None:
                continue
            handler = self.handlers.find(field_id)
            buckets = [{'value': value, 'count': count,
                    'label': handler.format_drilldown_value(value)}
                for value, count in counts.items()]
            buckets.sort(key=lambda b: (-b['count'], str(b['value'])))
            result[field.name] = buckets
        return result

    def sort_options(self, results):
        orders = SearchOrder.get_all(self.schema, results.types,
            results.fulltext is not None)
        current = results.order
        options = []
        for order in orders:
            j = order.to_json()
            j['current'] = current is not None and \
                order.field_id == current.field_id and \
                order.kind == current.kind
            options.append(j)
        return options

    def make_api_result(self, results, level_fields=None):
        ''' Return the JSON-serializable API answer for a page of results.
        '''
        fields = level_fields
        if fields is None:
            fields = self.list_fields(results)
        return {
            'cTotal': results.total,
            'cPerPage': results.page_size,
            'page': results.page,
            'cPages': results.page_count(),
            'results': [self.ticket_to_json(t, fields)
                for t in results.tickets.values()],
            'llHighlights': list(results.highlights),
            'aDrillDownCounts': self.drill_down_to_json(results),
            'sortby': self.sort_options(results),
        }

    # HTML

    def _link(self, params, **changes):
        p = dict(params)
        p.update(changes)
        return '?' + escape(urlencode(sorted([(k, v) for k, v in p.items()
            if v is not None])))

    def format_header(self, results, fields, params):
        ''' Header row: sortable columns link to their sort order, the
            current one also shows its direction.
        '''
        current = results.order
        cells = []
        for f in fields:
            label = escape(self.handlers.find(f.id).get_label())
            if not f.fl & schema.FIELDFL_SORTABLE or \
                    f.fl & (schema.FIELDFL_ARRAY |
                    schema.FIELDFL_ARRAY_REVERSE):
                cells.append('<th>%s</th>' % label)
                continue
            order = SearchOrder(SearchOrder.FIELD, field=f)
            icon = ''
            if current is not None and current.kind == SearchOrder.FIELD \
                    and current.field_id == f.id:
                icon = ' ' + SORT_ICONS[current.direction]
                order = current.reversed()
            cells.append('<th><a href="%s">%s</a>%s</th>' % (self._link(
                params, sortby=order.get_param(), page=None), label, icon))
        return '<tr>%s</tr>' % ''.join(cells)

    def format_row(self, ticket, fields, highlights=()):
        cells = ['<td>%s</td>' % self.handlers.find(f.id).format_html(
                ticket.get_value(f.id), highlights)
            for f in fields]
        return '<tr data-ticket="%d">%s</tr>' % (ticket.id, ''.join(cells))

    def format_drill_down(self, results, params):
        ''' One box per aggregated field, listing its values with their
            ticket counts as filter links.
        '''
        boxes = []
        for name, buckets in sorted(self.drill_down_to_json(results).items()):
            if not buckets:
                continue
            field = self.schema.find_by_name(name)
            items = []
            for b in buckets:
                key = 'drill_%s' % field.id
                items.append('<li><a href="%s">%s</a> (%d)</li>' % (
                    self._link(params, page=None, **{key: b['value']}),
                    escape(b['label']), b['count']))
            boxes.append('<div class="drilldown"><h4>%s</h4><ul>%s</ul>'
                '</div>' % (escape(self.handlers.find(field.id).get_label()),
                ''.join(items)))
        return ''.join(boxes)

    def format_pagination(self, results, params):
        ''' Page links: the first and last page plus PAGE_WINDOW pages on
            either side of the current one. Gaps show as an ellipsis.
        '''
        pages = results.page_count()
        if pages <= 1:
            return ''
        current = results.page or 1
        shown = set(range(max(1, current - PAGE_WINDOW),
            min(pages, current + PAGE_WINDOW) + 1))
        shown.update((1, pages))
        links = []
        previous = 0
        for page in sorted(shown):
            if page > previous + 1:
                links.append('&hellip;')
            previous = page
            if page == results.page:
                links.append('<b>%d</b>' % page)
            else:
                links.append('<a href="%s">%d</a>' % (self._link(params,
                    page=page), page))
        return '<div class="pages">%s</div>' % ' '.join(links)

    def format_html(self, results, params=None):
        ''' Return the HTML of a result list: drill-down boxes, the
            table and the page links. 'params' are the query parameters
            the links are built from.
        '''
        params = dict(params or {})
        if results.order is not None:
            params.setdefault('sortby', results.order.get_param())
        fields = self.list_fields(results)
        rows = [self.format_row(t, fields, results.highlights)
            for t in results.tickets.values()]
        table = '<table class="results">%s%s</table>' % (
            self.format_header(results, fields, params), ''.join(rows))
        return self.format_drill_down(results, params) + table + \
            self.format_pagination(results, params)

# vim: set et sts=4 sw=4 :
