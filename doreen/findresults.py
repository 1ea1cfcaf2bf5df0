"""The result of one search."""
__docformat__ = 'restructuredtext'


class FindResults:
    ''' One page of search results.

        - total: number of matching tickets on all pages
        - ticket_ids: IDs of the current page, in result order
        - tickets: ordered dict ID -> Ticket of the populated page; may
          have fewer entries than ticket_ids if tickets were deleted in
          between
        - types: IDs of the ticket types present in the result (all
          pages, from the drill-down counts, or the current page when
          no counts were made)
        - drill_down_counts: field ID -> {value: count}
        - highlights: fulltext words to highlight, longest first
        - page, page_size, order, fulltext: the request
    '''
    def __init__(self, total, ticket_ids, tickets=None, types=(),
            drill_down_counts=None, highlights=(), page=1, page_size=None,
            order=None, fulltext=None):
        self.total = total
        self.ticket_ids = list(ticket_ids)
        self.tickets = tickets if tickets is not None else {}
        self.types = sorted(set(types))
        self.drill_down_counts = drill_down_counts or {}
        self.highlights = list(highlights)
        self.page = page
        self.page_size = page_size
        self.order = order
        self.fulltext = fulltext

    def __repr__(self):
        return '<FindResults %d of %d, page %s>' % (len(self.ticket_ids),
            self.total, self.page)

    def __len__(self):
        return len(self.ticket_ids)

    @classmethod
    def empty(cls, page=1, page_size=None, order=None, fulltext=None):
        return cls(0, [], page=page, page_size=page_size, order=order,
            fulltext=fulltext)

    def page_count(self):
        if not self.page_size or not self.total:
            return 0
        return (self.total + self.page_size - 1) // self.page_size

    def fetch_chunk(self, size):
        ''' Yield the populated tickets of the page in lists of at most
            'size' tickets.
        '''
        tickets = list(self.tickets.values())
        for n in range(0, len(tickets), size):
            yield tickets[n:n + size]

# vim: set et sts=4 sw=4 :
