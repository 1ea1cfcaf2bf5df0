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


import unittest

import pytest

pytest.importorskip("hypothesis")

# ruff: noqa: E402
from hypothesis import given, settings
from hypothesis.strategies import integers, none, one_of, sampled_from

from doreen.backends import have_backend
from doreen.exceptions import NotFound
from doreen.searchfilter import SearchFilter

from .db_test_base import commonDBTest
from .test_sqlite import sqliteOpener

_max_examples = 25

SORTS = ['id', '!id', 'title', '!title', 'priority', '!priority', 'created',
    '!changed', 'status']


@pytest.mark.skipif(not have_backend('sqlite'), reason="sqlite not available")
class HypoTestSearch(sqliteOpener, commonDBTest, unittest.TestCase):
    ''' Properties of searches over a fixed set of tickets spread across
        three ACLs, with NULL and duplicate sort values.
    '''
    def setUp(self):
        commonDBTest.setUp(self)
        acls = [self.ids['acl_a'], self.ids['acl_b'], self.ids['acl_public']]
        self.acls = acls
        self.all_ids = []
        for n in range(30):
            values = {}
            priority = [1, 5, 8, None][n % 4]
            if priority is not None:
                values['priority'] = priority
            title = 'Ticket %d' % (n % 7)
            if n % 5 == 0:
                title += ' red'
            self.all_ids.append(self.newTicket(title, aid=acls[n % 3],
                **values))

    @given(integers(min_value=1, max_value=12), sampled_from(SORTS))
    @settings(max_examples=_max_examples, deadline=None)
    def test_pages_cover_everything_once(self, page_size, sort):
        filters = [SearchFilter.from_acl_ids(self.acls)]
        seen = []
        page = 1
        while True:
            results = self.tracker.find_many(filters, sort, page,
                page_size=page_size)
            self.assertEqual(results.total, 30)
            if not results.ticket_ids:
                break
            self.assertLessEqual(len(results.ticket_ids), page_size)
            seen.extend(results.ticket_ids)
            page += 1
        self.assertEqual(page - 1, results.page_count())
        self.assertEqual(len(seen), len(set(seen)))
        self.assertEqual(sorted(seen), self.all_ids)
        # the same order as one unpaged query
        plan = self.tracker.builder.build(filters, sort)
        self.assertEqual(self.tracker.executor.all_ids(plan), seen)

    @given(integers(min_value=1, max_value=40))
    @settings(max_examples=_max_examples, deadline=None)
    def test_limit_caps_total(self, limit):
        filters = [SearchFilter.from_acl_ids(self.acls),
            SearchFilter.limit(limit)]
        results = self.tracker.find_many(filters, '!id', 1, page_size=50)
        self.assertEqual(results.total, min(limit, 30))
        self.assertEqual(results.ticket_ids,
            sorted(self.all_ids, reverse=True)[:limit])

    @given(sampled_from(['admin', 'alice', 'bob', 'carol', 'dave', None]),
        one_of(none(), sampled_from(['red', 'ticket', 'missing'])))
    @settings(max_examples=_max_examples, deadline=None)
    def test_search_only_returns_readable(self, login, fulltext):
        uid = self.ids[login] if login else None
        readable = set()
        for ticket_id in self.all_ids:
            try:
                self.tracker.get_one(ticket_id, uid)
            except NotFound:
                continue
            readable.add(ticket_id)
        found = []
        page = 1
        while True:
            results = self.tracker.search(uid, fulltext=fulltext, page=page)
            if not results.ticket_ids:
                break
            found.extend(results.ticket_ids)
            for ticket in results.tickets.values():
                self.assertIn(ticket.aid, self.acls)
            page += 1
        self.assertTrue(set(found) <= readable)
        if fulltext is None or fulltext == 'ticket':
            self.assertEqual(set(found), readable)
        if login == 'admin':
            self.assertEqual(len(readable), 30)

# vim: set filetype=python sts=4 sw=4 et si :
