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

'''Doreen - ticket tracking core.

Doreen keeps tickets (tasks, wiki pages, contacts, ...) in a relational
database. Every ticket has a type which decides which fields it carries,
and an access control list which decides who may see or change it.

The search and display path is a pipeline::

  ____________________________________________________________________
 |  request: fulltext, type filter, drill-down filters, sort, page    |
 |--------------------------------------------------------------------|
 |  AccessResolver      doreen.security     -> readable ACL IDs       |
 |  SearchFilterBuilder doreen.searchfilter -> QueryPlan              |
 |  QueryExecutor       doreen.backends     -> ticket ID page + count |
 |  TicketAssembler     doreen.ticket       -> populated tickets      |
 |  ResultFormatter     doreen.formatter    -> JSON or HTML           |
  --------------------------------------------------------------------

The schema (ticket types and fields) lives in doreen.schema, the
per-field (de)serialisation in doreen.fieldhandlers and the relational
store adapters in doreen.backends.*. doreen.tracker ties everything
together and offers search() and get_one().

Additionally, there is a directory of unit tests in "test".
'''
__docformat__ = 'restructuredtext'

__version__ = '1.0.0'

# vim: set filetype=python ts=4 sw=4 et si
