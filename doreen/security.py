"""Handle the access control lists that guard Doreen tickets.

Every ticket references exactly one ACL. An ACL maps group IDs to a
bitmask of ACCESS_* flags; a user's access to a ticket is the OR of the
bits of all groups in that ACL the user is a member of. Administrators
pass every check without the ACL tables being consulted.
"""
__docformat__ = 'restructuredtext'

import re
import weakref

from doreen.exceptions import NotAuthorised, NotFound, UsageError
from doreen.searchfilter import SearchFilter
from doreen.user import GUEST_UID, Group, User, guest

import logging
logger = logging.getLogger('doreen.security')

ACCESS_READ = 0x01
ACCESS_UPDATE = 0x02
ACCESS_CREATE = 0x04
ACCESS_DELETE = 0x08
ACCESS_MAIL = 0x10

ACCESS_CRUD = ACCESS_CREATE | ACCESS_READ | ACCESS_UPDATE | ACCESS_DELETE
ACCESS_ALL = ACCESS_CRUD | ACCESS_MAIL

# letter order is the display order
_letters = (
    ('C', ACCESS_CREATE),
    ('R', ACCESS_READ),
    ('U', ACCESS_UPDATE),
    ('D', ACCESS_DELETE),
    ('M', ACCESS_MAIL),
)

_verbs = (
    (ACCESS_CREATE, 'create'),
    (ACCESS_READ, 'read'),
    (ACCESS_UPDATE, 'update'),
    (ACCESS_DELETE, 'delete'),
    (ACCESS_MAIL, 'receive ticket mail'),
)

_ticket_id_query = re.compile(r'^#(\d+)$')


def letters_to_flags(access):
    ''' Convert a {gid: 'CRUD'} mapping into {gid: ACCESS_* bits}.

        Unknown letters are ignored.
    '''
    flags = dict(_letters)
    result = {}
    for gid, letters in access.items():
        fl = 0
        for c in letters:
            fl |= flags.get(c, 0)
        result[gid] = fl
    return result


def flags_to_letters(fl):
    """Convert ACCESS_* bits into a 'CRUDM' string."""
    return ''.join([c for c, bit in _letters if fl & bit])


def flags_to_verbs(fl):
    return ', '.join([verb for bit, verb in _verbs if fl & bit])


def make_descriptive_name(permissions, group_names):
    ''' Build an ACL name like "All users: R; Administrators: CRUD".

        group_names maps gid -> name; unknown groups are shown by number.
    '''
    parts = []
    for gid, fl in permissions.items():
        name = group_names.get(gid, 'Group %s' % gid)
        parts.append('%s: %s' % (name, flags_to_letters(fl)))
    return '; '.join(parts)


def validate_parameters(name, permissions, valid_gids):
    if not name:
        raise UsageError('ACL names cannot be empty')
    for gid, fl in permissions.items():
        if gid not in valid_gids:
            raise UsageError('Invalid group ID %s in access control list'
                % gid)
        if (fl & ACCESS_ALL) != fl:
            raise UsageError('Invalid permission bits %s with group %s in '
                'access control list' % (fl, gid))


class ACL:
    ''' An access control list: a name plus group ID -> ACCESS_* bits.

        System ACLs (see AccessResolver.create_sys_acl) have negative
        IDs and no name; they live in memory only.
    '''
    def __init__(self, aid, name, permissions=None):
        self.aid = aid
        self.name = name
        if permissions is None:
            permissions = {}
        self.permissions = permissions

    def __repr__(self):
        return '<ACL %r %r %r>' % (self.aid, self.name,
            dict((gid, flags_to_letters(fl))
                for gid, fl in self.permissions.items()))

    def get_user_access(self, user):
        """OR together the bits of all groups of this ACL the user is in."""
        fl = 0
        if user is None:
            return fl
        for gid, bits in self.permissions.items():
            if user.is_member(gid):
                fl |= bits
        return fl

    def describe(self, group_names=None):
        ''' Describe the ACL as a list of lines like
            'Members of "All users" can read'.
        '''
        group_names = group_names or Group.RESERVED_NAMES
        lines = []
        for gid, fl in sorted(self.permissions.items()):
            name = group_names.get(gid, 'Group %s' % gid)
            lines.append('Members of "%s" can %s' % (name,
                flags_to_verbs(fl)))
        return lines

    def get_users_with_access(self, group_members, required=ACCESS_READ):
        ''' Return {uid: bits} for every user who gets all of the
            'required' bits through one of the ACL's groups.

            group_members maps gid -> iterable of uids.
        '''
        users = {}
        for gid, fl in self.permissions.items():
            if (fl & required) != required:
                continue
            if gid not in group_members:
                raise UsageError('Invalid group ID %s in ACL %s'
                    % (gid, self.aid))
            for uid in group_members[gid]:
                users[uid] = users.get(uid, 0) | fl
        return users


class Access:
    ''' The ACLs that apply to one user, with the bits the user has in
        each. Built by AccessResolver.get_access().

        The find_* methods run searches restricted to what the user may
        see through the tracker that created this object.
    '''
    def __init__(self, tracker, user, acl_bits):
        self.tracker = tracker
        self.user = user
        self.acl_bits = acl_bits

    def get_acls_for_access(self, bits=ACCESS_READ):
        ''' Return the sorted list of ACL IDs in which the user has all of
            'bits', or None if there is none.
        '''
        aids = [aid for aid, fl in sorted(self.acl_bits.items())
            if (fl & bits) == bits]
        for aid in aids:
            logger.debug('ACL %s: flags 0x%x for user %s', aid,
                self.acl_bits[aid], self.user.uid)
        return aids or None

    def acl_filter(self, bits=ACCESS_READ):
        ''' Return the search filter that restricts a search to tickets
            the user may access with 'bits'.

            Administrators get None: they are not restricted. A user with
            no matching ACLs gets a filter with an empty list, which
            makes the search return nothing without hitting the store.
        '''
        if self.user.is_admin():
            return None
        return SearchFilter.from_acl_ids(self.get_acls_for_access(bits) or [])

    def find_tickets(self, filters=None, bits=ACCESS_READ, sort=None,
            page=None, drill_down=None, with_drilldown=False):
        filters = list(filters or [])
        acl_filter = self.acl_filter(bits)
        if acl_filter is not None:
            filters.append(acl_filter)
        for f in filters:
            logger.debug('search filter %s', f.describe())
        return self.tracker.find_many(filters, sort=sort, page=page,
            drill_down=drill_down, with_drilldown=with_drilldown)

    def find_templates(self, filters=None):
        """Templates the user may create tickets from, by template name."""
        filters = list(filters or [])
        filters.append(SearchFilter.templates())
        return self.find_tickets(filters, ACCESS_CREATE, 'template')

    def find_by_fulltext_query(self, query, sort='!score', page=None,
            drill_down=None, with_drilldown=False):
        ''' Run a search box query.

            "#123" always means ticket 123 and raises NotFound unless the
            user may read it. Other queries must have at least
            SEARCH_MIN_QUERY_LENGTH characters.
        '''
        m = _ticket_id_query.match(query.strip())
        if m:
            ticket_id = int(m.group(1))
            results = self.find_tickets([SearchFilter.from_ticket_ids(
                [ticket_id])], ACCESS_READ)
            if not results.total:
                raise NotFound('Invalid ticket ID %s' % ticket_id)
            return results
        minlen = self.tracker.config.SEARCH_MIN_QUERY_LENGTH
        if len(query.strip()) < minlen:
            raise UsageError('Search queries must be at least %d characters '
                'long' % minlen)
        return self.find_tickets([SearchFilter.fulltext(query)], ACCESS_READ,
            sort, page, drill_down, with_drilldown)


class AccessResolver:
    ''' Resolve users and their permissions against the ACL tables.

        This is the only place that derives permissions; every other
        component asks it.
    '''
    def __init__(self, tracker):
        self.tracker = weakref.proxy(tracker)   # avoid circularity
        self.db = tracker.db
        # system ACLs, aid -> ACL; never stored
        self.sys_acls = {}

    def get_user(self, uid):
        ''' Return the User for 'uid'.

            Unknown and disabled users, and uid None, resolve to the guest
            identity; this never raises for a missing user.
        '''
        if uid is None or uid == guest().uid:
            return guest()
        row = self.db.get_user_row(uid)
        if row is None:
            logger.info('unknown user %r resolves to guest', uid)
            return guest()
        user = User(row['uid'], row['login'], row['longname'] or '',
            row['email'] or '', row['fl'] or 0)
        if user.is_disabled():
            logger.info('disabled user %r resolves to guest', row['login'])
            return guest()
        groups = set(self.db.get_user_groups(user.uid))
        groups.add(Group.ALLUSERS)
        user.groups = frozenset(groups)
        return user

    def _user(self, user):
        if user is None or isinstance(user, User):
            return user or guest()
        return self.get_user(user)

    def get_access(self, user):
        ''' Return the Access object for the user (a User or a uid).

            One query loads the ACL entries of all the user's groups.
            Administrators skip the query.
        '''
        user = self._user(user)
        if user.is_admin():
            return Access(self.tracker, user, {})
        acl_bits = {}
        if user.groups:
            for row in self.db.get_acl_entries(sorted(user.groups)):
                aid = row['aid']
                acl_bits[aid] = acl_bits.get(aid, 0) | int(row['permissions'])
        return Access(self.tracker, user, acl_bits)

    def resolve(self, user, bits=ACCESS_READ):
        ''' Return the frozenset of ACL IDs in which the user holds all of
            'bits'. Administrators get every ACL ID.
        '''
        user = self._user(user)
        if user.is_admin():
            return frozenset(self.load_acls())
        return frozenset(self.get_access(user).get_acls_for_access(bits)
            or ())

    def load_acls(self):
        """Return all stored ACLs as {aid: ACL}."""
        acls = {}
        for row in self.db.get_acl_entries():
            aid = row['aid']
            acl = acls.get(aid)
            if acl is None:
                acl = acls[aid] = ACL(aid, row['name'])
            gid = row['gid']
            acl.permissions[gid] = acl.permissions.get(gid, 0) | \
                int(row['permissions'])
        return acls

    def find_acl(self, aid):
        if aid in self.sys_acls:
            return self.sys_acls[aid]
        return self.load_acls().get(aid)

    def create_sys_acl(self, aid, permissions):
        ''' Register an in-memory system ACL; aid should be negative.
        '''
        acl = ACL(aid, None, dict(permissions))
        self.sys_acls[aid] = acl
        return acl

    def assert_access(self, ticket, user, bits=ACCESS_READ):
        ''' Raise NotAuthorised unless the user has all of 'bits' on the
            ticket's ACL.
        '''
        user = self._user(user)
        if user.is_admin():
            return
        self._check(self.find_acl(ticket.aid), ticket, user, bits)

    def assert_access_many(self, tickets, user, bits=ACCESS_READ):
        ''' assert_access() for a batch of tickets, with one ACL query.
        '''
        user = self._user(user)
        if user.is_admin():
            return
        acls = self.load_acls()
        acls.update(self.sys_acls)
        for ticket in tickets:
            self._check(acls.get(ticket.aid), ticket, user, bits)

    def _check(self, acl, ticket, user, bits):
        if acl is None or (acl.get_user_access(user) & bits) != bits:
            logger.info('user %s denied 0x%x on ticket %s', user.uid, bits,
                ticket.id)
            raise NotAuthorised('User %s may not access ticket %s'
                % (user.login, ticket.id))

    def assert_access_to_acl(self, user, aid, bits):
        acl = self.find_acl(aid)
        if acl is None:
            raise UsageError('Invalid ACL ID %s' % aid)
        user = self._user(user)
        if user.is_admin():
            return
        if (acl.get_user_access(user) & bits) != bits:
            raise NotAuthorised('User %s lacks access to ACL %s'
                % (user.login, aid))

    def get_group_names(self):
        ''' Return {gid: name} of the stored groups plus the GUESTS pseudo
            group, which has no row.
        '''
        names = self.db.get_group_names()
        names.setdefault(Group.GUESTS, Group.RESERVED_NAMES[Group.GUESTS])
        return names

    def get_group_members(self):
        """Return {gid: [uid, ...]}; the guest is the only GUESTS member."""
        members = self.db.get_group_members()
        members.setdefault(Group.GUESTS, [GUEST_UID])
        return members

    def get_users_with_access(self, aid, bits=ACCESS_READ):
        acl = self.find_acl(aid)
        if acl is None:
            raise NotFound('No ACL with ID %s' % aid)
        return acl.get_users_with_access(self.get_group_members(), bits)

    def create_acl(self, name, permissions):
        ''' Store a new ACL and return it. A None name is replaced by the
            descriptive name of the permissions.
        '''
        group_names = self.get_group_names()
        if name is None:
            name = make_descriptive_name(permissions, group_names)
        validate_parameters(name, permissions, group_names)
        aid = self.db.create_acl(name, permissions)
        logger.info('created ACL %s %r', aid, name)
        return ACL(aid, name, dict(permissions))

    def update_acl(self, aid, name, permissions):
        """Replace the name and all entries of a stored ACL."""
        group_names = self.get_group_names()
        if name is None:
            name = make_descriptive_name(permissions, group_names)
        validate_parameters(name, permissions, group_names)
        self.db.update_acl(aid, name, permissions)
        return ACL(aid, name, dict(permissions))

# vim: set filetype=python sts=4 sw=4 et si :
