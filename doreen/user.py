"""User and group identities as seen by the access layer.
"""
__docformat__ = 'restructuredtext'


class Group:
    ''' Reserved group IDs.

        ALLUSERS and ADMINS always exist. GUESTS is a pseudo group that
        only the guest user belongs to; it has no row in the database.
    '''
    ALLUSERS = 1
    ADMINS = 2
    GURUS = 3
    EDITORS = 4
    GUESTS = -1

    RESERVED_NAMES = {
        ALLUSERS: 'All users',
        ADMINS: 'Administrators',
        GURUS: 'Gurus',
        EDITORS: 'Editors',
        GUESTS: 'Guests',
    }


# user flags
FLUSER_DISABLED = 0x01
FLUSER_PSEUDO = 0x02
FLUSER_TICKETMAIL = 0x04
FLUSER_NOLOGIN = 0x08

GUEST_UID = -1


class User:
    ''' A user identity with its group memberships.

        Instances are plain value objects; they are built by
        AccessResolver.get_user() from the users and memberships tables.
    '''
    def __init__(self, uid, login, longname='', email='', fl=0, groups=()):
        self.uid = uid
        self.login = login
        self.longname = longname
        self.email = email
        self.fl = fl
        self.groups = frozenset(groups)

    def __repr__(self):
        return '<User %r uid=%r groups=%r>' % (self.login, self.uid,
            sorted(self.groups))

    def is_member(self, gid):
        return gid in self.groups

    def is_admin(self):
        return Group.ADMINS in self.groups

    def is_guest(self):
        return self.uid == GUEST_UID

    def is_disabled(self):
        return bool(self.fl & FLUSER_DISABLED)

    def can_login(self):
        return not (self.fl & (FLUSER_DISABLED | FLUSER_NOLOGIN))


def guest():
    """Return the fixed pseudo-user for visitors who are not logged in."""
    return User(GUEST_UID, 'guest', 'Guest', fl=FLUSER_PSEUDO,
        groups=(Group.GUESTS,))

# vim: set et sts=4 sw=4 :
