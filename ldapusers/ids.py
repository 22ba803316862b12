"""
ID Allocation

Picks user and group id numbers for new accounts from the ranges set in
/etc/login.defs, avoiding every id already used in the directory or in the
local NSS databases.
"""
import grp
import pwd

from ldapusers.conf import login_defs_value
from ldapusers.excep import ToolError, E_PW_UPDATE, E_GRP_UPDATE


def id_range(kind, system, defs):
    """
    Returns the (low, high) id range for a new account.

    Parameters:
        kind   - 'user' or 'group'
        system - True for system accounts
        defs   - /etc/login.defs contents

    Example: id_range('user', False, {}) -> (1000, 60000)
    """

    prefix = 'UID' if kind == 'user' else 'GID'
    low = login_defs_value(defs, '%s_MIN' % prefix, 1000, int)
    high = login_defs_value(defs, '%s_MAX' % prefix, 60000, int)
    if system:
        high = login_defs_value(defs, 'SYS_%s_MAX' % prefix, low - 1, int)
        low = login_defs_value(defs, 'SYS_%s_MIN' % prefix, 101, int)
    return low, high


def next_id(used, low, high, system=False, kind='user'):
    """
    Picks a free id in [low, high].

    Regular accounts get one more than the highest id in use inside the
    range, falling back to the lowest free id once the top is reached.
    System accounts are allocated from the top of their range downwards.

    Raises ToolError when the range is exhausted, with the exit status of
    useradd for users and of groupadd for groups.

    Example: next_id(set([1000, 1001, 1005]), 1000, 60000) -> 1006
    """

    if low <= high:
        candidate = _free_id(used, low, high, system)
        if candidate is not None:
            return candidate
    if kind == 'user':
        raise ToolError("can't get unique UID (no more available UIDs)", E_PW_UPDATE)
    raise ToolError("can't get unique GID (no more available GIDs)", E_GRP_UPDATE)


def _free_id(used, low, high, system):
    in_range = set(i for i in used if low <= i <= high)

    if system:
        for candidate in range(high, low - 1, -1):
            if candidate not in in_range:
                return candidate
        return None

    if not in_range:
        return low
    candidate = max(in_range) + 1
    if candidate <= high:
        return candidate
    for candidate in range(low, high + 1):
        if candidate not in in_range:
            return candidate
    return None


def local_uids():
    return set(entry.pw_uid for entry in pwd.getpwall())


def local_gids():
    return set(entry.gr_gid for entry in grp.getgrall())


def new_uid(ldap_connection, defs, system=False):
    """Allocates a UID for a new user."""

    low, high = id_range('user', system, defs)
    used = ldap_connection.used_uids() | local_uids()
    return next_id(used, low, high, system, 'user')


def new_gid(ldap_connection, defs, system=False):
    """Allocates a GID for a new group."""

    low, high = id_range('group', system, defs)
    used = ldap_connection.used_gids() | local_gids()
    return next_id(used, low, high, system, 'group')
