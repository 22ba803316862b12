"""
LDAP Backend Interface

This module is intended to be a thin wrapper around LDAP operations.
Methods on the connection object correspond in a straightforward way
to LDAP queries and updates.

An LDAP entry is the most important component of an account. The user
entry (posixAccount) contains the username, user id number, real name,
shell and home directory; group entries (posixGroup) carry the group id
number and the names of their supplementary members.

This module makes use of python-ldap, a Python module with bindings
to libldap, OpenLDAP's native C client library.
"""
import logging

import ldap
import ldap.dn
import ldap.modlist
import ldap.sasl

logger = logging.getLogger(__name__)


class LDAPException(Exception):
    """Exception class for LDAP-related errors."""


def _values(attrs):
    """Encodes an attribute dictionary for python-ldap, dropping empty values."""

    entry = {}
    for key, values in attrs.items():
        if not isinstance(values, (list, tuple)):
            values = [values]
        values = [str(value).encode('utf-8') for value in values if value is not None and str(value) != '']
        if values:
            entry[key] = values
    return entry


def _decode(attrs):
    return dict((key, [value.decode('utf-8') for value in values]) for key, values in attrs.items())


class LDAPConnection(object):
    """
    Connection to the LDAP directory. All directory
    queries and updates are made via this class.

    Exceptions: (all methods)
        LDAPException - on directory query failure

    Example:
         connection = LDAPConnection()
         connection.connect_sasl(...)

         # make queries and updates, e.g.
         connection.user_delete('jdoe')

         connection.disconnect()
    """

    def __init__(self):
        self.ldap = None
        self.user_base = None
        self.group_base = None


    def connect_sasl(self, uri, mech, user_base, group_base):
        """
        Establish a connection to the LDAP Server and bind with SASL.
        For GSSAPI the Kerberos credentials must already be in the
        credential cache.

        Parameters:
            uri        - connection string (e.g. ldap://foo.com, ldaps://bar.com)
            mech       - SASL mechanism (e.g. GSSAPI)
            user_base  - base of the users subtree
            group_base - base of the group subtree

        Example: connect_sasl('ldap://ldap.example.com', 'GSSAPI',
                     'ou=People,dc=example,dc=com', 'ou=Group,dc=example,dc=com')
        """

        try:
            # open the connection
            self.ldap = ldap.initialize(uri)
            self.ldap.protocol_version = ldap.VERSION3

            # authenticate
            self.ldap.sasl_interactive_bind_s('', Sasl(mech))
        except ldap.LDAPError as e:
            self.ldap = None
            raise LDAPException("unable to bind to %s: %s" % (uri, format_ldaperror(e)))

        self.user_base = user_base
        self.group_base = group_base


    def disconnect(self):
        """Close the connection to the LDAP server."""

        if self.ldap:

            # close connection
            try:
                self.ldap.unbind_s()
                self.ldap = None
            except ldap.LDAPError as e:
                raise LDAPException("unable to disconnect: %s" % format_ldaperror(e))


    def connected(self):
        """Determine whether the connection has been established."""

        return self.ldap is not None



    ### Helper Methods ###

    def lookup(self, dn, objectClass=None):
        """
        Helper method to retrieve the attributes of an entry.

        Parameters:
            dn - the distinguished name of the directory entry

        Returns: a dictionary of attributes of the matched dn, or
                 None of the dn does not exist in the directory
        """

        if not self.connected(): raise LDAPException("Not connected!")

        # search for the specified dn
        try:
            if objectClass:
                search_filter = '(objectClass=%s)' % self.escape(objectClass)
                matches = self.ldap.search_s(dn, ldap.SCOPE_BASE, search_filter)
            else:
                matches = self.ldap.search_s(dn, ldap.SCOPE_BASE)
        except ldap.NO_SUCH_OBJECT:
            return None
        except ldap.LDAPError as e:
            raise LDAPException("unable to lookup dn %s: %s" % (dn, format_ldaperror(e)))

        # this should never happen due to the nature of DNs
        if len(matches) > 1:
            raise LDAPException("duplicate dn in ldap: " + dn)

        # dn was found, but didn't match the objectClass filter
        elif len(matches) < 1:
            return None

        # return the attributes of the single successful match
        match_dn, match_attributes = matches[0]
        return _decode(match_attributes)


    def search(self, base, search_filter, params, attrlist=None):
        """
        Helper method to search a subtree with a filter. Parameters are
        escaped before they are substituted into the filter.

        Returns: a list of (dn, attributes) pairs
        """

        if not self.connected(): raise LDAPException("Not connected!")

        search_filter = search_filter % tuple(self.escape(x) for x in params)

        try:
            matches = self.ldap.search_s(base, ldap.SCOPE_SUBTREE, search_filter, attrlist)
        except ldap.NO_SUCH_OBJECT:
            return []
        except ldap.LDAPError as e:
            raise LDAPException("search for %s failed: %s" % (search_filter, format_ldaperror(e)))

        # referrals come back with no dn
        return [(dn, _decode(attrs)) for dn, attrs in matches if dn]


    def add(self, dn, attrs):
        """Helper method to add an entry."""

        if not self.connected(): raise LDAPException("Not connected!")

        try:
            modlist = ldap.modlist.addModlist(_values(attrs))
            self.ldap.add_s(dn, modlist)
        except ldap.ALREADY_EXISTS:
            raise LDAPException("entry %s already exists" % dn)
        except ldap.LDAPError as e:
            raise LDAPException("unable to add %s: %s" % (dn, format_ldaperror(e)))
        logger.debug('added %s', dn)


    def delete(self, dn):
        """Helper method to delete an entry."""

        if not self.connected(): raise LDAPException("Not connected!")

        try:
            self.ldap.delete_s(dn)
        except ldap.LDAPError as e:
            raise LDAPException("unable to delete %s: %s" % (dn, format_ldaperror(e)))
        logger.debug('deleted %s', dn)


    def modify(self, dn, mlist):
        """Helper method to apply a list of modifications to an entry."""

        if not self.connected(): raise LDAPException("Not connected!")

        try:
            self.ldap.modify_s(dn, mlist)
        except ldap.LDAPError as e:
            raise LDAPException("unable to modify %s: %s" % (dn, format_ldaperror(e)))



    ### User-related Methods ###

    def user_dn(self, uid):
        return 'uid=%s,%s' % (ldap.dn.escape_dn_chars(uid), self.user_base)


    def user_lookup(self, uid):
        """
        Retrieve the attributes of a user.

        Parameters:
            uid - the uid to look up

        Returns: attributes of user with uid, None if there is no such user

        Example: connection.user_lookup('jdoe') -> {
                     'uid': [ 'jdoe' ],
                     'uidNumber': [ '1001' ],
                     ...
                 }
        """

        return self.lookup(self.user_dn(uid), 'posixAccount')


    def user_search(self, search_filter, params):
        """
        Search for users with a filter.

        Parameters:
            search_filter - LDAP filter string to match users against

        Returns: a dictionary mapping uids to attributes
        """

        results = {}
        for dn, attrs in self.search(self.user_base, search_filter, params):
            if 'uid' in attrs:
                results[attrs['uid'][0]] = attrs
        return results


    def user_add(self, uid, uid_number, gid_number, home, shell=None, gecos=None,
            cn=None, sn=None, expire_days=None, inactive=None):
        """
        Adds a user to the directory.

        Parameters:
            uid         - the UNIX username
            uid_number  - the user id number
            gid_number  - the id number of the primary group
            home        - the home directory
            shell       - the login shell
            gecos       - the GECOS field
            cn, sn      - common name and surname (default to uid)
            expire_days - account expiry, in days since the epoch
            inactive    - days after password expiry until the account is disabled
        """

        attrs = {
            'objectClass': [ 'top', 'posixAccount', 'inetOrgPerson' ],
            'uid': [ uid ],
            'cn': [ cn or uid ],
            'sn': [ sn or uid ],
            'uidNumber': [ uid_number ],
            'gidNumber': [ gid_number ],
            'homeDirectory': [ home ],
            'gecos': [ gecos or uid ],
            'loginShell': [ shell ],
        }

        # shadow attributes for account expiry
        if expire_days is not None or (inactive is not None and inactive >= 0):
            attrs['objectClass'].append('shadowAccount')
            if expire_days is not None:
                attrs['shadowExpire'] = [ expire_days ]
            if inactive is not None and inactive >= 0:
                attrs['shadowInactive'] = [ inactive ]

        self.add(self.user_dn(uid), attrs)


    def user_delete(self, uid):
        self.delete(self.user_dn(uid))


    def users_with_gid(self, gid_number):
        """
        Retrieves the users whose primary group is gid_number.

        Returns: a sorted list of uids
        """

        users = self.user_search('(&(objectClass=posixAccount)(gidNumber=%s))', [ gid_number ])
        return sorted(users)


    def used_uids(self):
        """Returns the set of user id numbers in use in the directory."""

        matches = self.search(self.user_base, '(objectClass=posixAccount)', [], ['uidNumber'])
        return set(int(attrs['uidNumber'][0]) for dn, attrs in matches if 'uidNumber' in attrs)



    ### Group-related Methods ###

    def group_dn(self, cn):
        return 'cn=%s,%s' % (ldap.dn.escape_dn_chars(cn), self.group_base)


    def group_lookup(self, cn):
        """
        Retrieves the attributes of a group.

        Parameters:
            cn - the UNIX group name to lookup

        Returns: attributes of the group's LDAP entry

        Example: connection.group_lookup('office') -> {
                     'cn': [ 'office' ],
                     'gidNumber': [ '1001' ],
                     ...
                 }
        """

        return self.lookup(self.group_dn(cn), 'posixGroup')


    def group_search(self, search_filter, params):
        """
        Search for groups with a filter.

        Returns: a dictionary mapping group names to attributes
        """

        results = {}
        for dn, attrs in self.search(self.group_base, search_filter, params):
            if 'cn' in attrs:
                results[attrs['cn'][0]] = attrs
        return results


    def group_by_gid(self, gid_number):
        """Returns the name of the directory group with gid_number, or None."""

        groups = self.group_search('(&(objectClass=posixGroup)(gidNumber=%s))', [ gid_number ])
        if not groups:
            return None
        return sorted(groups)[0]


    def group_add(self, cn, gid_number, description=None):
        """
        Adds a group to the directory.

        Parameters:
            cn          - the UNIX group name
            gid_number  - the group id number
            description - a description for the entry
        """

        attrs = {
            'objectClass': [ 'top', 'posixGroup' ],
            'cn': [ cn ],
            'gidNumber': [ gid_number ],
            'description': [ description ],
        }
        self.add(self.group_dn(cn), attrs)


    def group_delete(self, cn):
        self.delete(self.group_dn(cn))


    def group_add_member(self, cn, uid):
        """Adds uid to the memberUid attribute of a group."""

        self.modify(self.group_dn(cn), [ (ldap.MOD_ADD, 'memberUid', [ uid.encode('utf-8') ]) ])


    def group_remove_member(self, cn, uid):
        """Removes uid from the memberUid attribute of a group."""

        self.modify(self.group_dn(cn), [ (ldap.MOD_DELETE, 'memberUid', [ uid.encode('utf-8') ]) ])


    def groups_of_member(self, uid):
        """
        Retrieves the groups that list uid as a supplementary member.

        Returns: a sorted list of group names
        """

        groups = self.group_search('(&(objectClass=posixGroup)(memberUid=%s))', [ uid ])
        return sorted(groups)


    def used_gids(self):
        """Returns the set of group id numbers in use in the directory."""

        matches = self.search(self.group_base, '(objectClass=posixGroup)', [], ['gidNumber'])
        return set(int(attrs['gidNumber'][0]) for dn, attrs in matches if 'gidNumber' in attrs)



    ### Miscellaneous Methods ###

    def escape(self, value):
        """
        Escapes special characters in a value so that it may be safely inserted
        into an LDAP search filter.
        """

        value = str(value)
        value = value.replace('\\', '\\5c').replace('*', '\\2a')
        value = value.replace('(', '\\28').replace(')', '\\29')
        value = value.replace('\x00', '\\00')
        return value



class Sasl(ldap.sasl.sasl):
    """SASL bind with no interaction; GSSAPI takes everything from the credential cache."""

    def __init__(self, mech):
        ldap.sasl.sasl.__init__(self, {}, mech)

    def callback(self, cb_id, challenge, prompt, defresult):
        return ''


def format_ldaperror(ex):
    """Returns the most useful message of a python-ldap exception."""

    info = ex.args[0] if ex.args and isinstance(ex.args[0], dict) else {}
    desc = info.get('desc', '')
    extra = info.get('info', '')
    if desc and extra:
        return '%s (%s)' % (desc, extra)
    return desc or extra or str(ex)
