import ldap
import pytest

from ldapusers import ldapi
from conftest import USER_BASE, GROUP_BASE


def test_not_connected():
    connection = ldapi.LDAPConnection()
    assert not connection.connected()
    with pytest.raises(ldapi.LDAPException):
        connection.user_lookup('jdoe')


def test_user_add(connection, directory):
    connection.user_add('jdoe', 1001, 100, '/home/jdoe', shell='/bin/bash',
        gecos='Jane Doe,Room 1', cn='Jane Doe', sn='Jane')

    entry = directory.get('uid=jdoe,' + USER_BASE)
    assert sorted(entry['objectClass']) == ['inetOrgPerson', 'posixAccount', 'top']
    assert entry['uidNumber'] == ['1001']
    assert entry['gidNumber'] == ['100']
    assert entry['homeDirectory'] == ['/home/jdoe']
    assert entry['loginShell'] == ['/bin/bash']
    assert entry['gecos'] == ['Jane Doe,Room 1']
    assert entry['cn'] == ['Jane Doe']
    assert entry['sn'] == ['Jane']
    assert 'shadowExpire' not in entry

    user = connection.user_lookup('jdoe')
    assert user['uid'] == ['jdoe']
    assert user['uidNumber'] == ['1001']


def test_user_add_defaults(connection, directory):
    connection.user_add('jdoe', 1001, 100, '/home/jdoe', shell='')

    entry = directory.get('uid=jdoe,' + USER_BASE)
    assert entry['cn'] == ['jdoe']
    assert entry['sn'] == ['jdoe']
    assert entry['gecos'] == ['jdoe']

    # empty values are never written
    assert 'loginShell' not in entry


def test_user_add_shadow(connection, directory):
    connection.user_add('jdoe', 1001, 100, '/home/jdoe', expire_days=20000, inactive=7)
    entry = directory.get('uid=jdoe,' + USER_BASE)
    assert 'shadowAccount' in entry['objectClass']
    assert entry['shadowExpire'] == ['20000']
    assert entry['shadowInactive'] == ['7']

    connection.user_add('jroe', 1002, 100, '/home/jroe', inactive=-1)
    entry = directory.get('uid=jroe,' + USER_BASE)
    assert 'shadowAccount' not in entry['objectClass']
    assert 'shadowInactive' not in entry


def test_user_add_exists(connection):
    connection.user_add('jdoe', 1001, 100, '/home/jdoe')
    with pytest.raises(ldapi.LDAPException):
        connection.user_add('jdoe', 1002, 100, '/home/jdoe')


def test_user_lookup_missing(connection, directory):
    assert connection.user_lookup('nobody') is None

    # an entry that is not a posixAccount is not a user
    directory.add_s('uid=robot,' + USER_BASE, [('objectClass', [b'account']), ('uid', [b'robot'])])
    assert connection.user_lookup('robot') is None


def test_user_delete(connection):
    connection.user_add('jdoe', 1001, 100, '/home/jdoe')
    connection.user_delete('jdoe')
    assert connection.user_lookup('jdoe') is None
    with pytest.raises(ldapi.LDAPException):
        connection.user_delete('jdoe')


def test_user_search(connection):
    connection.user_add('jdoe', 1001, 100, '/home/jdoe')
    connection.user_add('jroe', 1002, 100, '/home/jroe')
    connection.user_add('admin', 1003, 1003, '/home/admin')

    assert connection.users_with_gid(100) == ['jdoe', 'jroe']
    assert connection.users_with_gid(1003) == ['admin']
    assert connection.users_with_gid(5) == []
    assert connection.used_uids() == set([1001, 1002, 1003])

    users = connection.user_search('(&(objectClass=posixAccount)(uidNumber=%s))', [1002])
    assert list(users) == ['jroe']


def test_groups(connection, directory):
    connection.group_add('staff', 1500, description='Staff')
    connection.group_add('office', 1501)

    entry = directory.get('cn=staff,' + GROUP_BASE)
    assert sorted(entry['objectClass']) == ['posixGroup', 'top']
    assert entry['gidNumber'] == ['1500']
    assert entry['description'] == ['Staff']
    assert 'description' not in directory.get('cn=office,' + GROUP_BASE)

    assert connection.group_lookup('staff')['cn'] == ['staff']
    assert connection.group_lookup('nothing') is None
    assert connection.group_by_gid(1501) == 'office'
    assert connection.group_by_gid('1501') == 'office'
    assert connection.group_by_gid(1) is None
    assert connection.used_gids() == set([1500, 1501])

    connection.group_delete('office')
    assert connection.group_lookup('office') is None


def test_group_members(connection):
    connection.group_add('staff', 1500)
    connection.group_add('office', 1501)

    connection.group_add_member('staff', 'jdoe')
    connection.group_add_member('office', 'jdoe')
    connection.group_add_member('office', 'jroe')
    assert connection.group_lookup('office')['memberUid'] == ['jdoe', 'jroe']
    assert connection.groups_of_member('jdoe') == ['office', 'staff']

    with pytest.raises(ldapi.LDAPException):
        connection.group_add_member('staff', 'jdoe')

    connection.group_remove_member('office', 'jdoe')
    assert connection.groups_of_member('jdoe') == ['staff']
    with pytest.raises(ldapi.LDAPException):
        connection.group_remove_member('office', 'jdoe')


def test_escape(connection):
    assert connection.escape('a*b') == 'a\\2ab'
    assert connection.escape('(x)') == '\\28x\\29'
    assert connection.escape('back\\slash') == 'back\\5cslash'
    assert connection.escape(1001) == '1001'


def test_search_escapes_params(connection):
    connection.user_add('jdoe', 1001, 100, '/home/jdoe')
    users = connection.user_search('(&(objectClass=posixAccount)(uid=%s))', ['*'])
    assert users == {}


def test_dn_escaping(connection):
    assert connection.user_dn('a,b') == 'uid=a\\,b,' + USER_BASE
    assert connection.group_dn('staff') == 'cn=staff,' + GROUP_BASE


def test_disconnect(connection, directory):
    connection.disconnect()
    assert directory.unbound
    assert not connection.connected()


def test_connect_sasl(monkeypatch):
    calls = []

    class Server(object):
        def sasl_interactive_bind_s(self, who, auth):
            calls.append((who, auth.mech))

    monkeypatch.setattr(ldap, 'initialize', lambda uri: Server())
    connection = ldapi.LDAPConnection()
    connection.connect_sasl('ldap://ldap.example.com', 'GSSAPI', USER_BASE, GROUP_BASE)

    assert connection.connected()
    assert connection.user_base == USER_BASE
    assert connection.group_base == GROUP_BASE
    assert calls == [('', b'GSSAPI')]


def test_connect_sasl_failure(monkeypatch):
    class Server(object):
        def sasl_interactive_bind_s(self, who, auth):
            raise ldap.LOCAL_ERROR({'desc': 'Local error', 'info': 'SASL(-1): generic failure'})

    monkeypatch.setattr(ldap, 'initialize', lambda uri: Server())
    connection = ldapi.LDAPConnection()
    with pytest.raises(ldapi.LDAPException) as excinfo:
        connection.connect_sasl('ldap://ldap.example.com', 'GSSAPI', USER_BASE, GROUP_BASE)
    assert 'Local error (SASL(-1): generic failure)' in str(excinfo.value)
    assert not connection.connected()


def test_format_ldaperror():
    assert ldapi.format_ldaperror(ldap.SERVER_DOWN({'desc': "Can't contact LDAP server"})) == \
        "Can't contact LDAP server"
    assert ldapi.format_ldaperror(ldap.LDAPError('plain')) == 'plain'
