#!/usr/bin/env python3

from setuptools import setup

setup(
    name='ldapusers',
    version='1.0',
    description='useradd, userdel, groupadd and groupdel for LDAP and Kerberos',
    packages=[ 'ldapusers', 'ldapusers.console' ],
    scripts=[ 'bin/ldap-useradd', 'bin/ldap-userdel', 'bin/ldap-groupadd', 'bin/ldap-groupdel' ],
    install_requires=[ 'python-ldap' ],
    extras_require={ 'test': [ 'pytest' ] },
    python_requires='>=3.6',
)
