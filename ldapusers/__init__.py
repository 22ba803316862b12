"""
LDAP User Tools

Replacements for the shadow-utils account tools (useradd, userdel,
groupadd, groupdel) that store accounts in an LDAP directory and the
Kerberos KDC instead of the local password and group files.

    conf     - configuration file readers
    accounts - settings, name validation and connection sessions
    ids      - UID/GID allocation
    ldapi    - LDAP interface for account entries
    krb      - Kerberos credentials and kadmin interface
    homes    - home directories, mail spools and job cleanup
    ops      - audit logging
    console  - the command line tools
"""
__version__ = '1.0'
