"""
Command Line Tools

    useradd  - create a new user
    userdel  - delete a user
    groupadd - create a new group
    groupdel - delete a group
"""
