"""
groupdel: delete a group from the directory
"""
from ldapusers import accounts, ops
from ldapusers.console.main import Command
from ldapusers.excep import ToolError, E_GRP_UPDATE, E_NOTFOUND, E_IN_USE


class GroupDel(Command):
    command_name = 'groupdel'
    usage = '%prog [options] GROUP'
    unsupported = [
        ('-R', '--root', True),
    ]
    failure_status = E_GRP_UPDATE

    @classmethod
    def add_options(cls, parser):
        parser.add_option('-f', '--force', dest='force', action='store_true', default=False,
            help="delete group even if it is the primary group of a user")

    def validate_options(self):
        if len(self.args) != 1:
            self.usage_error('exactly one GROUP must be given')

    def run(self):
        accounts.require_root()
        accounts.configure()
        name = self.args[0]
        settings = accounts.resolve_settings(self.options)

        with accounts.Session(settings) as session:
            ld = session.ldap

            group = ld.group_lookup(name)
            if group is None:
                raise ToolError("group '%s' does not exist" % name, E_NOTFOUND)

            users = ld.users_with_gid(group['gidNumber'][0])
            if users and not self.options.force:
                raise ToolError("cannot remove the primary group of user '%s'" % users[0], E_IN_USE)

            ld.group_delete(name)
            ops.audit("group '%s' removed", name)
