"""
Local Account Files

This module contains the filesystem side of account management: home
directories and their skeleton files, mail spools, and the cron and at
jobs left behind by deleted users. Nothing here talks to the directory;
callers pass in the numeric ids.
"""
import grp
import logging
import os
import shutil

from ldapusers.conf import login_defs_value
from ldapusers.excep import ToolError, E_HOMEDIR

logger = logging.getLogger(__name__)


def home_mode(defs):
    """
    Permission bits for a new home directory: HOME_MODE from login.defs,
    otherwise the complement of UMASK, otherwise 0700.
    """

    mode = login_defs_value(defs, 'HOME_MODE', None, int)
    if mode is not None:
        return mode & 0o7777
    umask = login_defs_value(defs, 'UMASK', None, int)
    if umask is not None:
        return 0o777 & ~umask
    return 0o700


def _chown_tree(path, uid, gid):
    os.lchown(path, uid, gid)
    for dirpath, dirnames, filenames in os.walk(path):
        for name in dirnames + filenames:
            os.lchown(os.path.join(dirpath, name), uid, gid)


def create_home(path, skel, uid, gid, mode=0o700):
    """
    Creates a home directory, copies the skeleton files into it and gives
    everything to the new user.

    Parameters:
        path - the home directory
        skel - skeleton directory; skipped if it does not exist
        uid  - owner of the new files
        gid  - group of the new files
        mode - permission bits of the home directory itself

    Returns: False if the directory already existed (nothing is copied)
    """

    if os.path.exists(path):
        logger.warning('home directory %s already exists; not copying any file from skel directory into it', path)
        return False

    try:
        os.makedirs(path)
        os.chmod(path, mode)

        # copy the skeleton directory's files
        if skel and os.path.isdir(skel):
            for name in os.listdir(skel):
                source = os.path.join(skel, name)
                target = os.path.join(path, name)
                if os.path.isdir(source) and not os.path.islink(source):
                    shutil.copytree(source, target, symlinks=True)
                else:
                    shutil.copy2(source, target, follow_symlinks=False)

        # make the newly copied files owned by the user
        _chown_tree(path, uid, gid)
    except OSError as e:
        raise ToolError("cannot create home directory %s: %s" % (path, e), E_HOMEDIR)

    return True


def create_mail_spool(spool_dir, login, uid):
    """
    Creates an empty mailbox for a new user, group 'mail' when that group
    exists.

    Returns: the path of the mailbox
    """

    path = os.path.join(spool_dir, login)
    try:
        gid = grp.getgrnam('mail').gr_gid
        mode = 0o660
    except KeyError:
        gid = -1
        mode = 0o600

    try:
        fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0)
    except OSError as e:
        logger.warning('creating mailbox file %s: %s', path, e)
        return None
    try:
        os.fchmod(fd, mode)
        os.fchown(fd, uid, gid)
    except OSError as e:
        logger.warning('setting owner of mailbox file %s: %s', path, e)
    finally:
        os.close(fd)
    return path


def remove_home(path, uid, force=False):
    """
    Removes a home directory tree.

    Exceptions:
        ToolError - when the directory belongs to someone else (unless
                    force) or cannot be removed

    Returns: False if there was no directory to remove
    """

    if not path or not os.path.isdir(path):
        logger.warning('home directory %s not found', path)
        return False

    if os.path.realpath(path) == '/':
        raise ToolError("refusing to remove %s" % path, E_HOMEDIR)

    owner = os.stat(path).st_uid
    if owner != uid and not force:
        raise ToolError("%s not owned by %d, not removing" % (path, uid), E_HOMEDIR)

    try:
        shutil.rmtree(path)
    except OSError as e:
        raise ToolError("error removing directory %s: %s" % (path, e), E_HOMEDIR)
    return True


def remove_mail_spool(spool_dir, login):
    """Removes a user's mailbox. Returns False if there was none."""

    path = os.path.join(spool_dir, login)
    try:
        os.unlink(path)
    except FileNotFoundError:
        logger.warning('%s mail spool (%s) not found', login, path)
        return False
    return True


def remove_crontab(crontab_dir, login):
    """Removes a user's crontab. Returns False if there was none."""

    path = os.path.join(crontab_dir, login)
    try:
        os.unlink(path)
    except FileNotFoundError:
        return False
    return True


def remove_at_jobs(atjobs_dir, uid):
    """
    Removes the queued at jobs owned by uid.

    Returns: the list of removed job files
    """

    removed = []
    try:
        names = sorted(os.listdir(atjobs_dir))
    except OSError:
        return removed

    for name in names:
        path = os.path.join(atjobs_dir, name)

        # the sequence file belongs to the daemon
        if name.startswith('.') or not os.path.isfile(path):
            continue
        if os.stat(path).st_uid == uid:
            os.unlink(path)
            removed.append(path)
    return removed


def user_processes(uid, proc='/proc'):
    """Returns the sorted PIDs of the processes whose real UID is uid."""

    pids = []
    try:
        entries = os.listdir(proc)
    except OSError:
        return pids

    for entry in entries:
        if not entry.isdigit():
            continue
        try:
            with open(os.path.join(proc, entry, 'status')) as status:
                for line in status:
                    if line.startswith('Uid:'):
                        if int(line.split()[1]) == uid:
                            pids.append(int(entry))
                        break
        except (IOError, ValueError, IndexError):
            # the process exited while we were looking
            continue
    return sorted(pids)
