#
# Copyright (c) 2001 Bizar Software Pty Ltd (http://www.bizarsoftware.com.au/)
# This module is free software, and you may redistribute it and/or modify
# under the same terms as Python, so long as this copyright message and
# disclaimer are retained in their original form.
#
# IN NO EVENT SHALL BIZAR SOFTWARE PTY LTD BE LIABLE TO ANY PARTY FOR
# DIRECT, INDIRECT, SPECIAL, INCIDENTAL, OR CONSEQUENTIAL DAMAGES ARISING
# OUT OF THE USE OF THIS CODE, EVEN IF THE AUTHOR HAS BEEN ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.
#
# BIZAR SOFTWARE PTY LTD SPECIFICALLY DISCLAIMS ANY WARRANTIES, INCLUDING,
# BUT NOT LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS
# FOR A PARTICULAR PURPOSE.  THE CODE PROVIDED HEREUNDER IS ON AN "AS IS"
# BASIS, AND THERE IS NO OBLIGATION WHATSOEVER TO PROVIDE MAINTENANCE,
# SUPPORT, UPDATES, ENHANCEMENTS, OR MODIFICATIONS.
'''Relational store backends, one back_<name> module per database.

Each backend module provides a Database class plus the module-level
functions db_exists(config) and db_nuke(config) used by the tracker.
'''
__docformat__ = 'restructuredtext'

import importlib

# driver modules per backend; an ImportError naming one of these means
# the backend is not installed rather than broken
_drivers = {
    'mysql': ('MySQLdb',),
    'postgresql': ('psycopg2',),
    'sqlite': ('sqlite3', '_sqlite3'),
}

_loaded = {}

def get_backend(name):
    '''Return the backend module for RDBMS_BACKEND value "name".'''
    if name not in _loaded:
        _loaded[name] = importlib.import_module('.back_%s' % name, __name__)
    return _loaded[name]

def have_backend(name):
    '''True if the database driver for backend "name" can be imported.'''
    try:
        get_backend(name)
    except ImportError as e:
        if getattr(e, 'name', None) in _drivers.get(name, ()):
            return False
        raise
    return True

# vim: set filetype=python sts=4 sw=4 et si :
