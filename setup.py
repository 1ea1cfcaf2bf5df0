#! /usr/bin/env python
# -*- coding: utf-8 -*-
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
#

from setuptools import setup

import os
import re


def get_version():
    """Read __version__ from the package without importing it."""
    with open(os.path.join('doreen', '__init__.py')) as f:
        return re.search(r"^__version__ = '([^']+)'", f.read(),
                         re.M).group(1)


def main():
    packages = [
        'doreen',
        'doreen.backends',
    ]

    # the sqlite backend needs nothing beyond the standard library
    extras_require = {
        'postgresql': ['psycopg2'],
        'mysql': ['mysqlclient'],
        'test': ['pytest', 'hypothesis'],
    }

    setup(name='doreen',
          version=get_version(),
          description="Search, access control and ticket assembly core"
            " of the Doreen ticket tracker.",
          long_description=open('README.txt').read(),
          classifiers=['Development Status :: 4 - Beta',
                       'Environment :: Web Environment',
                       'Intended Audience :: Developers',
                       'License :: OSI Approved :: MIT License',
                       'Operating System :: OS Independent',
                       'Programming Language :: Python',
                       'Programming Language :: Python :: 3',
                       'Topic :: Database',
                       'Topic :: Software Development :: Bug Tracking',
                       ],
          python_requires='>=3.6',
          packages=packages,
          extras_require=extras_require)

if __name__ == '__main__':
    os.chdir(os.path.dirname(__file__) or '.')
    main()

# vim: set filetype=python sts=4 sw=4 et si :
