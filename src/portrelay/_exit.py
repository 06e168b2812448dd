# -*- test-case-name: portrelay.test.test_script -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
System exit support.
"""

import os
from sys import exit as sysexit, stderr, stdout

from constantly import ValueConstant, Values


def exit(status, message=None):
    """
    Exit the python interpreter with an optional message.

    @param status: An exit status.
    @type status: L{int} or L{ValueConstant} from L{ExitStatus}.
    """
    if isinstance(status, ValueConstant):
        code = status.value
    else:
        code = int(status)

    if message:
        if code == 0:
            out = stdout
        else:
            out = stderr
        out.write(message)
        out.write("\n")

    sysexit(code)


class ExitStatus(Values):
    """
    Standard exit status codes for system programs.
    """

    EX_OK = ValueConstant(getattr(os, "EX_OK", 0))
    EX_USAGE = ValueConstant(getattr(os, "EX_USAGE", 64))
    EX_NOHOST = ValueConstant(getattr(os, "EX_NOHOST", 68))
    EX_UNAVAILABLE = ValueConstant(getattr(os, "EX_UNAVAILABLE", 69))
    EX_CANTCREAT = ValueConstant(getattr(os, "EX_CANTCREAT", 73))
    EX_CONFIG = ValueConstant(getattr(os, "EX_CONFIG", 78))
