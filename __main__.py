#!/usr/bin/python
#
# -*- coding: utf-8 -*-
# vim: ts=4 sw=4 tw=100 et ai si
#
# Copyright (C) 2020-2025 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause

"""
The main entry point for the 'vmcpu' tool when it is run as a zipapp archive or as a directory.
"""

import sys
from vmcputool._VmCpu import main

if __name__ == "__main__":
    sys.exit(main())
