#!/usr/bin/env python
# encoding: utf-8
"""
velour.tests

Created by Christian Swinehart on 2012-02-25.
Copyright (c) 2012 Samizdat Drafting Co. All rights reserved.
"""

import unittest
from velour.tests import test_package, test_params, test_io, test_changes, test_couch, test_database

def suite():
    suite = unittest.TestSuite()
    suite.addTest(test_package.suite())
    suite.addTest(test_params.suite())
    suite.addTest(test_io.suite())
    suite.addTest(test_changes.suite())
    suite.addTest(test_couch.suite())
    suite.addTest(test_database.suite())
    return suite


if __name__ == '__main__':
    unittest.main(defaultTest='suite')
