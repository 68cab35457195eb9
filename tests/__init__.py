"""Test package for credrotate.

Making `tests/` a package gives test modules fully-qualified names, so files
sharing a basename in different directories do not collide at collection, and
lets CLI tests import the shared fakes from `tests.rotation.fakes`.
"""
