"""Lets the tests import tracker from a checkout that hasn't been installed."""
