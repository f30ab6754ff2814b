"""
Test suite for Quorum Markets

Contains:
- tests/unit/     : Unit tests for curve math, factory, governance, contracts
- tests/helpers/  : Test doubles (FakeClock)
"""
