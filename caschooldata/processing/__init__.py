"""
Pure processing core: era adapters, aggregation, normalization and tidying.

Nothing in this package performs I/O; raw tables come in as string cells
and canonical rows come out.
"""
