"""Top-level package for the checkout register.

The core lives in :mod:`catalog` (products and stock), :mod:`checkout`
(the open transaction and its settle protocol) and :mod:`receipt`
(immutable receipts).  :mod:`cli` and :mod:`catalog_feed` are thin
collaborators built on the core.
"""
