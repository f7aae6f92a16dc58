"""
dne: whole-program detector of stores that may overwrite pinned values.

Stages:
  loader:     module closure, parsing, `// dne:` annotation scan
  instrument: pin calls spliced next to each annotation
  importer:   memoized, on-demand type checking
  builder:    SSA construction
  pins:       annotation -> value resolution
  driver:     entry points, overwrite sites, points-to queries
  detector:   may-alias cross-reference
"""

__version__ = "0.1.0"
