"""
Scoring and ranking of populations. Selection and the genetic operators
consume the order produced here and are not part of this package.
"""
