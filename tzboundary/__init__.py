"""
Timezone boundary builder.
Builds world timezone polygons from administrative boundaries and validates
that they do not overlap.
"""

__version__ = "0.1.0"
