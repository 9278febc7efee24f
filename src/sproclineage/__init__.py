"""
sproclineage: table and portfolio-code lineage for T-SQL stored procedures.
"""
__version__ = "0.1.0"
