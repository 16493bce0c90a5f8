"""
Star Schema ETL

Converts semi-structured XML records into a fact table and keyed dimension
tables, processing files in parallel batches and merging the batches into one
consistently keyed star schema.
"""

__version__ = "1.0.0"
