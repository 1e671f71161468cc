"""
Lead import: CSV upload -> header inference -> row validation -> batch write.
"""
