"""
Entries module: memorial profiles with a primary portrait and a small gallery.
"""
