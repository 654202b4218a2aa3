"""Chibisafe Uploader — push new files from a folder to a chibisafe album.

Watches a folder for newly created files, uploads each one to a
chibisafe server and copies the public link, and periodically removes
album files older than a configured age.
"""

__version__ = "1.0.0"
__app_name__ = "Chibisafe Uploader"
