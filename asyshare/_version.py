
__version__ = "0.1.0"
__banner__ = \
"""
# asyshare %s 
# single-root file sharing over HTTP
""" % __version__
