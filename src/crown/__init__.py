"""
Crown platform protocol: models, codec, market parser and account client
"""
